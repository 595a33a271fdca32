"""Deployment orchestration.

The engine runs one deployment as a linear sequence of stages:

    validate -> resolve layers -> preflight -> commit -> deploy
    -> system configuration -> system layers -> user layer -> health checks

Validation, resolution and preflight problems abort before anything is
written. Once the new revision is deployed, any failure rolls the base tree
back to the revision that was booted before the run; a failed commit or
deploy leaves the existing deployments untouched. Health check failures are
reported per layer and never trigger a rollback.

Expected failures are always returned in an `ExecutionResult`; the engine
does not raise for them.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from horizon_deploy.changes import ConfigChange, detect_changes
from horizon_deploy.containers import ContainerManager, HealthChecker, UserLayerManager
from horizon_deploy.errors import DeployError, DeploymentCancelled, LayerError
from horizon_deploy.executor import CommandExecutor
from horizon_deploy.filesystem import create_filesystem
from horizon_deploy.layers import LayerResolution, plan_layers
from horizon_deploy.models import BaseLayer, CompiledConfig, PackageAction, SystemLayer
from horizon_deploy.ostree import OstreeManager
from horizon_deploy.protocols import CommandRunner, FileSystem
from horizon_deploy.repositories import RepositoryManager
from horizon_deploy.settings import EngineSettings
from horizon_deploy.system import SystemManager
from horizon_deploy.types import (
    ExecutionError,
    ExecutionErrorKind,
    ExecutionOperation,
    ExecutionResult,
    LayerInfo,
    LayerStatus,
    OperationKind,
    SystemStatus,
)
from horizon_deploy.validation import validate

logger = logging.getLogger(__name__)

CURRENT_CONFIG_FILE = "current-config.json"

CancelCheck = Callable[[], bool]


class ExecutionEngine:
    """Sequences managers to deploy a compiled configuration."""

    def __init__(
        self,
        settings: EngineSettings,
        ostree: OstreeManager,
        system: SystemManager,
        repositories: RepositoryManager,
        containers: ContainerManager,
        user_layers: UserLayerManager,
        health: HealthChecker,
        filesystem: FileSystem,
    ) -> None:
        self.settings = settings
        self.ostree = ostree
        self.system = system
        self.repositories = repositories
        self.containers = containers
        self.user_layers = user_layers
        self.health = health
        self.fs = filesystem
        self.config_dir = settings.under_root(settings.config_root)

    @classmethod
    def create(
        cls,
        settings: EngineSettings,
        runner: CommandRunner | None = None,
        filesystem: FileSystem | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ExecutionEngine:
        """Wire an engine and its managers from settings.

        Args:
            settings: Engine settings; `dry_run` selects the runner and
                filesystem when none are given.
            runner: Override command runner (for testing).
            filesystem: Override filesystem (for testing).
            sleep: Wait function used between health check attempts.

        Returns:
            Configured ExecutionEngine.
        """
        runner = runner or CommandExecutor.create(dry_run=settings.dry_run)
        filesystem = filesystem or create_filesystem(settings.dry_run)
        config_dir = settings.under_root(settings.config_root)

        containers = ContainerManager.create(runner, filesystem, settings.under_root(settings.export_dir))
        return cls(
            settings=settings,
            ostree=OstreeManager(runner, filesystem, settings.ostree_repo, settings.os_name, settings.system_root),
            system=SystemManager(runner, filesystem, settings.system_root, config_dir),
            repositories=RepositoryManager(runner, filesystem, config_dir, settings.ostree_repo),
            containers=containers,
            user_layers=UserLayerManager(runner, filesystem, settings.under_root(settings.appimage_dir)),
            health=HealthChecker(containers, sleep=sleep),
            filesystem=filesystem,
        )

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def preflight(self, config: CompiledConfig) -> list[ExecutionError]:
        """Check the host before anything is committed.

        The OSTree repository must exist in every mode. Outside dry-run mode,
        a pinned base commit must be on the base ref, and root permissions
        and the availability of every package to install are checked as
        enabled by settings.

        Returns:
            Every problem found; empty when the run may proceed.
        """
        errors: list[ExecutionError] = []
        try:
            self.ostree.check_repository()
        except DeployError as e:
            errors.append(ExecutionError(e.kind, str(e)))

        if self.dry_run:
            return errors

        base = config.base_layer
        if base.ostree_commit and not errors:
            try:
                self.ostree.verify_commit(base.ostree_ref, base.ostree_commit)
            except DeployError as e:
                errors.append(ExecutionError(e.kind, str(e)))

        try:
            if self.settings.check_permissions and not self.system.has_root_permissions():
                errors.append(ExecutionError(ExecutionErrorKind.PERMISSION, "Deployment must run as root"))
            if self.settings.check_packages:
                wanted = dict.fromkeys(
                    p.name for p in config.packages if p.action is PackageAction.INSTALL
                )
                errors.extend(
                    ExecutionError(ExecutionErrorKind.PACKAGE_NOT_FOUND, name)
                    for name in wanted
                    if not self.system.package_available(name)
                )
        except DeployError as e:
            errors.append(ExecutionError(e.kind, str(e)))
        return errors

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def execute(self, config: CompiledConfig, cancel_check: CancelCheck | None = None) -> ExecutionResult:
        """Deploy a compiled configuration.

        Args:
            config: Configuration to deploy.
            cancel_check: Polled between stages; returning True aborts the run
                through the rollback path.

        Returns:
            ExecutionResult with every operation attempted, the new commit id
            on success, or every error on failure.
        """
        validation = validate(config)
        if validation.is_invalid:
            logger.error("Configuration invalid: %d error(s)", len(validation.errors))
            return ExecutionResult(success=False, validation_errors=validation.errors)

        plan = plan_layers(config.layers)
        if not plan.ok:
            logger.error("Layer resolution failed: %d issue(s)", len(plan.issues))
            return ExecutionResult(success=False, layer_issues=plan.issues)

        preflight_errors = self.preflight(config)
        if preflight_errors:
            logger.error("Preflight failed: %s", "; ".join(str(e) for e in preflight_errors))
            return ExecutionResult(success=False, errors=tuple(preflight_errors))

        run = _Run(self, config, plan, cancel_check)
        return run.execute()

    def rollback(self, commit_id: str) -> ExecutionResult:
        """Manually re-deploy an earlier revision."""
        operations = (ExecutionOperation(OperationKind.OSTREE_ROLLBACK, f"Roll back to {commit_id}"),)
        try:
            self.ostree.rollback(commit_id)
        except DeployError as e:
            error = ExecutionError(ExecutionErrorKind.ROLLBACK_FAILED, str(e))
            return ExecutionResult(success=False, operations=operations, errors=(error,))
        return ExecutionResult(success=True, operations=operations, commit_id=commit_id)

    def last_applied_config(self) -> CompiledConfig | None:
        path = self.config_dir / CURRENT_CONFIG_FILE
        if not self.fs.exists(path):
            return None
        return CompiledConfig.model_validate_json(self.fs.read_text(path))

    def pending_changes(self, config: CompiledConfig) -> list[ConfigChange] | None:
        """Diff a configuration against the last applied one.

        Returns:
            Every change, or None when no configuration has been applied yet.
        """
        applied = self.last_applied_config()
        if applied is None:
            return None
        return detect_changes(applied, config)

    def status(self, config: CompiledConfig | None = None) -> SystemStatus:
        """Query the booted revision, available revisions and host info.

        Args:
            config: Optional configuration to compare against the applied one.

        Raises:
            OstreeError: If ostree cannot be queried.
            CommandError: If a host query fails.
        """
        applied = self.last_applied_config()
        branch = applied.base_layer.ostree_ref if applied else BaseLayer().ostree_ref
        pending = None
        if config is not None and applied is not None:
            pending = tuple(detect_changes(applied, config))
        return SystemStatus(
            current_commit=self.ostree.current_commit(),
            available_commits=tuple(self.ostree.available_commits(branch)),
            kernel_version=self.system.kernel_version(),
            uptime=self.system.uptime(),
            pending_changes=pending,
        )

    # ------------------------------------------------------------------
    # Layer lifecycle
    # ------------------------------------------------------------------

    def _applied_layers(self) -> tuple[SystemLayer, ...]:
        applied = self.last_applied_config()
        if applied is None:
            return ()
        return plan_layers(applied.layers).order

    def list_layers(self) -> list[LayerInfo]:
        """Get the applied system layers in order, with their container states."""
        return [LayerInfo(layer, self.containers.state(layer)) for layer in self._applied_layers()]

    def find_layer(self, name: str) -> SystemLayer:
        """Get an applied layer by name.

        Raises:
            LayerError: If no applied layer has that name.
        """
        for layer in self._applied_layers():
            if layer.name == name:
                return layer
        raise LayerError(f"Layer '{name}' is not deployed")

    def _enabled_layer(self, name: str) -> SystemLayer:
        layer = self.find_layer(name)
        if not layer.enabled:
            raise LayerError(f"Layer '{name}' is disabled")
        return layer

    def start_layer(self, name: str) -> None:
        self.containers.start(self._enabled_layer(name))

    def stop_layer(self, name: str) -> None:
        self.containers.stop(self._enabled_layer(name))

    def remove_layer(self, name: str) -> None:
        """Remove a layer's container unless an enabled layer depends on it.

        Raises:
            LayerError: If the layer is unknown or still required.
            CommandError: If the container cannot be removed.
        """
        layer = self.find_layer(name)
        dependents = [
            other.name for other in self._applied_layers() if other.enabled and name in other.dependencies
        ]
        if dependents:
            raise LayerError(f"Layer '{name}' is required by {', '.join(dependents)}")
        self.containers.remove(layer)


class _Run:
    """State of one deployment after the pre-flight gate."""

    def __init__(
        self,
        engine: ExecutionEngine,
        config: CompiledConfig,
        plan: LayerResolution,
        cancel_check: CancelCheck | None,
    ) -> None:
        self.engine = engine
        self.config = config
        self.plan = plan
        self.cancel_check = cancel_check
        self.operations: list[ExecutionOperation] = []
        self.layer_status: dict[str, LayerStatus] = {}

    def record(self, kind: OperationKind, description: str) -> None:
        logger.info("%s: %s", kind.value, description)
        self.operations.append(ExecutionOperation(kind, description))

    def checkpoint(self, stage: str) -> None:
        if self.cancel_check is not None and self.cancel_check():
            raise DeploymentCancelled(f"Deployment cancelled before {stage}")

    def execute(self) -> ExecutionResult:
        engine = self.engine
        base = self.config.base_layer
        previous: str | None = None
        committed = False
        deployed = False
        active_layer: str | None = None

        try:
            self.checkpoint("commit")
            previous = engine.ostree.current_commit()
            self.record(OperationKind.OSTREE_COMMIT, f"Commit configuration to {base.ostree_ref}")
            committed = True
            commit_id = engine.ostree.commit(self.config, self.plan.names, base.ostree_ref)

            self.checkpoint("deploy")
            self.record(OperationKind.OSTREE_DEPLOY, f"Deploy {commit_id or base.ostree_ref}")
            engine.ostree.deploy(commit_id or base.ostree_ref)
            deployed = True

            self.checkpoint("system configuration")
            self.apply_system_config()

            for layer in self.plan.order:
                self.checkpoint(f"layer {layer.name}")
                active_layer = layer.name
                self.apply_layer(layer)
                active_layer = None

            self.checkpoint("user layer")
            self.apply_user_layer()

            self.checkpoint("health checks")
            self.run_health_checks()

            engine.fs.write_text(
                engine.config_dir / CURRENT_CONFIG_FILE,
                self.config.model_dump_json(by_alias=True, indent=2),
            )
        except DeployError as e:
            logger.error("Deployment failed: %s", e)
            error = ExecutionError(e.kind, str(e))
        except Exception as e:
            logger.exception("Unexpected deployment failure")
            error = ExecutionError(ExecutionErrorKind.UNEXPECTED, str(e) or type(e).__name__)
        else:
            logger.info("Deployment complete: %s", commit_id or "(dry run)")
            return ExecutionResult(
                success=True,
                operations=tuple(self.operations),
                commit_id=commit_id,
                layer_status=self.layer_status,
            )

        if active_layer is not None:
            self.layer_status[active_layer] = LayerStatus.FAILED
        errors = [error]
        if committed:
            rollback_error = self.rollback(previous, deployed)
            if rollback_error is not None:
                errors.append(rollback_error)
        return ExecutionResult(
            success=False,
            operations=tuple(self.operations),
            errors=tuple(errors),
            layer_status=self.layer_status,
        )

    def rollback(self, previous: str | None, deployed: bool) -> ExecutionError | None:
        """Undo the deployment made by this run.

        Nothing is deployed until `ostree admin deploy` returns, so a failed
        commit or deploy leaves the existing deployments in place and only
        the rollback operation is recorded.
        """
        if not deployed:
            self.record(OperationKind.OSTREE_ROLLBACK, "Nothing deployed, existing deployments kept")
            return None
        self.record(OperationKind.OSTREE_ROLLBACK, f"Roll back to {previous or 'previous deployment'}")
        try:
            self.engine.ostree.rollback(previous)
        except Exception as e:
            logger.error("Rollback failed: %s", e)
            return ExecutionError(ExecutionErrorKind.ROLLBACK_FAILED, str(e))
        return None

    def apply_system_config(self) -> None:
        config = self.config
        system = self.engine.system

        self.record(
            OperationKind.SYSTEM_CONFIG,
            f"Set hostname {config.system.hostname}, timezone {config.system.timezone}, "
            f"locale {config.system.locale}",
        )
        system.apply_system_config(config.system)

        if config.repositories:
            self.record(OperationKind.REPOSITORY_CONFIG, f"Register {len(config.repositories)} repositories")
            self.engine.repositories.configure(config.repositories)
        if config.packages:
            installs = sum(p.action is PackageAction.INSTALL for p in config.packages)
            removes = len(config.packages) - installs
            self.record(OperationKind.PACKAGE_MANAGEMENT, f"Install {installs} and remove {removes} packages")
            system.manage_packages(config.packages)
        base_services = config.base_layer.services
        if base_services or config.services:
            self.record(
                OperationKind.SERVICE_CONFIG,
                f"Enable {len(base_services)} base services and configure {len(config.services)} services",
            )
            system.enable_base_services(base_services)
            system.configure_services(config.services)
        if config.users:
            self.record(OperationKind.USER_MANAGEMENT, f"Configure {len(config.users)} users")
            system.manage_users(config.users)
        if config.desktop is not None:
            self.record(OperationKind.DESKTOP_CONFIG, f"Configure {config.desktop.environment.value} desktop")
            system.configure_desktop(config.desktop)
        if config.automation is not None:
            self.record(OperationKind.AUTOMATION_CONFIG, f"Configure {len(config.automation.workflows)} workflows")
            system.configure_automation(config.automation)

    def apply_layer(self, layer: SystemLayer) -> None:
        if not layer.enabled:
            logger.info("Skipping disabled layer %s", layer.name)
            self.layer_status[layer.name] = LayerStatus.SKIPPED
            return
        self.record(
            OperationKind.SYSTEM_LAYER,
            f"Deploy layer {layer.name} ({layer.container.runtime.value} {layer.container.image_ref})",
        )
        layers = self.config.layers
        self.layer_status[layer.name] = self.engine.containers.deploy(
            layer,
            layers.global_mounts if layers else (),
            layers.shared_volumes if layers else (),
        )

    def apply_user_layer(self) -> None:
        layers = self.config.layers
        if layers is None or layers.user.is_empty:
            return
        user = layers.user
        self.record(
            OperationKind.USER_LAYER,
            f"Install {len(user.flatpaks)} flatpaks, {len(user.app_images)} AppImages "
            f"and {len(user.snaps)} snaps",
        )
        self.engine.user_layers.apply(user)

    def run_health_checks(self) -> None:
        for layer in self.plan.order:
            if layer.health_check is None or self.layer_status.get(layer.name) is LayerStatus.SKIPPED:
                continue
            self.record(OperationKind.HEALTH_CHECK, f"Check health of layer {layer.name}")
            self.layer_status[layer.name] = self.engine.health.check(layer)
