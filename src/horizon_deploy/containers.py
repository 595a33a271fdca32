"""Per-layer state application.

`ContainerManager` turns a system layer into a container on the host,
`UserLayerManager` installs user-scope applications, and `HealthChecker`
checks a deployed layer with its configured health check.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from horizon_deploy.errors import CommandError
from horizon_deploy.models import (
    AppImage,
    ContainerRuntime,
    FlatpakApplication,
    HealthCheck,
    Snap,
    SystemLayer,
    UserLayer,
)
from horizon_deploy.protocols import CommandRunner, FileSystem
from horizon_deploy.types import ContainerState, LayerStatus
from horizon_deploy.validation import parse_duration

if TYPE_CHECKING:
    from horizon_deploy.executor import CommandResult

logger = logging.getLogger(__name__)

CONTAINER_PREFIX = "horizonos-"
EXECUTABLE_MODE = 0o755
SHARED_VOLUME_ROOT = "/var/lib/horizonos/shared"

# Package manager install commands, matched against the image name.
_PACKAGE_INSTALLERS = (
    ("fedora", "dnf install -y"),
    ("ubuntu", "apt-get install -y"),
    ("debian", "apt-get install -y"),
    ("alpine", "apk add --no-cache"),
)
_DEFAULT_INSTALLER = "pacman -S --needed --noconfirm"

_CONTAINER_STATES = {
    "created": ContainerState.CREATED,
    "running": ContainerState.RUNNING,
    "exited": ContainerState.STOPPED,
    "stopped": ContainerState.STOPPED,
    "paused": ContainerState.PAUSED,
}


def container_name(layer: SystemLayer) -> str:
    return f"{CONTAINER_PREFIX}{layer.name}"


def shared_volume_mounts(volumes: Sequence[str]) -> list[str]:
    """Get the mounts attaching named shared volumes under SHARED_VOLUME_ROOT."""
    return [f"{CONTAINER_PREFIX}{name}:{SHARED_VOLUME_ROOT}/{name}" for name in volumes]


def package_install_command(image: str, packages: Sequence[str]) -> str:
    """Get the shell command installing packages inside a container image."""
    installer = next(
        (cmd for marker, cmd in _PACKAGE_INSTALLERS if marker in image.lower()),
        _DEFAULT_INSTALLER,
    )
    return f"{installer} {' '.join(packages)}"


def engine_binary(runtime: ContainerRuntime) -> str:
    """Get the container engine that owns a runtime's containers.

    Distrobox and toolbox containers are podman containers underneath.
    """
    return "docker" if runtime is ContainerRuntime.DOCKER else "podman"


def exec_prefix(runtime: ContainerRuntime, name: str) -> list[str]:
    """Get the argv prefix that runs a program inside a container."""
    if runtime is ContainerRuntime.DISTROBOX:
        return ["distrobox", "enter", name, "--"]
    if runtime is ContainerRuntime.TOOLBOX:
        return ["toolbox", "run", "--container", name]
    return [runtime.value, "exec", name]


class ContainerManager:
    """Deploys the container backing a system layer and manages its lifecycle."""

    def __init__(self, runner: CommandRunner, filesystem: FileSystem, export_dir: Path) -> None:
        self.runner = runner
        self.fs = filesystem
        self.export_dir = export_dir

    @classmethod
    def create(cls, runner: CommandRunner, filesystem: FileSystem, export_dir: Path) -> ContainerManager:
        return cls(runner, filesystem, export_dir)

    def exec_in(
        self, layer: SystemLayer, command: str, timeout: float | None = None, check: bool = True
    ) -> CommandResult:
        """Run a shell command inside the layer's container."""
        argv = exec_prefix(layer.container.runtime, container_name(layer)) + ["sh", "-c", command]
        return self.runner.run(argv, timeout=timeout, check=check)

    def _create_args(self, layer: SystemLayer, shared_mounts: Sequence[str]) -> list[str]:
        spec = layer.container
        name = container_name(layer)
        runtime = spec.runtime

        if runtime is ContainerRuntime.DISTROBOX:
            args = ["distrobox", "create", "--yes", "--name", name, "--image", spec.image_ref]
            for mount in (*shared_mounts, *spec.mounts):
                args += ["--volume", mount]
            return args
        if runtime is ContainerRuntime.TOOLBOX:
            return ["toolbox", "create", "--container", name, "--image", spec.image_ref]

        args = [runtime.value, "create", "--name", name]
        for key, value in sorted(spec.environment.items()):
            args += ["--env", f"{key}={value}"]
        for port in spec.ports:
            args += ["--publish", port]
        for mount in (*shared_mounts, *spec.mounts):
            args += ["--volume", mount]
        labels = {"horizonos.layer": layer.name, "horizonos.purpose": layer.purpose.value, **spec.labels}
        for key, value in sorted(labels.items()):
            args += ["--label", f"{key}={value}"]
        args += ["--network", spec.network_mode]
        if spec.privileged:
            args.append("--privileged")
        if layer.auto_start:
            args.append("--restart=unless-stopped")
        args += [spec.image_ref, "sleep", "infinity"]
        return args

    def deploy(
        self,
        layer: SystemLayer,
        global_mounts: Sequence[str] = (),
        shared_volumes: Sequence[str] = (),
    ) -> LayerStatus:
        """Converge a layer's container to its declared state.

        Any existing container of the same name is replaced, then packages
        are installed, post commands run and binaries exported.

        Args:
            layer: Layer to deploy.
            global_mounts: Mounts shared by every layer.
            shared_volumes: Named volumes attached to every layer.

        Returns:
            RUNNING when the layer auto-starts, DEPLOYED otherwise.

        Raises:
            CommandError: If any container command fails.
        """
        spec = layer.container
        name = container_name(layer)
        runtime = spec.runtime
        daemon_runtime = runtime in (ContainerRuntime.PODMAN, ContainerRuntime.DOCKER)

        self.runner.run([runtime.value, "rm", "--force", name], check=False)
        shared_mounts = [*global_mounts, *shared_volume_mounts(shared_volumes)]
        self.runner.run(self._create_args(layer, shared_mounts))
        if daemon_runtime:
            self.runner.run([runtime.value, "start", name])

        if spec.packages:
            self.exec_in(layer, package_install_command(spec.image, spec.packages))
        for command in spec.post_commands:
            self.exec_in(layer, command)
        self.export_binaries(layer)

        if daemon_runtime and not layer.auto_start:
            self.runner.run([runtime.value, "stop", name])
        logger.info("Layer %s deployed in %s container %s", layer.name, runtime.value, name)
        return LayerStatus.RUNNING if layer.auto_start else LayerStatus.DEPLOYED

    def export_binaries(self, layer: SystemLayer) -> list[Path]:
        """Write host wrapper scripts for the layer's exported binaries."""
        if not layer.container.binaries:
            return []
        self.fs.mkdir(self.export_dir)
        prefix = " ".join(exec_prefix(layer.container.runtime, container_name(layer)))
        written = []
        for binary in layer.container.binaries:
            path = self.export_dir / Path(binary).name
            self.fs.write_text(
                path,
                "#!/bin/sh\n"
                f"# HorizonOS wrapper for {binary} in layer {layer.name}\n"
                f'exec {prefix} {binary} "$@"\n',
            )
            self.fs.chmod(path, EXECUTABLE_MODE)
            written.append(path)
        return written

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def state(self, layer: SystemLayer) -> ContainerState:
        """Inspect the layer's container; MISSING when it does not exist."""
        result = self.runner.run(
            [engine_binary(layer.container.runtime), "inspect", "--format", "{{.State.Status}}", container_name(layer)],
            check=False,
        )
        if not result.ok:
            return ContainerState.MISSING
        return _CONTAINER_STATES.get(result.stdout.strip().lower(), ContainerState.UNKNOWN)

    def start(self, layer: SystemLayer) -> None:
        self.runner.run([engine_binary(layer.container.runtime), "start", container_name(layer)])
        logger.info("Started layer %s", layer.name)

    def stop(self, layer: SystemLayer) -> None:
        self.runner.run([engine_binary(layer.container.runtime), "stop", container_name(layer)])
        logger.info("Stopped layer %s", layer.name)

    def remove(self, layer: SystemLayer) -> None:
        """Delete the layer's container and its exported host wrappers.

        Raises:
            CommandError: If the container cannot be removed.
        """
        self.runner.run([engine_binary(layer.container.runtime), "rm", "--force", container_name(layer)])
        for binary in layer.container.binaries:
            self.fs.unlink(self.export_dir / Path(binary).name)
        logger.info("Removed layer %s", layer.name)


class UserLayerManager:
    """Installs flatpaks, AppImages and snaps for the user layer."""

    def __init__(self, runner: CommandRunner, filesystem: FileSystem, appimage_dir: Path) -> None:
        self.runner = runner
        self.fs = filesystem
        self.appimage_dir = appimage_dir

    def apply(self, layer: UserLayer) -> None:
        for flatpak in layer.flatpaks:
            self.install_flatpak(flatpak, layer.user_scope)
        for app_image in layer.app_images:
            self.install_app_image(app_image)
        for snap in layer.snaps:
            self.install_snap(snap)

    def install_flatpak(self, app: FlatpakApplication, user_scope: bool) -> None:
        scope = "--user" if user_scope and app.user_install else "--system"
        self.runner.run([
            "flatpak", "install", scope, "-y", "--noninteractive",
            app.remote, f"{app.id}//{app.branch}",
        ])

    def install_app_image(self, app: AppImage) -> Path:
        """Download an AppImage, verify its checksum if given, and mark it executable."""
        self.fs.mkdir(self.appimage_dir)
        target = self.appimage_dir / f"{app.name}.AppImage"
        self.runner.run(["curl", "-fsSL", "-o", str(target), app.url])
        if app.checksum:
            digest = app.checksum.removeprefix("sha256:")
            self.runner.run(
                ["sha256sum", "--check", "--status", "-"],
                input=f"{digest}  {target}\n",
            )
        self.fs.chmod(target, EXECUTABLE_MODE)
        return target

    def install_snap(self, snap: Snap) -> None:
        args = ["snap", "install", snap.name]
        if snap.channel != "stable":
            args.append(f"--channel={snap.channel}")
        if snap.classic:
            args.append("--classic")
        if snap.devmode:
            args.append("--devmode")
        self.runner.run(args)


class HealthChecker:
    """Runs a layer's health check inside its container.

    The check is attempted `retries` times, waiting `interval` between
    attempts. Failures within `start_period` do not count against the retry
    budget. Each attempt is bounded by `timeout`.
    """

    def __init__(self, containers: ContainerManager, sleep: Callable[[float], None] = time.sleep) -> None:
        self.containers = containers
        self.sleep = sleep

    @staticmethod
    def attempt_budget(check: HealthCheck) -> int:
        interval = parse_duration(check.interval)
        grace = int(parse_duration(check.start_period) // interval) if interval > 0 else 0
        return max(1, check.retries) + grace

    def check(self, layer: SystemLayer) -> LayerStatus:
        """Run a layer's health check.

        Returns:
            HEALTHY on the first passing attempt, HEALTH_CHECK_FAILED once the
            budget is exhausted.
        """
        check = layer.health_check
        if check is None:
            raise ValueError(f"Layer '{layer.name}' has no health check")

        timeout = parse_duration(check.timeout)
        interval = parse_duration(check.interval)
        attempts = self.attempt_budget(check)

        for attempt in range(1, attempts + 1):
            try:
                result = self.containers.exec_in(layer, check.command, timeout=timeout, check=False)
                if result.ok:
                    logger.info("Layer %s healthy (attempt %d)", layer.name, attempt)
                    return LayerStatus.HEALTHY
                logger.debug("Health check for %s exited %d", layer.name, result.exit_code)
            except CommandError as e:
                logger.debug("Health check for %s failed: %s", layer.name, e)
            if attempt < attempts:
                self.sleep(interval)

        logger.warning("Layer %s failed its health check after %d attempts", layer.name, attempts)
        return LayerStatus.HEALTH_CHECK_FAILED
