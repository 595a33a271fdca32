"""Authoring-time builders for compiled configurations.

Builders are mutable; `build()` freezes them into the immutable models and,
for the root builder, validates the result eagerly:

    config = (
        ConfigBuilder()
        .system(hostname="workstation")
        .install("git", "fish")
        .service("sshd")
        .user("alice", uid=1000, groups=["wheel"])
        .layers(
            LayersBuilder()
            .system_layer("dev", LayerPurpose.DEVELOPMENT)
            .system_layer("games", LayerPurpose.GAMING, dependencies=["dev"])
        )
        .build()
    )
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from horizon_deploy.defaults import DEFAULT_LAYER_IMAGE, default_flatpaks, default_packages
from horizon_deploy.models import (
    AppImage,
    AutomationConfig,
    BaseLayer,
    CompiledConfig,
    DesktopConfig,
    DesktopEnvironment,
    FlatpakApplication,
    HealthCheck,
    LayerPurpose,
    LayersConfig,
    Package,
    PackageAction,
    Repository,
    Service,
    ServiceConfig,
    Snap,
    SystemConfig,
    SystemContainer,
    SystemLayer,
    User,
    UserLayer,
    Workflow,
)
from horizon_deploy.validation import validate_or_raise


def purpose_container(purpose: LayerPurpose, image: str = DEFAULT_LAYER_IMAGE, **overrides: Any) -> SystemContainer:
    """Container preloaded with the default packages for a purpose."""
    fields: dict[str, Any] = {"image": image, "packages": default_packages(purpose)}
    fields.update(overrides)
    return SystemContainer(**fields)


class LayersBuilder:
    """Collects the base, system and user layers."""

    def __init__(self) -> None:
        self._base = BaseLayer()
        self._system: list[SystemLayer] = []
        self._flatpaks: list[FlatpakApplication] = []
        self._app_images: list[AppImage] = []
        self._snaps: list[Snap] = []
        self._user_options: dict[str, bool] = {}
        self._order: list[str] = []
        self._global_mounts: list[str] = []
        self._shared_volumes: list[str] = []

    def base(self, *, packages: Iterable[str] = (), services: Iterable[str] = (), **fields: Any) -> LayersBuilder:
        """Configure the base layer; extra packages/services add to the defaults."""
        current = self._base.model_dump()
        current.update(fields)
        current["packages"] = (*self._base.packages, *packages)
        current["services"] = (*self._base.services, *services)
        self._base = BaseLayer(**current)
        return self

    def system_layer(
        self,
        name: str,
        purpose: LayerPurpose = LayerPurpose.CUSTOM,
        *,
        container: SystemContainer | None = None,
        dependencies: Iterable[str] = (),
        priority: int = 50,
        enabled: bool = True,
        auto_start: bool = False,
        health_check: HealthCheck | None = None,
        with_default_flatpaks: bool = False,
    ) -> LayersBuilder:
        """Add a system layer.

        Args:
            name: Unique layer name.
            purpose: Layer purpose.
            container: Container spec; defaults to the purpose's default
                package set on the default layer image.
            dependencies: Names of layers that must be applied first.
            priority: Lower values go first among ready layers.
            enabled: Disabled layers are resolved but not applied.
            auto_start: Keep the container running after deployment.
            health_check: Optional health check.
            with_default_flatpaks: Also add the purpose's default flatpaks to
                the user layer.
        """
        self._system.append(
            SystemLayer(
                name=name,
                purpose=purpose,
                container=container or purpose_container(purpose),
                dependencies=tuple(dependencies),
                priority=priority,
                enabled=enabled,
                auto_start=auto_start,
                health_check=health_check,
            )
        )
        if with_default_flatpaks:
            self.flatpaks(*default_flatpaks(purpose))
        return self

    def flatpak(self, app_id: str, **fields: Any) -> LayersBuilder:
        self._flatpaks.append(FlatpakApplication(id=app_id, **fields))
        return self

    def flatpaks(self, *app_ids: str) -> LayersBuilder:
        known = {f.id for f in self._flatpaks}
        for app_id in app_ids:
            if app_id not in known:
                self.flatpak(app_id)
                known.add(app_id)
        return self

    def app_image(self, name: str, url: str, checksum: str | None = None, version: str | None = None) -> LayersBuilder:
        self._app_images.append(AppImage(name=name, url=url, checksum=checksum, version=version))
        return self

    def snap(self, name: str, channel: str = "stable", classic: bool = False, devmode: bool = False) -> LayersBuilder:
        self._snaps.append(Snap(name=name, channel=channel, classic=classic, devmode=devmode))
        return self

    def user_options(self, *, auto_updates: bool | None = None, user_scope: bool | None = None) -> LayersBuilder:
        if auto_updates is not None:
            self._user_options["auto_updates"] = auto_updates
        if user_scope is not None:
            self._user_options["user_scope"] = user_scope
        return self

    def order(self, *names: str) -> LayersBuilder:
        """Set an explicit application order, replacing any earlier one."""
        self._order = list(names)
        return self

    def global_mount(self, path: str) -> LayersBuilder:
        self._global_mounts.append(path)
        return self

    def shared_volume(self, name: str) -> LayersBuilder:
        self._shared_volumes.append(name)
        return self

    def build(self) -> LayersConfig:
        return LayersConfig(
            base=self._base,
            system=tuple(self._system),
            user=UserLayer(
                flatpaks=tuple(self._flatpaks),
                app_images=tuple(self._app_images),
                snaps=tuple(self._snaps),
                **self._user_options,
            ),
            layer_order=tuple(self._order),
            global_mounts=tuple(self._global_mounts),
            shared_volumes=tuple(self._shared_volumes),
        )


class ConfigBuilder:
    """Root builder producing a validated CompiledConfig."""

    def __init__(self) -> None:
        self._system = SystemConfig()
        self._packages: list[Package] = []
        self._services: list[Service] = []
        self._users: list[User] = []
        self._repositories: list[Repository] = []
        self._layers: LayersConfig | None = None
        self._desktop: DesktopConfig | None = None
        self._automation: AutomationConfig | None = None

    def system(self, **fields: str) -> ConfigBuilder:
        """Set hostname, timezone and/or locale."""
        self._system = self._system.model_copy(update=fields)
        return self

    def install(self, *names: str, group: str | None = None) -> ConfigBuilder:
        self._packages.extend(Package(name=n, action=PackageAction.INSTALL, group=group) for n in names)
        return self

    def remove(self, *names: str) -> ConfigBuilder:
        self._packages.extend(Package(name=n, action=PackageAction.REMOVE) for n in names)
        return self

    def service(
        self,
        name: str,
        enabled: bool = True,
        *,
        environment: Mapping[str, str] | None = None,
        restart_on_failure: bool | None = None,
    ) -> ConfigBuilder:
        config = None
        if environment is not None or restart_on_failure is not None:
            options: dict[str, Any] = {"environment": dict(environment or {})}
            if restart_on_failure is not None:
                options["restart_on_failure"] = restart_on_failure
            config = ServiceConfig(**options)
        self._services.append(Service(name=name, enabled=enabled, config=config))
        return self

    def user(
        self,
        name: str,
        *,
        uid: int | None = None,
        shell: str = "/usr/bin/fish",
        groups: Iterable[str] = (),
        home_dir: str | None = None,
    ) -> ConfigBuilder:
        self._users.append(User(name=name, uid=uid, shell=shell, groups=tuple(groups), home_dir=home_dir))
        return self

    def repository(self, name: str, url: str, **fields: Any) -> ConfigBuilder:
        self._repositories.append(Repository(name=name, url=url, **fields))
        return self

    def ostree_repository(self, name: str, url: str, branches: Iterable[str] = (), **fields: Any) -> ConfigBuilder:
        self._repositories.append(Repository(name=name, url=url, kind="ostree", branches=tuple(branches), **fields))
        return self

    def desktop(
        self,
        environment: DesktopEnvironment = DesktopEnvironment.HYPRLAND,
        *,
        auto_login_user: str | None = None,
    ) -> ConfigBuilder:
        """Configure the desktop; naming an auto-login user enables auto-login."""
        self._desktop = DesktopConfig(
            environment=environment,
            auto_login=auto_login_user is not None,
            auto_login_user=auto_login_user,
        )
        return self

    def workflow(self, name: str, *actions: str, trigger: str | None = None, enabled: bool = True) -> ConfigBuilder:
        current = self._automation or AutomationConfig()
        flow = Workflow(name=name, trigger=trigger, actions=actions, enabled=enabled)
        self._automation = current.model_copy(update={"workflows": (*current.workflows, flow)})
        return self

    def layers(self, layers: LayersBuilder | LayersConfig) -> ConfigBuilder:
        self._layers = layers.build() if isinstance(layers, LayersBuilder) else layers
        return self

    def freeze(self) -> CompiledConfig:
        """Build without validating."""
        return CompiledConfig(
            system=self._system,
            packages=tuple(self._packages),
            services=tuple(self._services),
            users=tuple(self._users),
            repositories=tuple(self._repositories),
            layers=self._layers,
            desktop=self._desktop,
            automation=self._automation,
        )

    def build(self) -> CompiledConfig:
        """Build and validate.

        Raises:
            ConfigValidationError: Listing every validation error.
        """
        return validate_or_raise(self.freeze())
