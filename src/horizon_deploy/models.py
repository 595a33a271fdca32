"""Compiled system configuration model.

A `CompiledConfig` is the frozen output of configuration authoring. Every model
here is immutable once built; the deployment pipeline only reads it.
Field aliases follow the camelCase names used in serialized configs.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FrozenModel(BaseModel):
    """Base for immutable configuration records."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class PackageAction(str, Enum):
    INSTALL = "install"
    REMOVE = "remove"


class LayerPurpose(str, Enum):
    DEVELOPMENT = "development"
    GAMING = "gaming"
    MULTIMEDIA = "multimedia"
    OFFICE = "office"
    SECURITY = "security"
    NETWORKING = "networking"
    CUSTOM = "custom"
    CORE = "core"


class ContainerRuntime(str, Enum):
    PODMAN = "podman"
    DOCKER = "docker"
    TOOLBOX = "toolbox"
    DISTROBOX = "distrobox"


class DesktopEnvironment(str, Enum):
    HYPRLAND = "hyprland"
    PLASMA = "plasma"
    GNOME = "gnome"
    XFCE = "xfce"
    GRAPH = "graph"


# ---------------------------------------------------------------------------
# System identity, packages, services, users, repositories
# ---------------------------------------------------------------------------


class SystemConfig(FrozenModel):
    hostname: str = "horizonos"
    timezone: str = "UTC"
    locale: str = "en_US.UTF-8"


class Package(FrozenModel):
    name: str
    action: PackageAction = PackageAction.INSTALL
    group: str | None = None


class ServiceConfig(FrozenModel):
    auto_restart: bool = Field(default=True, alias="autoRestart")
    restart_on_failure: bool = Field(default=True, alias="restartOnFailure")
    environment: dict[str, str] = Field(default_factory=dict)


class Service(FrozenModel):
    name: str
    enabled: bool = True
    config: ServiceConfig | None = None


class User(FrozenModel):
    name: str
    uid: int | None = None
    shell: str = "/usr/bin/fish"
    groups: tuple[str, ...] = ()
    home_dir: str | None = Field(default=None, alias="homeDir")

    @property
    def home(self) -> str:
        """Home directory, defaulting to /home/<name>."""
        return self.home_dir or f"/home/{self.name}"


class Repository(FrozenModel):
    """A package repository; `kind="ostree"` marks an OSTree remote."""

    name: str
    url: str
    kind: str = "package"
    enabled: bool = True
    gpg_check: bool = Field(default=True, alias="gpgCheck")
    priority: int = 50
    branches: tuple[str, ...] = ()

    @property
    def is_ostree(self) -> bool:
        return self.kind == "ostree"


# ---------------------------------------------------------------------------
# Desktop and automation
# ---------------------------------------------------------------------------


class DesktopConfig(FrozenModel):
    environment: DesktopEnvironment = DesktopEnvironment.HYPRLAND
    auto_login: bool = Field(default=False, alias="autoLogin")
    auto_login_user: str | None = Field(default=None, alias="autoLoginUser")


class Workflow(FrozenModel):
    name: str
    enabled: bool = True
    trigger: str | None = None
    actions: tuple[str, ...] = ()


class AutomationConfig(FrozenModel):
    enabled: bool = True
    workflows: tuple[Workflow, ...] = ()


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


class HealthCheck(FrozenModel):
    command: str
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3
    start_period: str = Field(default="60s", alias="startPeriod")


class SystemContainer(FrozenModel):
    """Container specification backing a system layer."""

    image: str
    tag: str = "latest"
    digest: str | None = None
    runtime: ContainerRuntime = ContainerRuntime.DISTROBOX
    packages: tuple[str, ...] = ()
    binaries: tuple[str, ...] = ()
    mounts: tuple[str, ...] = ()
    environment: dict[str, str] = Field(default_factory=dict)
    ports: tuple[str, ...] = ()
    labels: dict[str, str] = Field(default_factory=dict)
    network_mode: str = Field(default="bridge", alias="networkMode")
    privileged: bool = False
    post_commands: tuple[str, ...] = Field(default=(), alias="postCommands")

    @property
    def image_ref(self) -> str:
        """Image reference, pinned by digest when one is set."""
        if self.digest:
            return f"{self.image}@{self.digest}"
        return f"{self.image}:{self.tag}"


class BaseLayer(FrozenModel):
    image: str = "horizonos/base"
    tag: str = "stable"
    digest: str | None = None
    minimal: bool = True
    packages: tuple[str, ...] = (
        "base", "linux", "systemd", "ostree", "podman", "flatpak", "fish", "neovim",
    )
    services: tuple[str, ...] = (
        "systemd-networkd", "systemd-resolved", "podman.socket", "flatpak-system-helper",
    )
    ostree_ref: str = Field(default="horizonos/stable/x86_64", alias="ostreeRef")
    ostree_commit: str | None = Field(default=None, alias="ostreeCommit")
    version: str = "1.0"


class SystemLayer(FrozenModel):
    name: str
    purpose: LayerPurpose = LayerPurpose.CUSTOM
    container: SystemContainer
    dependencies: tuple[str, ...] = ()
    priority: int = 50
    enabled: bool = True
    auto_start: bool = Field(default=False, alias="autoStart")
    health_check: HealthCheck | None = Field(default=None, alias="healthCheck")


class FlatpakApplication(FrozenModel):
    id: str
    branch: str = "stable"
    remote: str = "flathub"
    user_install: bool = Field(default=True, alias="userInstall")


class AppImage(FrozenModel):
    name: str
    url: str
    version: str | None = None
    checksum: str | None = None


class Snap(FrozenModel):
    name: str
    channel: str = "stable"
    classic: bool = False
    devmode: bool = False


class UserLayer(FrozenModel):
    flatpaks: tuple[FlatpakApplication, ...] = ()
    app_images: tuple[AppImage, ...] = Field(default=(), alias="appImages")
    snaps: tuple[Snap, ...] = ()
    auto_updates: bool = Field(default=True, alias="autoUpdates")
    user_scope: bool = Field(default=True, alias="userScope")

    @property
    def is_empty(self) -> bool:
        return not (self.flatpaks or self.app_images or self.snaps)


class LayersConfig(FrozenModel):
    base: BaseLayer = Field(default_factory=BaseLayer)
    system: tuple[SystemLayer, ...] = ()
    user: UserLayer = Field(default_factory=UserLayer)
    layer_order: tuple[str, ...] = Field(default=(), alias="layerOrder")
    global_mounts: tuple[str, ...] = Field(default=(), alias="globalMounts")
    shared_volumes: tuple[str, ...] = Field(default=(), alias="sharedVolumes")


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class CompiledConfig(FrozenModel):
    """Root of a compiled system description."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    packages: tuple[Package, ...] = ()
    services: tuple[Service, ...] = ()
    users: tuple[User, ...] = ()
    repositories: tuple[Repository, ...] = ()
    layers: LayersConfig | None = None
    desktop: DesktopConfig | None = None
    automation: AutomationConfig | None = None

    @property
    def base_layer(self) -> BaseLayer:
        """Base layer, falling back to the default base when no layers are declared."""
        return self.layers.base if self.layers else BaseLayer()
