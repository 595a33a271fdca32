"""Change detection between the applied configuration and a new one.

Every difference is reported as a `ConfigChange` carrying how it can be
applied (live, with a service reload, or only after a reboot) and how much
of the running system it affects. `assess_live_update` summarises a change
list for display before a deployment.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from horizon_deploy.models import (
    AutomationConfig,
    BaseLayer,
    CompiledConfig,
    DesktopConfig,
    LayersConfig,
    Package,
    PackageAction,
    Repository,
    Service,
    SystemConfig,
    User,
)

__all__ = [
    "ChangeType",
    "ConfigChange",
    "ImpactLevel",
    "LiveUpdateCapability",
    "UpdateStrategy",
    "assess_live_update",
    "detect_changes",
]

# Services known to re-read their configuration without a restart.
RELOADABLE_SERVICES = frozenset({
    "nginx",
    "apache2",
    "httpd",
    "postfix",
    "dovecot",
    "bind9",
    "named",
    "sshd",
    "NetworkManager",
    "systemd-resolved",
    "systemd-timesyncd",
})


class ChangeType(str, Enum):
    SYSTEM_CONFIG = "system_config"
    PACKAGE_INSTALL = "package_install"
    PACKAGE_REMOVE = "package_remove"
    SERVICE_ADD = "service_add"
    SERVICE_REMOVE = "service_remove"
    SERVICE_STATE = "service_state"
    SERVICE_CONFIG = "service_config"
    USER_ADD = "user_add"
    USER_MODIFY = "user_modify"
    USER_REMOVE = "user_remove"
    REPOSITORY = "repository"
    DESKTOP_CONFIG = "desktop_config"
    AUTOMATION_WORKFLOW = "automation_workflow"
    BASE_LAYER = "base_layer"
    LAYER_ADD = "layer_add"
    LAYER_UPDATE = "layer_update"
    LAYER_REMOVE = "layer_remove"
    USER_APPS = "user_apps"


class UpdateStrategy(str, Enum):
    LIVE = "live"
    SERVICE_RELOAD = "service_reload"
    REBOOT_REQUIRED = "reboot_required"


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ConfigChange:
    """One difference between two configurations.

    Attributes:
        type: What changed.
        description: Human-readable summary.
        strategy: How the change can be applied.
        impact: How much of the running system it affects.
        subjects: Names affected (packages, users, services...).
    """

    type: ChangeType
    description: str
    strategy: UpdateStrategy
    impact: ImpactLevel
    subjects: tuple[str, ...] = ()


@dataclass(frozen=True)
class LiveUpdateCapability:
    """Summary of whether a change list can be applied without a reboot."""

    live_changes: int
    reload_changes: int
    reboot_changes: int
    estimated_seconds: int

    @property
    def can_fully_update(self) -> bool:
        return self.reboot_changes == 0


def detect_changes(current: CompiledConfig, new: CompiledConfig) -> list[ConfigChange]:
    """List every difference between the applied and the new configuration.

    Changes are grouped by section in a fixed order: system identity,
    packages, services, users, repositories, desktop, automation, layers.
    """
    return [
        *_system_changes(current.system, new.system),
        *_package_changes(current.packages, new.packages),
        *_service_changes(current.services, new.services),
        *_user_changes(current.users, new.users),
        *_repository_changes(current.repositories, new.repositories),
        *_desktop_changes(current.desktop, new.desktop),
        *_automation_changes(current.automation, new.automation),
        *_layer_changes(current.layers, new.layers),
    ]


def assess_live_update(changes: Sequence[ConfigChange]) -> LiveUpdateCapability:
    """Count changes per strategy and estimate how long the live part takes."""
    live = [c for c in changes if c.strategy is UpdateStrategy.LIVE]
    reloads = [c for c in changes if c.strategy is UpdateStrategy.SERVICE_RELOAD]
    return LiveUpdateCapability(
        live_changes=len(live),
        reload_changes=len(reloads),
        reboot_changes=len(changes) - len(live) - len(reloads),
        estimated_seconds=sum(_estimate(c) for c in live) + 5 * len(reloads),
    )


def _estimate(change: ConfigChange) -> int:
    if change.type is ChangeType.PACKAGE_INSTALL:
        return 30 * len(change.subjects)
    if change.type is ChangeType.PACKAGE_REMOVE:
        return 10 * len(change.subjects)
    if change.type is ChangeType.USER_ADD:
        return 5
    if change.type is ChangeType.USER_MODIFY:
        return 3
    return 2


def _system_changes(current: SystemConfig, new: SystemConfig) -> list[ConfigChange]:
    changes = []
    fields = (("hostname", ImpactLevel.LOW), ("timezone", ImpactLevel.LOW), ("locale", ImpactLevel.MEDIUM))
    for field_name, impact in fields:
        old, value = getattr(current, field_name), getattr(new, field_name)
        if old != value:
            changes.append(ConfigChange(
                ChangeType.SYSTEM_CONFIG,
                f"{field_name.capitalize()} change: {old} -> {value}",
                UpdateStrategy.LIVE,
                impact,
                (field_name,),
            ))
    return changes


def _installed(packages: Sequence[Package]) -> dict[str, Package]:
    return {p.name: p for p in packages if p.action is PackageAction.INSTALL}


def _package_changes(current: Sequence[Package], new: Sequence[Package]) -> list[ConfigChange]:
    before, after = _installed(current), _installed(new)
    changes = []
    to_install = tuple(name for name in after if name not in before)
    if to_install:
        changes.append(ConfigChange(
            ChangeType.PACKAGE_INSTALL,
            f"Install packages: {', '.join(to_install)}",
            UpdateStrategy.LIVE,
            ImpactLevel.MEDIUM,
            to_install,
        ))
    to_remove = tuple(name for name in before if name not in after)
    if to_remove:
        changes.append(ConfigChange(
            ChangeType.PACKAGE_REMOVE,
            f"Remove packages: {', '.join(to_remove)}",
            UpdateStrategy.LIVE,
            ImpactLevel.MEDIUM,
            to_remove,
        ))
    return changes


def _service_changes(current: Sequence[Service], new: Sequence[Service]) -> list[ConfigChange]:
    before = {s.name: s for s in current}
    after = {s.name: s for s in new}
    changes = []
    for name, service in after.items():
        old = before.get(name)
        if old is None:
            state = "enabled" if service.enabled else "disabled"
            changes.append(ConfigChange(
                ChangeType.SERVICE_ADD,
                f"Add service: {name} ({state})",
                UpdateStrategy.SERVICE_RELOAD,
                ImpactLevel.MEDIUM,
                (name,),
            ))
        elif old.enabled != service.enabled:
            verb = "enable" if service.enabled else "disable"
            changes.append(ConfigChange(
                ChangeType.SERVICE_STATE,
                f"Service {name}: {verb}",
                UpdateStrategy.SERVICE_RELOAD,
                ImpactLevel.MEDIUM,
                (name,),
            ))
        elif old.config != service.config:
            strategy = UpdateStrategy.SERVICE_RELOAD if name in RELOADABLE_SERVICES else UpdateStrategy.REBOOT_REQUIRED
            changes.append(ConfigChange(
                ChangeType.SERVICE_CONFIG,
                f"Update configuration for service: {name}",
                strategy,
                ImpactLevel.HIGH,
                (name,),
            ))
    for name in before:
        if name not in after:
            changes.append(ConfigChange(
                ChangeType.SERVICE_REMOVE,
                f"Remove service: {name}",
                UpdateStrategy.SERVICE_RELOAD,
                ImpactLevel.MEDIUM,
                (name,),
            ))
    return changes


def _user_changes(current: Sequence[User], new: Sequence[User]) -> list[ConfigChange]:
    before = {u.name: u for u in current}
    after = {u.name: u for u in new}
    changes = []

    added = tuple(name for name in after if name not in before)
    if added:
        changes.append(ConfigChange(
            ChangeType.USER_ADD,
            f"Add users: {', '.join(added)}",
            UpdateStrategy.LIVE,
            ImpactLevel.HIGH,
            added,
        ))

    for name, user in after.items():
        old = before.get(name)
        if old is None or old == user:
            continue
        modified = [
            label
            for label, differs in (
                ("UID", old.uid != user.uid),
                ("shell", old.shell != user.shell),
                ("groups", old.groups != user.groups),
                ("home directory", old.home_dir != user.home_dir),
            )
            if differs
        ]
        changes.append(ConfigChange(
            ChangeType.USER_MODIFY,
            f"Modify user {name}: {', '.join(modified)}",
            UpdateStrategy.LIVE,
            ImpactLevel.HIGH,
            (name,),
        ))

    removed = tuple(name for name in before if name not in after)
    if removed:
        changes.append(ConfigChange(
            ChangeType.USER_REMOVE,
            f"Remove users: {', '.join(removed)}",
            UpdateStrategy.REBOOT_REQUIRED,
            ImpactLevel.CRITICAL,
            removed,
        ))
    return changes


def _repository_changes(current: Sequence[Repository], new: Sequence[Repository]) -> list[ConfigChange]:
    if {r.model_dump_json() for r in current} == {r.model_dump_json() for r in new}:
        return []
    names = tuple(dict.fromkeys(r.name for r in (*current, *new)))
    return [ConfigChange(
        ChangeType.REPOSITORY,
        "Repository configuration changed",
        UpdateStrategy.LIVE,
        ImpactLevel.MEDIUM,
        names,
    )]


def _desktop_changes(current: DesktopConfig | None, new: DesktopConfig | None) -> list[ConfigChange]:
    if current == new:
        return []
    if current is None:
        description = f"Enable desktop environment: {new.environment.value}"
        strategy, impact = UpdateStrategy.REBOOT_REQUIRED, ImpactLevel.CRITICAL
    elif new is None:
        description = "Disable desktop environment"
        strategy, impact = UpdateStrategy.REBOOT_REQUIRED, ImpactLevel.CRITICAL
    else:
        description = "Update desktop configuration"
        # Switching environments needs a new session; same-environment tweaks only a reload.
        same = current.environment is new.environment
        strategy = UpdateStrategy.SERVICE_RELOAD if same else UpdateStrategy.REBOOT_REQUIRED
        impact = ImpactLevel.HIGH
    return [ConfigChange(ChangeType.DESKTOP_CONFIG, description, strategy, impact)]


def _automation_changes(current: AutomationConfig | None, new: AutomationConfig | None) -> list[ConfigChange]:
    before = {w.name: w for w in current.workflows} if current else {}
    after = {w.name: w for w in new.workflows} if new else {}
    changes = []
    for name, workflow in after.items():
        old = before.get(name)
        if old is None:
            description = f"Add automation workflow: {name}"
        elif old != workflow:
            description = f"Update automation workflow: {name}"
        else:
            continue
        changes.append(ConfigChange(
            ChangeType.AUTOMATION_WORKFLOW, description, UpdateStrategy.LIVE, ImpactLevel.LOW, (name,)
        ))
    for name in before:
        if name not in after:
            changes.append(ConfigChange(
                ChangeType.AUTOMATION_WORKFLOW,
                f"Remove automation workflow: {name}",
                UpdateStrategy.LIVE,
                ImpactLevel.LOW,
                (name,),
            ))
    return changes


def _layer_changes(current: LayersConfig | None, new: LayersConfig | None) -> list[ConfigChange]:
    current = current or LayersConfig()
    new = new or LayersConfig()
    changes = []

    if _base_identity(current.base) != _base_identity(new.base):
        changes.append(ConfigChange(
            ChangeType.BASE_LAYER,
            f"Update base layer: {new.base.ostree_ref}",
            UpdateStrategy.REBOOT_REQUIRED,
            ImpactLevel.CRITICAL,
        ))

    before = {layer.name: layer for layer in current.system}
    after = {layer.name: layer for layer in new.system}
    for name, layer in after.items():
        old = before.get(name)
        if old is None:
            changes.append(ConfigChange(
                ChangeType.LAYER_ADD, f"Add layer: {name}", UpdateStrategy.LIVE, ImpactLevel.MEDIUM, (name,)
            ))
        elif old != layer:
            changes.append(ConfigChange(
                ChangeType.LAYER_UPDATE, f"Redeploy layer: {name}", UpdateStrategy.LIVE, ImpactLevel.MEDIUM, (name,)
            ))
    for name in before:
        if name not in after:
            changes.append(ConfigChange(
                ChangeType.LAYER_REMOVE, f"Remove layer: {name}", UpdateStrategy.LIVE, ImpactLevel.MEDIUM, (name,)
            ))

    if current.user != new.user:
        changes.append(ConfigChange(
            ChangeType.USER_APPS, "Update user applications", UpdateStrategy.LIVE, ImpactLevel.LOW
        ))
    return changes


def _base_identity(base: BaseLayer) -> tuple:
    return (base.image, base.tag, base.digest, base.ostree_ref, base.ostree_commit, base.packages, base.services)
