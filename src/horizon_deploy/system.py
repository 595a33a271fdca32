"""System manager: identity, packages, services, users, desktop, automation.

Each operation converges the host towards the declared state and can be
re-run safely. Commands go through the command runner and files through the
filesystem, so dry-run mode reaches neither the host nor the target root.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from pathlib import Path

from horizon_deploy.errors import CommandError, PackageNotFoundError
from horizon_deploy.models import (
    AutomationConfig,
    DesktopConfig,
    DesktopEnvironment,
    Package,
    PackageAction,
    Service,
    SystemConfig,
    User,
)
from horizon_deploy.protocols import CommandRunner, FileSystem

logger = logging.getLogger(__name__)

AUTOMATION_SERVICE = "horizonos-automation"
USERADD_EXIT_USER_EXISTS = 9
_TARGET_NOT_FOUND = re.compile(r"target not found:\s*(\S+)")

DESKTOP_SERVICES = {
    DesktopEnvironment.HYPRLAND: "hyprland",
    DesktopEnvironment.PLASMA: "sddm",
    DesktopEnvironment.GNOME: "gdm",
    DesktopEnvironment.XFCE: "lightdm",
}

# Auto-login drop-in path and content template per display manager service.
AUTO_LOGIN_DROPINS = {
    "lightdm": (
        "etc/lightdm/lightdm.conf.d/50-horizonos-autologin.conf",
        "[Seat:*]\nautologin-user={user}\nautologin-user-timeout=0\n",
    ),
    "gdm": (
        "etc/gdm/custom.conf",
        "[daemon]\nAutomaticLoginEnable=True\nAutomaticLogin={user}\n",
    ),
    "sddm": (
        "etc/sddm.conf.d/50-horizonos-autologin.conf",
        "[Autologin]\nUser={user}\nSession=plasma\n",
    ),
}


class SystemManager:
    """Applies non-image system state under a target root."""

    def __init__(
        self,
        runner: CommandRunner,
        filesystem: FileSystem,
        root: Path = Path("/"),
        config_dir: Path = Path("/etc/horizonos"),
    ) -> None:
        """Initialize the manager.

        Args:
            runner: Command runner.
            filesystem: Filesystem for configuration files.
            root: Target system root.
            config_dir: HorizonOS configuration directory (already under root).
        """
        self.runner = runner
        self.fs = filesystem
        self.root = root
        self.config_dir = config_dir

    def _path(self, target: str) -> Path:
        return self.root / target.lstrip("/")

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def apply_system_config(self, system: SystemConfig) -> None:
        """Set hostname, timezone and locale."""
        self.runner.run(["hostnamectl", "set-hostname", system.hostname])
        self.runner.run(["timedatectl", "set-timezone", system.timezone])
        self.fs.write_text(self._path("etc/locale.conf"), f"LANG={system.locale}\n")
        self.runner.run(["locale-gen"])

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    def manage_packages(self, packages: Sequence[Package]) -> None:
        """Install and remove packages with pacman.

        Raises:
            PackageNotFoundError: If pacman reports an unknown install target.
            CommandError: For any other pacman failure.
        """
        to_install = [p.name for p in packages if p.action is PackageAction.INSTALL]
        to_remove = [p.name for p in packages if p.action is PackageAction.REMOVE]

        if to_install:
            try:
                self.runner.run(["pacman", "-S", "--needed", "--noconfirm", *to_install])
            except CommandError as e:
                match = _TARGET_NOT_FOUND.search(e.stderr)
                if match:
                    raise PackageNotFoundError(match.group(1)) from e
                raise
        if to_remove:
            self.runner.run(["pacman", "-R", "--noconfirm", *to_remove])

    def package_available(self, name: str) -> bool:
        return self.runner.run(["pacman", "-Si", name], check=False).ok

    def has_root_permissions(self) -> bool:
        result = self.runner.run(["id", "-u"], check=False)
        return result.ok and result.stdout.strip() == "0"

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def _service_dropin(self, service: Service) -> str | None:
        if service.config is None:
            return None
        lines = ["[Service]"]
        if service.config.restart_on_failure:
            lines.append("Restart=on-failure")
        elif service.config.auto_restart:
            lines.append("Restart=always")
        for key, value in sorted(service.config.environment.items()):
            lines.append(f'Environment="{key}={value}"')
        return "\n".join(lines) + "\n"

    def configure_services(self, services: Sequence[Service]) -> None:
        """Write drop-ins, then enable or disable each service."""
        wrote_dropin = False
        for service in services:
            dropin = self._service_dropin(service)
            if dropin is not None:
                path = self._path(f"etc/systemd/system/{service.name}.d/horizonos.conf")
                self.fs.write_text(path, dropin)
                wrote_dropin = True
        if wrote_dropin:
            self.runner.run(["systemctl", "daemon-reload"])

        for service in services:
            verb = "enable" if service.enabled else "disable"
            self.runner.run(["systemctl", verb, "--now", service.name])

    def enable_base_services(self, names: Sequence[str]) -> None:
        """Enable the base image's services for the next boot."""
        for name in names:
            self.runner.run(["systemctl", "enable", name])

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def manage_users(self, users: Sequence[User]) -> None:
        """Create users, or update shell and groups of existing ones."""
        for user in users:
            args = ["useradd", "-m", "-d", user.home, "-s", user.shell]
            if user.uid is not None:
                args += ["-u", str(user.uid)]
            if user.groups:
                args += ["-G", ",".join(user.groups)]
            args.append(user.name)

            try:
                self.runner.run(args)
            except CommandError as e:
                if e.exit_code != USERADD_EXIT_USER_EXISTS:
                    raise
                logger.info("User %s exists, updating", user.name)
                self.runner.run(["usermod", "-s", user.shell, user.name])
                if user.groups:
                    self.runner.run(["usermod", "-G", ",".join(user.groups), user.name])

    # ------------------------------------------------------------------
    # Desktop and automation
    # ------------------------------------------------------------------

    def configure_desktop(self, desktop: DesktopConfig) -> None:
        service = DESKTOP_SERVICES.get(desktop.environment)
        if service:
            self.runner.run(["systemctl", "enable", service])
        else:
            logger.info("No display service known for %s", desktop.environment.value)

        if not (desktop.auto_login and desktop.auto_login_user):
            return
        dropin = AUTO_LOGIN_DROPINS.get(service or "")
        if dropin is None:
            logger.info("Auto-login not supported for %s, skipping", desktop.environment.value)
            return
        target, template = dropin
        self.fs.write_text(self._path(target), template.format(user=desktop.auto_login_user))

    def configure_automation(self, automation: AutomationConfig) -> None:
        """Write automation.json and (de)activate the automation service."""
        self.fs.write_text(
            self.config_dir / "automation.json",
            json.dumps(automation.model_dump(mode="json", by_alias=True), indent=2),
        )
        verb = "enable" if automation.enabled else "disable"
        self.runner.run(["systemctl", verb, "--now", AUTOMATION_SERVICE])

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def kernel_version(self) -> str:
        return self.runner.run(["uname", "-r"]).stdout.strip()

    def uptime(self) -> str:
        return self.runner.run(["uptime", "-p"]).stdout.strip()
