"""Exceptions raised by managers, the command executor and config authoring."""

from __future__ import annotations

from typing import TYPE_CHECKING

from horizon_deploy.types import ExecutionErrorKind

if TYPE_CHECKING:
    from horizon_deploy.types import ValidationError


class DeployError(Exception):
    """Base for failures during deployment; `kind` selects the reported category."""

    kind = ExecutionErrorKind.UNEXPECTED


class CommandError(DeployError):
    """An external command exited non-zero, timed out or could not be started."""

    def __init__(
        self,
        args: list[str],
        exit_code: int | None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = list(args)
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            detail = "timed out"
        elif exit_code is None:
            detail = f"could not be started: {stderr}"
        else:
            detail = f"failed with exit code {exit_code}"
            if stderr.strip():
                detail += f": {stderr.strip()}"
        super().__init__(f"Command '{' '.join(self.command)}' {detail}")


class OstreeError(DeployError):
    kind = ExecutionErrorKind.OSTREE


class PackageNotFoundError(DeployError):
    kind = ExecutionErrorKind.PACKAGE_NOT_FOUND

    def __init__(self, package_name: str) -> None:
        self.package_name = package_name
        super().__init__(package_name)


class DeploymentCancelled(DeployError):
    """The caller's cancellation check tripped between stages."""


class LayerError(DeployError):
    """A layer lifecycle request names an unknown, disabled or still required layer."""


class ConfigLoadError(ValueError):
    """A serialized configuration or settings file could not be read."""


class ConfigValidationError(Exception):
    """Aggregate validation failure surfaced when a configuration is built."""

    def __init__(self, errors: list[ValidationError]) -> None:
        self.errors = list(errors)
        lines = "\n".join(f"  - {e.message}" for e in self.errors)
        super().__init__(f"Configuration validation failed:\n{lines}")
