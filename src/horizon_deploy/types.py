"""Shared result types for validation, layer resolution and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from horizon_deploy.changes import ConfigChange
    from horizon_deploy.models import SystemLayer

__all__ = [
    "ContainerState",
    "ExecutionError",
    "ExecutionErrorKind",
    "ExecutionOperation",
    "ExecutionResult",
    "LayerIssue",
    "LayerInfo",
    "LayerIssueKind",
    "LayerStatus",
    "OperationKind",
    "SystemStatus",
    "ValidationError",
    "ValidationErrorKind",
    "ValidationResult",
]


# ============================================================================
# Validation
# ============================================================================


class ValidationErrorKind(str, Enum):
    """Closed set of configuration problems, with their message templates."""

    INVALID_HOSTNAME = "Invalid hostname: {}"
    INVALID_TIMEZONE = "Invalid timezone: {}"
    INVALID_LOCALE = "Invalid locale: {}"
    INVALID_PACKAGE_NAME = "Invalid package name: {}"
    CONFLICTING_PACKAGES = "Package {} has conflicting install/remove actions"
    INVALID_SERVICE_NAME = "Invalid service name: {}"
    DUPLICATE_SERVICE = "Duplicate service: {}"
    INVALID_USERNAME = "Invalid username: {}"
    DUPLICATE_USER = "Duplicate user: {}"
    INVALID_UID = "Invalid UID: {}"
    INVALID_SHELL = "Invalid shell: {}"
    INVALID_GROUP_NAME = "Invalid group name: {}"
    INVALID_REPOSITORY_NAME = "Invalid repository name: {}"
    DUPLICATE_REPOSITORY = "Duplicate repository: {}"
    INVALID_URL = "Invalid URL: {}"
    INVALID_BRANCH = "Invalid branch name: {}"
    MISSING_AUTO_LOGIN_USER = "Auto-login user '{}' is not defined"
    DUPLICATE_LAYER = "Duplicate layer: {}"
    INVALID_LAYER_NAME = "Invalid layer name: {}"
    INVALID_DURATION = "Invalid duration: {}"


@dataclass(frozen=True)
class ValidationError:
    """A single configuration problem.

    Attributes:
        kind: What is wrong.
        subject: The offending value (hostname, package name, UID...).
    """

    kind: ValidationErrorKind
    subject: str

    @property
    def message(self) -> str:
        return self.kind.value.format(self.subject)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationResult:
    """Aggregate outcome of validating a configuration.

    An empty error list means the configuration is valid.
    """

    errors: tuple[ValidationError, ...] = ()

    @classmethod
    def valid(cls) -> ValidationResult:
        return cls()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def is_invalid(self) -> bool:
        return bool(self.errors)

    def of_kind(self, kind: ValidationErrorKind) -> list[ValidationError]:
        """Get the errors of one kind, in report order."""
        return [e for e in self.errors if e.kind is kind]

    def raise_if_invalid(self) -> None:
        """Raise the aggregate exception if any error was found.

        Raises:
            ConfigValidationError: Carrying every accumulated error.
        """
        if self.errors:
            from horizon_deploy.errors import ConfigValidationError

            raise ConfigValidationError(list(self.errors))


# ============================================================================
# Layer resolution
# ============================================================================


class LayerIssueKind(str, Enum):
    MISSING_DEPENDENCY = "missing_dependency"
    CYCLE = "cycle"
    UNKNOWN_LAYER_IN_ORDER = "unknown_layer_in_order"
    ORDER_INCOMPLETE = "order_incomplete"
    ORDER_VIOLATION = "order_violation"


@dataclass(frozen=True)
class LayerIssue:
    """A problem preventing a layer order from being produced.

    Attributes:
        kind: Issue category.
        layer: Layer the issue is attached to.
        related: Other layer names involved (missing dependency, cycle members).
    """

    kind: LayerIssueKind
    layer: str
    related: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        if self.kind is LayerIssueKind.MISSING_DEPENDENCY:
            return f"Layer '{self.layer}' depends on non-existent layer '{self.related[0]}'"
        if self.kind is LayerIssueKind.CYCLE:
            return f"Circular dependency between layers: {', '.join(self.related)}"
        if self.kind is LayerIssueKind.UNKNOWN_LAYER_IN_ORDER:
            return f"Layer order names unknown layer '{self.layer}'"
        if self.kind is LayerIssueKind.ORDER_INCOMPLETE:
            return f"Layer order does not include layer '{self.layer}'"
        return f"Layer '{self.layer}' is ordered before its dependency '{self.related[0]}'"

    def __str__(self) -> str:
        return self.message


# ============================================================================
# Execution
# ============================================================================


class OperationKind(str, Enum):
    OSTREE_COMMIT = "ostree_commit"
    OSTREE_DEPLOY = "ostree_deploy"
    OSTREE_ROLLBACK = "ostree_rollback"
    SYSTEM_CONFIG = "system_config"
    REPOSITORY_CONFIG = "repository_config"
    PACKAGE_MANAGEMENT = "package_management"
    SERVICE_CONFIG = "service_config"
    USER_MANAGEMENT = "user_management"
    DESKTOP_CONFIG = "desktop_config"
    AUTOMATION_CONFIG = "automation_config"
    SYSTEM_LAYER = "system_layer"
    USER_LAYER = "user_layer"
    HEALTH_CHECK = "health_check"


@dataclass(frozen=True)
class ExecutionOperation:
    """One orchestration step that was attempted. Audit trail only."""

    kind: OperationKind
    description: str


class ExecutionErrorKind(str, Enum):
    """Run-time failure categories, valued by their diagnostic prefix."""

    OSTREE = "OSTree error"
    PACKAGE_NOT_FOUND = "Package not found"
    PERMISSION = "Permission error"
    ROLLBACK_FAILED = "Rollback failed"
    UNEXPECTED = "Unexpected error"


@dataclass(frozen=True)
class ExecutionError:
    kind: ExecutionErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class LayerStatus(str, Enum):
    DEPLOYED = "deployed"
    RUNNING = "running"
    SKIPPED = "skipped"
    HEALTHY = "healthy"
    HEALTH_CHECK_FAILED = "health_check_failed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a deployment run.

    Attributes:
        success: True if every stage completed.
        operations: Every step attempted, in order, regardless of outcome.
        commit_id: Deployed revision (success only; empty in dry-run).
        errors: Run-time errors (failure only).
        validation_errors: Configuration errors that aborted the run.
        layer_issues: Layer resolution problems that aborted the run.
        layer_status: Final status per layer name.
    """

    success: bool
    operations: tuple[ExecutionOperation, ...] = ()
    commit_id: str | None = None
    errors: tuple[ExecutionError, ...] = ()
    validation_errors: tuple[ValidationError, ...] = ()
    layer_issues: tuple[LayerIssue, ...] = ()
    layer_status: dict[str, LayerStatus] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants."""
        problems = self.errors or self.validation_errors or self.layer_issues
        if self.success and problems:
            raise ValueError("success=True but errors are set")
        if self.success and self.commit_id is None:
            raise ValueError("success=True requires commit_id")
        if not self.success and not problems:
            raise ValueError("success=False requires at least one error")

    @property
    def messages(self) -> list[str]:
        """Every error rendered for display, in report order."""
        return (
            [str(e) for e in self.validation_errors]
            + [str(i) for i in self.layer_issues]
            + [str(e) for e in self.errors]
        )

    def operation_kinds(self) -> list[OperationKind]:
        return [op.kind for op in self.operations]


@dataclass(frozen=True)
class SystemStatus:
    """Booted revision and host details.

    Attributes:
        pending_changes: Differences between the applied configuration and
            the one given to `status`; None when there was nothing to compare.
    """

    current_commit: str | None
    available_commits: tuple[str, ...]
    kernel_version: str
    uptime: str
    pending_changes: tuple[ConfigChange, ...] | None = None

    @property
    def in_sync(self) -> bool | None:
        if self.pending_changes is None:
            return None
        return not self.pending_changes


# ============================================================================
# Layer lifecycle
# ============================================================================


class ContainerState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    PAUSED = "paused"
    MISSING = "missing"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LayerInfo:
    """A deployed system layer and the live state of its container."""

    layer: SystemLayer
    state: ContainerState

    @property
    def name(self) -> str:
        return self.layer.name
