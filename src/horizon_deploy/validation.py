"""Semantic validation of compiled configurations.

`validate` is the single rule set. It is pure and never raises for data
problems; every failing check contributes an error and evaluation always
continues. `validate_or_raise` is the authoring-time caller that surfaces the
same errors eagerly as a `ConfigValidationError`.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

from horizon_deploy.models import (
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
from horizon_deploy.types import ValidationError, ValidationErrorKind, ValidationResult

K = ValidationErrorKind

HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
TIMEZONE_RE = re.compile(r"^[A-Za-z_]+(/[A-Za-z0-9_+-]+)*$")
LOCALE_RE = re.compile(r"^[a-zA-Z]{2,3}(_[A-Z]{2})?(\.[A-Za-z0-9@_-]+)?$")
PACKAGE_RE = re.compile(r"^[a-zA-Z0-9._+-]+$")
UNIT_NAME_RE = re.compile(r"^[a-zA-Z0-9._@-]+$")
REPOSITORY_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
ACCOUNT_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")
BRANCH_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")
LAYER_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
URL_RE = re.compile(r"^(https?://\S+|file://\S+)$")
DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")

DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

MAX_TIMEZONE_LENGTH = 50
MAX_ACCOUNT_LENGTH = 32
UID_MIN = 1000
UID_MAX = 60000


def is_valid_hostname(hostname: str) -> bool:
    return bool(HOSTNAME_RE.match(hostname))


def is_valid_timezone(timezone: str) -> bool:
    return len(timezone) <= MAX_TIMEZONE_LENGTH and bool(TIMEZONE_RE.match(timezone))


def is_valid_locale(locale: str) -> bool:
    return bool(LOCALE_RE.match(locale))


def is_valid_account_name(name: str) -> bool:
    """Check a user or group name (lowercase, at most 32 characters)."""
    return len(name) <= MAX_ACCOUNT_LENGTH and bool(ACCOUNT_RE.match(name))


def is_valid_uid(uid: int) -> bool:
    return UID_MIN <= uid <= UID_MAX


def is_valid_shell(shell: str) -> bool:
    return len(shell) > 1 and shell.startswith("/")


def is_valid_url(url: str) -> bool:
    return bool(URL_RE.match(url))


def parse_duration(value: str) -> float:
    """Convert a duration like "30s", "2m" or "500ms" to seconds.

    A bare number is taken as seconds.

    Raises:
        ValueError: If the string is not a duration.
    """
    match = DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * DURATION_UNITS[unit or "s"]


def is_valid_duration(value: str) -> bool:
    return bool(DURATION_RE.match(value))


def _duplicates(names: Iterable[str]) -> list[str]:
    """Names occurring more than once, each listed once in first-seen order."""
    counts = Counter(names)
    return [name for name, count in counts.items() if count > 1]


def _check_system(system: SystemConfig) -> list[ValidationError]:
    errors = []
    if not is_valid_hostname(system.hostname):
        errors.append(ValidationError(K.INVALID_HOSTNAME, system.hostname))
    if not is_valid_timezone(system.timezone):
        errors.append(ValidationError(K.INVALID_TIMEZONE, system.timezone))
    if not is_valid_locale(system.locale):
        errors.append(ValidationError(K.INVALID_LOCALE, system.locale))
    return errors


def _check_packages(packages: tuple[Package, ...]) -> list[ValidationError]:
    errors = [
        ValidationError(K.INVALID_PACKAGE_NAME, pkg.name)
        for pkg in packages
        if not PACKAGE_RE.match(pkg.name)
    ]

    actions: dict[str, set[PackageAction]] = {}
    for pkg in packages:
        actions.setdefault(pkg.name, set()).add(pkg.action)
    for name, seen in actions.items():
        if len(seen) > 1:
            errors.append(ValidationError(K.CONFLICTING_PACKAGES, name))
    return errors


def _check_services(services: tuple[Service, ...]) -> list[ValidationError]:
    errors = [
        ValidationError(K.INVALID_SERVICE_NAME, svc.name)
        for svc in services
        if not UNIT_NAME_RE.match(svc.name)
    ]
    errors.extend(
        ValidationError(K.DUPLICATE_SERVICE, name)
        for name in _duplicates(svc.name for svc in services)
    )
    return errors


def _check_users(users: tuple[User, ...]) -> list[ValidationError]:
    errors = []
    for user in users:
        if not is_valid_account_name(user.name):
            errors.append(ValidationError(K.INVALID_USERNAME, user.name))
        if user.uid is not None and not is_valid_uid(user.uid):
            errors.append(ValidationError(K.INVALID_UID, str(user.uid)))
        if not is_valid_shell(user.shell):
            errors.append(ValidationError(K.INVALID_SHELL, user.shell))
        errors.extend(
            ValidationError(K.INVALID_GROUP_NAME, group)
            for group in user.groups
            if not is_valid_account_name(group)
        )
    errors.extend(
        ValidationError(K.DUPLICATE_USER, name)
        for name in _duplicates(user.name for user in users)
    )
    return errors


def _check_repositories(repositories: tuple[Repository, ...]) -> list[ValidationError]:
    errors = []
    for repo in repositories:
        if not REPOSITORY_RE.match(repo.name):
            errors.append(ValidationError(K.INVALID_REPOSITORY_NAME, repo.name))
        if not is_valid_url(repo.url):
            errors.append(ValidationError(K.INVALID_URL, repo.url))
        if repo.is_ostree:
            errors.extend(
                ValidationError(K.INVALID_BRANCH, branch)
                for branch in repo.branches
                if not BRANCH_RE.match(branch)
            )
    errors.extend(
        ValidationError(K.DUPLICATE_REPOSITORY, name)
        for name in _duplicates(repo.name for repo in repositories)
    )
    return errors


def _check_layers(layers: LayersConfig) -> list[ValidationError]:
    errors = [
        ValidationError(K.INVALID_LAYER_NAME, layer.name)
        for layer in layers.system
        if not LAYER_RE.match(layer.name)
    ]
    errors.extend(
        ValidationError(K.DUPLICATE_LAYER, name)
        for name in _duplicates(layer.name for layer in layers.system)
    )
    for layer in layers.system:
        check = layer.health_check
        if check is None:
            continue
        errors.extend(
            ValidationError(K.INVALID_DURATION, value)
            for value in (check.interval, check.timeout, check.start_period)
            if not is_valid_duration(value)
        )
    return errors


def _check_desktop(desktop: DesktopConfig, users: tuple[User, ...]) -> list[ValidationError]:
    if not desktop.auto_login or desktop.auto_login_user is None:
        return []
    if any(user.name == desktop.auto_login_user for user in users):
        return []
    return [ValidationError(K.MISSING_AUTO_LOGIN_USER, desktop.auto_login_user)]


def validate(config: CompiledConfig) -> ValidationResult:
    """Validate a compiled configuration.

    All checks run; errors are reported in a stable order: identity,
    packages, services, users, repositories, layers, desktop.

    Args:
        config: The configuration to check.

    Returns:
        ValidationResult carrying every problem found (empty if valid).
    """
    errors: list[ValidationError] = []
    errors.extend(_check_system(config.system))
    errors.extend(_check_packages(config.packages))
    errors.extend(_check_services(config.services))
    errors.extend(_check_users(config.users))
    errors.extend(_check_repositories(config.repositories))
    if config.layers is not None:
        errors.extend(_check_layers(config.layers))
    if config.desktop is not None:
        errors.extend(_check_desktop(config.desktop, config.users))
    return ValidationResult(tuple(errors))


def validate_or_raise(config: CompiledConfig) -> CompiledConfig:
    """Validate at authoring time, raising on any error.

    Args:
        config: The freshly built configuration.

    Returns:
        The same configuration, if valid.

    Raises:
        ConfigValidationError: If any check fails; carries all errors.
    """
    validate(config).raise_if_invalid()
    return config
