"""Runtime settings for the deployment engine.

Settings come from an optional YAML file, then `HORIZONOS_DEPLOY_<FIELD>`
environment variables, then explicit overrides (CLI flags), later sources
winning.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from horizon_deploy.errors import ConfigLoadError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("/etc/horizonos/deploy.yaml")
ENV_PREFIX = "HORIZONOS_DEPLOY_"


class EngineSettings(BaseModel):
    """Paths and switches used by the managers and the engine."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    ostree_repo: Path = Field(default=Path("/ostree/repo"), alias="ostreeRepo")
    system_root: Path = Field(default=Path("/"), alias="systemRoot")
    config_root: Path = Field(default=Path("/etc/horizonos"), alias="configRoot")
    os_name: str = Field(default="horizonos", alias="osName")
    export_dir: Path = Field(default=Path("/usr/local/bin"), alias="exportDir")
    appimage_dir: Path = Field(default=Path("/opt/appimages"), alias="appimageDir")
    dry_run: bool = Field(default=False, alias="dryRun")
    check_permissions: bool = Field(default=True, alias="checkPermissions")
    check_packages: bool = Field(default=True, alias="checkPackages")
    log_level: str = Field(default="INFO", alias="logLevel")

    def under_root(self, path: str | Path) -> Path:
        """Map an absolute target path into the system root."""
        return self.system_root / Path(path).relative_to("/")


def _by_field_name(values: Mapping[str, Any]) -> dict[str, Any]:
    aliases = {f.alias: name for name, f in EngineSettings.model_fields.items() if f.alias}
    return {aliases.get(key, key): value for key, value in values.items()}


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides = {}
    for name in EngineSettings.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            overrides[name] = environ[key]
    return overrides


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> EngineSettings:
    """Load engine settings.

    Args:
        path: YAML settings file. Defaults to /etc/horizonos/deploy.yaml when
            that file exists; an explicit path must exist.
        environ: Environment mapping (defaults to os.environ).
        **overrides: Final values by field name; None values are ignored.

    Returns:
        Merged EngineSettings.

    Raises:
        ConfigLoadError: If the file is missing, unreadable, or holds
            invalid values.
    """
    data: dict[str, Any] = {}

    if path is None and DEFAULT_SETTINGS_PATH.exists():
        path = DEFAULT_SETTINGS_PATH
    if path is not None:
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(f"Cannot read settings file {path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigLoadError(f"Settings file {path} must contain a mapping")
        data.update(_by_field_name(loaded or {}))
        logger.debug("Loaded settings from %s", path)

    env_values = _env_overrides(os.environ if environ is None else environ)
    data.update(env_values)
    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return EngineSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid settings: {e}") from e
