"""Reading and writing serialized compiled configurations."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from horizon_deploy.errors import ConfigLoadError
from horizon_deploy.models import CompiledConfig

logger = logging.getLogger(__name__)

YAML_SUFFIXES = {".yaml", ".yml"}


def load_config(path: Path) -> CompiledConfig:
    """Load a compiled configuration from a JSON or YAML file.

    The format is chosen by file suffix (.yaml/.yml for YAML, anything else
    is read as JSON). Keys may use camelCase aliases or field names.

    Args:
        path: File to read.

    Returns:
        The parsed CompiledConfig. It is not semantically validated.

    Raises:
        ConfigLoadError: If the file is unreadable, malformed, or does not
            match the configuration schema.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigLoadError(f"Cannot read {path}: {e}") from e

    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigLoadError(f"Cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigLoadError(f"{path} must contain a mapping at the top level")

    try:
        config = CompiledConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(f"{path} is not a valid configuration:\n{e}") from e
    logger.debug("Loaded configuration from %s", path)
    return config


def dump_config(config: CompiledConfig, path: Path) -> None:
    """Write a configuration as JSON (or YAML for .yaml/.yml paths)."""
    data = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    if path.suffix.lower() in YAML_SUFFIXES:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
