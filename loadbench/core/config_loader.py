"""
Run Configuration Loader

Loads YAML or JSON run configuration files and validates them into a
RunConfig.
"""

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from loadbench.core.errors import ConfigurationError
from loadbench.models import RunConfig

_JSON_SUFFIXES = {".json"}
_YAML_SUFFIXES = {".yaml", ".yml"}


def load_config_mapping(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a configuration file into a plain mapping.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"configuration file not found: {path}", field="<file>")

    suffix = path.suffix.lower()
    if suffix not in _JSON_SUFFIXES | _YAML_SUFFIXES:
        raise ConfigurationError(
            f"unsupported configuration format '{suffix}' (use .yaml, .yml or .json)",
            field="<file>",
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            if suffix in _JSON_SUFFIXES:
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"cannot read {path}: {e}", field="<file>") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path}: top level must be a mapping, got {type(data).__name__}",
            field="<root>",
        )
    return data


def load_run_config(
    path: Union[str, Path],
    overrides: Optional[Mapping[str, Any]] = None,
) -> RunConfig:
    """
    Load and validate a run configuration file.

    Args:
        path: YAML or JSON file
        overrides: Top-level keys replacing the file's values (None values
            are ignored), e.g. from command-line flags

    Returns:
        Validated RunConfig

    Raises:
        ConfigurationError: For unreadable files or invalid configuration
    """
    data = load_config_mapping(path)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return RunConfig.from_mapping(data)
