"""Project configuration loader.

The packaged ``defaults.json`` reproduces a typical Hardhat project manifest
(six compiler versions, two BSC networks, typechain, SPDX, docgen, gas
reporter). A project's ``solbuild.json`` overrides it section by section:
object-valued sections are merged key by key, everything else is replaced.

Uses importlib.resources for proper package data access when installed as
a wheel.
"""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any

from ..errors import ConfigError
from .project_config import (
    CoverageConfig,
    DocgenConfig,
    GasReporterConfig,
    LicenseConfig,
    PathsConfig,
    PostProcessorConfig,
    ProjectConfig,
    SolidityConfig,
    TestRunnerConfig,
    TypechainConfig,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "solbuild.json"


def load_defaults() -> dict[str, Any]:
    """Load the packaged default configuration.

    Raises:
        ConfigError: If the packaged defaults are missing or unreadable.
    """
    try:
        defaults_file = resources.files(__package__).joinpath("defaults.json")
        with defaults_file.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        raise ConfigError(f"Packaged defaults are unavailable: {e}") from e


def merge_config(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge a project configuration over the defaults, one section deep."""
    merged = dict(defaults)
    for key, value in overrides.items():
        base = merged.get(key)
        if isinstance(base, dict) and isinstance(value, dict):
            merged[key] = {**base, **value}
        else:
            merged[key] = value
    return merged


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a solbuild.json file.

    Raises:
        ConfigError: If the file is not valid JSON or not an object.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON: {e}") from e
    except OSError as e:
        raise ConfigError(f"{path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: configuration root must be an object")
    return data


def load_project_config(project_dir: Path, config_file: Path | None = None) -> ProjectConfig:
    """Load the configuration for a project.

    Args:
        project_dir: Project root directory.
        config_file: Explicit config file; defaults to ``<project_dir>/solbuild.json``.
            A missing default file means "use the packaged defaults".

    Returns:
        Validated ProjectConfig.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    root = Path(project_dir).resolve()
    data = load_defaults()

    path = config_file if config_file is not None else root / CONFIG_FILENAME
    if path.is_file():
        logger.debug("Loading project configuration from %s", path)
        data = merge_config(data, read_config_file(path))
    elif config_file is not None:
        raise ConfigError(f"Configuration file not found: {config_file}")
    else:
        logger.debug("No %s in %s, using packaged defaults", CONFIG_FILENAME, root)

    return ProjectConfig.from_dict(root, data)


__all__ = [
    "CONFIG_FILENAME",
    "CoverageConfig",
    "DocgenConfig",
    "GasReporterConfig",
    "LicenseConfig",
    "PathsConfig",
    "PostProcessorConfig",
    "ProjectConfig",
    "SolidityConfig",
    "TestRunnerConfig",
    "TypechainConfig",
    "load_defaults",
    "load_project_config",
    "merge_config",
    "read_config_file",
]
