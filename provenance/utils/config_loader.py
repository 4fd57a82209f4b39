"""Engine configuration loader."""

from pathlib import Path  # noqa: TC003
from typing import Any

import yaml

from provenance.models.config import EngineConfig
from provenance.utils.logging import get_logger

logger = get_logger("utils.config_loader")


class ConfigLoaderError(Exception):
    """Error raised when configuration loading fails."""

    pass


# Config file names in order of precedence
CONFIG_FILE_NAMES = [
    ".provenance.yml",
    ".provenance.yaml",
]


def load_config(root: Path) -> EngineConfig:
    """Load the engine configuration from a directory.

    Looks for `.provenance.yml`, then `.provenance.yaml`. A missing or empty
    file yields the default configuration.

    Args:
        root: Directory holding the configuration file.

    Returns:
        EngineConfig instance.

    Raises:
        ConfigLoaderError: If a config file exists but is invalid.
    """
    config_file = _find_config_file(root)

    if config_file is None:
        logger.debug("No config file found, using defaults", extra={"path": str(root)})
        return EngineConfig.default()

    try:
        raw_config = _load_yaml_file(config_file)
    except yaml.YAMLError as e:
        raise ConfigLoaderError(f"Failed to parse config file {config_file}: {e}") from e

    if not raw_config:
        logger.debug("Config file is empty, using defaults", extra={"file": str(config_file)})
        return EngineConfig.default()

    if not isinstance(raw_config, dict):
        raise ConfigLoaderError(f"Config file {config_file} must contain a mapping")

    try:
        config = EngineConfig.from_repo_config(raw_config)
    except (TypeError, ValueError) as e:
        raise ConfigLoaderError(f"Invalid configuration in {config_file}: {e}") from e

    logger.info(
        "Loaded configuration",
        extra={
            "file": str(config_file),
            "max_changed_lines": config.max_changed_lines,
            "max_workers": config.max_workers,
        },
    )
    return config


def _find_config_file(root: Path) -> Path | None:
    for filename in CONFIG_FILE_NAMES:
        config_path = root / filename
        if config_path.is_file():
            return config_path

    return None


def _load_yaml_file(filepath: Path) -> Any:
    content = filepath.read_text(encoding="utf-8")

    if not content.strip():
        return None

    return yaml.safe_load(content)
