"""YAML configuration loading.

All configuration files (``config/database.yaml`` and the per-service files
under ``config/services/``) go through [load_yaml()][wotgraph.core.yaml.load_yaml]
before being validated by a Pydantic model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Parse a YAML file into a dictionary with ``yaml.safe_load``.

    Args:
        config_path: Path to the file.

    Returns:
        The top-level mapping, or an empty dict for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping at the top of {config_path}, got {type(data).__name__}"
        )
    return data
