"""
Shared path utilities for pocketsync data directories.
"""

from __future__ import annotations

import os
from pathlib import Path


def get_default_data_dir() -> Path:
    """
    Get the default pocketsync data directory.

    Returns ~/.pocketsync or $POCKETSYNC_DATA_DIR if set.
    Creates the directory if it doesn't exist.
    """
    env_path = os.getenv("POCKETSYNC_DATA_DIR")
    data_dir = Path(env_path) if env_path else Path.home() / ".pocketsync"

    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_preferences_path(data_dir: Path | None = None) -> Path:
    """
    Get the path to the sync preferences file.

    Args:
        data_dir: Optional data directory (defaults to get_default_data_dir())

    Returns:
        Path to preferences.json
    """
    if data_dir is None:
        data_dir = get_default_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "preferences.json"


def get_light_client_config_path(network: str, data_dir: Path | None = None) -> Path:
    """
    Get the default light client config path for a network.

    The light client keeps separate stores per network, so each network gets
    its own ``<network>.toml`` next to a ``data/<network>`` directory.
    """
    if data_dir is None:
        data_dir = get_default_data_dir()
    return data_dir / f"{network}.toml"
