"""Configuration utilities for offlinesync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from offlinesync.core.config import EngineConfig, ServerConfig

# Used when no server was configured; enough for offline-only commands
DEFAULT_SERVER_URL = "http://127.0.0.1:8000"


def get_config_dir() -> Path:
    """Get the configuration directory for offlinesync.

    Returns:
        Path to $OFFLINESYNC_CONFIG_DIR, or ~/.offlinesync by default.
    """
    override = os.environ.get("OFFLINESYNC_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".offlinesync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_data_dir() -> Path:
    """Get the directory holding the local SQLite stores."""
    return get_config_dir() / "data"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def is_configured() -> bool:
    """Check whether a server URL was configured."""
    return bool(load_config().get("server_url"))


def get_server_config() -> ServerConfig:
    """Build the server configuration (falls back to a local default URL)."""
    config = load_config()
    return ServerConfig(
        server_url=config.get("server_url") or DEFAULT_SERVER_URL,
        token=config.get("token", ""),
        timeout=float(config.get("timeout", 30.0)),
        verify_ssl=bool(config.get("verify_ssl", True)),
    )


def get_engine_config() -> EngineConfig:
    """Build the engine configuration from the "engine" section.

    Raises:
        ValueError: If a configured value is invalid.
    """
    return EngineConfig.from_dict(load_config().get("engine", {}))
