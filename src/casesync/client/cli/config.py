"""Configuration utilities for casesync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path

from casesync.core.config import RemoteConfig


def get_config_dir() -> Path:
    """Get the configuration directory for casesync.

    Returns:
        Path to ~/.casesync or equivalent.
    """
    return Path.home() / ".casesync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local replica database."""
    return get_config_dir() / "replica.db"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_remote_config(config: dict[str, str], access_token: str | None = None) -> RemoteConfig | None:
    """Build the remote configuration from the config file.

    Args:
        config: Loaded configuration.
        access_token: Cached access token of the signed-in user.

    Returns:
        RemoteConfig, or None if the URL or the API key is missing.
    """
    if not config.get("url") or not config.get("api_key"):
        return None
    return RemoteConfig(
        url=config["url"],
        api_key=config["api_key"],
        access_token=access_token,
        storage_bucket=config.get("storage_bucket") or "documents",
    )
