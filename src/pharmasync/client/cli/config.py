"""Configuration utilities for the PharmaSync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from pharmasync.core.config import RemoteConfig, SyncSettings

if TYPE_CHECKING:
    from pharmasync.client.service import SyncService


def get_config_dir() -> Path:
    """Get the configuration directory for PharmaSync.

    Returns:
        Path to $PHARMASYNC_HOME, or ~/.pharmasync.
    """
    override = os.environ.get("PHARMASYNC_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".pharmasync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local state database."""
    return get_config_dir() / "state.db"


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


def get_remote_config(config: dict[str, str]) -> RemoteConfig | None:
    """Build the remote configuration, or None if not configured."""
    if not config.get("remote_url") or not config.get("api_key"):
        return None
    return RemoteConfig(remote_url=config["remote_url"], api_key=config["api_key"])


def get_sync_settings(config: dict[str, str]) -> SyncSettings:
    """Build engine settings from the config file."""
    return SyncSettings(probe_url=config.get("probe_url") or None)


def build_service(config: dict[str, str]) -> SyncService:
    """Create the sync service from the config file.

    Exits with an error message if the backend is not configured.
    """
    from pharmasync.client.service import SyncService

    remote_config = get_remote_config(config)
    if remote_config is None:
        click.echo("Error: Not configured. Run 'pharmasync configure' first.", err=True)
        sys.exit(1)

    return SyncService.from_config(remote_config, get_state_db(), get_sync_settings(config))
