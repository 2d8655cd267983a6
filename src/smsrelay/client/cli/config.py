"""Configuration utilities for SmsRelay CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from smsrelay.core.config import DEFAULT_API_URL, ChannelConfig

CONFIG_DIR_ENV = "SMSRELAY_HOME"


def get_config_dir() -> Path:
    """Get the configuration directory for SmsRelay.

    Returns:
        Path from $SMSRELAY_HOME, or ~/.smsrelay.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".smsrelay"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_ledger_path() -> Path:
    """Get the path to the ledger database."""
    return get_config_dir() / "ledger.db"


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


def require_channel_config(config: dict[str, str]) -> ChannelConfig:
    """Build the channel config or exit with an error.

    Args:
        config: Loaded CLI configuration.
    """
    token = config.get("bot_token")
    if not token:
        click.echo("Error: No bot token configured. Run 'smsrelay configure --token ...' first.", err=True)
        sys.exit(1)
    return ChannelConfig(bot_token=token, api_url=config.get("api_url") or DEFAULT_API_URL)


def require_origin_db(config: dict[str, str]) -> Path:
    """Get the origin database path or exit with an error."""
    origin_db = config.get("origin_db")
    if not origin_db:
        click.echo(
            "Error: No origin database configured. Run 'smsrelay configure --origin-db ...' first.",
            err=True,
        )
        sys.exit(1)
    path = Path(origin_db).expanduser()
    if not path.exists():
        click.echo(f"Error: Origin database not found: {path}", err=True)
        sys.exit(1)
    return path
