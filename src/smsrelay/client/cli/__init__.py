"""Command-line interface for SmsRelay.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store bot token, origin database and destination channel
- enable: Turn delivery on
- disable: Turn delivery off
- detect-chat: List chats that messaged the bot
- sync: Relay unsent messages to the channel
- status: Show ledger counters and settings
- reset: Re-arm failed messages
"""

from __future__ import annotations

import logging

import click

from smsrelay.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_ledger_path,
    load_config,
    save_config,
)
from smsrelay.client.cli.setup import configure, detect_chat, disable, enable
from smsrelay.client.cli.status import reset, status
from smsrelay.client.cli.sync import sync


def setup_logging(verbose: bool) -> None:
    """Send smsrelay log records to stderr."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S")
    )
    smsrelay_logger = logging.getLogger("smsrelay")
    smsrelay_logger.handlers = [handler]
    smsrelay_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    smsrelay_logger.propagate = False


@click.group()
@click.version_option()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """SmsRelay - Relay SMS messages to a Telegram channel."""
    setup_logging(verbose)


# Setup commands
cli.add_command(configure)
cli.add_command(enable)
cli.add_command(disable)
cli.add_command(detect_chat)

# Sync commands
cli.add_command(sync)
cli.add_command(status)
cli.add_command(reset)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_ledger_path",
    "load_config",
    "save_config",
]
