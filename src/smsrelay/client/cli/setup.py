"""Setup commands for SmsRelay CLI.

Commands:
- configure: Store bot token, origin database and destination channel
- enable: Turn delivery on (ALL or NEW_ONLY mode)
- disable: Turn delivery off
- detect-chat: List chats that messaged the bot
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from smsrelay.client.cli.config import (
    get_ledger_path,
    load_config,
    require_channel_config,
    save_config,
)
from smsrelay.client.state import LedgerStore, now_ms
from smsrelay.core.types import SyncMode


@click.command()
@click.option("--token", default=None, help="Telegram bot token.")
@click.option(
    "--origin-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path of the SMS database to relay.",
)
@click.option("--destination", default=None, help="Channel id or @username to post to.")
@click.option("--api-url", default=None, help="Bot API base URL (for self-hosted servers).")
@click.option("--check", is_flag=True, help="Verify the token and destination with Telegram.")
def configure(
    token: str | None,
    origin_db: Path | None,
    destination: str | None,
    api_url: str | None,
    check: bool,
) -> None:
    """Configure the bot, the origin database and the destination channel.

    Only the given options are changed.
    """
    from smsrelay.client.api import TelegramChannelClient
    from smsrelay.client.settings import SyncSettings

    if not any([token, origin_db, destination, api_url, check]):
        click.echo("Error: Nothing to configure. See 'smsrelay configure --help'.", err=True)
        sys.exit(1)

    config = load_config()
    if token:
        config["bot_token"] = token
    if origin_db:
        config["origin_db"] = str(origin_db.expanduser().resolve())
        if not origin_db.exists():
            click.echo(f"Warning: {origin_db} does not exist yet.", err=True)
    if api_url:
        config["api_url"] = api_url
    save_config(config)

    with LedgerStore(get_ledger_path()) as ledger:
        settings = SyncSettings(ledger)
        if destination:
            settings.destination_id = destination
        current_destination = settings.destination_id

    click.echo("Configuration saved.")

    if check:
        channel_config = require_channel_config(config)
        with TelegramChannelClient(channel_config) as client:
            if not client.health_check():
                click.echo("Error: Telegram rejected the bot token.", err=True)
                sys.exit(1)
            click.echo("Bot token OK.")
            if current_destination:
                if not client.get_chat(current_destination):
                    click.echo(
                        f"Error: Bot cannot access channel {current_destination}.", err=True
                    )
                    sys.exit(1)
                click.echo(f"Channel {current_destination} OK.")


@click.command()
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in SyncMode], case_sensitive=False),
    default=SyncMode.ALL.value,
    show_default=True,
    help="ALL relays every unsent message, NEW_ONLY only messages received from now on.",
)
def enable(mode: str) -> None:
    """Turn SMS delivery on."""
    from smsrelay.client.settings import SyncSettings

    sync_mode = SyncMode(mode.upper())
    with LedgerStore(get_ledger_path()) as ledger:
        settings = SyncSettings(ledger)
        settings.enable(sync_mode, now_ms())
        destination = settings.destination_id

    click.echo(f"Sync enabled ({sync_mode.value}).")
    if not destination:
        click.echo("Warning: No destination channel configured yet.", err=True)


@click.command()
def disable() -> None:
    """Turn SMS delivery off."""
    from smsrelay.client.settings import SyncSettings

    with LedgerStore(get_ledger_path()) as ledger:
        SyncSettings(ledger).disable()
    click.echo("Sync disabled.")


@click.command("detect-chat")
@click.option("--save", is_flag=True, help="Use the chat as destination if exactly one is found.")
def detect_chat(save: bool) -> None:
    """List chats that recently messaged or added the bot.

    Post a message in the target channel (or add the bot to it) first.
    """
    from smsrelay.client.api import ChannelError, TelegramChannelClient
    from smsrelay.client.settings import SyncSettings

    channel_config = require_channel_config(load_config())
    try:
        with TelegramChannelClient(channel_config) as client:
            chats = client.get_updates()
    except ChannelError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not chats:
        click.echo("No chats found. Post a message in your channel and try again.")
        return

    for chat in chats:
        click.echo(f"  {chat.id}  {chat.type:<10} {chat.display_name}")

    if save:
        if len(chats) != 1:
            click.echo("Error: Several chats found; use 'smsrelay configure --destination'.", err=True)
            sys.exit(1)
        with LedgerStore(get_ledger_path()) as ledger:
            SyncSettings(ledger).destination_id = chats[0].id
        click.echo(f"Destination set to {chats[0].id}.")
