"""Status and maintenance commands for SmsRelay CLI.

Commands:
- status: Show ledger counters, settings and consistency
- reset: Re-arm dead-lettered messages
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from smsrelay.client.cli.config import get_ledger_path, load_config
from smsrelay.client.state import LedgerStore


def _format_ms(timestamp: int) -> str:
    if timestamp <= 0:
        return "never"
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


@click.command()
def status() -> None:
    """Show sync settings, ledger counters and consistency checks."""
    from smsrelay.client.settings import SyncSettings
    from smsrelay.core.types import SyncMode

    config = load_config()
    with LedgerStore(get_ledger_path()) as ledger:
        settings = SyncSettings(ledger)
        stats = ledger.stats()
        mismatches = ledger.find_mirror_mismatches()

        click.echo(f"Sync:          {'enabled' if settings.sync_enabled else 'disabled'}")
        mode = settings.sync_mode
        if mode == SyncMode.NEW_ONLY:
            click.echo(f"Mode:          {mode.value} (since {_format_ms(settings.sync_enabled_since)})")
        else:
            click.echo(f"Mode:          {mode.value}")
        click.echo(f"Destination:   {settings.destination_id or 'not configured'}")
        click.echo(f"Origin DB:     {config.get('origin_db') or 'not configured'}")
        click.echo(f"Bot token:     {'configured' if config.get('bot_token') else 'not configured'}")
        click.echo(f"Last full sync: {_format_ms(settings.last_full_sync_at)}")
        click.echo("")
        click.echo(f"Messages:      {stats.total}")
        click.echo(f"  synced:      {stats.synced}")
        click.echo(f"  pending:     {stats.unsynced - stats.dead_lettered}")
        click.echo(f"  failed:      {stats.dead_lettered}")
        click.echo(f"Mirror rows:   {stats.mirrored}")

        if mismatches:
            click.echo("")
            click.echo(f"Ledger/mirror inconsistencies ({len(mismatches)}):", err=True)
            for problem in mismatches:
                click.echo(f"  - {problem}", err=True)
            sys.exit(1)


@click.command()
@click.argument("message_id", required=False)
@click.option("--all", "reset_all", is_flag=True, help="Re-arm every failed message.")
def reset(message_id: str | None, reset_all: bool) -> None:
    """Re-arm failed messages so the next sync retries them."""
    from smsrelay.client.settings import SyncSettings

    if bool(message_id) == reset_all:
        click.echo("Error: Give either a MESSAGE_ID or --all.", err=True)
        sys.exit(1)

    with LedgerStore(get_ledger_path()) as ledger:
        count = ledger.reset_attempts(None if reset_all else message_id)
        if count:
            SyncSettings(ledger).clear_last_full_sync()

    if message_id and count == 0:
        click.echo(f"Error: No unsynced message with id {message_id}.", err=True)
        sys.exit(1)
    click.echo(f"Reset {count} message(s).")
