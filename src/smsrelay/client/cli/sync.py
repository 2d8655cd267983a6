"""Sync command for SmsRelay CLI.

Commands:
- sync: Relay unsent SMS messages to the destination channel
"""

from __future__ import annotations

import sys
import time
from typing import TYPE_CHECKING

import click

from smsrelay.client.cli.config import (
    get_ledger_path,
    load_config,
    require_channel_config,
    require_origin_db,
)

if TYPE_CHECKING:
    from smsrelay.client.sync.types import SyncProgress, SyncReport


def _print_progress(progress: SyncProgress) -> None:
    click.echo(
        f"  Batch {progress.current_batch}/{progress.total_batches} "
        f"({progress.percent:.0f}%), {progress.total_synced} delivered"
    )


def _print_report(report: SyncReport) -> None:
    from smsrelay.client.sync.types import PassOutcome

    if report.outcome == PassOutcome.SKIPPED:
        click.echo("Sync is disabled. Run 'smsrelay enable' first.")
        return
    if report.imported:
        click.echo(f"Imported {report.imported} new messages.")
    if report.outcome == PassOutcome.ABORTED:
        reason = report.reason.value if report.reason else "unknown"
        click.echo(f"Sync aborted ({reason}): {report.succeeded} delivered.", err=True)
    elif report.selected == 0:
        click.echo("Nothing to sync.")
    else:
        click.echo(
            f"Sync complete: {report.succeeded}/{report.attempted} delivered "
            f"in {report.batches} batches."
        )
    if report.error_message:
        click.echo(f"Last error: {report.error_message}", err=True)


@click.command()
@click.option("--force", is_flag=True, help="Run even if a full sync ran recently.")
@click.option("--quick", is_flag=True, help="Only import and send the newest messages (one batch).")
@click.option("--watch", "-w", is_flag=True, help="Keep running: periodic sync plus live detection.")
def sync(force: bool, quick: bool, watch: bool) -> None:
    """Relay unsent SMS messages to the Telegram channel.

    Without options, runs one full pass (skipped if one ran within the sync
    interval). Use --watch to keep relaying new messages as they arrive.
    """
    from smsrelay.client.api import TelegramChannelClient
    from smsrelay.client.origin import SqliteOriginProvider
    from smsrelay.client.scheduler import SyncScheduler
    from smsrelay.client.settings import SyncSettings
    from smsrelay.client.source import MessageSource
    from smsrelay.client.state import LedgerStore
    from smsrelay.client.sync import ChangeWatcher, PassOutcome, QuickSyncStatus, SyncOrchestrator

    config = load_config()
    channel_config = require_channel_config(config)
    origin_db = require_origin_db(config)

    with LedgerStore(get_ledger_path()) as ledger, TelegramChannelClient(channel_config) as client:
        settings = SyncSettings(ledger)
        provider = SqliteOriginProvider(origin_db)
        source = MessageSource(provider)
        orchestrator = SyncOrchestrator(
            ledger,
            settings,
            source,
            client,
            progress_callback=None if watch else _print_progress,
        )

        if watch:
            scheduler = SyncScheduler(orchestrator)
            watcher = ChangeWatcher(provider, source, ledger, settings, scheduler.run_now)
            click.echo(f"Watching {origin_db} (Ctrl+C to stop)...")
            with scheduler, watcher:
                try:
                    while True:
                        time.sleep(1)
                except KeyboardInterrupt:
                    click.echo("\nStopping...")
            return

        if quick:
            result = orchestrator.run_quick_sync()
            if result.status == QuickSyncStatus.NO_DESTINATION:
                click.echo("Error: No destination channel configured.", err=True)
                sys.exit(1)
            if result.status == QuickSyncStatus.ERROR:
                click.echo(f"Error: {result.error} ({result.synced} delivered)", err=True)
                sys.exit(1)
            click.echo(f"Quick sync: {result.synced} delivered.")
            return

        report = orchestrator.run_full_sync(force=force)
        _print_report(report)
        if report.outcome == PassOutcome.ABORTED:
            sys.exit(1)
