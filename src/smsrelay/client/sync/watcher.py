"""Live change detection for the origin store.

This module provides:
- ChangeWatcher: Subscribes to origin changes, ingests new messages once the
  notifications settle and requests a quick pass when something new arrived
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from smsrelay.client.sync.debounce import DEFAULT_SETTLE_DELAY, DEFAULT_WINDOW, Debouncer
from smsrelay.client.sync.ingest import ingest_new
from smsrelay.client.sync.types import OriginError
from smsrelay.core.types import PassKind

if TYPE_CHECKING:
    from smsrelay.client.origin import OriginProvider, Subscription
    from smsrelay.client.settings import SyncSettings
    from smsrelay.client.source import MessageSource
    from smsrelay.client.state import LedgerStore
    from smsrelay.client.sync.clock import Clock
    from smsrelay.client.sync.debounce import TimerFactory

logger = logging.getLogger(__name__)


class ChangeWatcher:
    """Turn origin change notifications into quick sync requests."""

    def __init__(
        self,
        provider: OriginProvider,
        source: MessageSource,
        ledger: LedgerStore,
        settings: SyncSettings,
        trigger: Callable[[PassKind], None],
        window: float = DEFAULT_WINDOW,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        clock: Clock | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        """Initialize the change watcher.

        Args:
            provider: Origin store to subscribe to.
            source: Reader used to ingest new messages.
            ledger: Ledger receiving the new messages.
            settings: Runtime settings (sync_enabled gates the trigger).
            trigger: Called with PassKind.QUICK when new messages arrived.
            window: Debounce window in seconds.
            settle_delay: Delay after the last accepted event in seconds.
            clock: Time source for debouncing.
            timer_factory: Settle timer factory.
        """
        self._provider = provider
        self._source = source
        self._ledger = ledger
        self._settings = settings
        self._trigger = trigger
        self._debouncer = Debouncer(
            self._on_settled,
            window=window,
            settle_delay=settle_delay,
            clock=clock,
            timer_factory=timer_factory,
        )
        self._subscription: Subscription | None = None

    @property
    def is_running(self) -> bool:
        """Check if the watcher is subscribed."""
        return self._subscription is not None

    def start(self) -> None:
        """Start watching for changes."""
        if self._subscription is not None:
            return
        self._subscription = self._provider.subscribe(self.on_change)
        logger.info("Watching origin store for new messages")

    def stop(self) -> None:
        """Stop watching for changes."""
        if self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None
        self._debouncer.cancel()

    def on_change(self) -> None:
        """Handle a change notification from the origin."""
        self._debouncer.on_event()

    def _on_settled(self) -> None:
        try:
            new_count = ingest_new(self._source, self._ledger)
        except OriginError as e:
            logger.warning(f"Could not read new origin messages: {e}")
            return
        except Exception:
            logger.exception("Failed to ingest new origin messages")
            return

        if new_count == 0:
            return
        if not self._settings.sync_enabled:
            logger.debug(f"{new_count} new messages, sync disabled")
            return

        logger.info(f"{new_count} new messages detected, requesting quick sync")
        self._trigger(PassKind.QUICK)

    def __enter__(self) -> ChangeWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
