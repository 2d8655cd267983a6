"""Sync orchestrator for delivering ledger messages to the channel.

This module provides:
- SyncOrchestrator: Runs full and quick passes against one destination

A pass moves through these states:

    IDLE -> SELECTING -> DISPATCHING <-> PAUSED -> COMPLETED | ABORTED

Delivery rules:
    | Outcome of a send     | Ledger                           | Pass         |
    |-----------------------|----------------------------------|--------------|
    | Success               | Marked synced + mirror row, now  | Continues    |
    | Sent, not recordable  | Dead-lettered at batch end       | Continues    |
    | RATE_LIMITED          | Attempt recorded                 | Aborts       |
    | Any other error       | Attempt recorded at batch end    | Continues    |
    | Cancellation          | Pending failures recorded        | Aborts       |

Pacing: every send goes through the rate limiter; consecutive sends within a
pass are spaced by inter_message_delay. After every burst_size successful
deliveries the next send waits burst_cooldown instead. The burst counter
belongs to the orchestrator, so it carries over from one pass to the next.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from smsrelay.client.state import DeliveryFailure, LedgerError
from smsrelay.client.sync.clock import SystemClock, to_ms
from smsrelay.client.sync.errors import ErrorKind, classify, describe, is_permanent
from smsrelay.client.sync.ingest import ingest_all, ingest_new
from smsrelay.client.sync.rate_limiter import RateLimiter
from smsrelay.client.sync.types import (
    AbortReason,
    ChannelError,
    DispatchResult,
    OriginError,
    PassOutcome,
    PassState,
    QuickSyncResult,
    SyncProgress,
    SyncReport,
)
from smsrelay.core.config import SyncPolicy
from smsrelay.core.types import SyncMode

if TYPE_CHECKING:
    from smsrelay.client.api import ChannelProtocol
    from smsrelay.client.settings import SyncSettings
    from smsrelay.client.source import MessageSource
    from smsrelay.client.state import LedgerStore, LocalMessage
    from smsrelay.client.sync.clock import Clock
    from smsrelay.client.sync.types import ProgressCallback

logger = logging.getLogger(__name__)


@dataclass
class _PassContext:
    """Counters shared by all batches of one pass."""

    destination: str
    attempted: int = 0


def _chunk(messages: list[LocalMessage], size: int) -> list[list[LocalMessage]]:
    return [messages[i : i + size] for i in range(0, len(messages), size)]


class SyncOrchestrator:
    """Deliver unsent ledger messages to a channel.

    Only one pass runs at a time; a pass requested while another is running
    waits for it to finish. cancel() interrupts the running pass at the next
    message boundary or during any wait.

    Usage:
        orchestrator = SyncOrchestrator(ledger, settings, source, channel)
        report = orchestrator.run_full_sync()
        result = orchestrator.run_quick_sync()
    """

    def __init__(
        self,
        ledger: LedgerStore,
        settings: SyncSettings,
        source: MessageSource,
        channel: ChannelProtocol,
        policy: SyncPolicy | None = None,
        clock: Clock | None = None,
        rate_limiter: RateLimiter | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            ledger: Ledger holding messages and delivery state.
            settings: Runtime sync settings.
            source: Origin message reader used for ingestion.
            channel: Client that posts messages to the destination.
            policy: Limits and pacing (defaults to SyncPolicy()).
            clock: Time source for every wait (defaults to the system clock).
            rate_limiter: Shared limiter (defaults to one built on clock).
            progress_callback: Called after each batch of a full pass.
        """
        self._ledger = ledger
        self._settings = settings
        self._source = source
        self._channel = channel
        self._policy = policy or SyncPolicy()
        self._clock: Clock = clock or SystemClock()
        self._rate_limiter = rate_limiter or RateLimiter(self._clock)
        self._progress_callback = progress_callback

        self._state = PassState.IDLE
        self._pass_lock = threading.Lock()
        self._cancel_event = threading.Event()

        # Burst bookkeeping, kept across passes
        self._burst_count = 0
        self._cooldown_due = False

    @property
    def state(self) -> PassState:
        """Get the state of the current (or last) pass."""
        return self._state

    @property
    def policy(self) -> SyncPolicy:
        return self._policy

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def is_running(self) -> bool:
        """Check if a pass is in progress."""
        return self._pass_lock.locked()

    def set_progress_callback(self, callback: ProgressCallback | None) -> None:
        """Set the callback invoked after each batch of a full pass."""
        self._progress_callback = callback

    def cancel(self) -> None:
        """Ask the running pass to stop."""
        if self.is_running:
            logger.info("Cancelling sync pass")
        self._cancel_event.set()

    def _set_state(self, state: PassState) -> None:
        if state != self._state:
            logger.debug(f"Pass state: {self._state.name} -> {state.name}")
            self._state = state

    def _now_ms(self) -> int:
        return to_ms(self._clock.time())

    def _resolve_destination(self, destination: str | None) -> str | None:
        return destination or self._settings.destination_id

    def _ingest(self, full: bool) -> int:
        """Pull origin messages into the ledger, tolerating origin failures."""
        try:
            if full:
                return ingest_all(self._source, self._ledger)
            return ingest_new(self._source, self._ledger)
        except OriginError as e:
            logger.warning(f"Could not read origin messages, using ledger as is: {e}")
            return 0

    def _select(self, limit: int) -> list[LocalMessage]:
        return self._ledger.select_eligible(
            limit,
            watermark=self._settings.watermark(),
            max_attempts=self._policy.max_attempts,
        )

    # === Full pass ===

    def force_sync(self, destination: str | None = None) -> SyncReport:
        """Run a full pass even if one completed within the sync interval."""
        return self.run_full_sync(destination, force=True)

    def run_full_sync(
        self,
        destination: str | None = None,
        force: bool = False,
    ) -> SyncReport:
        """Ingest origin messages and deliver up to full_sync_limit of them.

        Args:
            destination: Channel to deliver to (defaults to the configured one).
            force: Ignore the sync interval.

        Returns:
            SyncReport describing the pass.
        """
        with self._pass_lock:
            self._cancel_event.clear()
            try:
                return self._run_full_sync(destination, force)
            except Exception:
                self._set_state(PassState.ABORTED)
                raise

    def _run_full_sync(self, destination: str | None, force: bool) -> SyncReport:
        if not self._settings.sync_enabled:
            logger.info("Sync is disabled, skipping full sync")
            return SyncReport.skipped()

        resolved = self._resolve_destination(destination)
        if not resolved:
            logger.warning("No destination configured, aborting full sync")
            self._set_state(PassState.ABORTED)
            return SyncReport.aborted(
                AbortReason.NO_DESTINATION, "No destination channel configured"
            )

        last_sync = self._settings.last_full_sync_at
        interval_ms = int(self._policy.sync_interval * 1000)
        if not force and last_sync > 0 and self._now_ms() - last_sync < interval_ms:
            logger.info("Full sync ran recently, nothing to do")
            return SyncReport(outcome=PassOutcome.COMPLETED)

        # The sync interval is measured from pass start to pass start
        started_at = self._now_ms()
        self._set_state(PassState.SELECTING)
        use_full_read = (
            self._settings.sync_mode == SyncMode.ALL or self._settings.watermark() == 0
        )
        imported = self._ingest(full=use_full_read)
        selected = self._select(self._policy.full_sync_limit)

        report = SyncReport(
            outcome=PassOutcome.COMPLETED,
            selected=len(selected),
            imported=imported,
        )
        if not selected:
            logger.info("No messages to sync")
            self._finish_full_sync(started_at)
            return report

        batches = _chunk(selected, self._policy.batch_size)
        logger.info(
            f"Syncing {len(selected)} messages to {resolved} in {len(batches)} batches"
        )

        self._set_state(PassState.DISPATCHING)
        context = _PassContext(destination=resolved)
        for index, batch in enumerate(batches, start=1):
            if index > 1 and not self._clock.sleep(
                self._policy.batch_delay, self._cancel_event
            ):
                return self._abort(report, AbortReason.CANCELLED)

            result = self._dispatch_batch(batch, context)
            report.succeeded += result.succeeded
            report.attempted = context.attempted
            report.batches = index
            if result.last_error:
                report.error_message = result.last_error

            self._notify_progress(
                SyncProgress(
                    current_batch=index,
                    total_batches=len(batches),
                    total_synced=report.succeeded,
                    is_complete=index == len(batches) and not result.should_stop,
                    error_message=result.last_error,
                )
            )

            if result.rate_limited:
                # Rate-limited passes count as run
                self._settings.last_full_sync_at = started_at
                return self._abort(report, AbortReason.RATE_LIMITED)
            if result.cancelled:
                return self._abort(report, AbortReason.CANCELLED)

        self._finish_full_sync(started_at)
        logger.info(
            f"Full sync complete: {report.succeeded}/{report.attempted} delivered"
        )
        return report

    def _finish_full_sync(self, started_at: int) -> None:
        self._settings.last_full_sync_at = started_at
        self._set_state(PassState.COMPLETED)

    def _abort(self, report: SyncReport, reason: AbortReason) -> SyncReport:
        logger.warning(
            f"Sync pass aborted ({reason.value}) after "
            f"{report.succeeded}/{report.attempted} deliveries"
        )
        self._set_state(PassState.ABORTED)
        report.outcome = PassOutcome.ABORTED
        report.reason = reason
        return report

    def _notify_progress(self, progress: SyncProgress) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(progress)
        except Exception:
            logger.exception("Progress callback failed")

    # === Quick pass ===

    def run_quick_sync(self, destination: str | None = None) -> QuickSyncResult:
        """Ingest new origin messages and deliver one batch.

        Args:
            destination: Channel to deliver to (defaults to the configured one).

        Returns:
            QuickSyncResult with the number of delivered messages.
        """
        with self._pass_lock:
            self._cancel_event.clear()
            try:
                return self._run_quick_sync(destination)
            except Exception as e:
                logger.exception("Quick sync failed")
                self._set_state(PassState.ABORTED)
                return QuickSyncResult.failure(str(e))

    def _run_quick_sync(self, destination: str | None) -> QuickSyncResult:
        if not self._settings.sync_enabled:
            logger.debug("Sync is disabled, skipping quick sync")
            return QuickSyncResult.success(0)

        resolved = self._resolve_destination(destination)
        if not resolved:
            logger.warning("No destination configured, skipping quick sync")
            self._set_state(PassState.ABORTED)
            return QuickSyncResult.no_destination()

        self._set_state(PassState.SELECTING)
        self._ingest(full=False)
        selected = self._select(self._policy.batch_size)
        if not selected:
            self._set_state(PassState.COMPLETED)
            return QuickSyncResult.success(0)

        self._set_state(PassState.DISPATCHING)
        result = self._dispatch_batch(selected, _PassContext(destination=resolved))

        if result.rate_limited:
            self._set_state(PassState.ABORTED)
            return QuickSyncResult.failure(
                result.last_error or "Rate limited", synced=result.succeeded
            )
        if result.cancelled:
            self._set_state(PassState.ABORTED)
            return QuickSyncResult.failure("Sync cancelled", synced=result.succeeded)

        self._set_state(PassState.COMPLETED)
        logger.info(f"Quick sync delivered {result.succeeded}/{len(selected)} messages")
        return QuickSyncResult.success(result.succeeded)

    # === Dispatch ===

    def _wait_before_send(self, context: _PassContext) -> bool:
        """Apply burst cooldown or inter-message spacing.

        Returns:
            False if cancelled while waiting.
        """
        if self._cooldown_due:
            self._set_state(PassState.PAUSED)
            logger.info(
                f"Sent {self._burst_count} messages, pausing "
                f"{self._policy.burst_cooldown:.0f}s to respect channel limits"
            )
            completed = self._clock.sleep(self._policy.burst_cooldown, self._cancel_event)
            self._cooldown_due = False
            self._set_state(PassState.DISPATCHING)
            return completed
        if context.attempted > 0:
            return self._clock.sleep(self._policy.inter_message_delay, self._cancel_event)
        return True

    def _dispatch_batch(
        self,
        batch: list[LocalMessage],
        context: _PassContext,
    ) -> DispatchResult:
        """Send a batch of messages one at a time.

        Successes are written to the ledger immediately. Failures are
        buffered and written in one transaction when the batch ends,
        whichever way it ends.
        """
        result = DispatchResult(attempted=context.attempted)
        failures: list[DeliveryFailure] = []
        try:
            for message in batch:
                if self._cancel_event.is_set():
                    result.cancelled = True
                    break
                if not self._wait_before_send(context):
                    result.cancelled = True
                    break
                if not self._rate_limiter.wait_for_permission(self._cancel_event):
                    result.cancelled = True
                    break

                context.attempted += 1
                result.attempted = context.attempted
                try:
                    remote_id = self._channel.send_message(
                        context.destination,
                        message.format_for_channel(),
                        timeout=self._policy.send_timeout,
                    )
                except ChannelError as e:
                    kind = self._handle_failure(message, e, failures, result)
                    if kind == ErrorKind.RATE_LIMITED:
                        result.rate_limited = True
                        break
                    continue

                self._rate_limiter.on_success()
                try:
                    self._ledger.record_delivery(
                        message,
                        remote_id,
                        context.destination,
                        synced_at=self._now_ms(),
                    )
                except LedgerError as e:
                    logger.error(f"Delivered message {message.id} but could not record it: {e}")
                    # Dead-lettered so the message is not posted again
                    failures.append(DeliveryFailure(message.id, str(e), dead_letter=True))
                    result.last_error = str(e)
                    continue

                result.succeeded += 1
                self._burst_count += 1
                if self._burst_count % self._policy.burst_size == 0:
                    self._cooldown_due = True
                logger.debug(f"Delivered message {message.id} as {remote_id}")
        finally:
            if failures:
                self._ledger.record_failures(
                    failures,
                    attempted_at=self._now_ms(),
                    max_attempts=self._policy.max_attempts,
                )
        return result

    def _handle_failure(
        self,
        message: LocalMessage,
        error: ChannelError,
        failures: list[DeliveryFailure],
        result: DispatchResult,
    ) -> ErrorKind:
        raw = str(error)
        kind = classify(raw)
        summary = describe(kind, raw)
        dead_letter = self._policy.dead_letter_permanent_errors and is_permanent(kind)

        failures.append(DeliveryFailure(message.id, summary, dead_letter=dead_letter))
        self._rate_limiter.on_error(error)
        result.last_error = summary

        logger.warning(f"Failed to deliver message {message.id} ({kind.value}): {raw}")
        return kind
