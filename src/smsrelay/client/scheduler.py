"""Scheduler for periodic and on-demand sync passes.

This module provides:
- SyncScheduler: Runs a full pass every sync interval and one-shot passes
  requested by the change watcher or the CLI
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from smsrelay.client.sync.types import PassOutcome, QuickSyncStatus, SyncError
from smsrelay.core.types import PassKind

if TYPE_CHECKING:
    from apscheduler.job import Job

    from smsrelay.client.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

PERIODIC_JOB_ID = "periodic_full_sync"


def run_now_job_id(kind: PassKind) -> str:
    """Job id of a one-shot pass of the given kind."""
    return f"run_now_{kind.value}"


class SyncScheduler:
    """Background scheduler driving a SyncOrchestrator.

    Every job uses a fixed id with replace_existing, max_instances=1 and
    coalesce, so repeated triggers of the same kind collapse into one run.
    A one-shot trigger arriving while a pass of that kind is running is
    remembered and served by one more pass once the running one returns.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval: float | None = None,
        run_on_start: bool = True,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator: Orchestrator that runs the passes.
            interval: Seconds between periodic full passes
                (defaults to the orchestrator's sync_interval).
            run_on_start: Run the first periodic pass right after start().
        """
        self._orchestrator = orchestrator
        self._interval = interval if interval is not None else orchestrator.policy.sync_interval
        self._run_on_start = run_on_start
        self._scheduler: BackgroundScheduler | None = None

        self._lock = threading.Lock()
        self._active: set[PassKind] = set()
        self._rerun: set[PassKind] = set()

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is started."""
        return self._scheduler is not None

    @property
    def interval(self) -> float:
        return self._interval

    def run_pass(self, kind: PassKind) -> None:
        """Job function: run a pass, then one more per trigger received meanwhile."""
        with self._lock:
            self._active.add(kind)
        try:
            while True:
                self._run_once(kind)
                with self._lock:
                    if kind not in self._rerun:
                        break
                    self._rerun.discard(kind)
                logger.debug(f"Running {kind.value} sync again for a trigger received mid-pass")
        finally:
            with self._lock:
                self._active.discard(kind)
                self._rerun.discard(kind)

    def _run_once(self, kind: PassKind) -> None:
        try:
            if kind == PassKind.FULL:
                report = self._orchestrator.run_full_sync()
                if report.outcome == PassOutcome.ABORTED:
                    reason = report.reason.value if report.reason else "unknown"
                    logger.warning(
                        f"Scheduled full sync aborted ({reason}): "
                        f"{report.succeeded} delivered"
                    )
                else:
                    logger.info(
                        f"Scheduled full sync {report.outcome.value}: "
                        f"{report.succeeded}/{report.attempted} delivered"
                    )
            else:
                result = self._orchestrator.run_quick_sync()
                if result.status == QuickSyncStatus.SUCCESS:
                    logger.info(f"Quick sync delivered {result.synced} messages")
                else:
                    logger.warning(f"Quick sync {result.status.value}: {result.error or ''}")
        except Exception:
            logger.exception(f"Error during scheduled {kind.value} sync")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self.run_pass,
            trigger=IntervalTrigger(seconds=self._interval),
            args=[PassKind.FULL],
            id=PERIODIC_JOB_ID,
            name="Periodic full sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now() if self._run_on_start else None,
        )
        self._scheduler.start()
        logger.info(f"Sync scheduler started (full sync every {self._interval:.0f}s)")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._orchestrator.cancel()
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    def run_now(self, kind: PassKind) -> Job | None:
        """Submit a one-shot pass.

        Args:
            kind: Full or quick pass.

        Returns:
            The scheduled job, or None if a pass of that kind is running
            and will be followed by another one.

        Raises:
            SyncError: If the scheduler is not started.
        """
        if self._scheduler is None:
            raise SyncError("Scheduler is not running")
        with self._lock:
            if kind in self._active:
                self._rerun.add(kind)
                logger.debug(f"{kind.value} sync running, queued another pass")
                return None
        logger.debug(f"Submitting one-shot {kind.value} sync")
        return self._scheduler.add_job(
            self.run_pass,
            trigger="date",
            args=[kind],
            id=run_now_job_id(kind),
            name=f"One-shot {kind.value} sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def get_job(self, job_id: str) -> Job | None:
        """Get a scheduled job by id."""
        if self._scheduler is None:
            return None
        return self._scheduler.get_job(job_id)

    def __enter__(self) -> SyncScheduler:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
