"""Shared types and dataclasses for sync passes.

This module provides:
- SyncError, ChannelError, MessageNotFoundError, OriginError: Exception classes
- PassState: Orchestrator state machine states
- PassOutcome, AbortReason: Terminal outcome of a full pass
- SyncReport: Result of a full pass
- QuickSyncStatus, QuickSyncResult: Result of a quick pass
- DispatchResult: Result of dispatching one batch
- SyncProgress: Progress tracking dataclass
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, IntEnum, auto


class SyncError(Exception):
    """Base exception for sync errors."""


class ChannelError(SyncError):
    """The remote channel rejected or failed a request.

    The string form is the opaque error text classified by
    smsrelay.client.sync.errors.classify.

    Attributes:
        status_code: HTTP status, when the failure came from a response.
        retry_after: Server-declared cool-down in seconds, when provided.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class OriginError(SyncError):
    """The origin message store could not be read."""


class MessageNotFoundError(SyncError):
    """No origin record has the requested id."""


class PassState(IntEnum):
    """State of the orchestrator's current pass."""

    IDLE = auto()
    SELECTING = auto()
    DISPATCHING = auto()
    PAUSED = auto()
    COMPLETED = auto()
    ABORTED = auto()


class PassOutcome(str, Enum):
    """Terminal outcome of a full pass."""

    COMPLETED = "completed"
    ABORTED = "aborted"
    SKIPPED = "skipped"  # Sync administratively disabled


class AbortReason(str, Enum):
    """Why a pass was aborted."""

    NO_DESTINATION = "no_destination_configured"
    RATE_LIMITED = "rate_limited"
    CANCELLED = "cancelled"


@dataclass
class SyncReport:
    """Result of a full sync pass.

    Attributes:
        outcome: Completed, aborted or skipped.
        succeeded: Messages delivered during the pass.
        attempted: Send attempts made during the pass.
        selected: Messages selected for delivery.
        batches: Batches dispatched.
        imported: New origin records merged into the ledger.
        reason: Abort reason, if aborted.
        error_message: Summary of the last error, if any.
    """

    outcome: PassOutcome
    succeeded: int = 0
    attempted: int = 0
    selected: int = 0
    batches: int = 0
    imported: int = 0
    reason: AbortReason | None = None
    error_message: str | None = None

    @property
    def failed(self) -> int:
        """Attempts that did not deliver."""
        return self.attempted - self.succeeded

    @classmethod
    def skipped(cls) -> SyncReport:
        """Report for a pass that did nothing because sync is disabled."""
        return cls(outcome=PassOutcome.SKIPPED)

    @classmethod
    def aborted(
        cls,
        reason: AbortReason,
        error_message: str | None = None,
    ) -> SyncReport:
        """Report for a pass aborted before any dispatch."""
        return cls(outcome=PassOutcome.ABORTED, reason=reason, error_message=error_message)


class QuickSyncStatus(str, Enum):
    """Status of a quick pass."""

    SUCCESS = "success"
    ERROR = "error"
    NO_DESTINATION = "no_destination"


@dataclass
class QuickSyncResult:
    """Result of a quick sync pass."""

    status: QuickSyncStatus
    synced: int = 0
    error: str | None = None

    @classmethod
    def success(cls, synced: int) -> QuickSyncResult:
        return cls(QuickSyncStatus.SUCCESS, synced=synced)

    @classmethod
    def failure(cls, error: str, synced: int = 0) -> QuickSyncResult:
        return cls(QuickSyncStatus.ERROR, synced=synced, error=error)

    @classmethod
    def no_destination(cls) -> QuickSyncResult:
        return cls(QuickSyncStatus.NO_DESTINATION)


@dataclass
class DispatchResult:
    """Result of dispatching one batch.

    Attributes:
        succeeded: Messages delivered in this batch.
        attempted: Send attempts made so far in the whole pass.
        rate_limited: The channel throttled us; the pass must stop.
        cancelled: Cancellation was requested between two messages.
        last_error: Summary of the last failure in the batch.
    """

    succeeded: int = 0
    attempted: int = 0
    rate_limited: bool = False
    cancelled: bool = False
    last_error: str | None = None

    @property
    def should_stop(self) -> bool:
        """Whether the pass must not continue to the next batch."""
        return self.rate_limited or self.cancelled


@dataclass
class SyncProgress:
    """Progress information emitted after each batch of a full pass."""

    current_batch: int
    total_batches: int
    total_synced: int
    is_complete: bool = False
    error_message: str | None = None

    @property
    def percent(self) -> float:
        """Get progress percentage."""
        if self.total_batches == 0:
            return 100.0
        return (self.current_batch / self.total_batches) * 100


# Type alias for progress callback
ProgressCallback = Callable[[SyncProgress], None]
