"""Sync engine: relays ledger messages to the remote channel.

Architecture:
    ChangeWatcher / SyncScheduler → SyncOrchestrator → RateLimiter → Channel

Components:
- **SyncOrchestrator**: Runs full and quick passes, owns pacing and bookkeeping
- **RateLimiter**: Minimum spacing, server cooldowns and error backoff
- **ChangeWatcher**: Debounced origin change notifications → quick passes
- **ingest_all / ingest_new**: Merge origin messages into the ledger
- **errors**: Classification of channel errors

All public symbols are re-exported here.
"""

from smsrelay.client.sync.clock import Clock, SystemClock, to_ms
from smsrelay.client.sync.debounce import Debouncer
from smsrelay.client.sync.errors import (
    ErrorKind,
    classify,
    describe,
    is_permanent,
    parse_retry_after,
)
from smsrelay.client.sync.ingest import ingest_all, ingest_new
from smsrelay.client.sync.orchestrator import SyncOrchestrator
from smsrelay.client.sync.rate_limiter import RateLimiter
from smsrelay.client.sync.types import (
    AbortReason,
    ChannelError,
    DispatchResult,
    MessageNotFoundError,
    OriginError,
    PassOutcome,
    PassState,
    ProgressCallback,
    QuickSyncResult,
    QuickSyncStatus,
    SyncError,
    SyncProgress,
    SyncReport,
)
from smsrelay.client.sync.watcher import ChangeWatcher

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "to_ms",
    # Errors
    "ErrorKind",
    "classify",
    "describe",
    "is_permanent",
    "parse_retry_after",
    # Engine
    "ChangeWatcher",
    "Debouncer",
    "RateLimiter",
    "SyncOrchestrator",
    "ingest_all",
    "ingest_new",
    # Types
    "AbortReason",
    "ChannelError",
    "DispatchResult",
    "MessageNotFoundError",
    "OriginError",
    "PassOutcome",
    "PassState",
    "ProgressCallback",
    "QuickSyncResult",
    "QuickSyncStatus",
    "SyncError",
    "SyncProgress",
    "SyncReport",
]
