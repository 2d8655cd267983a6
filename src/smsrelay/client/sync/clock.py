"""Clock abstraction for every wait in the sync engine.

Rate limiting, inter-message spacing, burst cooldowns and debouncing all go
through a Clock so tests can drive them with virtual time.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    """Time source and cancellable sleep."""

    def time(self) -> float:
        """Current time in seconds."""
        ...

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        """Sleep for a duration.

        Args:
            seconds: How long to sleep.
            cancel: Event that interrupts the sleep when set.

        Returns:
            True if the full duration elapsed, False if cancelled.
        """
        ...


class SystemClock:
    """Wall-clock implementation backed by time.time()."""

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if seconds <= 0:
            return not (cancel is not None and cancel.is_set())
        if cancel is None:
            time.sleep(seconds)
            return True
        return not cancel.wait(seconds)


def to_ms(seconds: float) -> int:
    """Convert clock seconds to epoch milliseconds."""
    return int(seconds * 1000)
