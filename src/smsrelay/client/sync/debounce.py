"""Debouncing of origin change notifications.

The origin store may emit several notifications for a single new message
(database write, WAL write, checkpoint). Debouncer collapses them:

- An event arriving within ``window`` seconds of the last accepted event is
  dropped.
- An accepted event (re)arms a single settle timer; the callback fires
  ``settle_delay`` seconds after the last accepted event.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from smsrelay.client.sync.clock import SystemClock

if TYPE_CHECKING:
    from smsrelay.client.sync.clock import Clock

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 0.3  # seconds
DEFAULT_SETTLE_DELAY = 0.2  # seconds


class Timer(Protocol):
    """One-shot timer, as returned by a timer factory."""

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def thread_timer(delay: float, function: Callable[[], None]) -> Timer:
    """Create a daemon threading.Timer."""
    timer = threading.Timer(delay, function)
    timer.daemon = True
    return timer


class Debouncer:
    """Collapse bursts of events into one delayed callback."""

    def __init__(
        self,
        callback: Callable[[], None],
        window: float = DEFAULT_WINDOW,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        clock: Clock | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        """Initialize the debouncer.

        Args:
            callback: Called once events have settled.
            window: Events closer than this to the last accepted one are dropped.
            settle_delay: Delay between the last accepted event and the callback.
            clock: Time source (defaults to the system clock).
            timer_factory: Creates the settle timer (defaults to threading.Timer).
        """
        self._callback = callback
        self._window = window
        self._settle_delay = settle_delay
        self._clock: Clock = clock or SystemClock()
        self._timer_factory = timer_factory or thread_timer

        self._lock = threading.Lock()
        self._timer: Timer | None = None
        self._last_event_at: float | None = None

    @property
    def is_armed(self) -> bool:
        """Check if a settle timer is pending."""
        with self._lock:
            return self._timer is not None

    def on_event(self) -> bool:
        """Register an event.

        Returns:
            True if the event was accepted, False if it was dropped.
        """
        with self._lock:
            now = self._clock.time()
            if self._last_event_at is not None and now - self._last_event_at < self._window:
                return False
            self._last_event_at = now

            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self._settle_delay, self._fire)
            self._timer = timer
            timer.start()
            return True

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._callback()

    def cancel(self) -> None:
        """Disarm the pending timer, if any."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
