"""Pacing of outbound channel requests.

This module provides:
- RateLimiter: Minimum spacing between requests, server-declared cooldowns
  and exponential backoff after consecutive errors
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from smsrelay.client.sync.errors import parse_retry_after

if TYPE_CHECKING:
    from smsrelay.client.sync.clock import Clock

logger = logging.getLogger(__name__)

# Default pacing configuration
DEFAULT_MIN_INTERVAL = 0.1  # seconds between two requests
DEFAULT_RETRY_BUFFER = 5.0  # seconds added to a server retry hint
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


class RateLimiter:
    """Gate every channel request through a single pacing policy.

    Before each request, callers invoke wait_for_permission(). After the
    request they report the outcome with on_success() or on_error().

    Errors carrying a retry hint (a ``retry_after`` attribute or a
    "retry after N" text) block requests until hint + buffer seconds have
    passed. Other errors back off exponentially:
    min(initial * multiplier^(n-1), max) for the n-th consecutive error.
    A success clears the error streak and any cooldown.

    The limiter is thread-safe; the wait itself happens outside the lock.
    """

    def __init__(
        self,
        clock: Clock,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        retry_buffer: float = DEFAULT_RETRY_BUFFER,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    ) -> None:
        self._clock = clock
        self._min_interval = min_interval
        self._retry_buffer = retry_buffer
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._backoff_multiplier = backoff_multiplier

        self._lock = threading.Lock()
        self._last_request_at: float | None = None
        self._blocked_until = 0.0
        self._consecutive_errors = 0

    @property
    def consecutive_errors(self) -> int:
        """Number of errors reported since the last success."""
        with self._lock:
            return self._consecutive_errors

    @property
    def is_limited(self) -> bool:
        """Whether a cooldown is currently in effect."""
        return self.remaining() > 0

    def remaining(self) -> float:
        """Seconds until the current cooldown expires (0 when none)."""
        with self._lock:
            return max(0.0, self._blocked_until - self._clock.time())

    def _compute_wait(self) -> float:
        now = self._clock.time()
        wait = max(0.0, self._blocked_until - now)
        if self._last_request_at is not None:
            wait = max(wait, self._last_request_at + self._min_interval - now)
        return wait

    def wait_for_permission(self, cancel: threading.Event | None = None) -> bool:
        """Block until a request may be made.

        Args:
            cancel: Event that interrupts the wait when set.

        Returns:
            True when the caller may proceed, False if cancelled while waiting.
        """
        while True:
            with self._lock:
                wait = self._compute_wait()
                if wait <= 0:
                    self._last_request_at = self._clock.time()
                    return True

            if wait >= 1.0:
                logger.info(f"Rate limited, waiting {wait:.1f}s before next request")
            if not self._clock.sleep(wait, cancel):
                logger.debug("Rate limit wait cancelled")
                return False

    def on_success(self) -> None:
        """Report a successful request."""
        with self._lock:
            if self._consecutive_errors:
                logger.debug(
                    f"Request succeeded after {self._consecutive_errors} consecutive errors"
                )
            self._consecutive_errors = 0
            self._blocked_until = 0.0

    def on_error(self, error: BaseException | str) -> float:
        """Report a failed request.

        Args:
            error: The exception raised by the request, or its error text.

        Returns:
            Seconds for which further requests are blocked.
        """
        retry_after = getattr(error, "retry_after", None)
        if retry_after is None:
            retry_after = parse_retry_after(str(error))

        with self._lock:
            self._consecutive_errors += 1
            if retry_after is not None:
                cooldown = float(retry_after) + self._retry_buffer
                logger.warning(
                    f"Server requested retry after {retry_after}s, "
                    f"pausing requests for {cooldown:.1f}s"
                )
            else:
                cooldown = min(
                    self._initial_backoff
                    * self._backoff_multiplier ** (self._consecutive_errors - 1),
                    self._max_backoff,
                )
                logger.debug(
                    f"Error #{self._consecutive_errors}, backing off {cooldown:.1f}s"
                )
            self._blocked_until = max(self._blocked_until, self._clock.time() + cooldown)
            return cooldown

    def reset(self) -> None:
        """Forget all pacing state."""
        with self._lock:
            self._last_request_at = None
            self._blocked_until = 0.0
            self._consecutive_errors = 0
