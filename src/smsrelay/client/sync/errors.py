"""Classification of channel errors.

Channel errors reach the engine as opaque strings. This module maps them to
an ErrorKind through an ordered pattern table and extracts server-supplied
retry hints.

Propagation policy:
- RATE_LIMITED aborts the whole pass; the rate limiter enters cooldown.
- Every other kind is recorded on the message and the pass moves on.
- AUTH_INVALID, DESTINATION_FORBIDDEN and DESTINATION_NOT_FOUND are
  permanent: re-sending cannot succeed until the operator fixes the setup.
"""

from __future__ import annotations

import re
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failed delivery."""

    RATE_LIMITED = "rate_limited"
    NETWORK_TRANSIENT = "network_transient"
    AUTH_INVALID = "auth_invalid"
    DESTINATION_FORBIDDEN = "destination_forbidden"
    MALFORMED_REQUEST = "malformed_request"
    DESTINATION_NOT_FOUND = "destination_not_found"
    UNKNOWN = "unknown"


# First match wins; status codes only match as whole numbers.
ERROR_PATTERNS: tuple[tuple[ErrorKind, re.Pattern[str]], ...] = (
    (
        ErrorKind.RATE_LIMITED,
        re.compile(r"\b429\b|too many requests|rate limit|retry_after|retry after"),
    ),
    (
        ErrorKind.NETWORK_TRANSIENT,
        re.compile(r"network|timeout|timed out|connection"),
    ),
    (ErrorKind.AUTH_INVALID, re.compile(r"\b401\b|unauthorized")),
    (ErrorKind.DESTINATION_FORBIDDEN, re.compile(r"\b403\b|forbidden")),
    (ErrorKind.MALFORMED_REQUEST, re.compile(r"\b400\b|bad request")),
    (ErrorKind.DESTINATION_NOT_FOUND, re.compile(r"\b404\b|not found")),
)

_RETRY_AFTER_JSON = re.compile(r'"retry_after"\s*:\s*(\d+(?:\.\d+)?)')
_RETRY_AFTER_TEXT = re.compile(r"retry after (\d+(?:\.\d+)?)")

_DESCRIPTIONS: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "Rate limit exceeded - too many messages sent",
    ErrorKind.NETWORK_TRANSIENT: "Network connection error - check internet",
    ErrorKind.AUTH_INVALID: "Bot token invalid - check Telegram settings",
    ErrorKind.DESTINATION_FORBIDDEN: "Bot not authorized for channel - check permissions",
    ErrorKind.MALFORMED_REQUEST: "Invalid message format or content",
    ErrorKind.DESTINATION_NOT_FOUND: "Channel not found - check channel ID",
}

PERMANENT_KINDS = frozenset({
    ErrorKind.AUTH_INVALID,
    ErrorKind.DESTINATION_FORBIDDEN,
    ErrorKind.DESTINATION_NOT_FOUND,
})


def classify(raw_error: str | None) -> ErrorKind:
    """Classify a raw error string.

    Args:
        raw_error: Error text as produced by the channel client.

    Returns:
        The first matching ErrorKind, UNKNOWN when nothing matches.
    """
    text = (raw_error or "").lower()
    for kind, pattern in ERROR_PATTERNS:
        if pattern.search(text):
            return kind
    return ErrorKind.UNKNOWN


def parse_retry_after(raw_error: str | None) -> float | None:
    """Extract a retry-after hint in seconds.

    Handles both the JSON form (``"retry_after": 40``) and free text
    (``retry after 40``).
    """
    text = (raw_error or "").lower()
    match = _RETRY_AFTER_JSON.search(text) or _RETRY_AFTER_TEXT.search(text)
    if match is None:
        return None
    return float(match.group(1))


def describe(kind: ErrorKind, raw_error: str | None = None) -> str:
    """Operator-facing summary of an error."""
    if kind in _DESCRIPTIONS:
        return _DESCRIPTIONS[kind]
    return f"Telegram API error: {raw_error or 'Unknown'}"


def is_permanent(kind: ErrorKind) -> bool:
    """Check if re-sending cannot fix an error of this kind."""
    return kind in PERMANENT_KINDS
