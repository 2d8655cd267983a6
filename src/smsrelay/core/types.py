"""Shared types for smsrelay.

This module defines enums used across the ledger, the sync engine and the CLI.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class Direction(IntEnum):
    """Direction of an origin message.

    Values follow the origin's SMS type codes (1 = inbox, 2 = sent).
    Every other code (draft, outbox, failed, queued) maps to OTHER.
    """

    OTHER = 0
    RECEIVED = 1
    SENT = 2

    @classmethod
    def from_origin_type(cls, type_code: int | None) -> Direction:
        """Map an origin type code to a Direction."""
        if type_code == cls.RECEIVED:
            return cls.RECEIVED
        if type_code == cls.SENT:
            return cls.SENT
        return cls.OTHER

    @property
    def label(self) -> str:
        """Human-readable label."""
        return {
            Direction.RECEIVED: "Received",
            Direction.SENT: "Sent",
        }.get(self, "Other")


class SyncMode(str, Enum):
    """Which ledger records are eligible for delivery.

    ALL delivers every unsent record regardless of age. NEW_ONLY only
    delivers records newer than the moment the user opted in.
    """

    ALL = "ALL"
    NEW_ONLY = "NEW_ONLY"


class PassKind(str, Enum):
    """Kind of sync pass a trigger can request."""

    FULL = "full"
    QUICK = "quick"
