"""Core module - Shared configuration and types."""

from smsrelay.core.config import DEFAULT_API_URL, ChannelConfig, SyncPolicy
from smsrelay.core.types import Direction, PassKind, SyncMode

__all__ = [
    # Config
    "DEFAULT_API_URL",
    "ChannelConfig",
    "SyncPolicy",
    # Types
    "Direction",
    "PassKind",
    "SyncMode",
]
