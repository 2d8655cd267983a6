"""Runtime sync settings stored in the ledger's key-value table.

These are the switches a user flips (enable, mode, destination) and the
engine's own bookkeeping (last full sync). Values are stored as strings.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from smsrelay.core.types import SyncMode

if TYPE_CHECKING:
    from smsrelay.client.state import LedgerStore

logger = logging.getLogger(__name__)

SYNC_ENABLED_KEY = "sync_enabled"
SYNC_MODE_KEY = "sync_mode"
SYNC_ENABLED_SINCE_KEY = "sync_enabled_since"
DESTINATION_ID_KEY = "destination_id"
LAST_FULL_SYNC_AT_KEY = "last_full_sync_at"


class SyncSettings:
    """Typed accessors over the ledger's sync_state table."""

    def __init__(self, ledger: LedgerStore) -> None:
        self._ledger = ledger

    def _get_int(self, key: str) -> int:
        value = self._ledger.get_state(key)
        try:
            return int(value) if value else 0
        except ValueError:
            logger.warning(f"Ignoring malformed value for {key}: {value!r}")
            return 0

    @property
    def sync_enabled(self) -> bool:
        """Whether delivery is administratively enabled."""
        return self._ledger.get_state(SYNC_ENABLED_KEY) == "1"

    @sync_enabled.setter
    def sync_enabled(self, enabled: bool) -> None:
        self._ledger.set_state(SYNC_ENABLED_KEY, "1" if enabled else "0")

    @property
    def sync_mode(self) -> SyncMode:
        """Selection mode (defaults to ALL)."""
        value = self._ledger.get_state(SYNC_MODE_KEY)
        try:
            return SyncMode(value) if value else SyncMode.ALL
        except ValueError:
            logger.warning(f"Unknown sync mode {value!r}, defaulting to ALL")
            return SyncMode.ALL

    @property
    def sync_enabled_since(self) -> int:
        """Opt-in time of NEW_ONLY mode in epoch milliseconds (0 when unset)."""
        return self._get_int(SYNC_ENABLED_SINCE_KEY)

    @property
    def destination_id(self) -> str | None:
        """Configured channel id, or None when unresolved."""
        value = self._ledger.get_state(DESTINATION_ID_KEY)
        return value or None

    @destination_id.setter
    def destination_id(self, destination: str | None) -> None:
        if destination:
            self._ledger.set_state(DESTINATION_ID_KEY, destination)
        else:
            self._ledger.delete_state(DESTINATION_ID_KEY)

    @property
    def last_full_sync_at(self) -> int:
        """Completion time of the last full pass (0 when never run)."""
        return self._get_int(LAST_FULL_SYNC_AT_KEY)

    @last_full_sync_at.setter
    def last_full_sync_at(self, timestamp: int) -> None:
        self._ledger.set_state(LAST_FULL_SYNC_AT_KEY, str(timestamp))

    def set_mode(self, mode: SyncMode, now: int) -> None:
        """Switch the selection mode.

        The NEW_ONLY baseline is recorded the first time the mode is chosen
        and kept afterwards, so re-selecting the mode does not move it.

        Args:
            mode: New mode.
            now: Current time in epoch milliseconds.
        """
        self._ledger.set_state(SYNC_MODE_KEY, mode.value)
        if mode == SyncMode.NEW_ONLY and self.sync_enabled_since == 0:
            self._ledger.set_state(SYNC_ENABLED_SINCE_KEY, str(now))
            logger.info(f"NEW_ONLY baseline set to {now}")

    def enable(self, mode: SyncMode, now: int) -> None:
        """Turn delivery on in the given mode."""
        self.set_mode(mode, now)
        self.sync_enabled = True

    def disable(self) -> None:
        """Turn delivery off."""
        self.sync_enabled = False

    def watermark(self) -> int:
        """Timestamp below which messages are never selected.

        Returns:
            0 in ALL mode, the opt-in baseline in NEW_ONLY mode.
        """
        if self.sync_mode != SyncMode.NEW_ONLY:
            return 0
        baseline = self.sync_enabled_since
        if baseline <= 0:
            logger.warning(
                "NEW_ONLY mode selected but no baseline recorded; treating as ALL"
            )
            return 0
        since = datetime.fromtimestamp(baseline / 1000).isoformat(sep=" ", timespec="seconds")
        logger.debug(f"NEW_ONLY watermark: {baseline} ({since})")
        return baseline

    def clear_last_full_sync(self) -> None:
        """Forget the last full pass so the next one is not skipped."""
        self._ledger.delete_state(LAST_FULL_SYNC_AT_KEY)
