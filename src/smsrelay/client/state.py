"""Local ledger for the relay client.

This module provides:
- LocalMessage: One origin message plus its delivery state
- RemoteMirrorRecord: One confirmed delivery to the remote channel
- LedgerStore: SQLite-based ledger and mirror tables

Architecture:
    The ledger is the single source of truth for "have we sent this yet".
    Every successful delivery updates the ledger row and inserts the mirror
    row in the same transaction, so the two tables stay in 1:1
    correspondence for synced messages.

    Batch writes (origin merges, failure bookkeeping) run inside one
    transaction each: a crash leaves either the pre-batch or the post-batch
    state, never a partial batch.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from smsrelay.core.types import Direction

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class LedgerError(Exception):
    """A ledger write could not be applied."""


@dataclass
class LocalMessage:
    """A message observed at the origin, with its delivery state.

    Attributes:
        id: Origin-assigned identifier (primary key, immutable).
        thread_id: Conversation identifier at the origin.
        address: Phone number or contact of the other party.
        timestamp: Origin event time in epoch milliseconds.
        direction: Received, sent or other.
        body: Message text.
        remote_id: Channel message id once delivered.
        is_synced: Whether the message was delivered.
        synced_at: Delivery time in epoch milliseconds.
        sync_attempts: Failed delivery attempts so far.
        last_sync_attempt: Time of the last failed attempt.
        last_sync_error: Summary of the last failure.
    """

    id: str
    thread_id: str
    address: str
    timestamp: int
    direction: Direction
    body: str
    remote_id: str | None = None
    is_synced: bool = False
    synced_at: int | None = None
    sync_attempts: int = 0
    last_sync_attempt: int | None = None
    last_sync_error: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> LocalMessage:
        """Create LocalMessage from database row."""
        return cls(
            id=row["id"],
            thread_id=row["thread_id"],
            address=row["address"],
            timestamp=row["timestamp"],
            direction=Direction(row["direction"]),
            body=row["body"],
            remote_id=row["remote_id"],
            is_synced=bool(row["is_synced"]),
            synced_at=row["synced_at"],
            sync_attempts=row["sync_attempts"],
            last_sync_attempt=row["last_sync_attempt"],
            last_sync_error=row["last_sync_error"],
        )

    @property
    def display_address(self) -> str:
        """Address to show, or "Unknown" when the origin left it blank."""
        return self.address if self.address.strip() else "Unknown"

    def is_dead_lettered(self, max_attempts: int = 3) -> bool:
        """Check if the message exhausted its delivery attempts."""
        return not self.is_synced and self.sync_attempts >= max_attempts

    def format_for_channel(self) -> str:
        """Render the plain-text message posted to the channel."""
        heading = "📨 Received" if self.direction == Direction.RECEIVED else "📤 Sent"
        when = datetime.fromtimestamp(self.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        return (
            f"{heading} SMS\n"
            f"From/To: {self.display_address}\n"
            f"Time: {when}\n"
            f"\n"
            f"Message:\n"
            f"{self.body}"
        )


@dataclass
class RemoteMirrorRecord:
    """A confirmed delivery to the remote channel."""

    remote_id: str
    origin_local_id: str
    address: str
    body: str
    origin_timestamp: int
    direction: Direction
    synced_at: int
    destination_channel_id: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> RemoteMirrorRecord:
        """Create RemoteMirrorRecord from database row."""
        return cls(
            remote_id=row["remote_id"],
            origin_local_id=row["origin_local_id"],
            address=row["address"],
            body=row["body"],
            origin_timestamp=row["origin_timestamp"],
            direction=Direction(row["direction"]),
            synced_at=row["synced_at"],
            destination_channel_id=row["destination_channel_id"],
        )


@dataclass
class DeliveryFailure:
    """A failed delivery attempt waiting to be written to the ledger.

    Attributes:
        message_id: Ledger id of the message.
        error: Summary stored as last_sync_error.
        dead_letter: Exhaust the attempt budget at once.
    """

    message_id: str
    error: str
    dead_letter: bool = False


@dataclass
class MergeStats:
    """Result of merging origin records into the ledger."""

    inserted: int = 0
    updated: int = 0


@dataclass
class LedgerStats:
    """Counters describing the ledger."""

    total: int
    synced: int
    unsynced: int
    dead_lettered: int
    mirrored: int


_CONTENT_FIELDS = ("thread_id", "address", "timestamp", "direction", "body")


class LedgerStore:
    """SQLite-based ledger of origin messages and confirmed deliveries."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the ledger database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit; batches use explicit BEGIN
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._create_tables()

    @property
    def db_path(self) -> Path:
        """Path of the ledger database file."""
        return self._db_path

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS local_messages (
                id TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL,
                address TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                direction INTEGER NOT NULL,
                body TEXT NOT NULL,
                remote_id TEXT,
                is_synced INTEGER NOT NULL DEFAULT 0,
                synced_at INTEGER,
                sync_attempts INTEGER NOT NULL DEFAULT 0,
                last_sync_attempt INTEGER,
                last_sync_error TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_local_messages_pending
                ON local_messages (is_synced, sync_attempts, timestamp);
            CREATE INDEX IF NOT EXISTS idx_local_messages_remote_id
                ON local_messages (remote_id);

            CREATE TABLE IF NOT EXISTS remote_messages (
                remote_id TEXT PRIMARY KEY,
                origin_local_id TEXT NOT NULL,
                address TEXT NOT NULL,
                body TEXT NOT NULL,
                origin_timestamp INTEGER NOT NULL,
                direction INTEGER NOT NULL,
                synced_at INTEGER NOT NULL,
                destination_channel_id TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_remote_messages_origin
                ON remote_messages (origin_local_id);

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> LedgerStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements as one transaction."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # === Origin merge ===

    def merge_messages(self, messages: Iterable[LocalMessage]) -> MergeStats:
        """Merge origin copies of messages into the ledger.

        New ids are inserted with pristine delivery state. Known ids only
        get their content fields refreshed: a re-scan of the origin never
        touches remote_id, is_synced or the attempt bookkeeping.

        Args:
            messages: Messages as read from the origin.

        Returns:
            MergeStats with inserted and updated counts.
        """
        stats = MergeStats()
        with self._transaction() as conn:
            for message in messages:
                row = conn.execute(
                    "SELECT thread_id, address, timestamp, direction, body "
                    "FROM local_messages WHERE id = ?",
                    (message.id,),
                ).fetchone()
                content = (
                    message.thread_id,
                    message.address,
                    message.timestamp,
                    int(message.direction),
                    message.body,
                )
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO local_messages (
                            id, thread_id, address, timestamp, direction, body
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (message.id, *content),
                    )
                    stats.inserted += 1
                elif tuple(row[field] for field in _CONTENT_FIELDS) != content:
                    conn.execute(
                        """
                        UPDATE local_messages
                        SET thread_id = ?, address = ?, timestamp = ?, direction = ?, body = ?
                        WHERE id = ?
                        """,
                        (*content, message.id),
                    )
                    stats.updated += 1
        if stats.inserted or stats.updated:
            logger.debug(
                f"Merged origin records: {stats.inserted} inserted, {stats.updated} updated"
            )
        return stats

    # === Reads ===

    def get_message(self, message_id: str) -> LocalMessage | None:
        """Get a ledger message by id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM local_messages WHERE id = ?",
                (message_id,),
            ).fetchone()
        return LocalMessage.from_row(row) if row else None

    def list_messages(
        self,
        synced: bool | None = None,
        limit: int | None = None,
    ) -> list[LocalMessage]:
        """List ledger messages, newest first.

        Args:
            synced: Only synced (True) or unsynced (False) messages.
            limit: Maximum number of rows.
        """
        query = "SELECT * FROM local_messages"
        params: list[object] = []
        if synced is not None:
            query += " WHERE is_synced = ?"
            params.append(int(synced))
        query += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [LocalMessage.from_row(row) for row in rows]

    def select_eligible(
        self,
        limit: int,
        watermark: int = 0,
        max_attempts: int = 3,
    ) -> list[LocalMessage]:
        """Select undelivered messages, oldest first.

        Args:
            limit: Maximum number of messages.
            watermark: Messages older than this timestamp are never selected.
            max_attempts: Messages with this many failed attempts are skipped.
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM local_messages
                WHERE is_synced = 0 AND sync_attempts < ? AND timestamp >= ?
                ORDER BY timestamp ASC, id ASC
                LIMIT ?
                """,
                (max_attempts, watermark, limit),
            ).fetchall()
        return [LocalMessage.from_row(row) for row in rows]

    def latest_timestamp(self) -> int | None:
        """Get the newest origin timestamp held in the ledger."""
        with self._lock:
            row = self._conn.execute(
                "SELECT MAX(timestamp) AS latest FROM local_messages"
            ).fetchone()
        return row["latest"]

    # === Delivery bookkeeping ===

    def record_delivery(
        self,
        message: LocalMessage,
        remote_id: str,
        destination: str,
        synced_at: int | None = None,
    ) -> RemoteMirrorRecord:
        """Mark a message delivered and insert its mirror record atomically.

        Args:
            message: The delivered message.
            remote_id: Id assigned by the channel.
            destination: Channel the message was delivered to.
            synced_at: Delivery time (defaults to now).

        Returns:
            The inserted mirror record.

        Raises:
            LedgerError: If the message is unknown, already synced, or the
                remote id is already mirrored.
        """
        synced_at = synced_at if synced_at is not None else now_ms()
        mirror = RemoteMirrorRecord(
            remote_id=remote_id,
            origin_local_id=message.id,
            address=message.address,
            body=message.body,
            origin_timestamp=message.timestamp,
            direction=message.direction,
            synced_at=synced_at,
            destination_channel_id=destination,
        )
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE local_messages
                    SET is_synced = 1, remote_id = ?, synced_at = ?
                    WHERE id = ? AND is_synced = 0
                    """,
                    (remote_id, synced_at, message.id),
                )
                if cursor.rowcount != 1:
                    raise LedgerError(
                        f"Message {message.id} is missing or already synced"
                    )
                conn.execute(
                    """
                    INSERT INTO remote_messages (
                        remote_id, origin_local_id, address, body,
                        origin_timestamp, direction, synced_at, destination_channel_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        mirror.remote_id,
                        mirror.origin_local_id,
                        mirror.address,
                        mirror.body,
                        mirror.origin_timestamp,
                        int(mirror.direction),
                        mirror.synced_at,
                        mirror.destination_channel_id,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise LedgerError(f"Remote id {remote_id} is already mirrored") from e

        message.remote_id = remote_id
        message.is_synced = True
        message.synced_at = synced_at
        return mirror

    def record_failures(
        self,
        failures: Sequence[DeliveryFailure],
        attempted_at: int | None = None,
        max_attempts: int = 3,
    ) -> None:
        """Record a batch of failed attempts in one transaction.

        Each failure increments sync_attempts; a dead-letter failure raises
        it straight to max_attempts. Already-synced rows are left alone.

        Args:
            failures: Failures collected during a batch.
            attempted_at: Time of the attempts (defaults to now).
            max_attempts: Attempt budget used for dead-letter failures.
        """
        if not failures:
            return
        attempted_at = attempted_at if attempted_at is not None else now_ms()
        with self._transaction() as conn:
            conn.executemany(
                """
                UPDATE local_messages
                SET sync_attempts = CASE
                        WHEN ? THEN MAX(sync_attempts + 1, ?)
                        ELSE sync_attempts + 1
                    END,
                    last_sync_attempt = ?,
                    last_sync_error = ?
                WHERE id = ? AND is_synced = 0
                """,
                [
                    (int(f.dead_letter), max_attempts, attempted_at, f.error, f.message_id)
                    for f in failures
                ],
            )
        logger.debug(f"Recorded {len(failures)} failed delivery attempts")

    def reset_attempts(self, message_id: str | None = None) -> int:
        """Re-arm dead-lettered messages by clearing their attempt history.

        Args:
            message_id: Message to reset, or None for every unsynced message.

        Returns:
            Number of rows reset.
        """
        query = (
            "UPDATE local_messages "
            "SET sync_attempts = 0, last_sync_attempt = NULL, last_sync_error = NULL "
            "WHERE is_synced = 0"
        )
        params: tuple[str, ...] = ()
        if message_id is not None:
            query += " AND id = ?"
            params = (message_id,)
        with self._lock:
            cursor = self._conn.execute(query, params)
        return cursor.rowcount

    # === Mirror ===

    def get_mirror(self, remote_id: str) -> RemoteMirrorRecord | None:
        """Get a mirror record by remote id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM remote_messages WHERE remote_id = ?",
                (remote_id,),
            ).fetchone()
        return RemoteMirrorRecord.from_row(row) if row else None

    def get_mirror_for(self, message_id: str) -> RemoteMirrorRecord | None:
        """Get the mirror record of a ledger message."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM remote_messages WHERE origin_local_id = ?",
                (message_id,),
            ).fetchone()
        return RemoteMirrorRecord.from_row(row) if row else None

    def list_mirror(self) -> list[RemoteMirrorRecord]:
        """List all mirror records, most recently synced first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM remote_messages ORDER BY synced_at DESC"
            ).fetchall()
        return [RemoteMirrorRecord.from_row(row) for row in rows]

    def find_mirror_mismatches(self) -> list[str]:
        """Check the 1:1 correspondence between synced messages and mirror rows.

        Returns:
            One description per violation; empty when consistent.
        """
        problems: list[str] = []
        with self._lock:
            for row in self._conn.execute(
                """
                SELECT id FROM local_messages
                WHERE is_synced = 1 AND (remote_id IS NULL OR synced_at IS NULL)
                """
            ):
                problems.append(f"message {row['id']} is synced without remote id")

            for row in self._conn.execute(
                """
                SELECT l.id, l.remote_id FROM local_messages l
                LEFT JOIN remote_messages r ON r.remote_id = l.remote_id
                WHERE l.is_synced = 1 AND l.remote_id IS NOT NULL
                  AND (r.remote_id IS NULL OR r.origin_local_id != l.id)
                """
            ):
                problems.append(
                    f"message {row['id']} has no mirror record for remote id {row['remote_id']}"
                )

            for row in self._conn.execute(
                """
                SELECT r.remote_id FROM remote_messages r
                LEFT JOIN local_messages l
                    ON l.remote_id = r.remote_id AND l.is_synced = 1
                WHERE l.id IS NULL
                """
            ):
                problems.append(f"mirror record {row['remote_id']} has no synced message")

            for row in self._conn.execute(
                """
                SELECT remote_id FROM local_messages
                WHERE remote_id IS NOT NULL
                GROUP BY remote_id HAVING COUNT(*) > 1
                """
            ):
                problems.append(f"remote id {row['remote_id']} is shared by several messages")
        return problems

    def stats(self, max_attempts: int = 3) -> LedgerStats:
        """Count messages by delivery state."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(is_synced = 1), 0) AS synced,
                    COALESCE(SUM(is_synced = 0), 0) AS unsynced,
                    COALESCE(SUM(is_synced = 0 AND sync_attempts >= ?), 0) AS dead_lettered
                FROM local_messages
                """,
                (max_attempts,),
            ).fetchone()
            mirrored = self._conn.execute(
                "SELECT COUNT(*) AS n FROM remote_messages"
            ).fetchone()["n"]
        return LedgerStats(
            total=row["total"],
            synced=row["synced"],
            unsynced=row["unsynced"],
            dead_lettered=row["dead_lettered"],
            mirrored=mirrored,
        )

    # === Retention ===

    def delete_older_than(self, timestamp: int) -> int:
        """Delete messages older than a timestamp, with their mirror rows.

        Returns:
            Number of ledger messages deleted.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                DELETE FROM remote_messages WHERE origin_local_id IN (
                    SELECT id FROM local_messages WHERE timestamp < ?
                )
                """,
                (timestamp,),
            )
            cursor = conn.execute(
                "DELETE FROM local_messages WHERE timestamp < ?",
                (timestamp,),
            )
        return cursor.rowcount

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete_state(self, key: str) -> None:
        """Remove a sync state value."""
        with self._lock:
            self._conn.execute("DELETE FROM sync_state WHERE key = ?", (key,))
