"""Access to the origin message store.

This module provides:
- OriginQuery, OriginRecord: Query and raw row types
- OriginProvider: Protocol the message source reads through
- SqliteOriginProvider: Reads an Android-style ``sms`` table and watches the
  database file for changes using watchdog

The engine never writes to the origin; every connection is opened read-only.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from smsrelay.client.sync.types import OriginError

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


class SortOrder(str, Enum):
    """Ordering of origin records by date."""

    ASC = "ASC"
    DESC = "DESC"


@dataclass
class OriginQuery:
    """Filter for reading origin records.

    Attributes:
        after: Only records strictly newer than this epoch-ms timestamp.
        record_id: Only the record with this id.
        order: Date ordering of the result.
        limit: Maximum number of records.
    """

    after: int | None = None
    record_id: str | None = None
    order: SortOrder = SortOrder.DESC
    limit: int | None = None


@dataclass
class OriginRecord:
    """A raw row from the origin store, not yet validated."""

    id: Any
    thread_id: Any
    address: Any
    date: Any
    type: Any
    body: Any

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> OriginRecord:
        return cls(
            id=row["_id"],
            thread_id=row["thread_id"],
            address=row["address"],
            date=row["date"],
            type=row["type"],
            body=row["body"],
        )


class Subscription(Protocol):
    """Handle returned by OriginProvider.subscribe()."""

    def cancel(self) -> None:
        """Stop delivering change notifications."""
        ...


class OriginProvider(Protocol):
    """Read access and change notifications for the origin store."""

    def read_records(self, query: OriginQuery) -> list[OriginRecord]:
        """Read records matching a query."""
        ...

    def subscribe(self, on_change: Callable[[], None]) -> Subscription:
        """Call on_change whenever the origin store may have changed."""
        ...


class _DatabaseEventHandler(FileSystemEventHandler):
    """Forwards writes to a SQLite file or its WAL/journal siblings."""

    def __init__(self, db_path: Path, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._names = {
            db_path.name,
            f"{db_path.name}-wal",
            f"{db_path.name}-journal",
        }
        self._on_change = on_change

    def _handle_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        for raw in paths:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            if raw and Path(raw).name in self._names:
                self._on_change()
                return

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle_event(event)


class WatchdogSubscription:
    """A running watchdog observer bound to one origin database."""

    def __init__(self, db_path: Path, on_change: Callable[[], None]) -> None:
        self._handler = _DatabaseEventHandler(db_path, on_change)
        self._observer: BaseObserver = Observer()
        self._observer.schedule(self._handler, str(db_path.parent), recursive=False)
        self._observer.start()
        self._lock = threading.Lock()
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._observer.stop()
        self._observer.join(timeout=5.0)


class SqliteOriginProvider:
    """Origin provider over an Android-style SMS database.

    The database must hold a table ``sms`` with the columns
    ``_id, thread_id, address, date, type, body``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path).resolve()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        if not self._db_path.exists():
            raise OriginError(f"Origin database not found: {self._db_path}")
        try:
            conn = sqlite3.connect(f"file:{self._db_path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise OriginError(f"Cannot open origin database: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def read_records(self, query: OriginQuery) -> list[OriginRecord]:
        """Read records matching a query.

        Raises:
            OriginError: If the database cannot be opened or queried.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if query.after is not None:
            clauses.append("date > ?")
            params.append(query.after)
        if query.record_id is not None:
            clauses.append("_id = ?")
            params.append(query.record_id)

        sql = "SELECT _id, thread_id, address, date, type, body FROM sms"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        order = SortOrder(query.order).value
        sql += f" ORDER BY date {order}, _id {order}"
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit)

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise OriginError(f"Cannot read origin database: {e}") from e
        finally:
            conn.close()
        return [OriginRecord.from_row(row) for row in rows]

    def subscribe(self, on_change: Callable[[], None]) -> WatchdogSubscription:
        """Watch the database file for writes."""
        if not self._db_path.parent.is_dir():
            raise OriginError(f"Origin directory not found: {self._db_path.parent}")
        logger.debug(f"Watching {self._db_path} for changes")
        return WatchdogSubscription(self._db_path, on_change)
