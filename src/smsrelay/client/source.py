"""Pure reads of origin messages.

MessageSource turns raw origin rows into LocalMessage objects. It never
persists anything; ingestion into the ledger lives in
smsrelay.client.sync.ingest.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from smsrelay.client.origin import OriginQuery, OriginRecord, SortOrder
from smsrelay.client.state import LocalMessage
from smsrelay.client.sync.types import MessageNotFoundError
from smsrelay.core.types import Direction

if TYPE_CHECKING:
    from smsrelay.client.origin import OriginProvider

logger = logging.getLogger(__name__)

DEFAULT_READ_ALL_LIMIT = 500
DEFAULT_YIELD_EVERY = 50

__all__ = ["MessageNotFoundError", "MessageSource", "parse_record"]


def parse_record(record: OriginRecord) -> LocalMessage:
    """Convert a raw origin row into a LocalMessage.

    Raises:
        ValueError: If the row has no id or no usable date.
    """
    if record.id is None or str(record.id).strip() == "":
        raise ValueError("record has no id")
    if record.date is None:
        raise ValueError(f"record {record.id} has no date")
    try:
        timestamp = int(record.date)
    except (TypeError, ValueError) as e:
        raise ValueError(f"record {record.id} has invalid date {record.date!r}") from e

    try:
        type_code = int(record.type) if record.type is not None else None
    except (TypeError, ValueError):
        type_code = None

    return LocalMessage(
        id=str(record.id),
        thread_id="" if record.thread_id is None else str(record.thread_id),
        address=record.address or "",
        timestamp=timestamp,
        direction=Direction.from_origin_type(type_code),
        body=record.body or "",
    )


class MessageSource:
    """Read LocalMessage objects from an origin provider."""

    def __init__(
        self,
        provider: OriginProvider,
        read_all_limit: int = DEFAULT_READ_ALL_LIMIT,
        yield_every: int = DEFAULT_YIELD_EVERY,
    ) -> None:
        """Initialize the source.

        Args:
            provider: Origin store to read from.
            read_all_limit: Cap on the number of records read by read_all().
            yield_every: Rows parsed between two yields to other threads.
        """
        self._provider = provider
        self._read_all_limit = read_all_limit
        self._yield_every = yield_every

    def _parse_all(self, records: list[OriginRecord], cooperative: bool = False) -> list[LocalMessage]:
        messages: list[LocalMessage] = []
        for count, record in enumerate(records, start=1):
            try:
                messages.append(parse_record(record))
            except ValueError as e:
                logger.warning(f"Skipping unparseable origin record: {e}")
            if cooperative and count % self._yield_every == 0:
                time.sleep(0)
        return messages

    def read_all(self) -> list[LocalMessage]:
        """Read the most recent origin messages, newest first."""
        records = self._provider.read_records(
            OriginQuery(order=SortOrder.DESC, limit=self._read_all_limit)
        )
        messages = self._parse_all(records, cooperative=True)
        logger.info(f"Read {len(messages)} origin messages")
        return messages

    def read_after(self, timestamp: int) -> list[LocalMessage]:
        """Read origin messages strictly newer than a timestamp, oldest first."""
        records = self._provider.read_records(
            OriginQuery(after=timestamp, order=SortOrder.ASC)
        )
        messages = self._parse_all(records)
        logger.debug(f"Read {len(messages)} origin messages after {timestamp}")
        return messages

    def read_by_id(self, message_id: str) -> LocalMessage:
        """Read one origin message.

        Raises:
            MessageNotFoundError: If no parseable record has this id.
        """
        records = self._provider.read_records(OriginQuery(record_id=message_id, limit=1))
        if not records:
            raise MessageNotFoundError(f"Origin message not found: {message_id}")
        try:
            return parse_record(records[0])
        except ValueError as e:
            raise MessageNotFoundError(f"Origin message {message_id} is unreadable: {e}") from e
