"""Ingestion of origin messages into the ledger."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smsrelay.client.source import MessageSource
    from smsrelay.client.state import LedgerStore

logger = logging.getLogger(__name__)


def ingest_all(source: MessageSource, ledger: LedgerStore) -> int:
    """Merge the most recent origin messages into the ledger.

    Returns:
        Number of messages newly inserted.
    """
    stats = ledger.merge_messages(source.read_all())
    logger.info(f"Ingested origin messages: {stats.inserted} new, {stats.updated} updated")
    return stats.inserted


def ingest_new(source: MessageSource, ledger: LedgerStore) -> int:
    """Merge origin messages not older than the newest one in the ledger.

    Rows sharing the newest timestamp are read again so that messages stored
    in the same millisecond are not missed; merging skips ids already known.
    An empty ledger falls back to ingest_all().

    Returns:
        Number of messages newly inserted.
    """
    latest = ledger.latest_timestamp()
    if latest is None:
        return ingest_all(source, ledger)

    messages = source.read_after(latest - 1)
    if not messages:
        return 0
    stats = ledger.merge_messages(messages)
    if stats.inserted:
        logger.info(f"Ingested {stats.inserted} new origin messages")
    return stats.inserted
