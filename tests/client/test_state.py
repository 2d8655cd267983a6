"""Tests for the local ledger.

The ledger holds:
- local_messages: origin messages plus delivery state
- remote_messages: one mirror row per confirmed delivery
- sync_state: key-value settings
"""

from datetime import datetime
from pathlib import Path

import pytest

from smsrelay.client.state import (
    DeliveryFailure,
    LedgerError,
    LedgerStore,
    LocalMessage,
)
from smsrelay.core.types import Direction


def make_message(
    message_id: str,
    timestamp: int = 1_000,
    body: str = "hello",
    address: str = "+15550001",
    direction: Direction = Direction.RECEIVED,
) -> LocalMessage:
    """Create a pristine LocalMessage for testing."""
    return LocalMessage(
        id=message_id,
        thread_id="1",
        address=address,
        timestamp=timestamp,
        direction=direction,
        body=body,
    )


class TestLedgerCreation:
    """Tests for LedgerStore initialization."""

    def test_creates_database(self, tmp_path: Path) -> None:
        """Should create database file."""
        db_path = tmp_path / "ledger.db"
        ledger = LedgerStore(db_path)

        assert db_path.exists()
        ledger.close()

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Should create parent directories."""
        db_path = tmp_path / "nested" / "dir" / "ledger.db"
        with LedgerStore(db_path):
            assert db_path.exists()

    def test_reopens_existing_db(self, tmp_path: Path) -> None:
        """Should reopen existing database with data preserved."""
        db_path = tmp_path / "ledger.db"
        with LedgerStore(db_path) as ledger:
            ledger.merge_messages([make_message("1")])

        with LedgerStore(db_path) as ledger:
            message = ledger.get_message("1")
        assert message is not None
        assert message.body == "hello"


class TestLocalMessage:
    """Tests for LocalMessage helpers."""

    def test_display_address_unknown_when_blank(self) -> None:
        assert make_message("1", address="  ").display_address == "Unknown"
        assert make_message("1", address="+1555").display_address == "+1555"

    def test_is_dead_lettered(self) -> None:
        message = make_message("1")
        message.sync_attempts = 3
        assert message.is_dead_lettered() is True
        assert message.is_dead_lettered(max_attempts=5) is False

    def test_format_for_channel_received(self) -> None:
        """Should render heading, address, time and body."""
        timestamp = int(datetime(2024, 3, 5, 14, 7, 9).timestamp() * 1000)
        message = make_message("1", timestamp=timestamp, body="Your code is 1234")

        text = message.format_for_channel()

        assert text == (
            "📨 Received SMS\n"
            "From/To: +15550001\n"
            "Time: 2024-03-05 14:07:09\n"
            "\n"
            "Message:\n"
            "Your code is 1234"
        )

    def test_format_for_channel_sent(self) -> None:
        message = make_message("1", direction=Direction.SENT, address="")
        text = message.format_for_channel()
        assert text.startswith("📤 Sent SMS\nFrom/To: Unknown\n")


class TestMergeMessages:
    """Tests for merging origin records."""

    def test_inserts_new_messages(self, ledger: LedgerStore) -> None:
        stats = ledger.merge_messages([make_message("1"), make_message("2", timestamp=2_000)])

        assert stats.inserted == 2
        assert stats.updated == 0
        assert ledger.stats().total == 2

    def test_unchanged_messages_not_counted(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1")])
        stats = ledger.merge_messages([make_message("1")])

        assert stats.inserted == 0
        assert stats.updated == 0

    def test_refreshes_content_fields(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1", body="draft")])
        stats = ledger.merge_messages([make_message("1", body="final")])

        assert stats.updated == 1
        message = ledger.get_message("1")
        assert message is not None
        assert message.body == "final"

    def test_never_touches_delivery_state(self, ledger: LedgerStore) -> None:
        """A re-merge must keep remote_id, is_synced and attempts."""
        ledger.merge_messages([make_message("1"), make_message("2", timestamp=2_000)])
        message = ledger.get_message("1")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan", synced_at=5_000)
        ledger.record_failures([DeliveryFailure("2", "boom")], attempted_at=6_000)

        ledger.merge_messages(
            [make_message("1", body="edited"), make_message("2", body="edited")]
        )

        synced = ledger.get_message("1")
        failed = ledger.get_message("2")
        assert synced is not None and failed is not None
        assert synced.is_synced is True
        assert synced.remote_id == "R1"
        assert synced.synced_at == 5_000
        assert failed.sync_attempts == 1
        assert failed.last_sync_error == "boom"
        assert ledger.find_mirror_mismatches() == []


class TestSelectEligible:
    """Tests for eligible message selection."""

    def test_oldest_first(self, ledger: LedgerStore) -> None:
        ledger.merge_messages(
            [
                make_message("c", timestamp=3_000),
                make_message("a", timestamp=1_000),
                make_message("b", timestamp=2_000),
            ]
        )

        selected = ledger.select_eligible(limit=10)

        assert [m.id for m in selected] == ["a", "b", "c"]

    def test_ties_broken_by_id(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("b"), make_message("a")])
        assert [m.id for m in ledger.select_eligible(limit=10)] == ["a", "b"]

    def test_respects_limit(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message(str(i), timestamp=i) for i in range(5)])
        assert len(ledger.select_eligible(limit=3)) == 3

    def test_excludes_synced(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1"), make_message("2", timestamp=2_000)])
        message = ledger.get_message("1")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")

        assert [m.id for m in ledger.select_eligible(limit=10)] == ["2"]

    def test_excludes_dead_lettered(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1")])
        for _ in range(3):
            ledger.record_failures([DeliveryFailure("1", "bad request")])

        assert ledger.select_eligible(limit=10, max_attempts=3) == []
        assert len(ledger.select_eligible(limit=10, max_attempts=4)) == 1

    def test_watermark_is_hard_filter(self, ledger: LedgerStore) -> None:
        ledger.merge_messages(
            [make_message("old", timestamp=999), make_message("new", timestamp=1_000)]
        )
        assert [m.id for m in ledger.select_eligible(limit=10, watermark=1_000)] == ["new"]

    def test_latest_timestamp(self, ledger: LedgerStore) -> None:
        assert ledger.latest_timestamp() is None
        ledger.merge_messages([make_message("1", timestamp=5), make_message("2", timestamp=9)])
        assert ledger.latest_timestamp() == 9


class TestRecordDelivery:
    """Tests for atomic delivery bookkeeping."""

    def test_marks_synced_and_inserts_mirror(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1", body="hi")])
        message = ledger.get_message("1")
        assert message is not None

        mirror = ledger.record_delivery(message, "R1", "@chan", synced_at=42)

        assert message.is_synced is True
        assert message.remote_id == "R1"
        stored = ledger.get_message("1")
        assert stored is not None
        assert stored.is_synced is True
        assert stored.synced_at == 42
        assert mirror.origin_local_id == "1"
        assert mirror.destination_channel_id == "@chan"
        assert ledger.get_mirror("R1") == mirror
        assert ledger.get_mirror_for("1") == mirror

    def test_rejects_already_synced(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1")])
        message = ledger.get_message("1")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")

        stale = make_message("1")
        with pytest.raises(LedgerError):
            ledger.record_delivery(stale, "R2", "@chan")
        assert ledger.get_mirror("R2") is None

    def test_rejects_unknown_message(self, ledger: LedgerStore) -> None:
        with pytest.raises(LedgerError):
            ledger.record_delivery(make_message("missing"), "R1", "@chan")
        assert ledger.list_mirror() == []

    def test_duplicate_remote_id_rolls_back(self, ledger: LedgerStore) -> None:
        """A mirror conflict must not leave the ledger row marked synced."""
        ledger.merge_messages([make_message("1"), make_message("2", timestamp=2_000)])
        first = ledger.get_message("1")
        second = ledger.get_message("2")
        assert first is not None and second is not None
        ledger.record_delivery(first, "R1", "@chan")

        with pytest.raises(LedgerError):
            ledger.record_delivery(second, "R1", "@chan")

        stored = ledger.get_message("2")
        assert stored is not None
        assert stored.is_synced is False
        assert ledger.find_mirror_mismatches() == []


class TestRecordFailures:
    """Tests for batched failure bookkeeping."""

    def test_increments_attempts(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1"), make_message("2", timestamp=2)])

        ledger.record_failures(
            [DeliveryFailure("1", "timeout"), DeliveryFailure("2", "bad request")],
            attempted_at=77,
        )

        first = ledger.get_message("1")
        assert first is not None
        assert first.sync_attempts == 1
        assert first.last_sync_attempt == 77
        assert first.last_sync_error == "timeout"

    def test_dead_letter_jumps_to_cap(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1")])

        ledger.record_failures([DeliveryFailure("1", "forbidden", dead_letter=True)], max_attempts=3)

        message = ledger.get_message("1")
        assert message is not None
        assert message.sync_attempts == 3
        assert message.is_dead_lettered()

    def test_ignores_synced_rows(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1")])
        message = ledger.get_message("1")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")

        ledger.record_failures([DeliveryFailure("1", "late failure")])

        stored = ledger.get_message("1")
        assert stored is not None
        assert stored.sync_attempts == 0

    def test_reset_attempts(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1"), make_message("2", timestamp=2)])
        ledger.record_failures([DeliveryFailure("1", "x", dead_letter=True)])
        ledger.record_failures([DeliveryFailure("2", "x", dead_letter=True)])

        assert ledger.reset_attempts("1") == 1
        assert [m.id for m in ledger.select_eligible(limit=10)] == ["1"]
        assert ledger.reset_attempts() == 2
        message = ledger.get_message("2")
        assert message is not None
        assert message.sync_attempts == 0
        assert message.last_sync_error is None


class TestStatsAndRetention:
    """Tests for counters, consistency checks and retention."""

    def test_stats(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message(str(i), timestamp=i) for i in range(4)])
        message = ledger.get_message("0")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")
        ledger.record_failures([DeliveryFailure("1", "x", dead_letter=True)])

        stats = ledger.stats()

        assert stats.total == 4
        assert stats.synced == 1
        assert stats.unsynced == 3
        assert stats.dead_lettered == 1
        assert stats.mirrored == 1

    def test_detects_orphan_mirror(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1")])
        message = ledger.get_message("1")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")
        # Simulate an external edit breaking the correspondence
        ledger._conn.execute("UPDATE local_messages SET is_synced = 0 WHERE id = '1'")

        problems = ledger.find_mirror_mismatches()

        assert any("R1" in problem for problem in problems)

    def test_delete_older_than_removes_mirror_rows(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("old", timestamp=10), make_message("new", timestamp=20)])
        message = ledger.get_message("old")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")

        deleted = ledger.delete_older_than(15)

        assert deleted == 1
        assert ledger.get_message("old") is None
        assert ledger.get_mirror("R1") is None
        assert ledger.find_mirror_mismatches() == []

    def test_list_messages_filters(self, ledger: LedgerStore) -> None:
        ledger.merge_messages([make_message("1", timestamp=1), make_message("2", timestamp=2)])
        message = ledger.get_message("1")
        assert message is not None
        ledger.record_delivery(message, "R1", "@chan")

        assert [m.id for m in ledger.list_messages()] == ["2", "1"]
        assert [m.id for m in ledger.list_messages(synced=True)] == ["1"]
        assert [m.id for m in ledger.list_messages(synced=False, limit=5)] == ["2"]


class TestSyncState:
    """Tests for key-value state."""

    def test_set_get_delete(self, ledger: LedgerStore) -> None:
        assert ledger.get_state("k") is None
        ledger.set_state("k", "v")
        assert ledger.get_state("k") == "v"
        ledger.set_state("k", "w")
        assert ledger.get_state("k") == "w"
        ledger.delete_state("k")
        assert ledger.get_state("k") is None
