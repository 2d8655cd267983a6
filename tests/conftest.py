"""Shared fixtures and fakes for smsrelay tests.

Fakes:
- FakeClock: Virtual time; sleeps advance the clock and are recorded
- FakeChannel: In-memory channel assigning remote ids R1, R2, ...
- FakeOriginProvider: In-memory origin store with manual change notification
- FakeTimerFactory: Settle timers fired by hand
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from smsrelay.client.origin import OriginQuery, OriginRecord, SortOrder
from smsrelay.client.settings import SyncSettings
from smsrelay.client.source import MessageSource
from smsrelay.client.state import LedgerStore
from smsrelay.client.sync.orchestrator import SyncOrchestrator
from smsrelay.client.sync.types import ChannelError
from smsrelay.core.config import SyncPolicy
from smsrelay.core.types import SyncMode

DESTINATION = "@relay_channel"
BASE_TIME_MS = 1_700_000_000_000


class FakeClock:
    """Virtual clock: sleep() advances time instantly."""

    def __init__(self, start: float = BASE_TIME_MS / 1000) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return False
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds
        return True

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel:
    """Channel that records sends and fails on demand."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.calls = 0
        self.errors_by_call: dict[int, ChannelError] = {}
        self.errors_by_text: dict[str, ChannelError] = {}
        self.fail_all: ChannelError | None = None
        self.on_send: Callable[[int], None] | None = None
        self._next_id = 1

    def send_message(self, destination: str, text: str, timeout: float | None = None) -> str:
        self.calls += 1
        if self.on_send is not None:
            self.on_send(self.calls)
        if self.calls in self.errors_by_call:
            raise self.errors_by_call[self.calls]
        for needle, error in self.errors_by_text.items():
            if needle in text:
                raise error
        if self.fail_all is not None:
            raise self.fail_all
        remote_id = f"R{self._next_id}"
        self._next_id += 1
        self.sent.append((destination, text))
        return remote_id


class FakeSubscription:
    def __init__(self, provider: FakeOriginProvider, callback: Callable[[], None]) -> None:
        self._provider = provider
        self._callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self._callback in self._provider.subscribers:
            self._provider.subscribers.remove(self._callback)


class FakeOriginProvider:
    """In-memory origin store."""

    def __init__(self) -> None:
        self.records: list[OriginRecord] = []
        self.subscribers: list[Callable[[], None]] = []
        self.fail: Exception | None = None
        self.queries: list[OriginQuery] = []

    def add(
        self,
        record_id: str,
        date: int,
        body: str = "hello",
        address: str = "+15550001",
        type_code: int = 1,
        thread_id: int = 1,
    ) -> OriginRecord:
        record = OriginRecord(
            id=record_id,
            thread_id=thread_id,
            address=address,
            date=date,
            type=type_code,
            body=body,
        )
        self.records.append(record)
        return record

    def read_records(self, query: OriginQuery) -> list[OriginRecord]:
        self.queries.append(query)
        if self.fail is not None:
            raise self.fail
        records = list(self.records)
        if query.after is not None:
            records = [r for r in records if r.date > query.after]
        if query.record_id is not None:
            records = [r for r in records if str(r.id) == query.record_id]
        records.sort(
            key=lambda r: (r.date, str(r.id)),
            reverse=query.order == SortOrder.DESC,
        )
        if query.limit is not None:
            records = records[: query.limit]
        return records

    def subscribe(self, on_change: Callable[[], None]) -> FakeSubscription:
        self.subscribers.append(on_change)
        return FakeSubscription(self, on_change)

    def notify(self) -> None:
        for callback in list(self.subscribers):
            callback()


class FakeTimer:
    def __init__(self, delay: float, function: Callable[[], None]) -> None:
        self.delay = delay
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.function()


class FakeTimerFactory:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, function)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


@pytest.fixture
def clock() -> FakeClock:
    """Virtual clock."""
    return FakeClock()


@pytest.fixture
def ledger(tmp_path: Path) -> Generator[LedgerStore, None, None]:
    """Create a LedgerStore instance."""
    store = LedgerStore(tmp_path / "ledger.db")
    yield store
    store.close()


@pytest.fixture
def settings(ledger: LedgerStore) -> SyncSettings:
    """Sync settings, enabled in ALL mode with a destination."""
    sync_settings = SyncSettings(ledger)
    sync_settings.enable(SyncMode.ALL, BASE_TIME_MS)
    sync_settings.destination_id = DESTINATION
    return sync_settings


@pytest.fixture
def origin() -> FakeOriginProvider:
    """Empty in-memory origin store."""
    return FakeOriginProvider()


@pytest.fixture
def source(origin: FakeOriginProvider) -> MessageSource:
    """Message source over the fake origin."""
    return MessageSource(origin)


@pytest.fixture
def channel() -> FakeChannel:
    """Channel that accepts everything."""
    return FakeChannel()


@pytest.fixture
def policy() -> SyncPolicy:
    """Default delivery policy."""
    return SyncPolicy()


@pytest.fixture
def orchestrator(
    ledger: LedgerStore,
    settings: SyncSettings,
    source: MessageSource,
    channel: FakeChannel,
    policy: SyncPolicy,
    clock: FakeClock,
) -> SyncOrchestrator:
    """Orchestrator wired to fakes and virtual time."""
    return SyncOrchestrator(ledger, settings, source, channel, policy=policy, clock=clock)


@pytest.fixture
def timers() -> FakeTimerFactory:
    """Settle timer factory."""
    return FakeTimerFactory()
