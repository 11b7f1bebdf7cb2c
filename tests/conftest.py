from __future__ import annotations

from datetime import UTC, datetime

import pytest

from fakes import FakeRemote, FakeTable, RecordingNotificationChannel
from fightrise.lifecycle import MatchLifecycle
from fightrise.storage import TournamentStorage

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def storage(table: FakeTable) -> TournamentStorage:
    return TournamentStorage(table)


@pytest.fixture
def notifier() -> RecordingNotificationChannel:
    return RecordingNotificationChannel()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lifecycle(storage, remote, notifier, clock) -> MatchLifecycle:
    return MatchLifecycle(storage, remote, notifier, clock=clock)
