from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from status_service.events.notifier import InMemoryEventNotifier
from status_service.metrics import MetricsRegistry
from status_service.statuses.repository import InMemoryStatusRepository
from status_service.statuses.service import StatusUpdateEngine

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def repository() -> InMemoryStatusRepository:
    return InMemoryStatusRepository()


@pytest.fixture
def notifier() -> InMemoryEventNotifier:
    return InMemoryEventNotifier()


@pytest.fixture
def engine(repository, notifier, registry, clock) -> StatusUpdateEngine:
    return StatusUpdateEngine(repository, notifier, metrics=registry, clock=clock)
