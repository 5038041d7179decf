"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from behavioral_emotion.affect.classifier import EmotionClassifier
from behavioral_emotion.affect.features import FEATURE_COUNT, FEATURE_NAMES
from behavioral_emotion.collectors.events import EventCollector
from behavioral_emotion.storage.database import create_session_factory, init_db
from behavioral_emotion.storage.repository import (
    ModelStateRepository,
    TrainingStatsRepository,
    TrainingStore,
)


class FakeClock:
    """Manually advanced monotonic clock in milliseconds."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


class SteppingWallClock:
    """Naive UTC datetimes that move one second per call unless pinned."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 3, 12, 10, 0, 0)
        self.pinned = False

    def __call__(self) -> datetime:
        value = self.current
        if not self.pinned:
            self.current = self.current + timedelta(seconds=1)
        return value

    def set(self, value: datetime) -> None:
        self.current = value
        self.pinned = True


class MemoryModelRepository:
    """In-memory stand-in for :class:`ModelStateRepository`."""

    def __init__(self, blob: dict | None = None) -> None:
        self.blob = blob
        self.saves = 0
        self.deletes = 0

    async def get(self):
        return self.blob

    async def save(self, blob):
        self.saves += 1
        self.blob = blob

    async def delete(self):
        self.deletes += 1
        existed = self.blob is not None
        self.blob = None
        return existed


def feature_vector(**named: float) -> list[float]:
    """A 40-value vector, 0 everywhere except the named features."""
    features = [0.0] * FEATURE_COUNT
    index = {name: i for i, name in enumerate(FEATURE_NAMES)}
    for name, value in named.items():
        features[index[name]] = value
    return features


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> SteppingWallClock:
    return SteppingWallClock()


@pytest.fixture
def collector(clock: FakeClock) -> EventCollector:
    # Long tick so the background loop never fires during a test.
    return EventCollector(window_ms=5000, tick_seconds=3600, clock=clock)


@pytest.fixture
def make_collector():
    """Factory for independent ``(collector, clock)`` pairs."""

    def _make(window_ms: int = 5000) -> tuple[EventCollector, FakeClock]:
        clock = FakeClock()
        return EventCollector(window_ms=window_ms, tick_seconds=3600, clock=clock), clock

    return _make


@pytest.fixture
def make_features():
    return feature_vector


@pytest.fixture
async def session_factory(tmp_path):
    engine, factory = create_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory, wall_clock) -> TrainingStore:
    return TrainingStore(session_factory, max_samples=1000, retention_days=30, clock=wall_clock)


@pytest.fixture
def model_repo(session_factory) -> ModelStateRepository:
    return ModelStateRepository(session_factory)


@pytest.fixture
def stats_repo(session_factory) -> TrainingStatsRepository:
    return TrainingStatsRepository(session_factory)


@pytest.fixture
async def classifier() -> EmotionClassifier:
    clf = EmotionClassifier(seed=7)
    await clf.initialize()
    return clf
