"""
Shared fixtures: a controllable clock and caches built on isolated stores.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.cache.manager import ResilientCache
from app.cache.stats import StatsRecorder
from app.cache.store import MemoryStore


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FetchSpy:
    """Zero-argument fetch callable that counts calls."""

    def __init__(self, result=None, error: Exception = None):
        self.result = result
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 5, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def stats(store, clock):
    return StatsRecorder(store, clock=clock)


@pytest.fixture
def cache(store, stats, clock):
    return ResilientCache(store, stats=stats, clock=clock, fresh_duration=60)
