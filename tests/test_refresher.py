"""
Tests for the background cache refresher.
"""
import pytest

from app.cache.core import CacheSource
from app.cache.errors import RateLimitedError
from app.cache.refresher import CacheRefresher

from conftest import FetchSpy


def test_refresh_all_writes_fresh_entries(cache):
    refresher = CacheRefresher(cache, max_workers=2)
    refresher.register("market:top", FetchSpy([{"id": "bitcoin"}]))
    refresher.register("sentiment:fng", FetchSpy({"value": 72}))

    report = refresher.refresh_all()

    assert report.total == 2
    assert report.updated == 2
    assert report.failed == 0
    assert cache.get_stale("market:top") == [{"id": "bitcoin"}]
    assert cache.is_fresh("sentiment:fng") is True


def test_failed_job_keeps_existing_entry(cache, stats, clock):
    cache.store_with_metadata("market:top", ["old"])
    clock.advance(hours=2)

    refresher = CacheRefresher(cache)
    refresher.register("market:top", FetchSpy(error=RateLimitedError("429")))
    refresher.register("news:latest", FetchSpy([]))

    report = refresher.refresh_all()

    assert report.updated == 0
    assert report.failed == 2
    assert cache.get_stale("market:top") == ["old"]
    assert stats.snapshot().rate_limits == 1
    assert report.to_dict()["keys"]["news:latest"]["error"] == "empty response"


def test_refreshed_entry_served_without_fetch(cache):
    refresher = CacheRefresher(cache)
    refresher.register("market:top", FetchSpy(["warm"]))
    refresher.refresh("market:top")
    primary = FetchSpy(["cold"])

    result = cache.remember_without_freshness("market:top", primary)

    assert primary.calls == 0
    assert result.source is CacheSource.CACHE
    assert result.data == ["warm"]


def test_refresh_unknown_key(cache):
    with pytest.raises(KeyError):
        CacheRefresher(cache).refresh("missing")


def test_register_and_unregister(cache):
    refresher = CacheRefresher(cache)
    refresher.register("b", FetchSpy([1]))
    refresher.register("a", FetchSpy([1]))

    assert refresher.keys == ["a", "b"]
    assert refresher.unregister("a") is True
    assert refresher.unregister("a") is False
    assert refresher.keys == ["b"]


def test_refresh_all_with_no_jobs(cache):
    report = CacheRefresher(cache).refresh_all()

    assert report.total == 0
    assert report.results == []


def test_worker_count_defaults_to_setting(cache, monkeypatch):
    from config.settings import settings

    monkeypatch.setattr(settings, "refresh_workers", 7)

    assert CacheRefresher(cache)._max_workers == 7
    assert CacheRefresher(cache, max_workers=2)._max_workers == 2
