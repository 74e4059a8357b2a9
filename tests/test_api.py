"""
Tests for the operational HTTP endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from app.cache import manager
from app.cache.manager import ResilientCache
from app.main import app
from app.status import api_status
from app.cache.stats import OutcomeStats

from conftest import FetchSpy

client = TestClient(app)


@pytest.fixture
def app_cache(monkeypatch, store, stats, clock):
    cache = ResilientCache(store, stats=stats, clock=clock)
    monkeypatch.setattr(manager, "_cache", cache)
    return cache


def test_health_endpoint_returns_ok():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_version_endpoint():
    data = client.get("/version").json()

    assert data["name"] == "Market Data Cache"
    assert data["version"].startswith("v")


def test_cache_stats_endpoint(app_cache):
    app_cache.remember("prices:usd", 60, FetchSpy([1]))
    app_cache.remember("prices:usd", 60, FetchSpy([1]))

    data = client.get("/cache/stats").json()

    assert data["totalRequests"] == 2
    assert data["cacheHits"] == 1


def test_system_status_with_no_traffic(app_cache):
    data = client.get("/api/system-status").json()

    assert data["cache"] == "healthy"
    assert data["api"] == "unknown"
    assert data["details"]["totalRequests"] == 0


def test_system_status_degraded(app_cache):
    app_cache.remember("a", 60, FetchSpy([1]))
    app_cache.remember("b", 60, FetchSpy(error=RuntimeError("down")))
    app_cache.remember("c", 60, FetchSpy([1]))

    data = client.get("/api/system-status").json()

    assert data["api"] == "degraded"
    assert data["details"]["apiFailures"] == 1


def test_forget_endpoint(app_cache):
    app_cache.store_with_metadata("coingecko:markets:vs_currency=usd", [1])

    response = client.delete("/cache/coingecko:markets:vs_currency=usd")

    assert response.status_code == 200
    assert response.json() == {"key": "coingecko:markets:vs_currency=usd", "forgotten": True}
    assert app_cache.get_stale("coingecko:markets:vs_currency=usd") is None


def test_forget_unknown_key_returns_404(app_cache):
    assert client.delete("/cache/missing").status_code == 404


@pytest.mark.parametrize(
    "total, hits, failures, rate_limits, expected",
    [
        (0, 0, 0, 0, "unknown"),
        (5, 5, 0, 0, "healthy"),
        (10, 0, 1, 0, "healthy"),
        (10, 0, 2, 2, "degraded"),
        (10, 0, 3, 3, "unhealthy"),
    ],
)
def test_api_status_thresholds(total, hits, failures, rate_limits, expected):
    stats = OutcomeStats(
        total_requests=total,
        cache_hits=hits,
        api_failures=failures,
        rate_limits=rate_limits,
    )

    assert api_status(stats) == expected


def test_forget_endpoint_clears_historical_series(app_cache, store):
    app_cache.remember_historical("btc:daily", lambda start, end: [{"date": "2024-06-05", "close": 1}])

    response = client.delete("/cache/btc:daily")

    assert response.status_code == 200
    assert store.get("btc:daily") is None
    assert store.get("btc:daily_historical_meta") is None
