"""
Tests for the keyed stores.
"""
import threading

import pytest

from app.cache.coalescer import RequestCoalescer
from app.cache.core import CacheSource
from app.cache.manager import ResilientCache

from app.cache.store import MemoryStore, SQLStore, build_store


@pytest.fixture(params=["memory", "sql"])
def any_store(request, clock, tmp_path):
    if request.param == "memory":
        return MemoryStore(clock=clock)
    return SQLStore(f"sqlite:///{tmp_path / 'store.db'}", clock=clock)


def test_put_and_get(any_store):
    any_store.put("prices", {"btc": [1, 2, 3]}, 60)

    assert any_store.get("prices") == {"btc": [1, 2, 3]}


def test_missing_key_returns_none(any_store):
    assert any_store.get("nope") is None


def test_entry_expires(any_store, clock):
    any_store.put("prices", [1], 60)
    clock.advance(seconds=59)
    assert any_store.get("prices") == [1]

    clock.advance(seconds=1)
    assert any_store.get("prices") is None


def test_no_ttl_never_expires(any_store, clock):
    any_store.put("history", [1], None)
    clock.advance(days=3650)

    assert any_store.get("history") == [1]


def test_put_overwrites_value_and_ttl(any_store, clock):
    any_store.put("prices", [1], 10)
    any_store.put("prices", [2], 100)
    clock.advance(seconds=50)

    assert any_store.get("prices") == [2]


def test_delete(any_store):
    any_store.put("prices", [1], 60)
    any_store.delete("prices")
    any_store.delete("never-existed")

    assert any_store.get("prices") is None


def test_sql_purge_expired(tmp_path, clock):
    store = SQLStore(f"sqlite:///{tmp_path / 'store.db'}", clock=clock)
    store.put("short", [1], 10)
    store.put("long", [2], 1000)
    store.put("forever", [3], None)
    clock.advance(seconds=20)

    assert store.purge_expired() == 1
    assert store.get("long") == [2]
    assert store.get("forever") == [3]


def test_sql_store_shared_between_instances(tmp_path, clock):
    url = f"sqlite:///{tmp_path / 'store.db'}"
    SQLStore(url, clock=clock).put("prices", [1], 60)

    assert SQLStore(url, clock=clock).get("prices") == [1]


def test_build_store(tmp_path):
    assert isinstance(build_store("memory"), MemoryStore)
    assert isinstance(build_store("sql", f"sqlite:///{tmp_path / 'x.db'}"), SQLStore)

    with pytest.raises(ValueError):
        build_store("redis")
    with pytest.raises(ValueError):
        build_store("sql")


def _run_together(count, target):
    """Start count threads on target(index) behind a barrier; return raised errors."""
    barrier = threading.Barrier(count)
    errors = []

    def worker(index):
        barrier.wait()
        try:
            target(index)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return errors


def test_sql_concurrent_first_puts_last_write_wins(tmp_path, clock):
    url = f"sqlite:///{tmp_path / 'store.db'}"
    stores = [SQLStore(url, clock=clock) for _ in range(4)]

    for round_number in range(25):
        key = f"prices:{round_number}"
        errors = _run_together(4, lambda i: stores[i].put(key, [i], 60))

        assert errors == []
        assert stores[0].get(key) in ([0], [1], [2], [3])


def test_sql_concurrent_misses_through_remember(tmp_path, clock):
    store = SQLStore(f"sqlite:///{tmp_path / 'store.db'}", clock=clock)
    cache = ResilientCache(store, clock=clock, coalescer=RequestCoalescer())

    for round_number in range(10):
        key = f"market:{round_number}"
        results = []
        errors = _run_together(
            4, lambda i: results.append(cache.remember(key, 60, lambda: [{"id": "bitcoin"}]))
        )

        assert errors == []
        assert len(results) == 4
        assert all(r.data == [{"id": "bitcoin"}] for r in results)
        assert {r.source for r in results} <= {CacheSource.PRIMARY, CacheSource.CACHE}
