"""
Resilient fetch-and-cache orchestration.

Wraps provider fetch callables with freshness-aware caching, a fallback
provider, and degradation to stale data, so callers always get an envelope
back instead of an exception.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from config.settings import settings

from .coalescer import RequestCoalescer
from .core import (
    CacheEntry,
    CacheSource,
    Clock,
    Envelope,
    is_empty,
    is_fresh,
    make_envelope,
    parse_timestamp,
    utc_now,
)
from .errors import FailureKind, classify_failure
from .historical import HISTORICAL_META_SUFFIX, DateRangeFetch, HistoricalCache
from .stats import StatsRecorder
from .store import KeyedStore, build_store

logger = logging.getLogger("cache.manager")

META_SUFFIX = "_meta"

FetchFn = Callable[[], Any]


class ResilientCache:
    """
    Cache policy layered over a keyed store:
    - Fresh hits are served without calling upstream
    - Misses call the primary provider, then the fallback
    - If both fail, whatever stale entry exists is served
    - Optional request coalescing for concurrent misses
    """

    def __init__(
        self,
        store: KeyedStore,
        stats: Optional[StatsRecorder] = None,
        clock: Clock = utc_now,
        coalescer: Optional[RequestCoalescer] = None,
        fresh_duration: int = 60,
        stale_duration: int = 2592000,
        historical_duration: int = 2592000,
    ):
        """
        Args:
            store: Shared keyed store
            stats: Outcome recorder; defaults to one bound to the same store
            clock: Returns the current aware UTC datetime
            coalescer: Single-flight gate for upstream calls, None to disable
            fresh_duration: Default freshness window in seconds
            stale_duration: Retention ceiling for every stored entry
            historical_duration: Default retention for historical series
        """
        self.store = store
        self.stats = stats or StatsRecorder(store, clock=clock)
        self.clock = clock
        self.coalescer = coalescer
        self.fresh_duration = fresh_duration
        self.stale_duration = stale_duration
        self.historical = HistoricalCache(
            store,
            clock=clock,
            fresh_duration=fresh_duration,
            default_ttl=historical_duration,
        )

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _read_entry(self, key: str) -> Optional[CacheEntry]:
        data = self.store.get(key)
        meta = self.store.get(key + META_SUFFIX)
        if data is None or not meta or "timestamp" not in meta:
            return None
        return CacheEntry(key=key, data=data, stored_at=parse_timestamp(meta["timestamp"]))

    def store_with_metadata(self, key: str, data: Any) -> None:
        """Write data and its timestamp, kept for the retention ceiling."""
        self.store.put(key, data, self.stale_duration)
        self.store.put(
            key + META_SUFFIX,
            {"timestamp": self.clock().isoformat(), "source": "api"},
            self.stale_duration,
        )

    def forget(self, key: str) -> None:
        """Drop a cached entry, its metadata and any historical series state."""
        self.store.delete(key)
        self.store.delete(key + META_SUFFIX)
        self.store.delete(key + HISTORICAL_META_SUFFIX)
        logger.info(f"Forgot cache entry: {key}")

    def is_fresh(self, key: str, max_age: Optional[int] = None) -> bool:
        """Probe whether a fresh entry exists, without fetching."""
        window = self.fresh_duration if max_age is None else max_age
        entry = self._read_entry(key)
        return entry is not None and is_fresh(entry.age_seconds(self.clock()), window)

    def get_stale(self, key: str) -> Optional[Any]:
        """Cached data regardless of age, or None."""
        entry = self._read_entry(key)
        if entry is None:
            return None
        logger.info(f"Returning stale cache for {key} [age={entry.age_seconds(self.clock())}s]")
        return entry.data

    def format_response(
        self,
        data: Any,
        timestamp: datetime,
        age: int,
        source: CacheSource,
        window: Optional[int] = None,
    ) -> Envelope:
        """Build a response envelope for data written outside remember()."""
        return make_envelope(
            data, timestamp, age, source, self.fresh_duration if window is None else window
        )

    # ------------------------------------------------------------------
    # Fetch orchestration
    # ------------------------------------------------------------------

    def _call(self, key: str, label: str, fetch_fn: FetchFn) -> Any:
        if self.coalescer is None:
            return fetch_fn()
        return self.coalescer.get_or_fetch(f"{key}:{label}", fetch_fn)

    def _try_primary(self, key: str, primary: FetchFn) -> Optional[Any]:
        try:
            data = self._call(key, "primary", primary)
        except Exception as e:
            kind = self.stats.record_api_failure(e)
            if kind is FailureKind.FATAL:
                logger.error(f"Primary API failed for {key}: {e}")
            else:
                logger.warning(f"Primary API failed for {key} ({kind.value}): {e}")
            return None

        if is_empty(data):
            logger.info(f"Primary API returned no data for {key}")
            return None
        return data

    def _try_fallback(self, key: str, fallback: FetchFn) -> Optional[Any]:
        try:
            data = self._call(key, "fallback", fallback)
        except Exception as e:
            level = logging.ERROR if classify_failure(e) is FailureKind.FATAL else logging.WARNING
            logger.log(level, f"Fallback API failed for {key}: {e}")
            return None

        if is_empty(data):
            logger.info(f"Fallback API returned no data for {key}")
            return None
        return data

    def remember(
        self,
        key: str,
        fresh_seconds: Optional[int],
        primary: FetchFn,
        fallback: Optional[FetchFn] = None,
    ) -> Envelope:
        """
        Serve key from cache while fresh, otherwise refetch with degradation.

        Args:
            key: Cache key unique to the request's full parameter set
            fresh_seconds: Freshness window; None uses the default
            primary: Zero-argument fetch for the primary provider
            fallback: Optional zero-argument fetch tried when primary fails

        Returns:
            Envelope tagged cache, primary, fallback, stale_cache or none.
            Provider failures never propagate.

        Raises:
            ValueError: If the freshness window is zero or negative
        """
        window = self.fresh_duration if fresh_seconds is None else fresh_seconds
        if window <= 0:
            raise ValueError(f"Freshness window must be positive, got {window}")

        self.stats.record_request()
        now = self.clock()
        cached = self._read_entry(key)

        if cached is not None:
            age = cached.age_seconds(now)
            if is_fresh(age, window):
                logger.debug(f"CACHE HIT (fresh): {key} [age={age}s]")
                self.stats.record_cache_hit()
                return make_envelope(cached.data, cached.stored_at, age, CacheSource.CACHE, window)

        logger.info(f"CACHE MISS: {key}")
        data = self._try_primary(key, primary)
        if data is not None:
            self.store_with_metadata(key, data)
            self.stats.record_api_success()
            return make_envelope(data, self.clock(), 0, CacheSource.PRIMARY, window)

        if fallback is not None:
            data = self._try_fallback(key, fallback)
            if data is not None:
                self.store_with_metadata(key, data)
                return make_envelope(data, self.clock(), 0, CacheSource.FALLBACK, window)

        if cached is not None:
            age = cached.age_seconds(self.clock())
            logger.info(f"Returning stale cache for {key} [age={age}s]")
            return make_envelope(cached.data, cached.stored_at, age, CacheSource.STALE_CACHE, window)

        logger.warning(f"No data available for {key}")
        return make_envelope([], self.clock(), 0, CacheSource.NONE, window)

    def remember_without_freshness(self, key: str, primary: FetchFn) -> Envelope:
        """
        Serve any cached entry regardless of age; fetch only when none exists.

        For providers whose cache is kept warm by a background refresher.
        """
        self.stats.record_request()
        cached = self._read_entry(key)

        if cached is not None:
            self.stats.record_cache_hit()
            age = cached.age_seconds(self.clock())
            return make_envelope(
                cached.data, cached.stored_at, age, CacheSource.CACHE, self.fresh_duration
            )

        data = self._try_primary(key, primary)
        if data is not None:
            self.store_with_metadata(key, data)
            self.stats.record_api_success()
            return make_envelope(data, self.clock(), 0, CacheSource.PRIMARY, self.fresh_duration)

        return make_envelope([], self.clock(), 0, CacheSource.NONE, self.fresh_duration)

    def remember_historical(
        self,
        key: str,
        fetch_range: DateRangeFetch,
        date_field: str = "date",
        cache_ttl: Optional[int] = None,
    ) -> Envelope:
        """Incremental gap-filling fetch for a daily series. See HistoricalCache."""
        return self.historical.remember(key, fetch_range, date_field, cache_ttl)

    def remember_historical_forever(
        self,
        key: str,
        fetch_range: DateRangeFetch,
        date_field: str = "date",
    ) -> Envelope:
        """Like remember_historical, but the series never expires."""
        return self.historical.remember_forever(key, fetch_range, date_field)


# Global cache instance
_cache: Optional[ResilientCache] = None


def build_cache(store: Optional[KeyedStore] = None, clock: Clock = utc_now) -> ResilientCache:
    """Create a ResilientCache configured from settings."""
    store = store or build_store(settings.cache_backend, settings.cache_database_url, clock=clock)
    coalescer = (
        RequestCoalescer(timeout=settings.coalesce_timeout)
        if settings.cache_coalesce_requests
        else None
    )
    stats = StatsRecorder(
        store,
        clock=clock,
        key=settings.stats_key,
        ttl_seconds=settings.stats_ttl_seconds,
    )
    return ResilientCache(
        store,
        stats=stats,
        clock=clock,
        coalescer=coalescer,
        fresh_duration=settings.fresh_cache_duration,
        stale_duration=settings.stale_cache_duration,
        historical_duration=settings.historical_cache_duration,
    )


def get_cache() -> ResilientCache:
    """Get or create the global cache."""
    global _cache
    if _cache is None:
        _cache = build_cache()
    return _cache
