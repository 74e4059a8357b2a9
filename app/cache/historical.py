"""
Incremental caching for append-only daily time series.

Instead of re-downloading a multi-year history on every miss, only the
range after the last cached date is fetched and merged into what is
already stored, keyed by date.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from .core import (
    CacheSource,
    Clock,
    Envelope,
    is_empty,
    make_envelope,
    parse_timestamp,
    utc_now,
)
from .store import KeyedStore

logger = logging.getLogger("cache.historical")

HISTORICAL_META_SUFFIX = "_historical_meta"
DATE_FORMAT = "%Y-%m-%d"

# Series whose last point is at most this many days old are current
UP_TO_DATE_DAYS = 1

# fetch_range(from_date, to_date); from_date is None for a full history
DateRangeFetch = Callable[[Optional[str], str], List[Dict[str, Any]]]


def days_between(value: Any, now: datetime) -> int:
    """Whole days between a stored date and now, ignoring direction."""
    delta = now - parse_timestamp(value)
    return int(abs(delta.total_seconds()) // 86400)


def merge_points(
    existing: Iterable[Dict[str, Any]],
    new: Iterable[Dict[str, Any]],
    date_field: str = "date",
) -> List[Dict[str, Any]]:
    """
    Merge two series by date.

    New points replace existing ones on the same date. Points without the
    date field are dropped. The result is sorted ascending by date.
    """
    by_date: Dict[Any, Dict[str, Any]] = {}
    for point in existing:
        if isinstance(point, dict) and point.get(date_field) is not None:
            by_date[point[date_field]] = point
    for point in new:
        if isinstance(point, dict) and point.get(date_field) is not None:
            by_date[point[date_field]] = point
    return [by_date[d] for d in sorted(by_date)]


class HistoricalCache:
    """
    Gap-filling cache for daily series.

    Points live under the cache key; first/last date and last update time
    live under a separate metadata key.
    """

    def __init__(
        self,
        store: KeyedStore,
        clock: Clock = utc_now,
        fresh_duration: int = 60,
        default_ttl: Optional[int] = 2592000,
    ):
        self.store = store
        self.clock = clock
        self.fresh_duration = fresh_duration
        self.default_ttl = default_ttl

    def remember(
        self,
        key: str,
        fetch_range: DateRangeFetch,
        date_field: str = "date",
        cache_ttl: Optional[int] = None,
    ) -> Envelope:
        """
        Return the cached series, fetching and merging only the missing days.

        Args:
            key: Cache key for the series
            fetch_range: Called as fetch_range(from_date, to_date) with
                YYYY-MM-DD strings; from_date is None when nothing is cached
            date_field: Field holding each point's date
            cache_ttl: Retention in seconds, defaults to 30 days

        Returns:
            Envelope tagged cache, merged, cache_on_error or none.

        Raises:
            Store errors are not caught.
        """
        ttl = self.default_ttl if cache_ttl is None else cache_ttl
        return self._remember(key, fetch_range, date_field, ttl)

    def remember_forever(
        self,
        key: str,
        fetch_range: DateRangeFetch,
        date_field: str = "date",
    ) -> Envelope:
        """Same as remember, but the series is stored without expiry."""
        return self._remember(key, fetch_range, date_field, None)

    def _remember(
        self,
        key: str,
        fetch_range: DateRangeFetch,
        date_field: str,
        ttl: Optional[int],
    ) -> Envelope:
        meta_key = key + HISTORICAL_META_SUFFIX
        cached = self.store.get(key) or []
        metadata = self.store.get(meta_key) or {}
        last_date = metadata.get("lastDate")

        now = self.clock()
        today = now.strftime(DATE_FORMAT)

        if cached and last_date and days_between(last_date, now) <= UP_TO_DATE_DAYS:
            logger.info(
                f"Historical data for {key} is up to date "
                f"[lastDate={last_date}, points={len(cached)}]"
            )
            return make_envelope(
                cached, self._last_updated(metadata, now), 0, CacheSource.CACHE, self.fresh_duration
            )

        from_date = None
        if cached and last_date:
            from_date = (parse_timestamp(last_date) + timedelta(days=1)).strftime(DATE_FORMAT)
            logger.info(
                f"Fetching historical gap for {key} "
                f"[from={from_date}, to={today}, existing={len(cached)}]"
            )
        else:
            logger.info(f"Fetching full historical data for {key}")

        try:
            new_points = fetch_range(from_date, today)
        except Exception as e:
            logger.warning(f"Failed to fetch historical data for {key}: {e}")
            if cached:
                return self._cached_response(cached, metadata, now, CacheSource.CACHE_ON_ERROR)
            return make_envelope([], now, 0, CacheSource.NONE, self.fresh_duration)

        if not is_empty(new_points):
            merged = merge_points(cached, new_points, date_field)
            if merged:
                new_metadata = {
                    "firstDate": merged[0][date_field],
                    "lastDate": merged[-1][date_field],
                    "lastUpdated": now.isoformat(),
                    "dataPoints": len(merged),
                }
                self.store.put(key, merged, ttl)
                self.store.put(meta_key, new_metadata, ttl)
                logger.info(
                    f"Updated historical cache for {key} "
                    f"[{new_metadata['firstDate']}..{new_metadata['lastDate']}, "
                    f"points={len(merged)}]"
                )
                return make_envelope(merged, now, 0, CacheSource.MERGED, self.fresh_duration)

        if cached:
            return self._cached_response(cached, metadata, now, CacheSource.CACHE)

        return make_envelope([], now, 0, CacheSource.NONE, self.fresh_duration)

    def _last_updated(self, metadata: Dict[str, Any], now: datetime) -> datetime:
        value = metadata.get("lastUpdated")
        return parse_timestamp(value) if value else now

    def _cached_response(
        self,
        cached: List[Dict[str, Any]],
        metadata: Dict[str, Any],
        now: datetime,
        source: CacheSource,
    ) -> Envelope:
        last_updated = self._last_updated(metadata, now)
        age = max(0, int((now - last_updated).total_seconds()))
        return make_envelope(cached, last_updated, age, source, self.fresh_duration)
