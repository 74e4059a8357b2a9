"""
Outcome statistics for the fetch-and-cache layer.

One aggregate lives in the keyed store under a fixed key with a short TTL,
so the counting window resets itself once traffic stops for an hour.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .core import Clock, utc_now
from .errors import FailureKind, classify_failure
from .store import KeyedStore

logger = logging.getLogger("cache.stats")

STATS_KEY = "system_stats"
STATS_TTL_SECONDS = 3600


def empty_stats() -> Dict[str, Any]:
    """Stored shape of the aggregate before anything is recorded."""
    return {
        "totalRequests": 0,
        "cacheHits": 0,
        "apiFailures": 0,
        "rateLimits": 0,
        "lastApiSuccess": None,
        "lastCacheHit": None,
    }


@dataclass
class OutcomeStats:
    """Snapshot of the aggregate counters."""
    total_requests: int = 0
    cache_hits: int = 0
    api_failures: int = 0
    rate_limits: int = 0
    last_api_success: Optional[str] = None
    last_cache_hit: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "OutcomeStats":
        raw = {**empty_stats(), **(raw or {})}
        return cls(
            total_requests=raw["totalRequests"],
            cache_hits=raw["cacheHits"],
            api_failures=raw["apiFailures"],
            rate_limits=raw["rateLimits"],
            last_api_success=raw["lastApiSuccess"],
            last_cache_hit=raw["lastCacheHit"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "totalRequests": self.total_requests,
            "cacheHits": self.cache_hits,
            "apiFailures": self.api_failures,
            "rateLimits": self.rate_limits,
            "lastApiSuccess": self.last_api_success,
            "lastCacheHit": self.last_cache_hit,
        }


class StatsRecorder:
    """
    Records requests, cache hits and upstream outcomes.

    Each recorder is bound to the store it is given, so tests can use an
    isolated store instead of sharing process-wide counters.
    """

    def __init__(
        self,
        store: KeyedStore,
        clock: Clock = utc_now,
        key: str = STATS_KEY,
        ttl_seconds: int = STATS_TTL_SECONDS,
    ):
        self._store = store
        self._clock = clock
        self._key = key
        self._ttl = ttl_seconds
        self._lock = threading.Lock()

    def _update(self, counter: Optional[str] = None, **values: Any) -> None:
        # Read-modify-write; the TTL restarts on every write
        with self._lock:
            stats = {**empty_stats(), **(self._store.get(self._key) or {})}
            if counter:
                stats[counter] += 1
            stats.update(values)
            self._store.put(self._key, stats, self._ttl)

    def _timestamp(self) -> str:
        return self._clock().isoformat()

    def record_request(self) -> None:
        self._update("totalRequests")

    def record_cache_hit(self) -> None:
        self._update("cacheHits", lastCacheHit=self._timestamp())

    def record_api_success(self) -> None:
        self._update(lastApiSuccess=self._timestamp())

    def record_api_failure(self, error: Union[BaseException, str]) -> FailureKind:
        """
        Count a failed upstream call.

        Rate limits go to their own counter. Returns the kind the failure
        was filed under.
        """
        kind = classify_failure(error)
        if kind is FailureKind.RATE_LIMITED:
            self._update("rateLimits")
        else:
            self._update("apiFailures")
        return kind

    def snapshot(self) -> OutcomeStats:
        with self._lock:
            return OutcomeStats.from_dict(self._store.get(self._key))

    def reset(self) -> None:
        with self._lock:
            self._store.delete(self._key)
        logger.info("Outcome statistics reset")
