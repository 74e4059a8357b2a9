"""
Background refresh of cache entries served via remember_without_freshness.

Expensive or rate-limited providers are read with
remember_without_freshness; this refresher keeps their entries current by
re-fetching registered keys and writing them with store_with_metadata.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from config.settings import settings

from .core import is_empty

if TYPE_CHECKING:
    from .manager import ResilientCache

logger = logging.getLogger("cache.refresher")


@dataclass
class RefreshResult:
    """Outcome of refreshing one key."""
    key: str
    success: bool
    error: Optional[str] = None
    duration: float = 0.0


@dataclass
class RefreshReport:
    """Outcome of a refresh_all run."""
    total: int = 0
    updated: int = 0
    failed: int = 0
    results: List[RefreshResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "updated": self.updated,
            "failed": self.failed,
            "keys": {
                r.key: {"success": r.success, "error": r.error, "duration": round(r.duration, 2)}
                for r in self.results
            },
        }


class CacheRefresher:
    """
    Re-fetches registered keys on a thread pool.

    A job that raises or returns no data leaves the existing entry alone.
    """

    def __init__(self, cache: "ResilientCache", max_workers: Optional[int] = None):
        self._cache = cache
        self._jobs: Dict[str, Callable[[], Any]] = {}
        self._jobs_lock = threading.Lock()
        self._max_workers = settings.refresh_workers if max_workers is None else max_workers

    def register(self, key: str, fetch_fn: Callable[[], Any]) -> None:
        with self._jobs_lock:
            self._jobs[key] = fetch_fn
        logger.debug(f"Registered refresh job: {key}")

    def unregister(self, key: str) -> bool:
        with self._jobs_lock:
            return self._jobs.pop(key, None) is not None

    @property
    def keys(self) -> List[str]:
        with self._jobs_lock:
            return sorted(self._jobs)

    def refresh(self, key: str) -> RefreshResult:
        """Refresh a single registered key."""
        with self._jobs_lock:
            fetch_fn = self._jobs.get(key)
        if fetch_fn is None:
            raise KeyError(f"No refresh job registered for {key}")
        return self._run(key, fetch_fn)

    def _run(self, key: str, fetch_fn: Callable[[], Any]) -> RefreshResult:
        started = time.monotonic()
        try:
            data = fetch_fn()
        except Exception as e:
            self._cache.stats.record_api_failure(e)
            logger.warning(f"Refresh failed for {key}: {e}")
            return RefreshResult(key, False, str(e), time.monotonic() - started)

        if is_empty(data):
            logger.warning(f"Refresh for {key} returned no data, keeping cached entry")
            return RefreshResult(key, False, "empty response", time.monotonic() - started)

        self._cache.store_with_metadata(key, data)
        self._cache.stats.record_api_success()
        duration = time.monotonic() - started
        logger.info(f"Refreshed {key} in {duration:.2f}s")
        return RefreshResult(key, True, None, duration)

    def refresh_all(self) -> RefreshReport:
        """Refresh every registered key and report the outcome."""
        with self._jobs_lock:
            jobs = dict(self._jobs)

        report = RefreshReport(total=len(jobs))
        if not jobs:
            logger.info("No refresh jobs registered")
            return report

        with ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="cache-refresh",
        ) as pool:
            futures = [pool.submit(self._run, key, fn) for key, fn in jobs.items()]
            for future in as_completed(futures):
                result = future.result()
                report.results.append(result)
                if result.success:
                    report.updated += 1
                else:
                    report.failed += 1

        report.results.sort(key=lambda r: r.key)
        logger.info(
            f"Cache refresh complete: {report.updated}/{report.total} updated, "
            f"{report.failed} failed"
        )
        return report
