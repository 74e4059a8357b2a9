"""
Request coalescing to prevent duplicate upstream API calls.

When several callers miss the cache for the same key at the same time, the
first one calls upstream and the rest wait on its Future and share the
outcome, including any exception.
"""
import threading
import logging
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Single-flight gate keyed by cache key.

    Usage:
        coalescer = RequestCoalescer()
        data = coalescer.get_or_fetch("prices:btc:usd:primary", fetch_prices)
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a waiter blocks on the leader's call
        """
        self._calls: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._shared_calls = 0

    def get_or_fetch(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Run fetch_fn, or wait for the call already running for this key.

        Raises:
            TimeoutError: If the leader's call outlives the timeout
            Exception: Whatever fetch_fn raised, for leader and waiters alike
        """
        with self._lock:
            future = self._calls.get(key)
            is_leader = future is None
            if is_leader:
                future = Future()
                self._calls[key] = future
            else:
                self._shared_calls += 1

        if not is_leader:
            logger.debug(f"Joining in-flight call for {key}")
            try:
                return future.result(timeout=self._timeout)
            except FutureTimeoutError:
                logger.error(f"Timeout waiting for coalesced request: {key}")
                raise TimeoutError(f"Request for {key} timed out after {self._timeout}s")

        try:
            result = fetch_fn()
        except Exception as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight calls."""
        with self._lock:
            return len(self._calls)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._calls),
                "active_keys": sorted(self._calls),
                "shared_calls": self._shared_calls,
            }
