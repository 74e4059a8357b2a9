"""
Resilient fetch-and-cache layer: freshness-aware caching, fallback
providers, stale degradation and incremental historical merges.
"""
from .core import CacheEntry, CacheMeta, CacheSource, Envelope, is_fresh
from .errors import (
    FailureKind,
    ProviderError,
    RateLimitedError,
    TransientProviderError,
    FatalProviderError,
    classify_failure,
)
from .store import KeyedStore, MemoryStore, SQLStore, build_store
from .stats import OutcomeStats, StatsRecorder
from .ttl_policies import DataCategory, FRESH_WINDOWS, get_fresh_window
from .coalescer import RequestCoalescer
from .historical import HistoricalCache, merge_points
from .manager import ResilientCache, build_cache, get_cache
from .refresher import CacheRefresher, RefreshReport

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    "Envelope",
    "is_fresh",
    # Errors
    "FailureKind",
    "ProviderError",
    "RateLimitedError",
    "TransientProviderError",
    "FatalProviderError",
    "classify_failure",
    # Stores
    "KeyedStore",
    "MemoryStore",
    "SQLStore",
    "build_store",
    # Statistics
    "OutcomeStats",
    "StatsRecorder",
    # Freshness windows
    "DataCategory",
    "FRESH_WINDOWS",
    "get_fresh_window",
    # Coalescing
    "RequestCoalescer",
    # Orchestration
    "HistoricalCache",
    "merge_points",
    "ResilientCache",
    "build_cache",
    "get_cache",
    "CacheRefresher",
    "RefreshReport",
]
