"""
System status: store health and upstream health from outcome statistics.
"""
import logging
import uuid
from typing import Any, Dict

from app.cache.manager import ResilientCache
from app.cache.stats import OutcomeStats

logger = logging.getLogger("status")

HEALTHY_FAILURE_RATE = 10.0   # percent
DEGRADED_FAILURE_RATE = 50.0  # percent


def check_store(cache: ResilientCache) -> str:
    """Round-trip a probe value through the store."""
    probe_key = f"cache_test_{uuid.uuid4().hex}"
    try:
        cache.store.put(probe_key, True, 1)
        value = cache.store.get(probe_key)
        cache.store.delete(probe_key)
    except Exception as e:
        logger.error(f"Cache health check failed: {e}")
        return "unhealthy"
    return "healthy" if value else "unhealthy"


def api_status(stats: OutcomeStats) -> str:
    """
    Classify upstream health from the share of upstream calls that failed.

    Requests answered from cache never reach upstream and are left out.
    """
    upstream_requests = stats.total_requests - stats.cache_hits
    if upstream_requests > 0:
        failure_rate = (stats.api_failures + stats.rate_limits) / upstream_requests * 100
        if failure_rate <= HEALTHY_FAILURE_RATE:
            return "healthy"
        if failure_rate <= DEGRADED_FAILURE_RATE:
            return "degraded"
        return "unhealthy"
    if stats.total_requests > 0:
        # Everything is being served from cache
        return "healthy"
    return "unknown"


def build_system_status(cache: ResilientCache) -> Dict[str, Any]:
    stats = cache.stats.snapshot()
    details = stats.to_dict()
    details["lastUpdated"] = cache.clock().isoformat()
    if cache.coalescer is not None:
        details["coalescer"] = cache.coalescer.get_stats()
    return {
        "cache": check_store(cache),
        "api": api_status(stats),
        "details": details,
    }
