"""
Market Data Cache - FastAPI application

Operational endpoints for the resilient fetch-and-cache layer: health,
outcome statistics, system status and cache busting.
"""
import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from app.cache import get_cache
from app.status import build_system_status
from config.settings import settings

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Market Data Cache"

app = FastAPI(
    title=APP_NAME,
    description="Resilient fetch-and-cache layer for market data providers",
    version=APP_VERSION,
)


class ForgetResponse(BaseModel):
    key: str
    forgotten: bool


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "backend": settings.cache_backend}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats():
    """Outcome statistics for the current hour window."""
    return get_cache().stats.snapshot().to_dict()


@app.get("/api/system-status")
def system_status():
    """Store health, upstream health and the counters behind them."""
    return build_system_status(get_cache())


@app.delete("/cache/{key:path}", response_model=ForgetResponse)
def forget_key(key: str):
    """Drop a cache entry so the next request refetches it."""
    cache = get_cache()
    if cache.store.get(key) is None:
        raise HTTPException(status_code=404, detail=f"No cache entry for {key}")
    cache.forget(key)
    return ForgetResponse(key=key, forgotten=True)
