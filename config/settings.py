"""Configuration management using pydantic-settings."""
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Freshness and retention (seconds)
    fresh_cache_duration: int = 60          # default freshness window
    stale_cache_duration: int = 2592000     # 30 days retention ceiling
    historical_cache_duration: int = 2592000

    # Outcome statistics
    stats_key: str = "system_stats"
    stats_ttl_seconds: int = 3600           # self-resets hourly

    # Keyed store backend
    cache_backend: Literal["memory", "sql"] = "memory"
    cache_database_url: str = "sqlite:///./market_cache.db"

    # Request coalescing for concurrent misses on the same key
    cache_coalesce_requests: bool = True
    coalesce_timeout: float = 30.0

    # Background refresher
    refresh_workers: int = 4

    # Upstream HTTP calls
    upstream_timeout: float = 30.0
    upstream_max_attempts: int = 3

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
