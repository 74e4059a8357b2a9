"""
Core cache data structures and the freshness policy.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def is_fresh(age_seconds: float, window_seconds: float) -> bool:
    """An entry is fresh while its age is strictly below the window."""
    return age_seconds < window_seconds


def is_empty(data: Any) -> bool:
    """None and empty containers count as "no data"."""
    if data is None:
        return True
    try:
        return len(data) == 0
    except TypeError:
        return False


class CacheSource(Enum):
    """Provenance of the data in a response envelope."""
    PRIMARY = "primary"                # Fetched from the primary provider
    FALLBACK = "fallback"              # Fetched from the fallback provider
    CACHE = "cache"                    # Served from cache without a fetch
    STALE_CACHE = "stale_cache"        # Providers failed, served old data
    MERGED = "merged"                  # Historical delta merged into cache
    CACHE_ON_ERROR = "cache_on_error"  # Historical fetch failed, served cache
    NONE = "none"                      # Nothing available


@dataclass
class CacheEntry:
    """
    A payload read back from the keyed store together with its write time.
    """
    key: str
    data: Any
    stored_at: datetime

    def age_seconds(self, now: datetime) -> int:
        """Whole seconds since the entry was stored."""
        return max(0, int((now - self.stored_at).total_seconds()))


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, included in API responses.
    """
    last_updated: datetime
    cache_age: int
    source: CacheSource
    is_fresh: bool

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "lastUpdated": self.last_updated.isoformat(),
            "cacheAge": self.cache_age,
            "source": self.source.value,
            "isFresh": self.is_fresh,
        }


@dataclass
class Envelope:
    """Unit returned to every caller: data plus provenance metadata."""
    data: Any
    metadata: CacheMeta

    @property
    def source(self) -> CacheSource:
        return self.metadata.source

    def to_dict(self) -> dict:
        return {"data": self.data, "metadata": self.metadata.to_dict()}


def make_envelope(
    data: Any,
    last_updated: datetime,
    age: int,
    source: CacheSource,
    window: Optional[float],
) -> Envelope:
    """Build an envelope, deriving isFresh from the age and window."""
    fresh = source is not CacheSource.NONE and window is not None and is_fresh(age, window)
    return Envelope(
        data=data,
        metadata=CacheMeta(
            last_updated=last_updated,
            cache_age=age,
            source=source,
            is_fresh=fresh,
        ),
    )


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string, unix timestamp or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
