"""
Keyed stores with per-entry expiration.

The cache policy only needs get/put/delete. MemoryStore keeps entries in
process; SQLStore persists them through SQLAlchemy so several workers can
share one cache file or database.
"""
import logging
import threading
from typing import Any, Dict, Optional, Protocol, Tuple

from sqlalchemy import Column, Float, JSON, String, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from .core import Clock, utc_now

logger = logging.getLogger("cache.store")


class KeyedStore(Protocol):
    """
    Interface for the shared key-value store.

    A ttl_seconds of None means the value never expires.
    """

    def get(self, key: str) -> Optional[Any]:
        ...

    def put(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """
    Thread-safe in-process store.

    Expired entries are dropped lazily on read.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.RLock()

    def _now(self) -> float:
        return self._clock().timestamp()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and self._now() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        expires_at = None if ttl_seconds is None else self._now() + ttl_seconds
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


Base = declarative_base()


class CacheRecord(Base):
    """
    One cached value. expires_at is a unix timestamp, NULL for no expiry.
    """
    __tablename__ = "cache_entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    expires_at = Column(Float, nullable=True, index=True)

    def __repr__(self):
        return f"<CacheRecord(key='{self.key}', expires_at={self.expires_at})>"


class SQLStore:
    """
    SQLAlchemy-backed store. Values must be JSON serializable.
    """

    def __init__(self, database_url: str, clock: Clock = utc_now, echo: bool = False):
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # Needed for SQLite
        self._clock = clock
        self.engine = create_engine(database_url, connect_args=connect_args, echo=echo)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def _now(self) -> float:
        return self._clock().timestamp()

    def get(self, key: str) -> Optional[Any]:
        with self._session_factory() as session:
            record = session.get(CacheRecord, key)
            if record is None:
                return None
            if record.expires_at is not None and self._now() >= record.expires_at:
                session.delete(record)
                session.commit()
                return None
            return record.value

    def _upsert(self, key: str, value: Any, expires_at: Optional[float]):
        """Single-statement insert-or-update, or None if the dialect has none."""
        dialects = {"sqlite": sqlite, "postgresql": postgresql}
        dialect = dialects.get(self.engine.dialect.name)
        if dialect is None:
            return None
        stmt = dialect.insert(CacheRecord).values(key=key, value=value, expires_at=expires_at)
        return stmt.on_conflict_do_update(
            index_elements=[CacheRecord.key],
            set_={"value": stmt.excluded.value, "expires_at": stmt.excluded.expires_at},
        )

    def put(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        """Insert or overwrite key. Concurrent writers of one key never conflict; last write wins."""
        expires_at = None if ttl_seconds is None else self._now() + ttl_seconds
        stmt = self._upsert(key, value, expires_at)
        with self._session_factory() as session:
            if stmt is not None:
                session.execute(stmt)
                session.commit()
                return
            try:
                session.merge(CacheRecord(key=key, value=value, expires_at=expires_at))
                session.commit()
            except IntegrityError:
                # Another writer inserted the row between our SELECT and INSERT
                session.rollback()
                session.merge(CacheRecord(key=key, value=value, expires_at=expires_at))
                session.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            record = session.get(CacheRecord, key)
            if record is not None:
                session.delete(record)
                session.commit()

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number deleted."""
        now = self._now()
        with self._session_factory() as session:
            deleted = (
                session.query(CacheRecord)
                .filter(CacheRecord.expires_at.isnot(None), CacheRecord.expires_at <= now)
                .delete(synchronize_session=False)
            )
            session.commit()
        if deleted:
            logger.info(f"Purged {deleted} expired cache rows")
        return deleted


def build_store(backend: str, database_url: Optional[str] = None, clock: Clock = utc_now) -> KeyedStore:
    """Create the store selected in settings."""
    if backend == "memory":
        return MemoryStore(clock=clock)
    if backend == "sql":
        if not database_url:
            raise ValueError("cache_database_url is required for the sql backend")
        return SQLStore(database_url, clock=clock)
    raise ValueError(f"Unknown cache backend: {backend}")