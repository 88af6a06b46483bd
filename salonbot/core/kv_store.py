"""
Key-value stores shared by every request handler.

The circuit breaker state and the tiered cache both live behind this small
interface (get / put with hard TTL / delete on opaque bytes). Callers go
through ``safe_get`` / ``safe_put`` / ``safe_delete``, which bound each call by
a short timeout and turn any store failure into "absent" so an unavailable
store never blocks a booking answer.
"""

import asyncio
import math
import threading
import time
from datetime import timedelta
from typing import Callable, Optional, Protocol

from cachetools import TLRUCache
from sqlalchemy.engine import Engine
from sqlmodel import Session

from salonbot.core.logging_config import get_logger
from salonbot.core.typing import Clock, ensure_utc, utc_now
from salonbot.models.kv_entry import KeyValueEntry

logger = get_logger(__name__)

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLKeyValueStore",
    "safe_get",
    "safe_put",
    "safe_delete",
    "build_store",
]


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> None: ...


def _time_to_use(_key: str, item: tuple[bytes, Optional[float]], now: float) -> float:
    ttl = item[1]
    return now + ttl if ttl else math.inf


class MemoryKeyValueStore:
    """
    Process-local store with per-item hard expiry.

    Good for a single worker and for tests; multi-process deployments use
    SQLKeyValueStore so all workers share breaker and cache state.
    """

    def __init__(self, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            item = self._cache.get(key)
        return item[0] if item is not None else None

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._cache[key] = (value, ttl_seconds)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


class SQLKeyValueStore:
    """Store backed by the kv_entry table; blocking work runs in a worker thread."""

    def __init__(self, engine: Engine, clock: Clock = utc_now):
        self.engine = engine
        self.clock = clock

    def _get_sync(self, key: str) -> Optional[bytes]:
        with Session(self.engine) as session:
            row = session.get(KeyValueEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and ensure_utc(row.expires_at) <= self.clock():
                session.delete(row)
                session.commit()
                return None
            return row.value

    def _put_sync(self, key: str, value: bytes, ttl_seconds: Optional[float]) -> None:
        now = self.clock()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        with Session(self.engine) as session:
            session.merge(KeyValueEntry(key=key, value=value, expires_at=expires_at, updated_at=now))
            session.commit()

    def _delete_sync(self, key: str) -> None:
        with Session(self.engine) as session:
            row = session.get(KeyValueEntry, key)
            if row is not None:
                session.delete(row)
                session.commit()

    async def get(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._get_sync, key)

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[float] = None) -> None:
        await asyncio.to_thread(self._put_sync, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)


async def safe_get(store: KeyValueStore, key: str, timeout: float) -> Optional[bytes]:
    """Read a key; a timeout or store error reads as a miss."""
    try:
        return await asyncio.wait_for(store.get(key), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("kv store read timed out", key=key, timeout=timeout)
    except Exception as e:
        logger.warning("kv store read failed", key=key, error=str(e), error_type=type(e).__name__)
    return None


async def safe_put(store: KeyValueStore, key: str, value: bytes, ttl_seconds: Optional[float], timeout: float) -> bool:
    """Write a key; returns False instead of raising when the store misbehaves."""
    try:
        await asyncio.wait_for(store.put(key, value, ttl_seconds), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("kv store write timed out", key=key, timeout=timeout)
    except Exception as e:
        logger.warning("kv store write failed", key=key, error=str(e), error_type=type(e).__name__)
    return False


async def safe_delete(store: KeyValueStore, key: str, timeout: float) -> bool:
    try:
        await asyncio.wait_for(store.delete(key), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("kv store delete timed out", key=key, timeout=timeout)
    except Exception as e:
        logger.warning("kv store delete failed", key=key, error=str(e), error_type=type(e).__name__)
    return False


def build_store(settings) -> KeyValueStore:
    """Create the configured backend (KV_BACKEND = "memory" | "sql")."""
    if settings.KV_BACKEND == "memory":
        return MemoryKeyValueStore(maxsize=settings.KV_MEMORY_MAXSIZE)
    if settings.KV_BACKEND == "sql":
        from salonbot.db import create_db_and_tables, engine

        create_db_and_tables()
        return SQLKeyValueStore(engine)
    raise ValueError(f"Unknown KV_BACKEND: {settings.KV_BACKEND!r}")
