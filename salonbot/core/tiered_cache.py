"""
Fresh/stale cache over the shared key-value store.

Entries are classified as fresh or stale when read, not deleted when they
go stale. The store's hard expiry (hard_ttl) is much longer than the fresh
window so a stale answer is still available while the upstream is down:

    fresh window 1h, hard expiry 24h  ->  up to 23h of stale-but-present reads

Usage:
    cache = TieredCache(store, "catalog", fresh_ttl=3600, hard_ttl=86400,
                        value_type=list[ServiceItem])
    await cache.put("services", services)
    entry = await cache.get("services")
    if entry is not None and entry.is_fresh(cache.clock()):
        ...
"""

from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import ValidationError

from salonbot.core.kv_store import KeyValueStore, safe_get, safe_put
from salonbot.core.logging_config import get_logger
from salonbot.core.typing import Clock, utc_now
from salonbot.models.cache_entry import CacheEntry

logger = get_logger(__name__)

T = TypeVar("T")


class ReadPolicy(str, Enum):
    ANY = "any"  # caller classifies freshness with entry.is_fresh()
    FRESH_ONLY = "fresh_only"


class TieredCache(Generic[T]):
    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        fresh_ttl: float,
        hard_ttl: float,
        value_type: Any = None,
        store_timeout: float = 0.5,
        clock: Clock = utc_now,
    ):
        if fresh_ttl <= 0:
            raise ValueError("fresh_ttl must be positive")
        if hard_ttl <= fresh_ttl:
            raise ValueError(f"hard_ttl ({hard_ttl}) must exceed fresh_ttl ({fresh_ttl}) or stale reads are impossible")

        self.store = store
        self.namespace = namespace
        self.fresh_ttl = fresh_ttl
        self.hard_ttl = hard_ttl
        self.store_timeout = store_timeout
        self.clock = clock
        self._entry_model = CacheEntry[value_type] if value_type is not None else CacheEntry

    def _key(self, key: str) -> str:
        return f"cache:{self.namespace}:{key}"

    async def get(self, key: str, policy: ReadPolicy = ReadPolicy.ANY) -> Optional[CacheEntry[T]]:
        """
        Return the stored entry, or None on a miss.

        The entry is returned whatever its age unless policy is FRESH_ONLY,
        in which case a stale entry reads as a miss. Store failures and
        payloads that no longer decode (e.g. after a model change) are
        misses too.
        """
        raw = await safe_get(self.store, self._key(key), self.store_timeout)
        if raw is None:
            return None

        try:
            entry = self._entry_model.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("cache entry undecodable", namespace=self.namespace, key=key, error=str(e))
            return None

        if policy is ReadPolicy.FRESH_ONLY and not entry.is_fresh(self.clock()):
            return None
        return entry

    async def put(self, key: str, value: T, fresh_ttl: Optional[float] = None) -> bool:
        """
        Replace the entry for key with a new one stamped now.

        The whole entry is serialised before the single store write, so a
        failure leaves the previous entry untouched.
        """
        try:
            payload = self._entry_model(
                value=value,
                stored_at=self.clock(),
                fresh_ttl=fresh_ttl if fresh_ttl is not None else self.fresh_ttl,
            ).model_dump_json()
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("cache entry not serialisable", namespace=self.namespace, key=key, error=str(e))
            return False

        return await safe_put(self.store, self._key(key), payload.encode(), self.hard_ttl, self.store_timeout)
