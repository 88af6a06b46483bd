from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from salonbot.core.typing import ensure_utc

T = TypeVar("T")


class CacheEntry(BaseModel, Generic[T]):
    """
    A previously fetched result.

    Freshness is classified at read time; an entry is never deleted for
    being stale, only replaced by the next successful fetch (or dropped by
    the store's hard expiry).
    """

    value: T
    stored_at: datetime
    fresh_ttl: float = Field(ge=0)

    def age_seconds(self, now: datetime) -> float:
        return (now - ensure_utc(self.stored_at)).total_seconds()

    def is_fresh(self, now: datetime) -> bool:
        return self.age_seconds(now) < self.fresh_ttl
