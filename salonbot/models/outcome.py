from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Provenance(str, Enum):
    FRESH_FETCH = "fresh_fetch"  # upstream answered just now
    FRESH_CACHE = "fresh_cache"
    STALE_CACHE = "stale_cache"
    STATIC_FALLBACK = "static_fallback"  # hand-authored catalog, last resort


class FetchOutcome(BaseModel, Generic[T]):
    """Result of one FallbackChain.resolve() call. Never persisted."""

    data: T
    provenance: Provenance
    circuit_breaker_active: bool = False
    stored_at: Optional[datetime] = None  # when the data was fetched; None for static data
    error: Optional[str] = None  # why the fresh fetch was skipped or failed

    @property
    def is_degraded(self) -> bool:
        return self.provenance is not Provenance.FRESH_FETCH
