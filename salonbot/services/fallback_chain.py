"""
Fallback chain: circuit breaker -> live fetch -> cached result -> static data.

One FallbackChain is configured per data category (service catalog,
appointment availability, business profile) with its own freshness window
and minimum-viable-result check. resolve() always returns a FetchOutcome:
the worst case is the static fallback, which is in-memory and cannot fail.

    breaker open?  --yes-->  cache (any freshness)  -->  static fallback
         |no
    fetch_fn(token) --ok & viable--> write-through cache, reset breaker, FRESH_FETCH
         |error / timeout / degenerate
    record failure --> cache (any freshness) --> static fallback

The breaker is not re-checked after a failed fetch. There is no speculative
cache read racing the fetch; steps run strictly in order.
"""

from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

from salonbot.core.cancellation import FetchFn, run_with_deadline
from salonbot.core.circuit_breaker import CircuitBreaker
from salonbot.core.errors import capture_exception, report_upstream_failure
from salonbot.core.exceptions import DegenerateResultError
from salonbot.core.logging_config import get_logger
from salonbot.core.tiered_cache import ReadPolicy, TieredCache
from salonbot.models.outcome import FetchOutcome, Provenance

logger = get_logger(__name__)

T = TypeVar("T")


def _always_viable(_result) -> bool:
    return True


def min_items(threshold: int) -> Callable[[object], bool]:
    """Viability check: the result must hold MORE than threshold items."""

    def check(result) -> bool:
        return result is not None and len(result) > threshold

    check.__name__ = f"more_than_{threshold}_items"
    return check


@dataclass
class FallbackChain(Generic[T]):
    name: str
    breaker: CircuitBreaker
    cache: TieredCache[T]
    fallback: Callable[[str], T]  # pure static lookup by key, must not raise
    is_viable: Callable[[T], bool] = field(default=_always_viable)
    fetch_timeout: Optional[float] = None

    async def resolve(self, key: str, fetch_fn: FetchFn[T]) -> FetchOutcome[T]:
        """
        Produce data for key from the best available tier.

        fetch_fn receives a CancellationToken and must register teardown for
        any resource it opens. Nothing raised by fetch_fn, the cache or the
        breaker store escapes this method.
        """
        try:
            breaker_open = await self.breaker.is_open()
        except Exception as e:
            # State unreadable: treat as closed so a healthy upstream is still used
            capture_exception(e, context={"chain": self.name, "key": key, "step": "breaker_check"}, level="warning")
            breaker_open = False

        if breaker_open:
            logger.info("circuit open, skipping fetch", chain=self.name, key=key, circuit=self.breaker.name)
            return await self._degrade(key, circuit_breaker_active=True, error="circuit open")

        try:
            result = await run_with_deadline(fetch_fn, self.fetch_timeout, upstream=self.breaker.name)
            if not self.is_viable(result):
                raise DegenerateResultError(
                    f"{self.name} result failed {getattr(self.is_viable, '__name__', 'viability check')}",
                    upstream=self.breaker.name,
                )
        except Exception as e:
            report_upstream_failure(e, chain=self.name, key=key, upstream=self.breaker.name)
            await self._record_failure()
            return await self._degrade(key, circuit_breaker_active=False, error=f"{type(e).__name__}: {e}")

        stored = await self.cache.put(key, result)
        if not stored:
            logger.warning("fresh result not cached", chain=self.name, key=key)
        await self._reset_breaker()

        logger.info("fresh fetch succeeded", chain=self.name, key=key)
        return FetchOutcome(
            data=result,
            provenance=Provenance.FRESH_FETCH,
            circuit_breaker_active=False,
            stored_at=self.cache.clock(),
        )

    async def _record_failure(self) -> None:
        try:
            await self.breaker.record_failure()
        except Exception as e:
            capture_exception(e, context={"chain": self.name, "step": "record_failure"}, level="warning")

    async def _reset_breaker(self) -> None:
        try:
            await self.breaker.reset()
        except Exception as e:
            capture_exception(e, context={"chain": self.name, "step": "reset"}, level="warning")

    async def _degrade(self, key: str, circuit_breaker_active: bool, error: Optional[str]) -> FetchOutcome[T]:
        """Cache with stale entries allowed, else the static fallback."""
        try:
            entry = await self.cache.get(key, policy=ReadPolicy.ANY)
        except Exception as e:
            capture_exception(e, context={"chain": self.name, "key": key, "step": "cache_read"}, level="warning")
            entry = None

        if entry is not None:
            fresh = entry.is_fresh(self.cache.clock())
            provenance = Provenance.FRESH_CACHE if fresh else Provenance.STALE_CACHE
            logger.info(
                "serving cached result",
                chain=self.name,
                key=key,
                provenance=provenance.value,
                age_seconds=round(entry.age_seconds(self.cache.clock()), 1),
            )
            return FetchOutcome(
                data=entry.value,
                provenance=provenance,
                circuit_breaker_active=circuit_breaker_active,
                stored_at=entry.stored_at,
                error=error,
            )

        logger.warning("serving static fallback", chain=self.name, key=key)
        return FetchOutcome(
            data=self.fallback(key),
            provenance=Provenance.STATIC_FALLBACK,
            circuit_breaker_active=circuit_breaker_active,
            error=error,
        )
