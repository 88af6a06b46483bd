"""
Tests for the fallback chain orchestrator.

Tests cover:
1. Provenance for every combination of breaker state, cache state and fetch result
2. Write-through and breaker reset on a viable fresh fetch
3. Degenerate results counted as failures and never cached
4. Deadlines releasing fetch resources
5. resolve() never raising, whatever fails underneath
"""

import asyncio
from datetime import timedelta

import pytest

from salonbot.core.circuit_breaker import CircuitBreaker
from salonbot.core.exceptions import UpstreamError
from salonbot.core.tiered_cache import ReadPolicy, TieredCache
from salonbot.models import Provenance
from salonbot.services.fallback_chain import FallbackChain, min_items

STATIC = ["static-1", "static-2"]
LIVE = ["cut", "color", "wash", "spa", "bridal"]
CACHED = ["cached-1", "cached-2", "cached-3", "cached-4", "cached-5"]


class FakeFetch:
    """Upstream fetcher that records its calls."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = LIVE if result is None else result
        self.error = error
        self.delay = delay
        self.calls = 0
        self.tokens = []

    async def __call__(self, token):
        self.calls += 1
        self.tokens.append(token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_chain(store, clock, breaker_store=None, cache_store=None, **kwargs) -> FallbackChain:
    breaker = CircuitBreaker(
        name="booking_site",
        store=breaker_store or store,
        failure_threshold=kwargs.pop("failure_threshold", 2),
        cooldown_seconds=120,
        store_timeout=0.05,
        clock=clock,
    )
    cache = TieredCache(
        cache_store or store,
        "catalog",
        fresh_ttl=3600,
        hard_ttl=86400,
        store_timeout=0.05,
        clock=clock,
    )
    kwargs.setdefault("fallback", lambda key: list(STATIC))
    kwargs.setdefault("is_viable", min_items(4))
    kwargs.setdefault("fetch_timeout", 1.0)
    return FallbackChain(name="catalog", breaker=breaker, cache=cache, **kwargs)


async def open_breaker(chain: FallbackChain) -> None:
    for _ in range(chain.breaker.failure_threshold):
        await chain.breaker.record_failure()


class TestMinItems:
    """Tests for the minimum-size viability check."""

    def test_requires_more_than_threshold(self):
        check = min_items(4)
        assert check([1, 2, 3, 4]) is False
        assert check([1, 2, 3, 4, 5]) is True

    def test_none_is_not_viable(self):
        assert min_items(0)(None) is False

    def test_named_for_logs(self):
        assert min_items(4).__name__ == "more_than_4_items"


class TestFreshFetch:
    """Breaker closed and the upstream answers."""

    @pytest.mark.asyncio
    async def test_fresh_fetch(self, store, clock):
        chain = make_chain(store, clock)
        fetch = FakeFetch()

        outcome = await chain.resolve("services", fetch)

        assert outcome.data == LIVE
        assert outcome.provenance is Provenance.FRESH_FETCH
        assert outcome.circuit_breaker_active is False
        assert outcome.stored_at == clock.now
        assert outcome.error is None
        assert outcome.is_degraded is False

    @pytest.mark.asyncio
    async def test_fresh_fetch_wins_over_fresh_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)

        outcome = await chain.resolve("services", FakeFetch())
        assert outcome.provenance is Provenance.FRESH_FETCH
        assert outcome.data == LIVE

    @pytest.mark.asyncio
    async def test_writes_through_to_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.resolve("services", FakeFetch())

        entry = await chain.cache.get("services")
        assert entry.value == LIVE
        assert entry.stored_at == clock.now

    @pytest.mark.asyncio
    async def test_success_resets_partial_streak(self, store, clock):
        chain = make_chain(store, clock)
        await chain.breaker.record_failure()

        await chain.resolve("services", FakeFetch())
        await chain.breaker.record_failure()
        assert await chain.breaker.is_open() is False

    @pytest.mark.asyncio
    async def test_fetch_receives_token(self, store, clock):
        chain = make_chain(store, clock)
        fetch = FakeFetch()
        await chain.resolve("services", fetch)
        assert fetch.tokens[0].cancelled is False

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_returns_fresh(self, store, broken_store, clock):
        chain = make_chain(store, clock, cache_store=broken_store)
        outcome = await chain.resolve("services", FakeFetch())
        assert outcome.provenance is Provenance.FRESH_FETCH
        assert outcome.data == LIVE


class TestFetchFailure:
    """Breaker closed and the upstream fails."""

    @pytest.mark.asyncio
    async def test_falls_back_to_fresh_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)
        clock.advance(60)

        outcome = await chain.resolve("services", FakeFetch(error=UpstreamError("503")))

        assert outcome.provenance is Provenance.FRESH_CACHE
        assert outcome.data == CACHED
        assert outcome.circuit_breaker_active is False
        assert outcome.stored_at == clock.now - timedelta(seconds=60)
        assert "503" in outcome.error

    @pytest.mark.asyncio
    async def test_falls_back_to_stale_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)
        clock.advance(5 * 3600)

        outcome = await chain.resolve("services", FakeFetch(error=UpstreamError("503")))

        assert outcome.provenance is Provenance.STALE_CACHE
        assert outcome.data == CACHED
        assert outcome.is_degraded is True

    @pytest.mark.asyncio
    async def test_falls_back_to_static(self, store, clock):
        chain = make_chain(store, clock)
        outcome = await chain.resolve("services", FakeFetch(error=UpstreamError("503")))

        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert outcome.data == STATIC
        assert outcome.stored_at is None
        assert outcome.circuit_breaker_active is False

    @pytest.mark.asyncio
    async def test_any_exception_is_a_failure(self, store, clock):
        chain = make_chain(store, clock)
        outcome = await chain.resolve("services", FakeFetch(error=KeyError("service_categories")))
        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert (await chain.breaker.snapshot()).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_failure_recorded(self, store, clock):
        chain = make_chain(store, clock)
        await chain.resolve("services", FakeFetch(error=UpstreamError("503")))
        assert (await chain.breaker.snapshot()).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_touch_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)
        clock.advance(7200)
        await chain.resolve("services", FakeFetch(error=UpstreamError("503")))

        entry = await chain.cache.get("services", policy=ReadPolicy.ANY)
        assert entry.value == CACHED
        assert entry.stored_at == clock.now - timedelta(seconds=7200)


class TestBreakerOpen:
    """Breaker open: the upstream is not contacted at all."""

    @pytest.mark.asyncio
    async def test_skips_fetch(self, store, clock):
        chain = make_chain(store, clock)
        await open_breaker(chain)
        fetch = FakeFetch()

        outcome = await chain.resolve("services", fetch)

        assert fetch.calls == 0
        assert outcome.circuit_breaker_active is True
        assert outcome.error == "circuit open"

    @pytest.mark.asyncio
    async def test_serves_fresh_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)
        await open_breaker(chain)

        outcome = await chain.resolve("services", FakeFetch())
        assert outcome.provenance is Provenance.FRESH_CACHE
        assert outcome.data == CACHED

    @pytest.mark.asyncio
    async def test_serves_stale_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)
        clock.advance(7200)
        await open_breaker(chain)

        outcome = await chain.resolve("services", FakeFetch())
        assert outcome.provenance is Provenance.STALE_CACHE
        assert outcome.circuit_breaker_active is True

    @pytest.mark.asyncio
    async def test_serves_static(self, store, clock):
        chain = make_chain(store, clock)
        await open_breaker(chain)

        fetch = FakeFetch()
        first = await chain.resolve("services", fetch)
        second = await chain.resolve("services", fetch)

        assert first.provenance is Provenance.STATIC_FALLBACK
        assert first.data == STATIC
        assert first.circuit_breaker_active is True
        assert second.provenance is first.provenance
        assert second.data == first.data
        assert fetch.calls == 0

    @pytest.mark.asyncio
    async def test_force_open_serves_cache_from_earlier_fetch(self, store, clock):
        chain = make_chain(store, clock)
        fetch = FakeFetch()

        first = await chain.resolve("services", fetch)
        assert first.provenance is Provenance.FRESH_FETCH

        await chain.breaker.force_open()
        second = await chain.resolve("services", fetch)

        assert second.provenance is Provenance.FRESH_CACHE
        assert second.data == LIVE
        assert second.circuit_breaker_active is True
        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_open_breaker_does_not_count_more_failures(self, store, clock):
        chain = make_chain(store, clock)
        await open_breaker(chain)
        await chain.resolve("services", FakeFetch())
        assert (await chain.breaker.snapshot()).consecutive_failures == 2


class TestOutageScenario:
    """Booking site goes down, stays down for a while, comes back."""

    @pytest.mark.asyncio
    async def test_two_failures_open_then_cooldown_retries(self, store, clock):
        chain = make_chain(store, clock)
        down = FakeFetch(error=UpstreamError("503"))

        first = await chain.resolve("services", down)
        second = await chain.resolve("services", down)
        third = await chain.resolve("services", down)

        assert down.calls == 2
        assert first.circuit_breaker_active is False
        assert second.circuit_breaker_active is False
        assert third.circuit_breaker_active is True
        assert third.provenance is Provenance.STATIC_FALLBACK

        clock.advance(60)
        await chain.resolve("services", down)
        assert down.calls == 2

        clock.advance(61)
        up = FakeFetch()
        recovered = await chain.resolve("services", up)
        assert up.calls == 1
        assert recovered.provenance is Provenance.FRESH_FETCH

    @pytest.mark.asyncio
    async def test_outage_serves_last_good_answer(self, store, clock):
        chain = make_chain(store, clock)
        await chain.resolve("services", FakeFetch())
        clock.advance(2 * 3600)

        outcome = await chain.resolve("services", FakeFetch(error=UpstreamError("503")))
        assert outcome.provenance is Provenance.STALE_CACHE
        assert outcome.data == LIVE


class TestDegenerateResults:
    """A successful fetch with too few items counts as a failure."""

    @pytest.mark.asyncio
    async def test_three_items_is_degenerate(self, store, clock):
        chain = make_chain(store, clock)
        outcome = await chain.resolve("services", FakeFetch(result=["a", "b", "c"]))

        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert outcome.data == STATIC
        assert "DegenerateResultError" in outcome.error
        assert (await chain.breaker.snapshot()).consecutive_failures == 1
        assert await chain.cache.get("services", policy=ReadPolicy.ANY) is None

    @pytest.mark.asyncio
    async def test_degenerate_result_keeps_previous_cache(self, store, clock):
        chain = make_chain(store, clock)
        await chain.cache.put("services", CACHED)

        outcome = await chain.resolve("services", FakeFetch(result=["a"]))
        assert outcome.provenance is Provenance.FRESH_CACHE
        assert outcome.data == CACHED

    @pytest.mark.asyncio
    async def test_exactly_threshold_is_degenerate(self, store, clock):
        chain = make_chain(store, clock)
        outcome = await chain.resolve("services", FakeFetch(result=["a", "b", "c", "d"]))
        assert outcome.provenance is Provenance.STATIC_FALLBACK

    @pytest.mark.asyncio
    async def test_default_viability_accepts_anything(self, store, clock):
        configured = make_chain(store, clock)
        chain = FallbackChain(
            name="catalog",
            breaker=configured.breaker,
            cache=configured.cache,
            fallback=configured.fallback,
        )
        outcome = await chain.resolve("services", FakeFetch(result=[]))
        assert outcome.provenance is Provenance.FRESH_FETCH
        assert outcome.data == []

    @pytest.mark.asyncio
    async def test_repeated_degenerate_results_open_breaker(self, store, clock):
        chain = make_chain(store, clock)
        tiny = FakeFetch(result=["a"])
        await chain.resolve("services", tiny)
        await chain.resolve("services", tiny)
        assert await chain.breaker.is_open() is True


class TestDeadline:
    """Slow fetches are abandoned and their resources released."""

    @pytest.mark.asyncio
    async def test_timeout_degrades_and_records_failure(self, store, clock):
        chain = make_chain(store, clock, fetch_timeout=0.05)
        outcome = await chain.resolve("services", FakeFetch(delay=10))

        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert "UpstreamTimeoutError" in outcome.error
        assert (await chain.breaker.snapshot()).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_timeout_fires_teardown(self, store, clock):
        chain = make_chain(store, clock, fetch_timeout=0.05)
        released = []

        async def fetch(token):
            token.add_callback(lambda: released.append("tab"))
            await asyncio.sleep(10)

        await chain.resolve("services", fetch)
        assert released == ["tab"]

    @pytest.mark.asyncio
    async def test_fetch_own_timeout_without_deadline(self, store, clock):
        chain = make_chain(store, clock, fetch_timeout=None)
        outcome = await chain.resolve("services", FakeFetch(error=TimeoutError("read timed out")))

        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert "TimeoutError" in outcome.error
        assert "UpstreamTimeoutError" not in outcome.error
        assert (await chain.breaker.snapshot()).consecutive_failures == 1


class TestNeverRaises:
    """resolve() always produces an outcome."""

    @pytest.mark.asyncio
    async def test_everything_broken(self, broken_store, clock):
        chain = make_chain(broken_store, clock)
        outcome = await chain.resolve("services", FakeFetch(error=RuntimeError("down")))

        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert outcome.data == STATIC

    @pytest.mark.asyncio
    async def test_hanging_store_and_failing_fetch(self, hanging_store, clock):
        chain = make_chain(hanging_store, clock)
        outcome = await chain.resolve("services", FakeFetch(error=UpstreamError("503")))
        assert outcome.provenance is Provenance.STATIC_FALLBACK

    @pytest.mark.asyncio
    async def test_unreadable_breaker_treated_as_closed(self, store, broken_store, clock):
        chain = make_chain(store, clock, breaker_store=broken_store)
        fetch = FakeFetch()

        outcome = await chain.resolve("services", fetch)
        assert fetch.calls == 1
        assert outcome.provenance is Provenance.FRESH_FETCH

    @pytest.mark.asyncio
    async def test_viability_check_error_is_a_failure(self, store, clock):
        chain = make_chain(store, clock)
        outcome = await chain.resolve("services", FakeFetch(result=42))
        assert outcome.provenance is Provenance.STATIC_FALLBACK
        assert (await chain.breaker.snapshot()).consecutive_failures == 1
