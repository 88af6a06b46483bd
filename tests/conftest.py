"""
Test fixtures for salonbot tests.

Provides a controllable clock, in-memory key-value stores (healthy and
broken), and settings tuned for fast tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from salonbot.core.circuit_breaker import CircuitBreakerRegistry, set_notification_callback
from salonbot.core.config import Settings
from salonbot.core.kv_store import MemoryKeyValueStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def timestamp(self) -> float:
        return self.now.timestamp()


class BrokenStore:
    """Key-value store whose every call fails."""

    def __init__(self, exc: Exception = ConnectionError("kv unreachable")):
        self.exc = exc
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise self.exc

    async def put(self, key, value, ttl_seconds=None):
        self.calls += 1
        raise self.exc

    async def delete(self, key):
        self.calls += 1
        raise self.exc


class HangingStore:
    """Key-value store that never answers (exercises store timeouts)."""

    async def get(self, key):
        await asyncio.sleep(3600)

    async def put(self, key, value, ttl_seconds=None):
        await asyncio.sleep(3600)

    async def delete(self, key):
        await asyncio.sleep(3600)


@pytest.fixture(autouse=True)
def clear_circuit_registry():
    """Breakers are process-wide; start every test with none registered."""
    CircuitBreakerRegistry.clear()
    set_notification_callback(None)
    yield
    CircuitBreakerRegistry.clear()
    set_notification_callback(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryKeyValueStore:
    # Hard expiry follows the fake clock too
    return MemoryKeyValueStore(maxsize=256, timer=clock.timestamp)


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()


@pytest.fixture
def hanging_store() -> HangingStore:
    return HangingStore()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        KV_BACKEND="memory",
        CIRCUIT_FAILURE_THRESHOLD=2,
        CIRCUIT_COOLDOWN_SECONDS=120,
        CATALOG_FRESH_TTL_SECONDS=3600,
        AVAILABILITY_FRESH_TTL_SECONDS=300,
        CACHE_HARD_TTL_SECONDS=86400,
        CACHE_STORE_TIMEOUT_SECONDS=0.2,
        FETCH_TIMEOUT_SECONDS=1.0,
        MIN_VIABLE_SERVICES=4,
        RETRY_MAX_ATTEMPTS=2,
        RETRY_TIMEOUT_SCHEDULE_MS=[200, 300],
        CATALOG_SOURCE="api",
        BOOKING_API_BASE="https://booking.test/api",
        BOOKING_SERVICE_URL="http://booking-service.test/api/v1/booking",
        SENTRY_DSN="",
    )
