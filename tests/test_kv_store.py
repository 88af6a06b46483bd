"""
Tests for the key-value stores.

Tests cover:
1. MemoryKeyValueStore get/put/delete and per-item hard expiry
2. SQLKeyValueStore against an in-memory SQLite database
3. safe_get / safe_put / safe_delete turning store failures into misses
4. build_store backend selection
"""

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from salonbot.core.config import Settings
from salonbot.core.kv_store import (
    MemoryKeyValueStore,
    SQLKeyValueStore,
    build_store,
    safe_delete,
    safe_get,
    safe_put,
)
from salonbot.models import KeyValueEntry  # noqa: F401


@pytest.fixture
def sql_store(clock):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield SQLKeyValueStore(engine, clock=clock)
    engine.dispose()


class TestMemoryKeyValueStore:
    """Tests for the process-local store."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put("k", b"value")
        assert await store.get("k") == b"value"

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, store):
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_put_replaces(self, store):
        await store.put("k", b"one")
        await store.put("k", b"two")
        assert await store.get("k") == b"two"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put("k", b"value")
        await store.delete("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_noop(self, store):
        await store.delete("never-written")

    @pytest.mark.asyncio
    async def test_hard_expiry(self, store, clock):
        """Entries disappear once their ttl has passed."""
        await store.put("k", b"value", ttl_seconds=10)
        clock.advance(9)
        assert await store.get("k") == b"value"
        clock.advance(2)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, store, clock):
        await store.put("k", b"value")
        clock.advance(10 * 365 * 86400)
        assert await store.get("k") == b"value"

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.put("a", b"1")
        await store.put("b", b"2")
        store.clear()
        assert await store.get("a") is None
        assert await store.get("b") is None

    @pytest.mark.asyncio
    async def test_maxsize_evicts(self, clock):
        small = MemoryKeyValueStore(maxsize=2, timer=clock.timestamp)
        await small.put("a", b"1")
        await small.put("b", b"2")
        await small.put("c", b"3")
        present = [k for k in ("a", "b", "c") if await small.get(k) is not None]
        assert len(present) == 2
        assert "c" in present


class TestSQLKeyValueStore:
    """Tests for the kv_entry table backed store."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, sql_store):
        await sql_store.put("k", b"value")
        assert await sql_store.get("k") == b"value"

    @pytest.mark.asyncio
    async def test_put_replaces(self, sql_store):
        await sql_store.put("k", b"one", ttl_seconds=60)
        await sql_store.put("k", b"two", ttl_seconds=60)
        assert await sql_store.get("k") == b"two"

    @pytest.mark.asyncio
    async def test_delete(self, sql_store):
        await sql_store.put("k", b"value")
        await sql_store.delete("k")
        assert await sql_store.get("k") is None

    @pytest.mark.asyncio
    async def test_expired_row_reads_as_missing(self, sql_store, clock):
        await sql_store.put("k", b"value", ttl_seconds=10)
        clock.advance(5)
        assert await sql_store.get("k") == b"value"
        clock.advance(6)
        assert await sql_store.get("k") is None

    @pytest.mark.asyncio
    async def test_binary_payload_round_trips(self, sql_store):
        payload = bytes(range(256))
        await sql_store.put("bin", payload)
        assert await sql_store.get("bin") == payload


class TestSafeOperations:
    """Store failures never propagate to callers."""

    @pytest.mark.asyncio
    async def test_safe_get_hit(self, store):
        await store.put("k", b"v")
        assert await safe_get(store, "k", timeout=0.5) == b"v"

    @pytest.mark.asyncio
    async def test_safe_get_error_is_miss(self, broken_store):
        assert await safe_get(broken_store, "k", timeout=0.5) is None
        assert broken_store.calls == 1

    @pytest.mark.asyncio
    async def test_safe_get_timeout_is_miss(self, hanging_store):
        assert await safe_get(hanging_store, "k", timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_safe_put_success(self, store):
        assert await safe_put(store, "k", b"v", 60, timeout=0.5) is True
        assert await store.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_safe_put_error_returns_false(self, broken_store):
        assert await safe_put(broken_store, "k", b"v", 60, timeout=0.5) is False

    @pytest.mark.asyncio
    async def test_safe_put_timeout_returns_false(self, hanging_store):
        assert await safe_put(hanging_store, "k", b"v", 60, timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_safe_delete_error_returns_false(self, broken_store):
        assert await safe_delete(broken_store, "k", timeout=0.5) is False


class TestBuildStore:
    """Tests for backend selection."""

    def test_memory_backend(self):
        assert isinstance(build_store(Settings(KV_BACKEND="memory")), MemoryKeyValueStore)

    def test_unknown_backend_raises(self):
        with pytest.raises(ValueError, match="KV_BACKEND"):
            build_store(Settings(KV_BACKEND="redis"))
