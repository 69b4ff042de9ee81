"""
Ticket Store and Cache Tests

Tests server-side ticket persistence, corruption handling, the in-memory
sliding cache and the Redis backend (with a mocked client).
"""

import re
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.auth.claims import SessionPrincipal
from app.auth.protection import DataProtector
from app.auth.tickets import SessionTicket, TicketStore
from app.cache import MemoryCache, RedisCache
from app.exceptions import CacheUnavailableError, TicketCorruptionError


def make_ticket(portal: str = "portal1") -> SessionTicket:
    principal = SessionPrincipal(
        subject="user-123",
        display_name="alice",
        roles=frozenset({"admin", "reader"}),
        portal=portal,
        return_url="https://portal1.example.com/page",
        authentication_type=f"oidc-{portal}",
    )
    return SessionTicket.issue(principal, f"cookie-{portal}", timedelta(minutes=60))


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTicketStore:
    """Test suite for TicketStore"""

    @pytest.mark.asyncio
    async def test_store_and_retrieve(self, ticket_store):
        ticket = make_ticket()

        handle = await ticket_store.store(ticket)
        loaded = await ticket_store.retrieve(handle)

        assert re.fullmatch(r"AuthSession:[0-9a-f]{32}", handle)
        assert loaded == ticket
        assert loaded.principal.roles == frozenset({"admin", "reader"})

    @pytest.mark.asyncio
    async def test_handles_are_unique(self, ticket_store):
        ticket = make_ticket()

        assert await ticket_store.store(ticket) != await ticket_store.store(ticket)

    @pytest.mark.asyncio
    async def test_payload_is_encrypted(self, ticket_store, memory_cache):
        handle = await ticket_store.store(make_ticket())

        raw = await memory_cache.get(handle)

        assert b"alice" not in raw
        assert b"user-123" not in raw

    @pytest.mark.asyncio
    async def test_renew_overwrites(self, ticket_store):
        handle = await ticket_store.store(make_ticket("portal1"))

        await ticket_store.renew(handle, make_ticket("portal2"))

        assert (await ticket_store.retrieve(handle)).principal.portal == "portal2"

    @pytest.mark.asyncio
    async def test_renew_requires_handle(self, ticket_store):
        with pytest.raises(ValueError):
            await ticket_store.renew("", make_ticket())

    @pytest.mark.asyncio
    async def test_retrieve_empty_or_unknown(self, ticket_store):
        assert await ticket_store.retrieve("") is None
        assert await ticket_store.retrieve("AuthSession:" + "0" * 32) is None

    @pytest.mark.asyncio
    async def test_corrupted_payload_is_absent(self, ticket_store, memory_cache):
        handle = await ticket_store.store(make_ticket())
        await memory_cache.set(handle, b"garbage", 3600)

        assert await ticket_store.retrieve(handle) is None

    @pytest.mark.asyncio
    async def test_foreign_key_ring_is_absent(self, memory_cache, key_ring):
        writer = TicketStore(memory_cache, DataProtector(key_ring, "fwda.session-tickets.v1"), timedelta(hours=1))
        reader = TicketStore(memory_cache, DataProtector([b"x" * 32], "fwda.session-tickets.v1"), timedelta(hours=1))

        handle = await writer.store(make_ticket())

        assert await reader.retrieve(handle) is None

    @pytest.mark.asyncio
    async def test_remove(self, ticket_store):
        handle = await ticket_store.store(make_ticket())

        await ticket_store.remove(handle)
        await ticket_store.remove("")

        assert await ticket_store.retrieve(handle) is None

    @pytest.mark.asyncio
    async def test_cache_outage_propagates(self, ticket_protector):
        cache = MemoryCache()
        cache.get = AsyncMock(side_effect=CacheUnavailableError())
        store = TicketStore(cache, ticket_protector, timedelta(hours=1))

        with pytest.raises(CacheUnavailableError):
            await store.retrieve("AuthSession:" + "a" * 32)


class TestDataProtector:
    """Test suite for purpose isolation and key rotation"""

    def test_purposes_are_isolated(self, ticket_protector, correlation_protector):
        token = ticket_protector.protect(b"payload")

        with pytest.raises(TicketCorruptionError):
            correlation_protector.unprotect(token)

    def test_rotated_key_still_reads(self, key_ring):
        old = DataProtector(key_ring, "purpose")
        rotated = DataProtector([b"n" * 32] + key_ring, "purpose")

        assert rotated.unprotect(old.protect(b"payload")) == b"payload"


class TestMemoryCache:
    """Test suite for the in-process sliding cache"""

    @pytest.mark.asyncio
    async def test_expires_without_reads(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", b"v", 60)

        clock.now += 61

        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_reads_slide_expiry(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", b"v", 60)

        for _ in range(3):
            clock.now += 40
            assert await cache.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_refresh_slides_expiry(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", b"v", 60)

        clock.now += 50
        await cache.refresh("k")
        clock.now += 50

        assert await cache.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_write_sweeps_abandoned_entries(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        for i in range(1000):
            await cache.set(f"Correlation:{i}", b"v", 600)

        clock.now = 10000.0
        await cache.set("fresh", b"v", 600)

        assert len(cache) == 1
        assert await cache.get("fresh") == b"v"

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_entries(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock, sweep_interval=0)
        await cache.set("short", b"v", 60)
        await cache.set("long", b"v", 3600)

        clock.now += 120
        await cache.set("other", b"v", 60)

        assert len(cache) == 2
        assert await cache.get("long") == b"v"

    @pytest.mark.asyncio
    async def test_pop_is_single_use(self):
        cache = MemoryCache()
        await cache.set("k", b"v", 60)

        assert await cache.pop("k") == b"v"
        assert await cache.pop("k") is None


class TestRedisCache:
    """Test suite for the Redis backend with a mocked client"""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        pipe = MagicMock()
        pipe.__aenter__.return_value = pipe
        pipe.execute = AsyncMock(return_value=[b"v", 1])
        client.pipeline = MagicMock(return_value=pipe)
        client.pipe = pipe
        return client

    @pytest.mark.asyncio
    async def test_set_uses_prefix_and_ttl(self, redis_client):
        cache = RedisCache(redis_client, "FwdaForwardAuth:")

        await cache.set("AuthSession:abc", b"payload", 3600)

        redis_client.pipe.hset.assert_called_once_with(
            "FwdaForwardAuth:AuthSession:abc",
            mapping={"data": b"payload", "sldexp": 3600},
        )
        redis_client.pipe.expire.assert_called_once_with("FwdaForwardAuth:AuthSession:abc", 3600)
        redis_client.pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_slides_ttl(self, redis_client):
        redis_client.hmget.return_value = [b"payload", b"3600"]
        cache = RedisCache(redis_client, "p:")

        assert await cache.get("k") == b"payload"
        redis_client.expire.assert_awaited_once_with("p:k", 3600)

    @pytest.mark.asyncio
    async def test_get_missing(self, redis_client):
        redis_client.hmget.return_value = [None, None]
        cache = RedisCache(redis_client, "p:")

        assert await cache.get("k") is None
        redis_client.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pop(self, redis_client):
        cache = RedisCache(redis_client, "p:")

        assert await cache.pop("Correlation:s") == b"v"
        redis_client.pipe.hget.assert_called_once_with("p:Correlation:s", "data")
        redis_client.pipe.delete.assert_called_once_with("p:Correlation:s")

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self, redis_client):
        redis_client.hmget.side_effect = RedisConnectionError("connection refused")
        cache = RedisCache(redis_client, "p:")

        with pytest.raises(CacheUnavailableError) as exc_info:
            await cache.get("k")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_remove(self, redis_client):
        cache = RedisCache(redis_client, "p:")

        await cache.remove("k")

        redis_client.delete.assert_awaited_once_with("p:k")
