"""
Distributed Cache
=================

Byte-valued cache with sliding expiration, shared by the ticket store and the
pending-challenge store.

Backends:
    - MemoryCache: single-process, guarded by an asyncio.Lock
    - RedisCache:  redis.asyncio, for deployments with more than one instance

Every read of a live entry pushes its expiry forward by the entry's sliding
window. Writes to the same key are last-write-wins.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)


class DistributedCache(ABC):
    """Async key/value cache with per-entry sliding expiration."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the value and slide its expiry, or None if absent/expired."""

    @abstractmethod
    async def set(self, key: str, value: bytes, sliding_seconds: int) -> None:
        """Store ``value`` so it expires after ``sliding_seconds`` without a read."""

    @abstractmethod
    async def refresh(self, key: str) -> None:
        """Slide the expiry of an entry without reading it."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete an entry; missing keys are ignored."""

    @abstractmethod
    async def pop(self, key: str) -> Optional[bytes]:
        """Atomically read and delete an entry."""

    async def close(self) -> None:
        """Release backend resources."""


# =============================================================================
# In-process backend
# =============================================================================

class MemoryCache(DistributedCache):
    """
    In-memory cache with sliding TTL.

    Coroutine-safe via an asyncio.Lock. Expired entries are dropped when
    they are touched, and writes sweep every expired entry at most once per
    ``sweep_interval`` seconds so abandoned keys do not accumulate.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        """
        Args:
            clock: Monotonic time source in seconds (injectable for tests)
            sweep_interval: Minimum seconds between full expiry sweeps
        """
        self._entries: Dict[str, Tuple[bytes, int, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = 0.0

    def _live(self, key: str, now: float) -> Optional[Tuple[bytes, int, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now >= entry[2]:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                return None
            value, sliding, _ = entry
            self._entries[key] = (value, sliding, now + sliding)
            return value

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval

        expired = [key for key, entry in self._entries.items() if now >= entry[2]]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")

    async def set(self, key: str, value: bytes, sliding_seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            self._entries[key] = (value, sliding_seconds, now + sliding_seconds)

    async def refresh(self, key: str) -> None:
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is not None:
                value, sliding, _ = entry
                self._entries[key] = (value, sliding, now + sliding)

    async def remove(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def pop(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return None
            del self._entries[key]
            return entry[0]

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Redis backend
# =============================================================================

_DATA_FIELD = "data"
_SLIDING_FIELD = "sldexp"


class RedisCache(DistributedCache):
    """
    Redis-backed cache.

    Each entry is a hash holding the payload and its sliding window so a read
    can re-arm the key's TTL without knowing who wrote it. All keys carry the
    instance-name prefix.

    Connection failures and timeouts raise CacheUnavailableError.
    """

    def __init__(self, client: Any, instance_name: str = ""):
        """
        Args:
            client: redis.asyncio.Redis instance
            instance_name: Prefix prepended to every key
        """
        self._client = client
        self._prefix = instance_name

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        instance_name: str = "",
        timeout_seconds: float = 5.0,
    ) -> "RedisCache":
        """
        Build a cache from a Redis URL or a bare ``host:port``.

        Example:
            >>> cache = RedisCache.from_connection_string("redis:6379", "FwdaForwardAuth:")
        """
        url = connection_string if "://" in connection_string else f"redis://{connection_string}"
        client = redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, instance_name)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        try:
            value, sliding = await self._client.hmget(self._key(key), _DATA_FIELD, _SLIDING_FIELD)
            if value is None:
                return None
            if sliding is not None:
                await self._client.expire(self._key(key), int(sliding))
            return value
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis read failed: {e}")
            raise CacheUnavailableError() from e

    async def set(self, key: str, value: bytes, sliding_seconds: int) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(
                    self._key(key),
                    mapping={_DATA_FIELD: value, _SLIDING_FIELD: sliding_seconds},
                )
                pipe.expire(self._key(key), sliding_seconds)
                await pipe.execute()
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis write failed: {e}")
            raise CacheUnavailableError() from e

    async def refresh(self, key: str) -> None:
        try:
            sliding = await self._client.hget(self._key(key), _SLIDING_FIELD)
            if sliding is not None:
                await self._client.expire(self._key(key), int(sliding))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis refresh failed: {e}")
            raise CacheUnavailableError() from e

    async def remove(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis delete failed: {e}")
            raise CacheUnavailableError() from e

    async def pop(self, key: str) -> Optional[bytes]:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hget(self._key(key), _DATA_FIELD)
                pipe.delete(self._key(key))
                value, _ = await pipe.execute()
            return value
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis read failed: {e}")
            raise CacheUnavailableError() from e

    async def close(self) -> None:
        await self._client.aclose()
