"""Result cache stores.

``CacheStore`` is the contract the query executor relies on: string keys,
string (JSON) payloads, per-entry TTL, and glob-pattern key scans. The
in-memory store serves single-process deployments and tests; the Redis store
is shared across processes.
"""

import fnmatch
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from analytics_engine.core.errors import CacheError


class CacheStore(Protocol):
    """Async key/value store with TTL and glob key scans."""

    async def get(self, key: str) -> str | None:
        """Return the payload for ``key``, or None when absent or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ...

    async def scan_keys(self, pattern: str) -> list[str]:
        """Return every live key matching the glob ``pattern``."""
        ...

    async def delete(self, keys: list[str]) -> int:
        """Delete ``keys``; return how many existed."""
        ...

    async def close(self) -> None:
        """Release connections held by the store."""
        ...


class InMemoryCacheStore:
    """Bounded LRU cache with TTL expiry checked lazily on read.

    Args:
        max_entries: Entries kept before the least recently used is evicted.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(self, *, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry {}", evicted)
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def scan_keys(self, pattern: str) -> list[str]:
        now = self._clock()
        return [
            key
            for key, (_, expires_at) in self._entries.items()
            if expires_at > now and fnmatch.fnmatchcase(key, pattern)
        ]

    async def delete(self, keys: list[str]) -> int:
        return sum(1 for key in keys if self._entries.pop(key, None) is not None)

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore:
    """Redis-backed cache shared across processes.

    Key scans use ``SCAN`` (never ``KEYS``). Redis failures surface as
    ``CacheError``.
    """

    _BATCH = 500

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        """Create a store from a ``redis://`` URL."""
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            msg = f"Redis GET failed for {key}: {e}"
            raise CacheError(msg) from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            msg = f"Redis SET failed for {key}: {e}"
            raise CacheError(msg) from e

    async def scan_keys(self, pattern: str) -> list[str]:
        try:
            return [key async for key in self._client.scan_iter(match=pattern, count=self._BATCH)]
        except RedisError as e:
            msg = f"Redis SCAN failed for {pattern}: {e}"
            raise CacheError(msg) from e

    async def delete(self, keys: list[str]) -> int:
        deleted = 0
        try:
            for start in range(0, len(keys), self._BATCH):
                deleted += await self._client.delete(*keys[start : start + self._BATCH])
        except RedisError as e:
            msg = f"Redis DEL failed: {e}"
            raise CacheError(msg) from e
        return deleted

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_store(backend: str, *, redis_url: str, max_entries: int) -> CacheStore:
    """Create the configured cache store.

    Raises:
        ValueError: If ``backend`` is not ``memory`` or ``redis``.
    """
    if backend == "memory":
        return InMemoryCacheStore(max_entries=max_entries)
    if backend == "redis":
        return RedisCacheStore.from_url(redis_url)
    msg = f"Unknown cache backend: {backend}"
    raise ValueError(msg)
