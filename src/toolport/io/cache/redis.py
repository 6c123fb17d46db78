"""Redis tier for shared result caching.

Lightweight adapter over an existing ``redis.asyncio`` client. Values are
stored as msgpack envelopes ``{v: value, c: created_at, t: ttl}`` (wall clock)
so a backfill into the memory tier keeps the remaining TTL rather than
restarting it. Redis-native expiry (SETEX) bounds storage.

Requires: pip install toolport[redis]
"""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import msgpack

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from toolport.foundation.errors import JsonDict


@runtime_checkable
class AsyncRedisClient(Protocol):
    """Protocol for async Redis client (duck typing)."""
    async def get(self, key: str) -> bytes | None: ...
    async def setex(self, name: str, time: int, value: bytes) -> bool: ...
    async def delete(self, *names: str) -> int: ...
    def scan_iter(self, match: str) -> AsyncIterator[bytes | str]: ...
    async def ping(self) -> bool: ...
    async def aclose(self) -> None: ...


class RedisCache:
    """External cache tier backed by Redis.

    Args:
        client: Existing async Redis client instance
        prefix: Key prefix for namespacing (default: "toolport:")
        clock: Wall-clock source shared by every server process

    Example:
        >>> import redis.asyncio as redis
        >>> cache = TieredCache(MemoryCache(), RedisCache(redis.from_url("redis://localhost:6379/0")))
    """

    __slots__ = ("_client", "_prefix", "_clock")

    def __init__(self, client: AsyncRedisClient, prefix: str = "toolport:", *, clock: Callable[[], float] = time.time) -> None:
        self._client = client
        self._prefix = prefix
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, prefix: str = "toolport:", **redis_kwargs: object) -> RedisCache:
        """Create the tier from a Redis URL.

        Example:
            >>> cache = RedisCache.from_url("redis://localhost:6379/0")
        """
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            raise ImportError(
                "Redis cache requires redis package. "
                "Install with: pip install toolport[redis]"
            ) from e
        return cls(aioredis.from_url(url, **redis_kwargs), prefix)  # type: ignore[arg-type]

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def fetch(self, key: str) -> tuple[bytes, float] | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            envelope = msgpack.unpackb(raw, raw=False)
            value, created, ttl = envelope["v"], float(envelope["c"]), float(envelope["t"])
        except (msgpack.ExtraData, msgpack.FormatError, ValueError, KeyError, TypeError):
            await self._client.delete(self._key(key))
            return None
        remaining = ttl - (self._clock() - created)
        return (value, remaining) if remaining > 0 else None

    async def store(self, key: str, value: bytes, ttl: float) -> None:
        envelope = msgpack.packb({"v": value, "c": self._clock(), "t": ttl}, use_bin_type=True)
        await self._client.setex(self._key(key), max(1, math.ceil(ttl)), envelope)

    async def delete(self, key: str) -> bool:
        return await self._client.delete(self._key(key)) > 0

    async def delete_prefix(self, prefix: str) -> int:
        """Remove all entries under a key prefix using SCAN (production-safe)."""
        keys = [k async for k in self._client.scan_iter(match=f"{self._prefix}{prefix}*")]
        return await self._client.delete(*keys) if keys else 0

    async def ping(self) -> bool:
        """Check Redis connection health."""
        try:
            return bool(await self._client.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._client.aclose()

    def stats(self) -> JsonDict:
        return {"backend": "redis", "prefix": self._prefix}
