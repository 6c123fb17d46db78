"""Cache tiers: sharded in-process LRU, optional Redis, and the tiered combination."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .cache import DEFAULT_TTL, AsyncCache, CacheEntry, ExternalCache, MemoryCache, TieredCache, make_key
from .redis import AsyncRedisClient, RedisCache

if TYPE_CHECKING:
    from toolport.foundation.config import CacheSettings


def build_cache(settings: CacheSettings) -> AsyncCache:
    """Construct the cache described by settings (memory, or memory + Redis)."""
    memory = MemoryCache(settings.max_entries, settings.default_ttl, shards=settings.shards)
    if settings.redis_url is None:
        return memory
    external = RedisCache.from_url(settings.redis_url.get_secret_value(), settings.redis_prefix)
    return TieredCache(memory, external)


__all__ = [
    "DEFAULT_TTL",
    "AsyncCache",
    "AsyncRedisClient",
    "CacheEntry",
    "ExternalCache",
    "MemoryCache",
    "RedisCache",
    "TieredCache",
    "build_cache",
    "make_key",
]
