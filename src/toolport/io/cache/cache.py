"""Result caching with TTL and LRU bounds.

The in-process tier is sharded: each shard owns an ``OrderedDict`` kept in
recency order and its own lock, so a hot key only contends with keys that
hash to the same shard. The entry ceiling is global: once the total exceeds
``max_entries`` the least recently used entry across all shards goes, picked
by comparing the shard heads' access ticks. Expiry is lazy on read;
``sweep()`` purges proactively and also runs from ``put`` at most once per
``sweep_interval``. Both converge on the same visible behavior: an entry is never
served once ``now - created_at >= ttl``.

Cache keys are built from (identity class, method, target, arguments) with
arguments normalized through sorted-key JSON so equal argument sets always map
to the same key.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from toolport.io.codec import encode_canonical

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonDict, JsonMapping

DEFAULT_TTL: float = 300.0  # 5 minutes

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
    """A cached provider result with expiration tracking."""
    value: bytes
    created_at: float
    ttl: float
    tick: int = 0

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl

    def remaining(self, now: float) -> float:
        return max(0.0, self.ttl - (now - self.created_at))


def make_key(identity_class: str, method: str, target: str | None, arguments: JsonMapping | None = None) -> str:
    """Derive the cache key for one call.

    >>> make_key("anonymous", "tools/call", "add", {"b": 2, "a": 1}) == make_key("anonymous", "tools/call", "add", {"a": 1, "b": 2})
    True
    """
    digest = hashlib.sha256(encode_canonical(dict(arguments or {})), usedforsecurity=False).hexdigest()[:24]
    return f"{identity_class}:{method}:{target or ''}:{digest}"


@runtime_checkable
class AsyncCache(Protocol):
    """What the request pipeline needs from a cache."""

    async def aget(self, key: str) -> bytes | None: ...
    async def aput(self, key: str, value: bytes, ttl: float) -> None: ...
    async def ainvalidate(self, key: str) -> bool: ...
    async def ainvalidate_prefix(self, prefix: str) -> int: ...


class _Shard:
    __slots__ = ("entries", "lock")

    def __init__(self) -> None:
        self.entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.lock = threading.Lock()


class MemoryCache:
    """Thread-safe in-process cache: LRU beyond ``max_entries``, TTL per entry.

    Args:
        max_entries: Entry ceiling across all shards
        default_ttl: TTL used when ``put`` is given none
        shards: Number of independently locked shards
        sweep_interval: Minimum seconds between sweeps triggered by ``put``
        clock: Monotonic time source (injectable for tests)

    Example:
        >>> cache = MemoryCache(max_entries=100)
        >>> cache.put("k", b"v", ttl=60)
        >>> cache.get("k")
        b'v'
    """

    __slots__ = (
        "_shards", "_max_entries", "_default_ttl", "_clock", "_ticks",
        "_evict_lock", "_sweep_interval", "_last_sweep",
    )

    def __init__(
        self,
        max_entries: int = 1024,
        default_ttl: float = DEFAULT_TTL,
        *,
        shards: int = 16,
        sweep_interval: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        shards = max(1, min(shards, max_entries))
        self._shards = tuple(_Shard() for _ in range(shards))
        self._max_entries = max(1, max_entries)
        self._default_ttl = default_ttl
        self._clock = clock
        self._ticks = itertools.count(1)
        self._evict_lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: str) -> bytes | None:
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del shard.entries[key]
                return None
            entry.tick = next(self._ticks)
            shard.entries.move_to_end(key)
            return entry.value

    def get_entry(self, key: str) -> CacheEntry | None:
        """Live entry for ``key`` without touching recency."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            return None if entry is None or entry.expired(self._clock()) else entry

    def put(self, key: str, value: bytes, ttl: float | None = None) -> None:
        now = self._clock()
        entry = CacheEntry(value=value, created_at=now, ttl=ttl or self._default_ttl, tick=next(self._ticks))
        shard = self._shard(key)
        with shard.lock:
            shard.entries[key] = entry
            shard.entries.move_to_end(key)
        if now - self._last_sweep >= self._sweep_interval:
            self._last_sweep = now
            self.sweep()
        if self.size > self._max_entries:
            self._evict()

    def _evict(self) -> None:
        """Drop globally least recently used entries until under the ceiling."""
        with self._evict_lock:
            while self.size > self._max_entries:
                oldest: tuple[_Shard, str, int] | None = None
                for shard in self._shards:
                    with shard.lock:
                        if not shard.entries:
                            continue
                        key, entry = next(iter(shard.entries.items()))
                        if oldest is None or entry.tick < oldest[2]:
                            oldest = (shard, key, entry.tick)
                if oldest is None:
                    return
                shard, key, tick = oldest
                with shard.lock:
                    entry = shard.entries.get(key)
                    # Touched or replaced since it was picked: pick again
                    if entry is not None and entry.tick == tick:
                        del shard.entries[key]

    def invalidate(self, key: str) -> bool:
        shard = self._shard(key)
        with shard.lock:
            return shard.entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                for key in [k for k in shard.entries if k.startswith(prefix)]:
                    del shard.entries[key]
                    removed += 1
        return removed

    def sweep(self) -> int:
        """Drop every expired entry. Returns count removed."""
        now, removed = self._clock(), 0
        for shard in self._shards:
            with shard.lock:
                for key in [k for k, e in shard.entries.items() if e.expired(now)]:
                    del shard.entries[key]
                    removed += 1
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    @property
    def size(self) -> int:
        return sum(len(s.entries) for s in self._shards)

    def __contains__(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def stats(self) -> JsonDict:
        """Get cache statistics for monitoring."""
        now = self._clock()
        expired = 0
        for shard in self._shards:
            with shard.lock:
                expired += sum(1 for e in shard.entries.values() if e.expired(now))
        total = self.size
        return {
            "backend": "memory",
            "total_entries": total,
            "expired_entries": expired,
            "active_entries": total - expired,
            "shards": len(self._shards),
            "max_entries": self._max_entries,
            "default_ttl": self._default_ttl,
        }

    # Async facade so the pipeline sees one interface for every tier

    async def aget(self, key: str) -> bytes | None:
        return self.get(key)

    async def aput(self, key: str, value: bytes, ttl: float) -> None:
        self.put(key, value, ttl)

    async def ainvalidate(self, key: str) -> bool:
        return self.invalidate(key)

    async def ainvalidate_prefix(self, prefix: str) -> int:
        return self.invalidate_prefix(prefix)


@runtime_checkable
class ExternalCache(Protocol):
    """Shared tier behind the in-process one. Returns (value, remaining_ttl)."""

    async def fetch(self, key: str) -> tuple[bytes, float] | None: ...
    async def store(self, key: str, value: bytes, ttl: float) -> None: ...
    async def delete(self, key: str) -> bool: ...
    async def delete_prefix(self, prefix: str) -> int: ...


class TieredCache:
    """In-process tier first, external tier second.

    An external hit is copied back into memory with its remaining TTL, so the
    backfilled entry never outlives the original. Writes and invalidations go
    to both tiers.
    """

    __slots__ = ("memory", "external")

    def __init__(self, memory: MemoryCache, external: ExternalCache) -> None:
        self.memory = memory
        self.external = external

    async def aget(self, key: str) -> bytes | None:
        if (value := self.memory.get(key)) is not None:
            return value
        found = await self.external.fetch(key)
        if found is None:
            return None
        value, remaining = found
        if remaining > 0:
            self.memory.put(key, value, remaining)
        return value

    async def aput(self, key: str, value: bytes, ttl: float) -> None:
        self.memory.put(key, value, ttl)
        await self.external.store(key, value, ttl)

    async def ainvalidate(self, key: str) -> bool:
        local = self.memory.invalidate(key)
        return await self.external.delete(key) or local

    async def ainvalidate_prefix(self, prefix: str) -> int:
        local = self.memory.invalidate_prefix(prefix)
        return max(local, await self.external.delete_prefix(prefix))
