"""Per-key asyncio locks.

Concurrent cache misses for one key are single-flighted: the first caller
runs the provider while the rest wait on the same lock and then find the
populated entry. Locks are created on demand and dropped when the last
holder or waiter leaves, so the map only holds keys in active use.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field


@dataclass(slots=True)
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """Map of lazily created locks, one per key.

    Example:
        >>> locks = KeyedLocks()
        >>> async with locks.hold("tools/call:add:1f2e"):
        ...     ...
    """

    __slots__ = ("_slots",)

    def __init__(self) -> None:
        self._slots: dict[str, _Slot] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def __len__(self) -> int:
        return len(self._slots)
