"""Fixed-window rate limiting per (identity, operation class).

Each window owns its lock; a guard lock is held only while creating or
removing windows, so a hot identity never serializes traffic for other
identities. Check, reset-on-expiry and increment happen as one step under the
window's lock.

Elapsed windows are pruned when a new window is created, at most once per
``prune_interval``. A pruned window is marked dead under its own lock, and a
caller holding a stale reference fetches the live window again, so removal
never lets two windows count for the same key.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from toolport.foundation.config import RateLimitRule, RateLimitSettings

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonDict

Clock = Callable[[], float]
RuleSource = Callable[[str], RateLimitRule]


@dataclass(slots=True)
class RateWindow:
    """Counter and start time for one (identity, operation) key."""
    started_at: float
    count: int = 0
    dead: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed


class FixedWindowRateLimiter:
    """Per-key fixed windows with ceilings per operation class.

    Args:
        rules: Maps an operation class to its rule (default: settings ``rule_for``)
        prune_interval: Minimum seconds between automatic prunes
        clock: Monotonic time source (injectable for tests)

    Example:
        >>> limiter = FixedWindowRateLimiter.from_settings(RateLimitSettings(max_calls=2))
        >>> limiter.try_acquire("alice", "tools/call"), limiter.try_acquire("alice", "tools/call")
        (True, True)
        >>> limiter.try_acquire("alice", "tools/call")
        False
    """

    __slots__ = ("_rules", "_clock", "_windows", "_guard", "_prune_interval", "_last_prune")

    def __init__(
        self,
        rules: RuleSource | None = None,
        *,
        prune_interval: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._rules = rules or RateLimitSettings().rule_for
        self._clock = clock
        self._windows: dict[tuple[str, str], RateWindow] = {}
        self._guard = threading.Lock()
        self._prune_interval = prune_interval
        self._last_prune = clock()

    @classmethod
    def from_settings(
        cls, settings: RateLimitSettings, *, prune_interval: float = 60.0, clock: Clock = time.monotonic
    ) -> FixedWindowRateLimiter:
        return cls(settings.rule_for, prune_interval=prune_interval, clock=clock)

    def _window(self, key: tuple[str, str], now: float) -> RateWindow:
        if (window := self._windows.get(key)) is not None:
            return window
        with self._guard:
            if (window := self._windows.get(key)) is not None:
                return window
            if now - self._last_prune >= self._prune_interval:
                self._prune_locked(now)
            window = self._windows[key] = RateWindow(started_at=now)
            return window

    def check(self, identity: str, operation: str) -> RateDecision:
        """Count one call if the window allows it."""
        rule = self._rules(operation)
        key = (identity, operation)
        while True:
            now = self._clock()
            window = self._window(key, now)
            with window.lock:
                if window.dead:
                    continue
                if now - window.started_at >= rule.window_seconds:
                    window.started_at, window.count = now, 0
                if window.count >= rule.max_calls:
                    return RateDecision(False, 0, window.started_at + rule.window_seconds - now)
                window.count += 1
                return RateDecision(True, rule.max_calls - window.count)

    def try_acquire(self, identity: str, operation: str) -> bool:
        return self.check(identity, operation).allowed

    def prune(self) -> int:
        """Forget windows that have elapsed. Returns count removed."""
        with self._guard:
            return self._prune_locked(self._clock())

    def _prune_locked(self, now: float) -> int:
        self._last_prune = now
        removed = 0
        for key, window in list(self._windows.items()):
            with window.lock:
                if now - window.started_at < self._rules(key[1]).window_seconds:
                    continue
                window.dead = True
            del self._windows[key]
            removed += 1
        return removed

    def _drop(self, key: tuple[str, str]) -> None:
        window = self._windows.pop(key)
        with window.lock:
            window.dead = True

    def reset(self, identity: str | None = None) -> None:
        with self._guard:
            for key in [k for k in self._windows if identity is None or k[0] == identity]:
                self._drop(key)

    def stats(self) -> JsonDict:
        return {"windows": len(self._windows)}
