"""Tests for fixed-window rate limiting."""

import threading

import pytest
from conftest import FakeClock

from toolport.foundation.config import RateLimitRule, RateLimitSettings
from toolport.runtime import FixedWindowRateLimiter


@pytest.fixture
def limiter(clock: FakeClock) -> FixedWindowRateLimiter:
    settings = RateLimitSettings(
        max_calls=3,
        window_seconds=10.0,
        limits={"tools/list": RateLimitRule(max_calls=1, window_seconds=5.0)},
    )
    return FixedWindowRateLimiter.from_settings(settings, clock=clock)


def test_allows_up_to_ceiling(limiter: FixedWindowRateLimiter) -> None:
    decisions = [limiter.check("alice", "tools/call") for _ in range(4)]
    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions[:3]] == [2, 1, 0]


def test_retry_after_counts_down(limiter: FixedWindowRateLimiter, clock: FakeClock) -> None:
    for _ in range(3):
        limiter.check("alice", "tools/call")
    clock.advance(4)
    denied = limiter.check("alice", "tools/call")
    assert not denied
    assert denied.retry_after == pytest.approx(6.0)


def test_window_resets(limiter: FixedWindowRateLimiter, clock: FakeClock) -> None:
    for _ in range(3):
        limiter.check("alice", "tools/call")
    assert not limiter.try_acquire("alice", "tools/call")
    clock.advance(10)
    assert limiter.try_acquire("alice", "tools/call")


def test_identities_are_independent(limiter: FixedWindowRateLimiter) -> None:
    for _ in range(3):
        limiter.check("alice", "tools/call")
    assert not limiter.try_acquire("alice", "tools/call")
    assert limiter.try_acquire("bob", "tools/call")


def test_operation_classes_are_independent(limiter: FixedWindowRateLimiter) -> None:
    assert limiter.try_acquire("alice", "tools/list")
    assert not limiter.try_acquire("alice", "tools/list")
    assert limiter.try_acquire("alice", "tools/call")


def test_prune_and_reset(limiter: FixedWindowRateLimiter, clock: FakeClock) -> None:
    limiter.check("alice", "tools/call")
    limiter.check("bob", "tools/list")
    clock.advance(6)
    assert limiter.prune() == 1  # only the 5s tools/list window has elapsed
    assert limiter.stats() == {"windows": 1}

    limiter.reset("alice")
    assert limiter.stats() == {"windows": 0}


def test_default_rules() -> None:
    limiter = FixedWindowRateLimiter()
    assert limiter.check("alice", "tools/call").remaining == RateLimitSettings().max_calls - 1


def test_concurrent_callers_share_one_ceiling() -> None:
    limiter = FixedWindowRateLimiter(lambda _: RateLimitRule(max_calls=25, window_seconds=60.0))
    start = threading.Barrier(16)
    results: list[bool] = []
    results_lock = threading.Lock()

    def worker() -> None:
        start.wait()
        for _ in range(10):
            allowed = limiter.try_acquire("alice", "tools/call")
            with results_lock:
                results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 160
    assert results.count(True) == 25


def test_new_windows_prune_elapsed_ones(clock: FakeClock) -> None:
    limiter = FixedWindowRateLimiter(lambda _: RateLimitRule(max_calls=5, window_seconds=10.0), prune_interval=30, clock=clock)
    for i in range(50):
        limiter.check(f"anonymous:{i}", "tools/call")
    assert limiter.stats() == {"windows": 50}

    clock.advance(30)
    limiter.check("anonymous:new", "tools/call")
    assert limiter.stats() == {"windows": 1}


def test_pruned_window_is_not_reused(limiter: FixedWindowRateLimiter, clock: FakeClock) -> None:
    limiter.check("alice", "tools/list")
    stale = limiter._windows[("alice", "tools/list")]
    clock.advance(5)
    assert limiter.prune() == 1
    assert stale.dead

    assert limiter.try_acquire("alice", "tools/list")
    assert not limiter.try_acquire("alice", "tools/list")
    assert stale.count == 1
