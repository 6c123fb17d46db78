"""Shared fixtures: a fake clock, an in-memory transport and a sample registry."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from toolport.foundation.config import CacheSettings, RateLimitSettings, ToolportSettings
from toolport.foundation.core import Prompt, prompt, resource, tool
from toolport.foundation.errors import TransportClosedError
from toolport.foundation.registry import CapabilityRegistry
from toolport.io.cache import MemoryCache
from toolport.io.transport import Transport
from toolport.protocol import Message
from toolport.runtime import FixedWindowRateLimiter, MemoryCollector, configure_logging


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class QueueTransport(Transport):
    """In-memory transport: tests play the client through ``request``."""

    kind = "memory"

    def __init__(self) -> None:
        self.inbox: asyncio.Queue[Message | Exception | None] = asyncio.Queue()
        self.outbox: asyncio.Queue[Message] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        self._closed = True
        self.inbox.put_nowait(None)

    async def receive(self) -> Message:
        message = await self.inbox.get()
        if message is None:
            raise TransportClosedError("closed")
        if isinstance(message, Exception):
            raise message
        return message

    async def send(self, message: Message) -> None:
        if self._closed:
            raise TransportClosedError("closed")
        self.outbox.put_nowait(message)

    def push(self, message: Message | Exception) -> None:
        self.inbox.put_nowait(message)

    async def reply(self, timeout: float = 2.0) -> Message:
        return await asyncio.wait_for(self.outbox.get(), timeout)

    async def request(self, message: Message, timeout: float = 2.0) -> Message:
        self.push(message)
        return await self.reply(timeout)

    def hang_up(self) -> None:
        self.inbox.put_nowait(None)


@pytest.fixture(autouse=True)
def quiet_logs() -> None:
    configure_logging(format="none")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def calls() -> Counter[str]:
    """Provider invocation counts by capability name."""
    return Counter()


def build_registry(calls: Counter[str]) -> CapabilityRegistry:
    @tool(cacheable=True)
    def add(a: int, b: int) -> int:
        """Add two integers."""
        calls["add"] += 1
        return a + b

    @tool()
    def echo(text: str) -> str:
        """Echo text back."""
        calls["echo"] += 1
        return text

    @tool()
    def leak() -> str:
        calls["leak"] += 1
        return "config token: abc123 loaded"

    @tool()
    def boom() -> str:
        calls["boom"] += 1
        raise RuntimeError("disk at /home/alice/secret.txt exploded")

    @tool(timeout=0.05)
    async def slow() -> str:
        calls["slow"] += 1
        await asyncio.sleep(1)
        return "late"

    @resource("docs://{project}/readme", mime_type="text/markdown")
    def readme(project: str) -> str:
        calls["readme"] += 1
        return f"# {project}"

    @prompt()
    def review(language: str, focus: str = "bugs") -> str:
        """Ask for a code review."""
        calls["review"] += 1
        return f"Review this {language} code for {focus}."

    greet = Prompt(name="greet", description="Greeting", template="Hello {name}!")
    return CapabilityRegistry([add, echo, leak, boom, slow, readme, review, greet])


@pytest.fixture
def registry(calls: Counter[str]) -> CapabilityRegistry:
    return build_registry(calls)


@pytest.fixture
def settings() -> ToolportSettings:
    return ToolportSettings(
        rate_limit=RateLimitSettings(max_calls=3, window_seconds=60.0),
        cache=CacheSettings(default_ttl=30.0, ttls={"tools/call": 30.0}),
    )


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(max_entries=64, shards=4, clock=clock)


@pytest.fixture
def limiter(settings: ToolportSettings, clock: FakeClock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter.from_settings(settings.rate_limit, clock=clock)


@pytest.fixture
def collector() -> MemoryCollector:
    return MemoryCollector()
