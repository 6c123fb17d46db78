"""Pipeline stage events.

The runtime emits one ``StageEvent`` per stage transition to an
``EventCollector``. It never formats or persists them itself: the default
collector hands them to the structured logger, ``MemoryCollector`` keeps them
for inspection and ``NullCollector`` drops them.

Outcomes:
    ok | hit | miss | skipped | error:<ErrorKind>
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonDict


class Stage(StrEnum):
    """Pipeline stages in execution order."""
    NEGOTIATE = "negotiate"
    AUTHENTICATE = "authenticate"
    AUTHORIZE = "authorize"
    VALIDATE = "validate"
    RATE_LIMIT = "rate_limit"
    CACHE_LOOKUP = "cache_lookup"
    DISPATCH = "dispatch"
    CACHE_POPULATE = "cache_populate"
    SANITIZE = "sanitize"
    RESPOND = "respond"


class Outcome(StrEnum):
    OK = "ok"
    HIT = "hit"
    MISS = "miss"
    SKIPPED = "skipped"

    @staticmethod
    def error(kind: str) -> str:
        return f"error:{kind}"


@dataclass(frozen=True, slots=True)
class StageEvent:
    """One stage transition for one request."""

    stage: Stage
    session_id: str
    correlation_id: str | int | None
    outcome: str
    detail: JsonDict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def failed(self) -> bool:
        return self.outcome.startswith("error:")

    def to_dict(self) -> JsonDict:
        return {
            "stage": str(self.stage),
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
            **({"detail": self.detail} if self.detail else {}),
        }


@runtime_checkable
class EventCollector(Protocol):
    """External sink for stage events."""

    def collect(self, event: StageEvent) -> None: ...


class LoggingCollector:
    """Writes events through the structured logger; failures log at info, the rest at debug."""

    __slots__ = ("_log",)

    def __init__(self, log: BoundLogger | None = None) -> None:
        self._log = log or get_logger("toolport.pipeline")

    def collect(self, event: StageEvent) -> None:
        emit = self._log.info if event.failed else self._log.debug
        emit(
            f"stage {event.stage}",
            session_id=event.session_id,
            correlation_id=event.correlation_id,
            outcome=event.outcome,
            **event.detail,
        )


class MemoryCollector:
    """Keeps the most recent events in memory.

    Example:
        >>> collector = MemoryCollector()
        >>> server = Server(registry, collector=collector)
        >>> [e.stage for e in collector.for_request(7)]
    """

    __slots__ = ("_events", "_lock")

    def __init__(self, maxlen: int | None = 10_000) -> None:
        self._events: deque[StageEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def collect(self, event: StageEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[StageEvent]:
        with self._lock:
            return list(self._events)

    def for_request(self, correlation_id: str | int | None, session_id: str | None = None) -> list[StageEvent]:
        return [
            e for e in self.events
            if e.correlation_id == correlation_id and (session_id is None or e.session_id == session_id)
        ]

    def stages(self, correlation_id: str | int | None) -> list[tuple[str, str]]:
        """(stage, outcome) pairs for one correlation id, in emission order."""
        return [(str(e.stage), e.outcome) for e in self.for_request(correlation_id)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


class NullCollector:
    __slots__ = ()

    def collect(self, event: StageEvent) -> None:
        pass
