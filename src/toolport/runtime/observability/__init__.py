"""Observability: structured logging and pipeline stage events."""

from .events import EventCollector, LoggingCollector, MemoryCollector, NullCollector, Outcome, Stage, StageEvent
from .logging import (
    BoundLogger,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    NoOpRenderer,
    configure_from_settings,
    configure_logging,
    get_logger,
    log_context,
)

__all__ = [
    "BoundLogger",
    "ConsoleRenderer",
    "EventCollector",
    "JsonRenderer",
    "LogEntry",
    "LogRenderer",
    "LoggingCollector",
    "MemoryCollector",
    "NoOpRenderer",
    "NullCollector",
    "Outcome",
    "Stage",
    "StageEvent",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "log_context",
]
