"""Tests for structured logging and stage events."""

import io

import orjson

from toolport.foundation.config import LoggingSettings
from toolport.runtime import (
    LoggingCollector,
    MemoryCollector,
    Outcome,
    Stage,
    StageEvent,
    configure_from_settings,
    configure_logging,
    get_logger,
    log_context,
)
from toolport.runtime.observability import NoOpRenderer


def _lines(buffer: io.StringIO) -> list[dict]:
    return [orjson.loads(line) for line in buffer.getvalue().splitlines()]


def test_json_logging_with_bound_and_scoped_context() -> None:
    buffer = io.StringIO()
    configure_logging(format="json", level="DEBUG", output=buffer)
    log = get_logger("toolport.test", transport="stream").bind(method="tools/call")

    with log_context(session_id="s1"):
        log.info("dispatch", target="add")
    log.debug("after scope")

    first, second = _lines(buffer)
    assert first["event"] == "dispatch"
    assert first["level"] == "info"
    assert first["session_id"] == "s1"
    assert first["transport"] == "stream"
    assert first["method"] == "tools/call"
    assert first["logger"] == "toolport.test"
    assert "session_id" not in second


def test_level_filtering() -> None:
    buffer = io.StringIO()
    configure_logging(format="json", level="WARNING", output=buffer)
    log = get_logger("toolport.test")
    log.info("hidden")
    log.warning("shown")
    assert [line["event"] for line in _lines(buffer)] == ["shown"]


def test_console_renderer_plain_text() -> None:
    buffer = io.StringIO()
    configure_logging(format="console", output=buffer, colors=False)
    get_logger("toolport.test").info("session opened", session_id="abc")
    line = buffer.getvalue()
    assert "[info] session opened" in line
    assert 'session_id="abc"' in line


def test_configure_from_settings() -> None:
    assert isinstance(configure_from_settings(LoggingSettings(format="none")), NoOpRenderer)


def test_unbind() -> None:
    log = get_logger("toolport.test", a=1, b=2).unbind("a")
    assert log.context == {"b": 2, "logger": "toolport.test"}


def test_stage_event_dict() -> None:
    event = StageEvent(Stage.DISPATCH, "s1", 4, Outcome.error("TimeoutError"), {"timeout": 0.5})
    data = event.to_dict()
    assert event.failed
    assert data["stage"] == "dispatch"
    assert data["outcome"] == "error:TimeoutError"
    assert data["detail"] == {"timeout": 0.5}


def test_memory_collector_filters_by_session() -> None:
    collector = MemoryCollector(maxlen=3)
    for session_id in ("a", "b", "a", "b"):
        collector.collect(StageEvent(Stage.RESPOND, session_id, 1, Outcome.OK))
    assert len(collector) == 3
    assert [e.session_id for e in collector.for_request(1, "a")] == ["a"]
    collector.clear()
    assert collector.events == []


def test_logging_collector_writes_failures_at_info() -> None:
    buffer = io.StringIO()
    configure_logging(format="json", level="INFO", output=buffer)
    collector = LoggingCollector()
    collector.collect(StageEvent(Stage.VALIDATE, "s1", 1, Outcome.error("ValidationError")))
    collector.collect(StageEvent(Stage.RESPOND, "s1", 2, Outcome.OK))
    (line,) = _lines(buffer)
    assert line["event"] == "stage validate"
    assert line["outcome"] == "error:ValidationError"
