"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from toolport.foundation.config import (
    CacheSettings,
    ProtocolSettings,
    RateLimitRule,
    RateLimitSettings,
    ToolportSettings,
    TransportSettings,
    clear_settings_cache,
    get_settings,
)


def test_defaults() -> None:
    settings = ToolportSettings()
    assert settings.protocol.supported_versions == ["1"]
    assert settings.cache.backend == "memory"
    assert settings.transport.framing == "newline"
    assert settings.auth.anonymous_scopes == ["*"]


def test_nested_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLPORT_CACHE__DEFAULT_TTL", "12.5")
    monkeypatch.setenv("TOOLPORT_TIMEOUT__MAXIMUM", "9")
    settings = ToolportSettings()
    assert settings.cache.default_ttl == 12.5
    assert settings.timeout.maximum == 9


def test_section_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLPORT_RATELIMIT_MAX_CALLS", "7")
    assert RateLimitSettings().max_calls == 7


def test_numeric_versions_become_strings() -> None:
    assert ProtocolSettings(supported_versions=[1, 2]).supported_versions == ["1", "2"]


def test_msgpack_needs_length_framing() -> None:
    with pytest.raises(ValidationError):
        TransportSettings(codec="msgpack", framing="newline")
    assert TransportSettings(codec="msgpack", framing="length").codec == "msgpack"


def test_rate_limit_overrides() -> None:
    settings = RateLimitSettings(max_calls=10, limits={"tools/call": RateLimitRule(max_calls=2, window_seconds=1)})
    assert settings.rule_for("tools/call").max_calls == 2
    assert settings.rule_for("prompts/get") == RateLimitRule(max_calls=10, window_seconds=60.0)


def test_cache_ttls() -> None:
    settings = CacheSettings(default_ttl=5, ttls={"prompts/get": 50})
    assert settings.ttl_for("prompts/get") == 50
    assert settings.ttl_for("resources/read") == 5
    assert CacheSettings(redis_url="redis://localhost:6379/0").backend == "tiered"


def test_invalid_values_rejected() -> None:
    with pytest.raises(ValidationError):
        CacheSettings(default_ttl=0)
    with pytest.raises(ValidationError):
        ProtocolSettings(supported_versions=[])


def test_get_settings_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    clear_settings_cache()
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("TOOLPORT_DEBUG", "true")
    clear_settings_cache()
    assert get_settings().debug is True
    clear_settings_cache()
