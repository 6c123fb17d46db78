"""Configuration management using pydantic-settings."""

from .settings import (
    DEFAULT_INPUT_PATTERNS,
    DEFAULT_OUTPUT_PATTERNS,
    AuthSettings,
    CacheSettings,
    LoggingSettings,
    ProtocolSettings,
    RateLimitRule,
    RateLimitSettings,
    SanitizeSettings,
    TimeoutSettings,
    ToolportSettings,
    TransportSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "AuthSettings",
    "CacheSettings",
    "DEFAULT_INPUT_PATTERNS",
    "DEFAULT_OUTPUT_PATTERNS",
    "LoggingSettings",
    "ProtocolSettings",
    "RateLimitRule",
    "RateLimitSettings",
    "SanitizeSettings",
    "TimeoutSettings",
    "ToolportSettings",
    "TransportSettings",
    "clear_settings_cache",
    "get_settings",
]
