"""Environment-based configuration using pydantic-settings.

Provides the configuration surface consumed by the runtime: protocol versions,
rate-limit ceilings per operation class, cache TTLs per cacheable method,
sanitizer deny-lists, timeouts and transport framing.

Example:
    >>> from toolport.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.protocol.supported_versions
    ['1']

    # Or with environment variables:
    # TOOLPORT_CACHE_DEFAULT_TTL=120
    # TOOLPORT_RATELIMIT_MAX_CALLS=30
    # TOOLPORT_PROTOCOL_SUPPORTED_VERSIONS='["1", "2"]'
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Self

from pydantic import (
    BaseModel,
    Field,
    NonNegativeFloat,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

CatalogName = Literal["resources", "tools", "prompts"]

# Script-injection markers and path-traversal sequences rejected in arguments
DEFAULT_INPUT_PATTERNS: list[str] = [
    r"(?i)<\s*script\b",
    r"(?i)javascript\s*:",
    r"(?i)\bon(?:load|error|click|mouseover)\s*=",
    r"(?:^|[\\/])\.\.(?:[\\/]|$)",
    r"(?i)%2e%2e(?:%2f|%5c|/|\\)",
    r"\x00",
]

# Credential-shaped strings and internal filesystem paths redacted from output
DEFAULT_OUTPUT_PATTERNS: list[str] = [
    r"(?i)\b(?:api[_-]?key|access[_-]?token|token|secret|password|passwd)\s*[:=]\s*[^\s,;\"']+",
    r"(?i)\bbearer\s+[a-z0-9._~+/=-]{8,}",
    r"\bAKIA[0-9A-Z]{16}\b",
    r"\bgh[pousr]_[A-Za-z0-9]{20,}\b",
    r"\bsk-[A-Za-z0-9]{16,}\b",
    r"(?<![\w.])/(?:home|root|etc|var|usr|opt|srv|tmp|private|Users)/[^\s\"']*",
    r"(?i)\b[a-z]:\\(?:[^\s\\\"']+\\)*[^\s\\\"']*",
]


class RateLimitRule(BaseModel):
    """Fixed-window ceiling for one operation class."""

    max_calls: PositiveInt = 60
    window_seconds: PositiveFloat = 60.0


class ProtocolSettings(BaseSettings):
    """Handshake and server identity configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_PROTOCOL_", extra="ignore")

    server_name: str = "toolport"
    server_version: str = "0.1.0"
    supported_versions: list[str] = Field(default_factory=lambda: ["1"], min_length=1)
    capabilities: list[CatalogName] = Field(default_factory=lambda: ["resources", "tools", "prompts"])

    @field_validator("supported_versions", mode="before")
    @classmethod
    def _versions_as_str(cls, v: object) -> object:
        """Accept bare numbers (``[1, 2]``) as version strings."""
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return v


class AuthSettings(BaseSettings):
    """Authentication policy."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_AUTH_", extra="ignore")

    required: bool = False
    anonymous_scopes: list[str] = Field(default_factory=lambda: ["*"])


class CacheSettings(BaseSettings):
    """Cache tier configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_CACHE_", extra="ignore")

    enabled: bool = True
    max_entries: PositiveInt = Field(default=1024, description="In-process entry ceiling (LRU beyond)")
    shards: PositiveInt = Field(default=16, description="Independent lock shards for the memory tier")
    default_ttl: PositiveFloat = Field(default=300.0, description="TTL for methods without an override")
    ttls: dict[str, PositiveFloat] = Field(
        default_factory=lambda: {"resources/read": 300.0, "prompts/get": 600.0, "tools/call": 60.0},
        description="TTL per cacheable method",
    )
    redis_url: SecretStr | None = Field(default=None, description="Enables the shared external tier")
    redis_prefix: str = "toolport:"

    @computed_field
    @property
    def backend(self) -> Literal["memory", "tiered"]:
        return "tiered" if self.redis_url else "memory"

    def ttl_for(self, method: str) -> float:
        return self.ttls.get(method, self.default_ttl)


class RateLimitSettings(BaseSettings):
    """Rate limiting per (identity, operation class)."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_RATELIMIT_", extra="ignore")

    enabled: bool = True
    max_calls: PositiveInt = Field(default=120, description="Default ceiling per window")
    window_seconds: PositiveFloat = Field(default=60.0, description="Default window length")
    limits: dict[str, RateLimitRule] = Field(default_factory=dict, description="Per operation class overrides")

    def rule_for(self, operation: str) -> RateLimitRule:
        return self.limits.get(operation) or RateLimitRule(max_calls=self.max_calls, window_seconds=self.window_seconds)


class SanitizeSettings(BaseSettings):
    """Input and output deny-lists."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_SANITIZE_", extra="ignore")

    input_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_INPUT_PATTERNS))
    output_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_OUTPUT_PATTERNS))
    redaction: str = "[REDACTED]"


class TimeoutSettings(BaseSettings):
    """Provider invocation timeouts."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_TIMEOUT_", extra="ignore")

    default: PositiveFloat = Field(default=30.0, description="Used when neither caller nor capability sets one")
    maximum: PositiveFloat = Field(default=300.0, description="Ceiling for caller-specified timeouts")


class TransportSettings(BaseSettings):
    """Wire codec, framing and HTTP binding."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_TRANSPORT_", extra="ignore")

    codec: Literal["json", "msgpack"] = "json"
    framing: Literal["newline", "length"] = "newline"
    max_message_bytes: PositiveInt = 4 * 1024 * 1024
    session_header: str = "Mcp-Session-Id"
    host: str = "127.0.0.1"
    port: PositiveInt = 8080
    response_timeout: NonNegativeFloat = Field(default=0.0, description="HTTP wait for a response, 0 = unbounded")

    @model_validator(mode="after")
    def _msgpack_needs_length(self) -> Self:
        if self.codec == "msgpack" and self.framing == "newline":
            raise ValueError("msgpack codec requires length framing")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLPORT_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"


class ToolportSettings(BaseSettings):
    """Root settings for a toolport server.

    Loads configuration from environment variables with the TOOLPORT_ prefix.
    Supports nested configuration and .env files.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    debug: bool = False

    protocol: ProtocolSettings = Field(default_factory=ProtocolSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    sanitize: SanitizeSettings = Field(default_factory=SanitizeSettings)
    timeout: TimeoutSettings = Field(default_factory=TimeoutSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> ToolportSettings:
    """Get the process settings instance (cached)."""
    return ToolportSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
