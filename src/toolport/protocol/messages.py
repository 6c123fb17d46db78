"""Wire messages and request routing.

A single ``Message`` model covers every frame: requests carry ``method`` and
``params``; responses carry ``result`` or ``error``; the handshake adds
``protocol_version`` / ``requested_capabilities`` and its acknowledgement
``server_identity`` / ``agreed_capabilities``. Transports exchange plain
JSON-like dicts via ``to_wire()`` / ``from_wire()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolport.foundation.core import CapabilityKind
from toolport.foundation.errors import (
    ErrorBody,
    InputValidationError,
    InvalidMessageError,
    JsonDict,
    NotFoundError,
    format_validation_error,
)

CorrelationId = str | int


class Method(StrEnum):
    """Method names understood by the runtime."""
    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"


# method -> (catalog, action)
ROUTES: dict[Method, tuple[CapabilityKind, str]] = {
    Method.RESOURCES_LIST: (CapabilityKind.RESOURCES, "list"),
    Method.RESOURCES_READ: (CapabilityKind.RESOURCES, "read"),
    Method.TOOLS_LIST: (CapabilityKind.TOOLS, "list"),
    Method.TOOLS_CALL: (CapabilityKind.TOOLS, "call"),
    Method.PROMPTS_LIST: (CapabilityKind.PROMPTS, "list"),
    Method.PROMPTS_GET: (CapabilityKind.PROMPTS, "get"),
}


def list_changed(kind: CapabilityKind) -> str:
    """Notification method pushed when a catalog changes."""
    return f"notifications/{kind.value}/list_changed"


class ServerIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str


class Message(BaseModel):
    """One structured frame on the wire."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    correlation_id: CorrelationId | None = None
    method: str | None = None
    params: JsonDict | None = None
    result: Any = None
    error: ErrorBody | None = None

    # handshake / acknowledgement
    protocol_version: str | None = None
    requested_capabilities: list[str] | None = None
    client_info: JsonDict | None = None
    server_identity: ServerIdentity | None = None
    agreed_capabilities: list[CapabilityKind] | None = None

    # inbound only, never echoed back
    credential: str | None = Field(default=None, repr=False, exclude=True)

    @field_validator("protocol_version", mode="before")
    @classmethod
    def _version_as_str(cls, v: object) -> object:
        return str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v

    @property
    def is_handshake(self) -> bool:
        return self.method == Method.INITIALIZE

    @property
    def is_notification(self) -> bool:
        return self.correlation_id is None and bool(self.method) and self.method.startswith("notifications/")

    @property
    def is_response(self) -> bool:
        return self.method is None and (self.error is not None or self.result is not None)

    # ─────────────────────────────────────────────────────────────────
    # Constructors
    # ─────────────────────────────────────────────────────────────────

    @classmethod
    def request(cls, method: str, params: JsonDict | None = None, correlation_id: CorrelationId | None = None, **extra: Any) -> Self:
        return cls(method=method, params=params, correlation_id=correlation_id, **extra)

    @classmethod
    def handshake(
        cls,
        protocol_version: str | int,
        requested_capabilities: list[CapabilityKind] | list[str] | None = None,
        correlation_id: CorrelationId | None = 0,
        **extra: Any,
    ) -> Self:
        return cls(
            method=Method.INITIALIZE,
            correlation_id=correlation_id,
            protocol_version=protocol_version,  # type: ignore[arg-type]
            requested_capabilities=requested_capabilities,  # type: ignore[arg-type]
            **extra,
        )

    @classmethod
    def success(cls, correlation_id: CorrelationId | None, result: Any, **extra: Any) -> Self:
        return cls(correlation_id=correlation_id, result=result, **extra)

    @classmethod
    def failure(cls, correlation_id: CorrelationId | None, error: ErrorBody) -> Self:
        return cls(correlation_id=correlation_id, error=error)

    @classmethod
    def notification(cls, method: str, params: JsonDict | None = None) -> Self:
        return cls(method=method, params=params)

    # ─────────────────────────────────────────────────────────────────
    # Wire conversion
    # ─────────────────────────────────────────────────────────────────

    def to_wire(self) -> JsonDict:
        data = self.model_dump(mode="json", exclude_none=True)
        if self.error is None and self.method is None and "result" not in data:
            data["result"] = None
        return data

    @classmethod
    def from_wire(cls, data: object) -> Self:
        if not isinstance(data, dict):
            raise InvalidMessageError("Message must be an object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            message, fields = format_validation_error(e)
            raise InvalidMessageError(message.replace("Invalid arguments", "Malformed message", 1), fields) from None


@dataclass(frozen=True, slots=True)
class Request:
    """One inbound call, derived from a Message. Lives for one pipeline pass."""

    correlation_id: CorrelationId | None
    method: Method
    catalog: CapabilityKind
    action: str
    target_name: str | None = None
    arguments: JsonDict = field(default_factory=dict)
    timeout: float | None = None
    credential: str | None = field(default=None, repr=False)

    @property
    def is_list(self) -> bool:
        return self.action == "list"

    @classmethod
    def from_message(cls, message: Message) -> Request:
        """Route a message. Raises NotFoundError for unknown methods."""
        try:
            method = Method(message.method or "")
        except ValueError:
            raise NotFoundError(f"Unknown method '{message.method}'", method=message.method) from None
        if method not in ROUTES:
            raise NotFoundError(f"Method '{method}' is not a capability operation", method=str(method))
        catalog, action = ROUTES[method]
        params = message.params or {}

        target: str | None = None
        arguments: JsonDict = {}
        if action != "list":
            key = "uri" if catalog is CapabilityKind.RESOURCES else "name"
            target = params.get(key)
            if not isinstance(target, str) or not target:
                raise InputValidationError(f"'{method}' requires a non-empty '{key}'", [key])
            raw_args = params.get("arguments", {})
            if raw_args is None:
                raw_args = {}
            if not isinstance(raw_args, dict):
                raise InputValidationError("'arguments' must be an object", ["arguments"])
            arguments = raw_args

        timeout = params.get("timeout")
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
            raise InputValidationError("'timeout' must be a positive number of seconds", ["timeout"])

        return cls(
            correlation_id=message.correlation_id,
            method=method,
            catalog=catalog,
            action=action,
            target_name=target,
            arguments=arguments,
            timeout=float(timeout) if timeout is not None else None,
            credential=message.credential,
        )
