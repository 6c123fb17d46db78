"""Error taxonomy for the capability-dispatch runtime.

Every failure that reaches a caller is an ``ErrorBody``: a stable machine
readable ``kind`` plus a human readable message. Internally failures travel as
``ToolportError`` subclasses so each pipeline stage can raise and the boundary
can convert exactly once.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .types import JsonDict

if TYPE_CHECKING:
    from pydantic import ValidationError


class ErrorKind(StrEnum):
    """Stable wire identifiers for error responses."""
    UNSUPPORTED_VERSION = "UnsupportedVersionError"
    PROTOCOL_ORDER = "ProtocolOrderError"
    AUTHENTICATION = "AuthenticationError"
    AUTHORIZATION = "AuthorizationError"
    VALIDATION = "ValidationError"
    RATE_LIMITED = "RateLimitExceededError"
    NOT_FOUND = "NotFoundError"
    TIMEOUT = "TimeoutError"
    PROVIDER = "ProviderError"
    DUPLICATE_NAME = "DuplicateNameError"
    TRANSPORT_CLOSED = "TransportClosedError"


# Kinds that terminate the session after the error response is written
_FATAL_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.UNSUPPORTED_VERSION,
    ErrorKind.PROTOCOL_ORDER,
})


class ErrorBody(BaseModel):
    """Structured error payload written to the transport.

    Attributes:
        kind: Machine-readable error classification
        message: Human-readable, already-sanitized message
        details: Optional structured detail (offending fields, retry hints)
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "title": "Error Body",
            "examples": [{
                "kind": "RateLimitExceededError",
                "message": "Rate limit exceeded for 'tools/call'",
                "details": {"retry_after": 12.5},
            }],
        },
    )

    kind: ErrorKind
    message: Annotated[str, Field(min_length=1)]
    details: JsonDict = Field(default_factory=dict)

    @computed_field
    @property
    def fatal(self) -> bool:
        """Whether the session is closed after this error."""
        return self.kind in _FATAL_KINDS

    @classmethod
    def create(cls, kind: ErrorKind, message: str, **details: object) -> Self:
        return cls(kind=kind, message=message, details=details)

    @classmethod
    def from_exception(cls, exc: ToolportError) -> Self:
        """Build from a toolport exception (message is used verbatim)."""
        return cls(kind=exc.kind, message=exc.message, details=dict(exc.details))

    def render(self) -> str:
        """One-line representation for logs."""
        return f"{self.kind}: {self.message}"

    __str__ = render


class ToolportError(Exception):
    """Base exception carrying an ``ErrorKind`` and structured details."""

    kind: ClassVar[ErrorKind] = ErrorKind.PROVIDER

    __slots__ = ("message", "details")

    def __init__(self, message: str, **details: object) -> None:
        self.message = message
        self.details: JsonDict = details
        super().__init__(message)

    @property
    def fatal(self) -> bool:
        return self.kind in _FATAL_KINDS

    def to_body(self) -> ErrorBody:
        return ErrorBody.from_exception(self)


class UnsupportedVersionError(ToolportError):
    kind = ErrorKind.UNSUPPORTED_VERSION


class ProtocolOrderError(ToolportError):
    kind = ErrorKind.PROTOCOL_ORDER


class AuthenticationError(ToolportError):
    kind = ErrorKind.AUTHENTICATION


class AuthorizationError(ToolportError):
    kind = ErrorKind.AUTHORIZATION


class InputValidationError(ToolportError):
    """Arguments failed schema or deny-list checks.

    ``fields`` lists every offending field path, also exposed in ``details``.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, fields: list[str] | None = None, **details: object) -> None:
        self.fields = list(fields or [])
        super().__init__(message, fields=self.fields, **details)


class InvalidMessageError(InputValidationError):
    """Inbound frame could not be decoded into a message."""


class RateLimitExceededError(ToolportError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: float, **details: object) -> None:
        self.retry_after = retry_after
        super().__init__(message, retry_after=round(retry_after, 3), **details)


class NotFoundError(ToolportError):
    kind = ErrorKind.NOT_FOUND


class CallTimeoutError(ToolportError):
    kind = ErrorKind.TIMEOUT


class ProviderError(ToolportError):
    """Provider-side fault. Providers may raise this directly."""

    kind = ErrorKind.PROVIDER


class DuplicateNameError(ToolportError):
    kind = ErrorKind.DUPLICATE_NAME


class AmbiguousTemplateError(DuplicateNameError):
    """Resource URI template overlaps an existing one with an equal literal prefix."""


class TransportClosedError(ToolportError):
    """Channel closed or failed. Treated as session teardown, never sent."""

    kind = ErrorKind.TRANSPORT_CLOSED


def format_validation_error(exc: ValidationError, *, name: str = "") -> tuple[str, list[str]]:
    """Flatten a pydantic ValidationError into a message and field paths.

    Input values are deliberately left out of the message: they may carry
    exactly the content the sanitizer exists to keep off the wire.
    """
    fields: list[str] = []
    problems: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        if loc not in fields:
            fields.append(loc)
        problems.append(f"{loc}: {err.get('msg', 'invalid value')}")
    prefix = f"Invalid arguments for '{name}'" if name else "Invalid arguments"
    return f"{prefix}: {'; '.join(problems)}", fields
