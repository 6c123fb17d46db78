"""Error handling for toolport.

- ErrorKind: stable wire identifiers
- ErrorBody: the structured error written to transports
- ToolportError and subclasses: raised inside the runtime, converted once
"""

from .errors import (
    AmbiguousTemplateError,
    AuthenticationError,
    AuthorizationError,
    CallTimeoutError,
    DuplicateNameError,
    ErrorBody,
    ErrorKind,
    InputValidationError,
    InvalidMessageError,
    NotFoundError,
    ProtocolOrderError,
    ProviderError,
    RateLimitExceededError,
    ToolportError,
    TransportClosedError,
    UnsupportedVersionError,
    format_validation_error,
)
from .types import JsonDict, JsonMapping, JsonPrimitive, JsonValue

__all__ = [
    "ErrorKind", "ErrorBody", "ToolportError", "format_validation_error",
    "UnsupportedVersionError", "ProtocolOrderError",
    "AuthenticationError", "AuthorizationError",
    "InputValidationError", "InvalidMessageError",
    "RateLimitExceededError", "NotFoundError", "CallTimeoutError",
    "ProviderError", "DuplicateNameError", "AmbiguousTemplateError",
    "TransportClosedError",
    "JsonDict", "JsonMapping", "JsonPrimitive", "JsonValue",
]
