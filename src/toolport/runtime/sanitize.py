"""Deny-list sanitization of inbound arguments and outbound payloads.

Inbound strings matching an input pattern (script markers, path traversal)
are rejected with their field paths. Outbound strings have every output
pattern match (credential-shaped values, internal paths) replaced with the
redaction marker, for results and error messages alike.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

from toolport.foundation.config import SanitizeSettings
from toolport.foundation.errors import ErrorBody, InputValidationError

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonValue


def _compile(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


class Sanitizer:
    """Compiled input and output deny-lists.

    Example:
        >>> sanitizer = Sanitizer()
        >>> sanitizer.redact({"note": "token: abc123"})
        {'note': '[REDACTED]'}
    """

    __slots__ = ("_input", "_output", "_marker")

    def __init__(self, settings: SanitizeSettings | None = None) -> None:
        settings = settings or SanitizeSettings()
        self._input = _compile(settings.input_patterns)
        self._output = _compile(settings.output_patterns)
        self._marker = settings.redaction

    # ─────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────

    def offending_fields(self, value: JsonValue, path: str = "") -> list[str]:
        """Field paths of every string matching an input pattern."""
        return list(dict.fromkeys(self._scan(value, path)))

    def _scan(self, value: object, path: str) -> Iterator[str]:
        match value:
            case str():
                if any(p.search(value) for p in self._input):
                    yield path or "<root>"
            case dict():
                for key, item in value.items():
                    field = f"{path}.{key}" if path else str(key)
                    if isinstance(key, str) and any(p.search(key) for p in self._input):
                        yield field
                    yield from self._scan(item, field)
            case list() | tuple():
                for i, item in enumerate(value):
                    yield from self._scan(item, f"{path}.{i}" if path else str(i))

    def check_input(self, arguments: JsonValue, *, name: str = "") -> None:
        """Raise InputValidationError naming every unsafe field."""
        if fields := self.offending_fields(arguments):
            target = f" for '{name}'" if name else ""
            raise InputValidationError(f"Unsafe content in arguments{target}: {', '.join(fields)}", fields)

    # ─────────────────────────────────────────────────────────────────
    # Output
    # ─────────────────────────────────────────────────────────────────

    def redact_text(self, text: str) -> str:
        for pattern in self._output:
            text = pattern.sub(self._marker, text)
        return text

    def redact(self, value: JsonValue) -> JsonValue:
        """Copy of ``value`` with every string, mapping keys included, redacted."""
        match value:
            case str():
                return self.redact_text(value)
            case dict():
                return {
                    self.redact_text(key) if isinstance(key, str) else key: self.redact(item)
                    for key, item in value.items()
                }
            case list() | tuple():
                return [self.redact(item) for item in value]
            case _:
                return value

    def redact_error(self, body: ErrorBody) -> ErrorBody:
        message = self.redact_text(body.message)
        details = self.redact(body.details)
        if message == body.message and details == body.details:
            return body
        return body.model_copy(update={"message": message, "details": details})
