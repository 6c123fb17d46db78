"""JSON type aliases shared across toolport.

Kept deliberately loose (``Any`` in recursive slots) so pydantic never has to
resolve a self-referencing alias.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

JsonPrimitive = Union[str, int, float, bool, None]
JsonValue = Union[JsonPrimitive, list[Any], dict[str, Any]]
JsonDict = dict[str, Any]
JsonMapping = Mapping[str, Any]
