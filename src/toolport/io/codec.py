"""Serialization codecs and framing for the wire.

Provides orjson (JSON) and msgpack (binary) codecs. Both are core
dependencies, no fallback to stdlib json.

Framings:
    newline: one JSON document per line (JSON codec only)
    length:  4-byte big-endian payload length, then the payload

Usage:
    >>> codec = get_codec("json")
    >>> codec.encode({"method": "tools/list"})
    b'{"method":"tools/list"}'
"""

from __future__ import annotations

import struct
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import msgpack
import orjson

from toolport.foundation.errors import InvalidMessageError

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonValue

LENGTH_PREFIX = struct.Struct(">I")


class CodecType(StrEnum):
    """Supported codec types."""
    JSON = "json"
    MSGPACK = "msgpack"


@runtime_checkable
class Codec(Protocol):
    """Protocol for serialization codecs."""

    name: str
    content_type: str

    def encode(self, data: JsonValue) -> bytes: ...
    def decode(self, data: bytes) -> JsonValue: ...


class JsonCodec:
    """orjson codec. Decoding failures surface as InvalidMessageError."""

    __slots__ = ()
    name = "json"
    content_type = "application/json"

    def encode(self, data: JsonValue) -> bytes:
        return orjson.dumps(data, option=orjson.OPT_UTC_Z | orjson.OPT_NON_STR_KEYS)

    def decode(self, data: bytes) -> JsonValue:
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise InvalidMessageError(f"Undecodable JSON frame: {e.msg}") from None


class MsgpackCodec:
    """MessagePack codec - binary, smaller payloads. Requires length framing."""

    __slots__ = ()
    name = "msgpack"
    content_type = "application/msgpack"

    def encode(self, data: JsonValue) -> bytes:
        return msgpack.packb(data, use_bin_type=True, strict_types=False)

    def decode(self, data: bytes) -> JsonValue:
        try:
            return msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (msgpack.ExtraData, msgpack.FormatError, msgpack.StackError, ValueError) as e:
            raise InvalidMessageError(f"Undecodable msgpack frame: {e}") from None


_json = JsonCodec()
_msgpack = MsgpackCodec()

_CODECS: dict[str, Codec] = {"json": _json, "msgpack": _msgpack}


def get_codec(name: str | CodecType | None = None) -> Codec:
    """Get codec by name (default: json)."""
    if name is None:
        return _json
    try:
        return _CODECS[str(name)]
    except KeyError:
        raise ValueError(f"Unknown codec: {name}. Use one of {', '.join(_CODECS)}") from None


def register_codec(name: str, codec: Codec) -> None:
    """Register custom codec implementation."""
    _CODECS[name] = codec


# ─────────────────────────────────────────────────────────────────────────────
# Direct functions (hot path)
# ─────────────────────────────────────────────────────────────────────────────


def encode(data: JsonValue) -> bytes:
    """Encode to JSON bytes (orjson)."""
    return orjson.dumps(data, option=orjson.OPT_UTC_Z | orjson.OPT_NON_STR_KEYS)


def encode_canonical(data: JsonValue) -> bytes:
    """JSON with sorted keys: equal values always produce equal bytes."""
    return orjson.dumps(data, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS)


def decode(data: bytes | str) -> JsonValue:
    """Decode from JSON bytes/str (orjson)."""
    return orjson.loads(data)


def pack(data: JsonValue) -> bytes:
    """Encode to msgpack bytes."""
    return msgpack.packb(data, use_bin_type=True, strict_types=False)


def unpack(data: bytes) -> JsonValue:
    """Decode from msgpack bytes."""
    return msgpack.unpackb(data, raw=False, strict_map_key=False)


def frame_length(payload: bytes) -> bytes:
    """Prefix payload with its 4-byte big-endian length."""
    return LENGTH_PREFIX.pack(len(payload)) + payload


def frame_newline(payload: bytes) -> bytes:
    """Terminate a single-line payload with '\\n'."""
    return payload + b"\n"
