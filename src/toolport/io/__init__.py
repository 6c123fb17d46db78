"""I/O layer: wire codecs, cache tiers and transports."""

from .codec import (
    Codec,
    CodecType,
    JsonCodec,
    MsgpackCodec,
    decode,
    encode,
    encode_canonical,
    get_codec,
    pack,
    register_codec,
    unpack,
)

__all__ = [
    "Codec",
    "CodecType",
    "JsonCodec",
    "MsgpackCodec",
    "decode",
    "encode",
    "encode_canonical",
    "get_codec",
    "pack",
    "register_codec",
    "unpack",
]
