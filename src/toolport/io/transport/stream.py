"""Stream transport: one bidirectional byte stream carries one session.

Frames are either newline-delimited JSON documents or 4-byte big-endian
length-prefixed payloads (JSON or msgpack). Reads are strictly sequential;
writes are serialized by a lock so concurrent senders never interleave bytes.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Literal, Protocol

from toolport.foundation.errors import InvalidMessageError, TransportClosedError
from toolport.io.codec import LENGTH_PREFIX, Codec, frame_length, frame_newline, get_codec
from toolport.protocol import Message

from .base import Transport

if TYPE_CHECKING:
    from toolport.foundation.config import TransportSettings

logger = logging.getLogger("toolport.transport")

Framing = Literal["newline", "length"]

DEFAULT_MAX_MESSAGE = 4 * 1024 * 1024
DISCARD_CHUNK = 64 * 1024


class ByteWriter(Protocol):
    """The subset of ``asyncio.StreamWriter`` the transport uses."""
    def write(self, data: bytes) -> None: ...
    async def drain(self) -> None: ...
    def close(self) -> None: ...
    async def wait_closed(self) -> None: ...
    def is_closing(self) -> bool: ...


class StreamTransport(Transport):
    """Transport over an ``asyncio`` reader/writer pair.

    Args:
        reader: Source of inbound bytes
        writer: Sink for outbound bytes
        codec: Wire codec (msgpack requires ``framing="length"``)
        framing: ``"newline"`` or ``"length"``
        max_message_bytes: Frames above this size are rejected

    Example:
        >>> transport = await StreamTransport.from_stdio()
        >>> await server.serve(transport)
    """

    kind = "stream"

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: ByteWriter,
        *,
        codec: Codec | str | None = None,
        framing: Framing = "newline",
        max_message_bytes: int = DEFAULT_MAX_MESSAGE,
    ) -> None:
        self._codec = get_codec(codec) if codec is None or isinstance(codec, str) else codec
        if self._codec.name == "msgpack" and framing == "newline":
            raise ValueError("msgpack codec requires length framing")
        self._reader = reader
        self._writer = writer
        self._framing = framing
        self._max = max_message_bytes
        self._send_lock = asyncio.Lock()
        self._closed = False
        self._discard = 0

    @classmethod
    def from_settings(cls, reader: asyncio.StreamReader, writer: ByteWriter, settings: TransportSettings) -> StreamTransport:
        return cls(reader, writer, codec=settings.codec, framing=settings.framing, max_message_bytes=settings.max_message_bytes)

    @classmethod
    async def from_stdio(cls, settings: TransportSettings | None = None) -> StreamTransport:
        """Wrap process stdin/stdout."""
        loop = asyncio.get_running_loop()
        limit = settings.max_message_bytes + 1 if settings else DEFAULT_MAX_MESSAGE + 1
        reader = asyncio.StreamReader(limit=limit)
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        w_transport, w_protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout)
        writer = asyncio.StreamWriter(w_transport, w_protocol, reader, loop)
        if settings is None:
            return cls(reader, writer)
        return cls.from_settings(reader, writer, settings)

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self._closed:
            raise TransportClosedError("Transport already closed")

    async def close(self) -> None:
        self._closed = True
        if self._writer.is_closing():
            return
        try:
            self._writer.close()
            await self._writer.wait_closed()
        except (OSError, RuntimeError) as e:
            logger.debug("stream close: %s", e)

    # ─────────────────────────────────────────────────────────────────
    # Receive
    # ─────────────────────────────────────────────────────────────────

    async def receive(self) -> Message:
        payload = await self._read_frame()
        return Message.from_wire(self._codec.decode(payload))

    async def _read_frame(self) -> bytes:
        if self._closed:
            raise TransportClosedError("Transport closed")
        try:
            if self._framing == "length":
                return await self._read_length_frame()
            return await self._read_line()
        except (asyncio.IncompleteReadError, ConnectionError, OSError) as e:
            self._closed = True
            raise TransportClosedError(f"Stream ended: {type(e).__name__}") from None

    async def _read_line(self) -> bytes:
        while True:
            try:
                line = await self._reader.readline()
            except (ValueError, asyncio.LimitOverrunError):
                raise InvalidMessageError(f"Frame exceeds {self._max} bytes") from None
            if not line:
                self._closed = True
                raise TransportClosedError("Stream reached EOF")
            if len(line) > self._max:
                raise InvalidMessageError(f"Frame exceeds {self._max} bytes")
            if line.strip():
                return line

    async def _read_length_frame(self) -> bytes:
        await self._skip_discarded()
        header = await self._reader.readexactly(LENGTH_PREFIX.size)
        (size,) = LENGTH_PREFIX.unpack(header)
        if size > self._max:
            # Payload is drained lazily on the next read, never buffered whole
            self._discard = size
            raise InvalidMessageError(f"Frame of {size} bytes exceeds {self._max} bytes")
        return await self._reader.readexactly(size)

    async def _skip_discarded(self) -> None:
        while self._discard:
            chunk = await self._reader.readexactly(min(self._discard, DISCARD_CHUNK))
            self._discard -= len(chunk)

    # ─────────────────────────────────────────────────────────────────
    # Send
    # ─────────────────────────────────────────────────────────────────

    async def send(self, message: Message) -> None:
        payload = self._codec.encode(message.to_wire())
        frame = frame_length(payload) if self._framing == "length" else frame_newline(payload)
        async with self._send_lock:
            if self._closed or self._writer.is_closing():
                raise TransportClosedError("Transport closed")
            try:
                self._writer.write(frame)
                await self._writer.drain()
            except (ConnectionError, OSError, RuntimeError) as e:
                self._closed = True
                raise TransportClosedError(f"Write failed: {type(e).__name__}") from None
