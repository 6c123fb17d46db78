"""Tests for the stream transport and wire codecs."""

import asyncio

import orjson
import pytest

from toolport.foundation.errors import InvalidMessageError, TransportClosedError
from toolport.io.codec import LENGTH_PREFIX, frame_length, get_codec, pack, unpack
from toolport.io.transport import StreamTransport
from toolport.protocol import Message


class FakeWriter:
    """Collects written bytes."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.closing = False

    def write(self, data: bytes) -> None:
        self.buffer += data

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closing = True

    async def wait_closed(self) -> None:
        pass

    def is_closing(self) -> bool:
        return self.closing


def reader_with(*chunks: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    if eof:
        reader.feed_eof()
    return reader


class TestCodecs:
    def test_unknown_codec(self) -> None:
        with pytest.raises(ValueError):
            get_codec("xml")

    def test_json_decode_error(self) -> None:
        with pytest.raises(InvalidMessageError):
            get_codec("json").decode(b"{nope")

    def test_msgpack_decode_error(self) -> None:
        with pytest.raises(InvalidMessageError):
            get_codec("msgpack").decode(b"\xc1")

    def test_pack_unpack(self) -> None:
        assert unpack(pack({"method": "tools/list", "correlation_id": 3})) == {"method": "tools/list", "correlation_id": 3}


class TestNewlineFraming:
    @pytest.mark.asyncio
    async def test_receive_skips_blank_lines(self) -> None:
        reader = reader_with(b'{"correlation_id": 1, "method": "tools/list"}\n\n  \n{"method": "notifications/initialized"}\n')
        transport = StreamTransport(reader, FakeWriter())

        first = await transport.receive()
        second = await transport.receive()
        assert first.method == "tools/list" and first.correlation_id == 1
        assert second.is_notification

    @pytest.mark.asyncio
    async def test_bad_frame_leaves_stream_usable(self) -> None:
        reader = reader_with(b"not json\n", b'[1, 2]\n', b'{"correlation_id": 2, "method": "tools/list"}\n')
        transport = StreamTransport(reader, FakeWriter())

        with pytest.raises(InvalidMessageError):
            await transport.receive()
        with pytest.raises(InvalidMessageError):
            await transport.receive()
        assert (await transport.receive()).correlation_id == 2

    @pytest.mark.asyncio
    async def test_eof_closes(self) -> None:
        transport = StreamTransport(reader_with(), FakeWriter())
        with pytest.raises(TransportClosedError):
            await transport.receive()
        assert transport.closed

    @pytest.mark.asyncio
    async def test_oversized_line_rejected(self) -> None:
        reader = reader_with(b'{"method": "' + b"x" * 64 + b'"}\n', b'{"method": "tools/list"}\n')
        transport = StreamTransport(reader, FakeWriter(), max_message_bytes=32)
        with pytest.raises(InvalidMessageError):
            await transport.receive()
        assert (await transport.receive()).method == "tools/list"

    @pytest.mark.asyncio
    async def test_send_writes_one_line(self) -> None:
        writer = FakeWriter()
        transport = StreamTransport(reader_with(), writer)
        await transport.send(Message.success(5, {"content": 1}))

        assert writer.buffer.endswith(b"\n")
        assert writer.buffer.count(b"\n") == 1
        assert orjson.loads(writer.buffer) == {"correlation_id": 5, "result": {"content": 1}}

    @pytest.mark.asyncio
    async def test_credential_is_read_but_never_written(self) -> None:
        writer = FakeWriter()
        reader = reader_with(b'{"correlation_id": 1, "method": "tools/list", "credential": "s3cret"}\n')
        transport = StreamTransport(reader, writer)

        message = await transport.receive()
        assert message.credential == "s3cret"
        await transport.send(message)
        assert b"s3cret" not in writer.buffer

    @pytest.mark.asyncio
    async def test_concurrent_sends_do_not_interleave(self) -> None:
        writer = FakeWriter()
        transport = StreamTransport(reader_with(), writer)
        await asyncio.gather(*(transport.send(Message.success(i, "x" * 100)) for i in range(20)))

        lines = bytes(writer.buffer).splitlines()
        assert sorted(orjson.loads(line)["correlation_id"] for line in lines) == list(range(20))

    @pytest.mark.asyncio
    async def test_send_after_close(self) -> None:
        writer = FakeWriter()
        transport = StreamTransport(reader_with(), writer)
        await transport.close()
        assert writer.closing
        with pytest.raises(TransportClosedError):
            await transport.send(Message.success(1, None))

    @pytest.mark.asyncio
    async def test_msgpack_requires_length_framing(self) -> None:
        with pytest.raises(ValueError):
            StreamTransport(reader_with(), FakeWriter(), codec="msgpack")


class TestLengthFraming:
    @pytest.mark.asyncio
    async def test_msgpack_round_trip(self) -> None:
        frame = frame_length(pack({"correlation_id": 1, "method": "prompts/list"}))
        writer = FakeWriter()
        transport = StreamTransport(reader_with(frame), writer, codec="msgpack", framing="length")

        message = await transport.receive()
        assert message.method == "prompts/list"

        await transport.send(Message.success(1, {"prompts": []}))
        (size,) = LENGTH_PREFIX.unpack(bytes(writer.buffer[:LENGTH_PREFIX.size]))
        assert size == len(writer.buffer) - LENGTH_PREFIX.size
        assert unpack(bytes(writer.buffer[LENGTH_PREFIX.size:])) == {"correlation_id": 1, "result": {"prompts": []}}

    @pytest.mark.asyncio
    async def test_oversized_frame_rejected_and_skipped(self) -> None:
        big = frame_length(orjson.dumps({"method": "x" * 64}))
        small = frame_length(orjson.dumps({"method": "tools/list"}))
        transport = StreamTransport(reader_with(big, small), FakeWriter(), framing="length", max_message_bytes=32)

        with pytest.raises(InvalidMessageError):
            await transport.receive()
        assert (await transport.receive()).method == "tools/list"

    @pytest.mark.asyncio
    async def test_truncated_frame_closes(self) -> None:
        frame = frame_length(orjson.dumps({"method": "tools/list"}))
        transport = StreamTransport(reader_with(frame[:-3]), FakeWriter(), framing="length")
        with pytest.raises(TransportClosedError):
            await transport.receive()
        assert transport.closed

    @pytest.mark.asyncio
    async def test_oversized_header_rejected_before_payload_arrives(self) -> None:
        header = LENGTH_PREFIX.pack(50_000_000)
        transport = StreamTransport(reader_with(header, eof=False), FakeWriter(), framing="length", max_message_bytes=32)
        with pytest.raises(InvalidMessageError):
            await asyncio.wait_for(transport.receive(), 1.0)
        assert not transport.closed

    @pytest.mark.asyncio
    async def test_oversized_payload_drained_in_chunks(self) -> None:
        size = 200_000
        small = frame_length(orjson.dumps({"method": "tools/list"}))
        reader = reader_with(LENGTH_PREFIX.pack(size), b"\0" * size, small)
        transport = StreamTransport(reader, FakeWriter(), framing="length", max_message_bytes=32)

        with pytest.raises(InvalidMessageError):
            await transport.receive()
        assert (await transport.receive()).method == "tools/list"

    @pytest.mark.asyncio
    async def test_stream_ending_inside_oversized_payload_closes(self) -> None:
        reader = reader_with(LENGTH_PREFIX.pack(1000), b"\0" * 10)
        transport = StreamTransport(reader, FakeWriter(), framing="length", max_message_bytes=32)
        with pytest.raises(InvalidMessageError):
            await transport.receive()
        with pytest.raises(TransportClosedError):
            await transport.receive()
        assert transport.closed
