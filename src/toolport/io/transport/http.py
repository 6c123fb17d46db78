"""Request/push transport over HTTP.

Each inbound HTTP request carries one message and a session token header; the
response body is the matching reply. Unsolicited server messages (change
notifications) go out over a server-sent events stream tied to the same token.

Endpoints (``HttpGateway.app``):
    POST   /mcp         -> one message in, its response out
    GET    /mcp/events  -> SSE push channel for the session
    DELETE /mcp         -> close the session
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.responses import Response, StreamingResponse
from starlette.routing import Route

from toolport.foundation.config import TransportSettings
from toolport.foundation.errors import (
    CallTimeoutError,
    ErrorBody,
    InputValidationError,
    InvalidMessageError,
    NotFoundError,
    ProtocolOrderError,
    ToolportError,
    TransportClosedError,
)
from toolport.io.codec import JsonCodec
from toolport.protocol import CorrelationId, Message

from .base import Transport

if TYPE_CHECKING:
    from starlette.requests import Request

logger = logging.getLogger("toolport.transport")

ServeFn = Callable[[Transport], Awaitable[None]]

_json = JsonCodec()


class HttpTransport(Transport):
    """Per-session transport fed by the HTTP gateway.

    Inbound messages queue up for the session loop; each carries a future the
    gateway awaits, resolved when the loop sends the response with the same
    correlation id. Everything else the loop sends lands on the push queue.
    """

    kind = "http"

    def __init__(self, token: str) -> None:
        self.token = token
        self._inbound: asyncio.Queue[Message | None] = asyncio.Queue()
        self._push: asyncio.Queue[Message | None] = asyncio.Queue()
        self._pending: dict[CorrelationId | None, asyncio.Future[Message]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self._closed:
            raise TransportClosedError("Transport already closed")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbound.put_nowait(None)
        self._push.put_nowait(None)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportClosedError("Session closed"))
        self._pending.clear()

    async def receive(self) -> Message:
        if self._closed:
            raise TransportClosedError("Transport closed")
        message = await self._inbound.get()
        if message is None:
            raise TransportClosedError("Transport closed")
        return message

    async def send(self, message: Message) -> None:
        if self._closed:
            raise TransportClosedError("Transport closed")
        if message.method is None and (future := self._pending.pop(message.correlation_id, None)) is not None:
            if not future.done():
                future.set_result(message)
            return
        self._push.put_nowait(message)

    async def submit(self, message: Message) -> Message | None:
        """Hand one message to the session loop; wait for its response.

        Client notifications get no response and return ``None`` at once.
        """
        if self._closed:
            raise TransportClosedError("Transport closed")
        if message.is_notification:
            self._inbound.put_nowait(message)
            return None
        key = message.correlation_id
        if key in self._pending:
            raise InputValidationError(f"Correlation id {key!r} is already in flight", ["correlation_id"])
        future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        self._inbound.put_nowait(message)
        try:
            return await future
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]

    async def events(self) -> AsyncIterator[Message]:
        """Pushed messages until the session closes."""
        while (message := await self._push.get()) is not None:
            yield message


@dataclass(slots=True)
class _Live:
    transport: HttpTransport
    task: asyncio.Task[None]


def _error(exc: ToolportError, status: int, correlation_id: CorrelationId | None = None) -> Response:
    body = Message.failure(correlation_id, ErrorBody.from_exception(exc)).to_wire()
    return Response(_json.encode(body), status_code=status, media_type=_json.content_type)


def _bearer(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class HttpGateway:
    """Starlette application mapping HTTP calls onto per-session transports.

    A handshake without a session header opens a new session; the token comes
    back in the session header and must accompany every later call. Requests
    naming an unknown token get ``NotFoundError`` with HTTP 404.

    Args:
        serve: Runs one session to completion on a transport
        settings: Header name, body limit and response timeout

    Example:
        >>> gateway = HttpGateway(server.serve)
        >>> uvicorn.run(gateway.app, host="127.0.0.1", port=8080)
    """

    __slots__ = ("_serve", "_settings", "_sessions", "_app")

    def __init__(self, serve: ServeFn, settings: TransportSettings | None = None) -> None:
        self._serve = serve
        self._settings = settings or TransportSettings()
        self._sessions: dict[str, _Live] = {}
        self._app = Starlette(
            routes=[
                Route("/mcp", self._post, methods=["POST"]),
                Route("/mcp", self._delete, methods=["DELETE"]),
                Route("/mcp/events", self._events, methods=["GET"]),
            ],
            lifespan=self._lifespan,
        )

    @property
    def app(self) -> Starlette:
        """ASGI app for serving or embedding in a larger application."""
        return self._app

    @property
    def sessions(self) -> tuple[str, ...]:
        return tuple(self._sessions)

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        yield
        await self.shutdown()

    async def shutdown(self) -> None:
        """Close every live session and wait for its loop to finish."""
        live = list(self._sessions.values())
        for entry in live:
            await entry.transport.close()
        if live:
            await asyncio.gather(*(entry.task for entry in live), return_exceptions=True)

    # ─────────────────────────────────────────────────────────────────
    # Session bookkeeping
    # ─────────────────────────────────────────────────────────────────

    def _open_session(self) -> HttpTransport:
        token = secrets.token_urlsafe(24)
        transport = HttpTransport(token)
        task = asyncio.create_task(self._run(transport), name=f"toolport-http-{token[:8]}")
        self._sessions[token] = _Live(transport, task)
        return transport

    async def _run(self, transport: HttpTransport) -> None:
        try:
            await self._serve(transport)
        except Exception:
            logger.exception("http session %s crashed", transport.token[:8])
        finally:
            await transport.close()
            self._sessions.pop(transport.token, None)

    def _lookup(self, request: Request) -> HttpTransport | Response:
        token = request.headers.get(self._settings.session_header)
        if not token:
            return _error(ProtocolOrderError("No session: send 'initialize' first"), 400)
        live = self._sessions.get(token)
        if live is None or live.transport.closed:
            return _error(NotFoundError("Unknown or expired session"), 404)
        return live.transport

    # ─────────────────────────────────────────────────────────────────
    # Endpoints
    # ─────────────────────────────────────────────────────────────────

    async def _post(self, request: Request) -> Response:
        raw = await request.body()
        if len(raw) > self._settings.max_message_bytes:
            return _error(InvalidMessageError(f"Body exceeds {self._settings.max_message_bytes} bytes"), 413)
        try:
            data = _json.decode(raw)
            if isinstance(data, dict) and "credential" not in data and (bearer := _bearer(request)):
                data = {**data, "credential": bearer}
            message = Message.from_wire(data)
        except InvalidMessageError as e:
            return _error(e, 400)
        if not message.method:
            return _error(InvalidMessageError("Message has no method", ["method"]), 400, message.correlation_id)

        header = self._settings.session_header
        if message.is_handshake and not request.headers.get(header):
            transport = self._open_session()
        else:
            found = self._lookup(request)
            if isinstance(found, Response):
                return found
            transport = found

        try:
            reply = await self._await_reply(transport, message)
        except TransportClosedError:
            return _error(NotFoundError("Session closed"), 404, message.correlation_id)
        except ToolportError as e:
            return _error(e, 400 if isinstance(e, InputValidationError) else 504, message.correlation_id)

        headers = {header: transport.token}
        if reply is None:
            return Response(status_code=202, headers=headers)
        return Response(_json.encode(reply.to_wire()), media_type=_json.content_type, headers=headers)

    async def _await_reply(self, transport: HttpTransport, message: Message) -> Message | None:
        timeout = self._settings.response_timeout
        if not timeout:
            return await transport.submit(message)
        try:
            return await asyncio.wait_for(transport.submit(message), timeout)
        except asyncio.TimeoutError:
            raise CallTimeoutError(f"No response within {timeout:g}s") from None

    async def _events(self, request: Request) -> Response:
        found = self._lookup(request)
        if isinstance(found, Response):
            return found

        async def stream() -> AsyncIterator[bytes]:
            async for message in found.events():
                yield b"event: message\ndata: " + _json.encode(message.to_wire()) + b"\n\n"

        return StreamingResponse(stream(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})

    async def _delete(self, request: Request) -> Response:
        found = self._lookup(request)
        if isinstance(found, Response):
            return found
        await found.close()
        return Response(status_code=204)
