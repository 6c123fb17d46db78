"""Server runtime: one negotiator and one pipeline shared by every session.

``serve(transport)`` runs a single session from open to close:

    open -> negotiate -> ordered request loop -> close (always)

Messages within one session are handled strictly in arrival order; separate
sessions run concurrently as separate tasks. Registry changes are pushed to
every negotiated session that agreed on the changed catalog.

Example:
    >>> registry = CapabilityRegistry([add, readme, summarize])
    >>> server = Server(registry)
    >>> asyncio.run(server.run_stdio())          # one session over stdin/stdout
    >>> server.run_http(port=8080)               # HTTP + SSE via uvicorn
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from typing import TYPE_CHECKING

from toolport.foundation.config import ToolportSettings, get_settings
from toolport.foundation.core import CapabilityKind
from toolport.foundation.errors import InvalidMessageError, ProtocolOrderError, ToolportError, TransportClosedError
from toolport.foundation.registry import CapabilityRegistry
from toolport.io.cache import AsyncCache, build_cache
from toolport.io.transport import HttpGateway, StreamTransport, Transport
from toolport.protocol import Message, Method, list_changed
from toolport.runtime import (
    Authenticator,
    EventCollector,
    FixedWindowRateLimiter,
    Outcome,
    RequestPipeline,
    Sanitizer,
    Session,
    SessionNegotiator,
    Stage,
    Verifier,
    configure_from_settings,
    get_logger,
    log_context,
)

if TYPE_CHECKING:
    from starlette.applications import Starlette

    from toolport.foundation.core import Capability

log = get_logger("toolport.server")


class Server:
    """Capability server bound to a registry.

    Every collaborator may be passed in; defaults are built from settings.

    Args:
        registry: Capabilities to expose (empty registry if omitted)
        settings: Configuration (process settings if omitted)
        verifier: Credential verifier (credentials are rejected if omitted)
        cache: Result cache (built from ``settings.cache`` if omitted)
        rate_limiter: Rate limiter (built from ``settings.rate_limit`` if omitted)
        collector: Stage event sink (structured logger if omitted)
    """

    def __init__(
        self,
        registry: CapabilityRegistry | None = None,
        settings: ToolportSettings | None = None,
        *,
        verifier: Verifier | None = None,
        cache: AsyncCache | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        collector: EventCollector | None = None,
        sanitizer: Sanitizer | None = None,
    ) -> None:
        self.registry = registry if registry is not None else CapabilityRegistry()
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else build_cache(self.settings.cache)
        self.rate_limiter = (
            rate_limiter if rate_limiter is not None else FixedWindowRateLimiter.from_settings(self.settings.rate_limit)
        )
        self.negotiator = SessionNegotiator(self.settings.protocol)
        self.pipeline = RequestPipeline(
            self.registry,
            self.settings,
            authenticator=Authenticator(verifier, self.settings.auth),
            cache=self.cache,
            rate_limiter=self.rate_limiter,
            sanitizer=sanitizer,
            collector=collector,
        )
        self._live: dict[str, tuple[Session, Transport]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._live_lock = threading.Lock()
        self._unsubscribe = self.registry.subscribe(self._on_registry_change)

    def register(self, capability: Capability) -> Capability:
        """Register a capability and return it."""
        self.registry.register(capability)
        return capability

    @property
    def sessions(self) -> list[Session]:
        with self._live_lock:
            return [session for session, _ in self._live.values()]

    # ─────────────────────────────────────────────────────────────────
    # Session loop
    # ─────────────────────────────────────────────────────────────────

    async def serve(self, transport: Transport) -> None:
        """Serve one session on ``transport`` until it closes."""
        self._loop = asyncio.get_running_loop()
        session = Session(transport_kind=transport.kind)
        with log_context(session_id=session.session_id):
            try:
                await transport.open()
                log.debug("session opened", transport=transport.kind)
                if await self._negotiate(session, transport):
                    with self._live_lock:
                        self._live[session.session_id] = (session, transport)
                    await self._request_loop(session, transport)
            except TransportClosedError:
                log.debug("transport closed")
            finally:
                with self._live_lock:
                    self._live.pop(session.session_id, None)
                session.close()
                await transport.close()
                log.debug("session closed")

    async def _negotiate(self, session: Session, transport: Transport) -> bool:
        while True:
            try:
                message = await transport.receive()
            except InvalidMessageError as e:
                await transport.send(self.pipeline.error_response(Message(), e))
                continue
            try:
                ack = self.negotiator.negotiate(session, message)
            except ToolportError as e:
                self.pipeline.emit(Stage.NEGOTIATE, session, message, Outcome.error(e.kind))
                log.info("negotiation failed", error=e.message)
                await transport.send(self.pipeline.error_response(message, e))
                return False
            self.pipeline.emit(
                Stage.NEGOTIATE, session, message, Outcome.OK,
                agreed=[c.value for c in ack.agreed_capabilities or []],
            )
            await transport.send(ack)
            return True

    async def _request_loop(self, session: Session, transport: Transport) -> None:
        while True:
            try:
                message = await transport.receive()
            except InvalidMessageError as e:
                await transport.send(self.pipeline.error_response(Message(), e))
                continue

            if message.is_handshake:
                error = ProtocolOrderError("Session is already negotiated")
                self.pipeline.emit(Stage.NEGOTIATE, session, message, Outcome.error(error.kind))
                await transport.send(self.pipeline.error_response(message, error))
                return
            if message.is_notification:
                if message.method != Method.INITIALIZED:
                    log.debug("ignoring client notification", method=message.method)
                continue
            if message.is_response:
                log.debug("ignoring unsolicited response", correlation_id=message.correlation_id)
                continue

            response = await self.pipeline.handle(session, message)
            if transport.closed:
                log.debug("discarding response for closed transport", correlation_id=message.correlation_id)
                return
            await transport.send(response)

    # ─────────────────────────────────────────────────────────────────
    # Change notifications
    # ─────────────────────────────────────────────────────────────────

    def _on_registry_change(self, kind: CapabilityKind) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        with self._live_lock:
            targets = [t for s, t in self._live.values() if s.negotiated and s.allows(kind)]
        if not targets:
            return
        notice = Message.notification(list_changed(kind))
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        for transport in targets:
            if running is loop:
                self._spawn(transport, notice)
            else:
                loop.call_soon_threadsafe(self._spawn, transport, notice)

    def _spawn(self, transport: Transport, notice: Message) -> None:
        task = asyncio.get_running_loop().create_task(self._push(transport, notice))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _push(transport: Transport, notice: Message) -> None:
        try:
            await transport.send(notice)
        except TransportClosedError:
            log.debug("notification dropped, transport closed", method=notice.method)

    # ─────────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────────

    async def run_stdio(self) -> None:
        """Serve one session over process stdin/stdout."""
        transport = await StreamTransport.from_stdio(self.settings.transport)
        await self.serve(transport)

    def create_http_app(self) -> Starlette:
        """ASGI app exposing this server over HTTP with an SSE push channel."""
        return HttpGateway(self.serve, self.settings.transport).app

    def run_http(self, host: str | None = None, port: int | None = None) -> None:
        """Start the HTTP transport with uvicorn (blocking)."""
        import uvicorn

        configure_from_settings(self.settings.logging)
        transport = self.settings.transport
        uvicorn.run(self.create_http_app(), host=host or transport.host, port=port or transport.port)

    async def aclose(self) -> None:
        """Detach from the registry and close every live session."""
        self._unsubscribe()
        with self._live_lock:
            transports = [t for _, t in self._live.values()]
        for transport in transports:
            with contextlib.suppress(TransportClosedError):
                await transport.close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


def serve_stdio(registry: CapabilityRegistry, settings: ToolportSettings | None = None, **kwargs: object) -> None:
    """Run a stdio server until stdin closes.

    Logs go to stderr: stdout carries the protocol.
    """
    server = Server(registry, settings, **kwargs)  # type: ignore[arg-type]
    configure_from_settings(server.settings.logging)
    asyncio.run(server.run_stdio())


def serve_http(
    registry: CapabilityRegistry,
    settings: ToolportSettings | None = None,
    *,
    host: str | None = None,
    port: int | None = None,
    **kwargs: object,
) -> None:
    """Expose a registry over HTTP (POST /mcp, GET /mcp/events, DELETE /mcp)."""
    Server(registry, settings, **kwargs).run_http(host, port)  # type: ignore[arg-type]


def create_http_app(registry: CapabilityRegistry, settings: ToolportSettings | None = None, **kwargs: object) -> Starlette:
    """Create the ASGI app without running it, for embedding in a larger app."""
    return Server(registry, settings, **kwargs).create_http_app()  # type: ignore[arg-type]
