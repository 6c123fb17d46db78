"""Request pipeline: the dispatch core.

Every request on a negotiated session passes the stages below in order and
stops at the first failure:

    authenticate -> authorize -> validate -> rate_limit -> cache_lookup
        -> dispatch -> cache_populate -> sanitize -> respond

List methods skip validation and both cache stages; a cache hit skips
dispatch and populate. Whatever happens, ``handle()`` returns exactly one
response message: a success carrying the result, or an ``ErrorBody`` whose
message has been through the output deny-list.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from toolport.foundation.config import ToolportSettings
from toolport.foundation.core import CapabilityKind, Prompt, Resource
from toolport.foundation.errors import (
    AuthorizationError,
    CallTimeoutError,
    InputValidationError,
    ProtocolOrderError,
    ProviderError,
    RateLimitExceededError,
    ToolportError,
    format_validation_error,
)
from toolport.io.cache import AsyncCache, make_key
from toolport.io.codec import JsonCodec
from toolport.protocol import Message, Request

from .auth import Authenticator, Identity, authorize, authorize_list
from .concurrency import KeyedLocks
from .observability import EventCollector, LoggingCollector, Outcome, Stage, StageEvent, get_logger
from .ratelimit import FixedWindowRateLimiter
from .sanitize import Sanitizer

if TYPE_CHECKING:
    from toolport.foundation.core import Capability
    from toolport.foundation.errors import JsonDict, JsonValue
    from toolport.foundation.registry import CapabilityRegistry

    from .session import Session

log = get_logger("toolport.pipeline")

_json = JsonCodec()
_any: TypeAdapter[Any] = TypeAdapter(Any)


def to_jsonable(value: object) -> JsonValue:
    """Plain JSON data for a provider result (models, dataclasses, datetimes...)."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return _any.dump_python(value, mode="json")


class _Trace:
    """Stage event emitter bound to one request."""

    __slots__ = ("_collector", "_session_id", "_cid", "stage")

    def __init__(self, collector: EventCollector, session_id: str, correlation_id: str | int | None) -> None:
        self._collector = collector
        self._session_id = session_id
        self._cid = correlation_id
        self.stage = Stage.AUTHENTICATE

    def enter(self, stage: Stage) -> None:
        self.stage = stage

    def emit(self, stage: Stage, outcome: str, **detail: JsonValue) -> None:
        try:
            self._collector.collect(StageEvent(stage, self._session_id, self._cid, outcome, detail))
        except Exception:
            log.exception("event collector failed", stage=str(stage))

    def ok(self, outcome: str = Outcome.OK, **detail: JsonValue) -> None:
        self.emit(self.stage, outcome, **detail)

    def skip(self, *stages: Stage) -> None:
        for stage in stages:
            self.emit(stage, Outcome.SKIPPED)


class RequestPipeline:
    """Runs requests through authentication, policy, cache and provider stages.

    All collaborators are passed in; nothing here is process-global, so tests
    build isolated pipelines. One pipeline serves any number of sessions.

    Args:
        registry: Capability catalogs to route into
        settings: Cache TTLs, timeouts and policy switches
        authenticator: Resolves identities (default: anonymous unless required)
        cache: Result cache (``None`` disables caching)
        rate_limiter: Per (identity, method) limiter (``None`` disables)
        sanitizer: Input and output deny-lists
        collector: Sink for stage events
    """

    __slots__ = ("_registry", "_settings", "_auth", "_cache", "_limiter", "_sanitizer", "_collector", "_locks")

    def __init__(
        self,
        registry: CapabilityRegistry,
        settings: ToolportSettings | None = None,
        *,
        authenticator: Authenticator | None = None,
        cache: AsyncCache | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        sanitizer: Sanitizer | None = None,
        collector: EventCollector | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or ToolportSettings()
        self._auth = authenticator if authenticator is not None else Authenticator(settings=self._settings.auth)
        self._cache = cache if self._settings.cache.enabled else None
        self._limiter = rate_limiter if self._settings.rate_limit.enabled else None
        self._sanitizer = sanitizer if sanitizer is not None else Sanitizer(self._settings.sanitize)
        self._collector = collector if collector is not None else LoggingCollector()
        self._locks = KeyedLocks()

    @property
    def sanitizer(self) -> Sanitizer:
        return self._sanitizer

    @property
    def collector(self) -> EventCollector:
        return self._collector

    def emit(self, stage: Stage, session: Session, message: Message, outcome: str, **detail: JsonValue) -> None:
        """Emit an event outside a request pass (negotiation, transport errors)."""
        _Trace(self._collector, session.session_id, message.correlation_id).emit(stage, outcome, **detail)

    def error_response(self, message: Message, error: ToolportError) -> Message:
        """Structured, sanitized error reply for ``message``."""
        return Message.failure(message.correlation_id, self._sanitizer.redact_error(error.to_body()))

    # ─────────────────────────────────────────────────────────────────
    # Entry point
    # ─────────────────────────────────────────────────────────────────

    async def handle(self, session: Session, message: Message) -> Message:
        """Process one request message; always returns its response."""
        trace = _Trace(self._collector, session.session_id, message.correlation_id)
        try:
            result = await self._process(session, message, trace)
        except ToolportError as e:
            trace.ok(Outcome.error(e.kind))
            trace.emit(Stage.RESPOND, Outcome.error(e.kind))
            return self.error_response(message, e)
        except Exception:
            log.exception("pipeline fault", session_id=session.session_id, method=message.method, stage=str(trace.stage))
            err = ProviderError("Internal error while processing the request")
            trace.ok(Outcome.error(err.kind))
            trace.emit(Stage.RESPOND, Outcome.error(err.kind))
            return self.error_response(message, err)
        trace.emit(Stage.RESPOND, Outcome.OK)
        return Message.success(message.correlation_id, result)

    async def _process(self, session: Session, message: Message, trace: _Trace) -> JsonValue:
        if not session.negotiated:
            raise ProtocolOrderError(f"Session is {session.state}, not negotiated")

        # 1. authenticate
        identity = await self._auth.authenticate(session, message.credential)
        trace.ok(identity_class=identity.identity_class)

        # 2. authorize (routing and capability lookup belong here)
        trace.enter(Stage.AUTHORIZE)
        request = Request.from_message(message)
        if not session.allows(request.catalog):
            raise AuthorizationError(f"Capability '{request.catalog}' was not negotiated for this session")

        if request.is_list:
            authorize_list(identity, request.catalog)
            trace.ok(method=str(request.method))
            trace.skip(Stage.VALIDATE)
            trace.enter(Stage.RATE_LIMIT)
            self._rate_limit(identity, request, trace)
            trace.skip(Stage.CACHE_LOOKUP)
            trace.enter(Stage.DISPATCH)
            payload: JsonValue = {request.catalog.value: [c.describe() for c in self._registry.list_all(request.catalog)]}
            trace.ok()
            trace.skip(Stage.CACHE_POPULATE)
            trace.enter(Stage.SANITIZE)
            return self._sanitize(payload, trace)

        capability, arguments = self._resolve(request)
        authorize(identity, capability)
        trace.ok(method=str(request.method), target=capability.name)

        # 3. validate and sanitize input
        trace.enter(Stage.VALIDATE)
        validated = self._validate(capability, arguments)
        trace.ok()

        # 4. rate limit
        trace.enter(Stage.RATE_LIMIT)
        self._rate_limit(identity, request, trace)

        # 5-7. cache lookup, dispatch, populate
        if self._cache is None or not capability.cacheable:
            trace.skip(Stage.CACHE_LOOKUP)
            trace.enter(Stage.DISPATCH)
            payload = await self._dispatch(capability, request, validated, session, trace)
            trace.skip(Stage.CACHE_POPULATE)
        else:
            key = make_key(identity.identity_class, request.method, request.target_name, validated.model_dump(mode="json"))
            payload = await self._cached(key, capability, request, validated, session, trace)

        # 8. sanitize output
        trace.enter(Stage.SANITIZE)
        return self._sanitize(payload, trace)

    # ─────────────────────────────────────────────────────────────────
    # Stages
    # ─────────────────────────────────────────────────────────────────

    def _resolve(self, request: Request) -> tuple[Capability, JsonDict]:
        name = request.target_name or ""
        match request.catalog:
            case CapabilityKind.RESOURCES:
                resource, bindings = self._registry.resolve_resource(name)
                return resource, {**request.arguments, **bindings}
            case CapabilityKind.TOOLS:
                return self._registry.lookup_tool(name), request.arguments
            case _:
                return self._registry.lookup_prompt(name), request.arguments

    def _validate(self, capability: Capability, arguments: JsonDict) -> BaseModel:
        try:
            validated = capability.input_schema.model_validate(arguments)
        except ValidationError as e:
            text, fields = format_validation_error(e, name=capability.name)
            raise InputValidationError(text, fields) from None
        self._sanitizer.check_input(validated.model_dump(mode="json"), name=capability.name)
        return validated

    def _rate_limit(self, identity: Identity, request: Request, trace: _Trace) -> None:
        if self._limiter is None:
            trace.ok(Outcome.SKIPPED)
            return
        decision = self._limiter.check(identity.subject, request.method)
        if not decision:
            raise RateLimitExceededError(
                f"Rate limit exceeded for '{request.method}'; retry in {decision.retry_after:.2f}s",
                decision.retry_after,
            )
        trace.ok(remaining=decision.remaining)

    async def _cached(
        self,
        key: str,
        capability: Capability,
        request: Request,
        validated: BaseModel,
        session: Session,
        trace: _Trace,
    ) -> JsonValue:
        assert self._cache is not None
        trace.enter(Stage.CACHE_LOOKUP)
        if (hit := await self._cache.aget(key)) is not None:
            trace.ok(Outcome.HIT)
            trace.skip(Stage.DISPATCH, Stage.CACHE_POPULATE)
            return _json.decode(hit)

        async with self._locks.hold(key):
            # a concurrent miss for the same key may have populated it meanwhile
            if (hit := await self._cache.aget(key)) is not None:
                trace.ok(Outcome.HIT)
                trace.skip(Stage.DISPATCH, Stage.CACHE_POPULATE)
                return _json.decode(hit)
            trace.ok(Outcome.MISS)

            trace.enter(Stage.DISPATCH)
            payload = await self._dispatch(capability, request, validated, session, trace)

            trace.enter(Stage.CACHE_POPULATE)
            ttl = capability.cache_ttl or self._settings.cache.ttl_for(request.method)
            await self._cache.aput(key, _json.encode(payload), ttl)
            trace.ok(ttl=ttl)
        return payload

    def _timeout(self, request: Request, capability: Capability) -> float:
        limits = self._settings.timeout
        if request.timeout is not None:
            return min(request.timeout, limits.maximum)
        return capability.timeout or limits.default

    async def _dispatch(
        self,
        capability: Capability,
        request: Request,
        validated: BaseModel,
        session: Session,
        trace: _Trace,
    ) -> JsonValue:
        timeout = self._timeout(request, capability)
        try:
            raw = await asyncio.wait_for(capability.invoke(validated, session), timeout)
            content = to_jsonable(raw)
        except ToolportError:
            raise
        except asyncio.TimeoutError:
            raise CallTimeoutError(
                f"{capability.kind.value[:-1].capitalize()} '{capability.name}' timed out after {timeout:g}s",
                timeout=timeout,
            ) from None
        except PydanticSerializationError:
            raise ProviderError(f"Provider '{capability.name}' returned a non-serializable result") from None
        except Exception as e:
            log.exception("provider failed", capability=capability.name, session_id=session.session_id)
            detail = str(e) or type(e).__name__
            raise ProviderError(f"Provider '{capability.name}' failed: {detail}") from None
        trace.ok(timeout=timeout)
        return self._envelope(capability, request, content)

    @staticmethod
    def _envelope(capability: Capability, request: Request, content: JsonValue) -> JsonValue:
        if isinstance(capability, Resource):
            return {"uri": request.target_name, "mime_type": capability.mime_type, "contents": content}
        if isinstance(capability, Prompt):
            if isinstance(content, list):
                messages = content
            else:
                messages = [{"role": "user", "content": content if isinstance(content, str) else _json.encode(content).decode()}]
            return {"description": capability.description, "messages": messages}
        return {"content": content}

    def _sanitize(self, payload: JsonValue, trace: _Trace) -> JsonValue:
        cleaned = self._sanitizer.redact(payload)
        trace.ok()
        return cleaned
