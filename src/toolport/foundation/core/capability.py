"""Capability definitions: tools, resources and prompts.

A capability bundles a name, a description, an argument schema (a pydantic
model class), an access policy and the provider function into one immutable
value. Registration is explicit; the decorator helpers below only build that
value from a plain function.

Provider contract:
    handler(arguments: <input_schema instance>, session: Session) -> result

The handler may be sync (run in a worker thread) or async. It must not
authenticate or authorize on its own and must tolerate concurrent calls from
different sessions.

Example:
    >>> class WeatherArgs(Arguments):
    ...     city: str
    ...
    >>> def weather(args: WeatherArgs, session) -> dict:
    ...     return {"city": args.city, "forecast": "sunny"}
    ...
    >>> cap = Tool(name="weather", description="Current forecast", input_schema=WeatherArgs, handler=weather)
    >>> registry.register(cap)
"""

from __future__ import annotations

import asyncio
import inspect
import string
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    PrivateAttr,
    create_model,
    field_validator,
    model_validator,
)

from .template import UriTemplate

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonDict

Handler = Callable[..., Any]

_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.:/-]*$"


class CapabilityKind(StrEnum):
    """The three independent catalogs."""
    RESOURCES = "resources"
    TOOLS = "tools"
    PROMPTS = "prompts"


class Arguments(BaseModel):
    """Base class for argument schemas. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class EmptyArguments(Arguments):
    """Schema for capabilities that take no arguments."""


class Capability(BaseModel):
    """Common shape of every registered capability.

    Attributes:
        name: Unique within its catalog
        description: Shown to callers in listings
        input_schema: Pydantic model class used to validate arguments
        handler: Provider function, see module docstring
        scopes: Explicit access-policy patterns; empty means the derived
            ``{catalog}:{action}:{name}`` requirement
        timeout: Per-capability provider timeout in seconds
        cacheable: Whether identical calls may be answered from cache
        cache_ttl: TTL override for this capability
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: ClassVar[CapabilityKind]
    action: ClassVar[str]

    name: str = Field(..., min_length=1, max_length=128, pattern=_NAME_PATTERN)
    description: str = ""
    input_schema: type[BaseModel] = EmptyArguments
    handler: Handler | None = Field(default=None, exclude=True)
    scopes: tuple[str, ...] = ()
    timeout: PositiveFloat | None = None
    cacheable: bool = False
    cache_ttl: PositiveFloat | None = None

    @property
    def required_scopes(self) -> tuple[str, ...]:
        return self.scopes or (f"{self.kind}:{self.action}:{self.name}",)

    @property
    def json_schema(self) -> JsonDict:
        return self.input_schema.model_json_schema()

    def describe(self) -> JsonDict:
        """Listing entry for ``{catalog}/list`` responses."""
        return {"name": self.name, "description": self.description, "input_schema": self.json_schema}

    async def invoke(self, arguments: BaseModel, session: object) -> Any:
        """Run the provider. Sync handlers run in a worker thread."""
        if self.handler is None:
            raise NotImplementedError(f"{self.kind} '{self.name}' has no handler")
        if inspect.iscoroutinefunction(self.handler):
            return await self.handler(arguments, session)
        result = await asyncio.to_thread(self.handler, arguments, session)
        if inspect.isawaitable(result):
            result = await result
        return result


class Tool(Capability):
    """Named, schema-validated invocable action. Not cacheable unless marked."""

    kind = CapabilityKind.TOOLS
    action = "call"

    @model_validator(mode="after")
    def _needs_handler(self) -> Tool:
        if self.handler is None:
            raise ValueError(f"tool '{self.name}' requires a handler")
        return self


class Resource(Capability):
    """Readable, URI-addressed data. Template variables become arguments."""

    kind = CapabilityKind.RESOURCES
    action = "read"

    uri_template: str
    mime_type: str = "text/plain"
    cacheable: bool = True

    _template: UriTemplate = PrivateAttr()

    @field_validator("uri_template")
    @classmethod
    def _parse_template(cls, v: str) -> str:
        UriTemplate.parse(v)
        return v

    @model_validator(mode="before")
    @classmethod
    def _schema_from_template(cls, data: object) -> object:
        """Derive a string-typed schema from template variables when none is given."""
        if isinstance(data, dict) and data.get("input_schema") is None and isinstance(data.get("uri_template"), str):
            variables = UriTemplate.parse(data["uri_template"]).variables
            if variables:
                data = {**data, "input_schema": _build_schema(data.get("name", "resource"), {v: (str, ...) for v in variables})}
            else:
                data = {k: v for k, v in data.items() if k != "input_schema"}
        return data

    @model_validator(mode="after")
    def _needs_handler(self) -> Resource:
        if self.handler is None:
            raise ValueError(f"resource '{self.name}' requires a handler")
        return self

    def model_post_init(self, __context: Any) -> None:
        self._template = UriTemplate.parse(self.uri_template)

    @property
    def template(self) -> UriTemplate:
        return self._template

    def describe(self) -> JsonDict:
        return {**super().describe(), "uri_template": self.uri_template, "mime_type": self.mime_type}


class Prompt(Capability):
    """Named, parameterized text template.

    Without a handler the ``template`` text is rendered with ``str.format``
    using the validated arguments.
    """

    kind = CapabilityKind.PROMPTS
    action = "get"

    template: str | None = None
    cacheable: bool = True

    @model_validator(mode="before")
    @classmethod
    def _schema_from_placeholders(cls, data: object) -> object:
        if isinstance(data, dict) and data.get("input_schema") is None and isinstance(data.get("template"), str):
            names = [f for _, f, _, _ in string.Formatter().parse(data["template"]) if f]
            if names:
                data = {**data, "input_schema": _build_schema(data.get("name", "prompt"), {n: (str, ...) for n in dict.fromkeys(names)})}
            else:
                data = {k: v for k, v in data.items() if k != "input_schema"}
        return data

    @model_validator(mode="after")
    def _needs_source(self) -> Prompt:
        if self.handler is None and self.template is None:
            raise ValueError(f"prompt '{self.name}' requires a template or a handler")
        return self

    async def invoke(self, arguments: BaseModel, session: object) -> Any:
        if self.handler is None:
            return self.template.format_map(arguments.model_dump())  # type: ignore[union-attr]
        return await super().invoke(arguments, session)


# ─────────────────────────────────────────────────────────────────────────────
# Decorator helpers
# ─────────────────────────────────────────────────────────────────────────────


def _build_schema(name: str, fields: dict[str, Any]) -> type[BaseModel]:
    model_name = "".join(p.capitalize() for p in _split_name(name)) + "Arguments"
    return create_model(model_name, __base__=Arguments, **fields)


def _split_name(name: str) -> list[str]:
    return [p for p in name.replace("-", "_").replace(".", "_").replace("/", "_").replace(":", "_").split("_") if p]


def _schema_from_signature(fn: Callable[..., Any], name: str) -> type[BaseModel]:
    """Build an argument model from a function's parameters (``session`` excluded)."""
    from typing import get_type_hints

    hints = get_type_hints(fn)
    fields: dict[str, Any] = {}
    for param in inspect.signature(fn).parameters.values():
        if param.name == "session" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, Any)
        default = ... if param.default is param.empty else param.default
        fields[param.name] = (annotation, default)
    return _build_schema(name, fields)


def _adapt(fn: Callable[..., Any]) -> Handler:
    """Wrap a plain-keyword function into the (arguments, session) provider shape."""
    wants_session = "session" in inspect.signature(fn).parameters

    if inspect.iscoroutinefunction(fn):
        async def async_handler(arguments: BaseModel, session: object) -> Any:
            kwargs = dict(arguments)
            return await (fn(**kwargs, session=session) if wants_session else fn(**kwargs))
        return async_handler

    def handler(arguments: BaseModel, session: object) -> Any:
        kwargs = dict(arguments)
        return fn(**kwargs, session=session) if wants_session else fn(**kwargs)
    return handler


def _doc(fn: Callable[..., Any]) -> str:
    return (inspect.getdoc(fn) or "").split("\n\n", 1)[0].strip()


def tool(
    name: str | None = None,
    *,
    description: str | None = None,
    input_schema: type[BaseModel] | None = None,
    cacheable: bool = False,
    cache_ttl: float | None = None,
    timeout: float | None = None,
    scopes: tuple[str, ...] = (),
) -> Callable[[Callable[..., Any]], Tool]:
    """Build a ``Tool`` from a function.

    Without ``input_schema`` the schema comes from the function's keyword
    parameters and the function is called with them directly; with one, the
    function receives ``(arguments, session)``.

    Example:
        >>> @tool(cacheable=True)
        ... def add(a: int, b: int) -> int:
        ...     '''Add two integers.'''
        ...     return a + b
        >>> registry.register(add)
    """
    def decorator(fn: Callable[..., Any]) -> Tool:
        tool_name = name or fn.__name__
        schema = input_schema or _schema_from_signature(fn, tool_name)
        return Tool(
            name=tool_name,
            description=description if description is not None else _doc(fn),
            input_schema=schema,
            handler=fn if input_schema else _adapt(fn),
            cacheable=cacheable,
            cache_ttl=cache_ttl,
            timeout=timeout,
            scopes=scopes,
        )
    return decorator


def resource(
    uri_template: str,
    *,
    name: str | None = None,
    description: str | None = None,
    mime_type: str = "text/plain",
    cacheable: bool = True,
    cache_ttl: float | None = None,
    timeout: float | None = None,
    scopes: tuple[str, ...] = (),
) -> Callable[[Callable[..., Any]], Resource]:
    """Build a ``Resource`` from a function taking the template variables."""
    def decorator(fn: Callable[..., Any]) -> Resource:
        res_name = name or fn.__name__
        return Resource(
            name=res_name,
            description=description if description is not None else _doc(fn),
            uri_template=uri_template,
            mime_type=mime_type,
            handler=_adapt(fn),
            cacheable=cacheable,
            cache_ttl=cache_ttl,
            timeout=timeout,
            scopes=scopes,
        )
    return decorator


def prompt(
    name: str | None = None,
    *,
    description: str | None = None,
    cacheable: bool = True,
    cache_ttl: float | None = None,
    scopes: tuple[str, ...] = (),
) -> Callable[[Callable[..., Any]], Prompt]:
    """Build a ``Prompt`` whose text is produced by a function."""
    def decorator(fn: Callable[..., Any]) -> Prompt:
        prompt_name = name or fn.__name__
        return Prompt(
            name=prompt_name,
            description=description if description is not None else _doc(fn),
            input_schema=_schema_from_signature(fn, prompt_name),
            handler=_adapt(fn),
            cacheable=cacheable,
            cache_ttl=cache_ttl,
            scopes=scopes,
        )
    return decorator
