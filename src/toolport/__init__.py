"""Toolport - capability-dispatch runtime for tool, resource and prompt servers.

Exposes typed capabilities to a remote caller over stdio or HTTP. Every call
is negotiated, authenticated, authorized, validated, rate limited, cached
where allowed, and sanitized on the way out.

Quick Start:
    >>> from toolport import CapabilityRegistry, Server, tool, resource, prompt
    >>>
    >>> @tool(cacheable=True)
    ... def add(a: int, b: int) -> int:
    ...     '''Add two integers.'''
    ...     return a + b
    >>>
    >>> @resource("docs://{project}/readme", mime_type="text/markdown")
    ... def readme(project: str) -> str:
    ...     return f"# {project}"
    >>>
    >>> registry = CapabilityRegistry([add, readme])
    >>> Server(registry).run_http(port=8080)

Stdio:
    >>> from toolport import serve_stdio
    >>> serve_stdio(registry)

Wire (one JSON document per line on stdio):
    -> {"correlation_id": 0, "method": "initialize", "protocol_version": "1"}
    <- {"correlation_id": 0, "result": {...}, "server_identity": {...}, "agreed_capabilities": [...]}
    -> {"correlation_id": 1, "method": "tools/call", "params": {"name": "add", "arguments": {"a": 1, "b": 2}}}
    <- {"correlation_id": 1, "result": {"content": 3}}
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core
from .foundation.core import (
    Arguments,
    Capability,
    CapabilityKind,
    EmptyArguments,
    Prompt,
    Resource,
    Tool,
    UriTemplate,
    prompt,
    resource,
    tool,
)

# Errors
from .foundation.errors import ErrorBody, ErrorKind, ToolportError

# Registry
from .foundation.registry import CapabilityRegistry

# Config
from .foundation.config import ToolportSettings, get_settings

# Protocol
from .protocol import Message, Method

# Cache
from .io.cache import MemoryCache, RedisCache, TieredCache

# Transports
from .io.transport import HttpGateway, HttpTransport, StreamTransport, Transport

# Runtime
from .runtime import (
    FixedWindowRateLimiter,
    Identity,
    MemoryCollector,
    RequestPipeline,
    Sanitizer,
    Session,
    SessionNegotiator,
    StaticTokenVerifier,
    Verifier,
    configure_logging,
    get_logger,
)

# Server
from .server import Server, create_http_app, serve_http, serve_stdio

__all__ = [
    # Version
    "__version__",
    # Core
    "Arguments", "Capability", "CapabilityKind", "EmptyArguments", "Prompt", "Resource", "Tool",
    "UriTemplate", "prompt", "resource", "tool",
    # Errors
    "ErrorBody", "ErrorKind", "ToolportError",
    # Registry
    "CapabilityRegistry",
    # Config
    "ToolportSettings", "get_settings",
    # Protocol
    "Message", "Method",
    # Cache
    "MemoryCache", "RedisCache", "TieredCache",
    # Transports
    "HttpGateway", "HttpTransport", "StreamTransport", "Transport",
    # Runtime
    "FixedWindowRateLimiter", "Identity", "MemoryCollector", "RequestPipeline", "Sanitizer",
    "Session", "SessionNegotiator", "StaticTokenVerifier", "Verifier",
    "configure_logging", "get_logger",
    # Server
    "Server", "create_http_app", "serve_http", "serve_stdio",
]
