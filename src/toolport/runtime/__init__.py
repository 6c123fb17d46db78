"""Runtime: sessions, the request pipeline and its policy collaborators."""

from .auth import (
    Authenticator,
    DenyAllVerifier,
    Identity,
    StaticTokenVerifier,
    Verifier,
    authorize,
    authorize_list,
    scope_matches,
)
from .concurrency import KeyedLocks
from .observability import (
    BoundLogger,
    EventCollector,
    LoggingCollector,
    MemoryCollector,
    NullCollector,
    Outcome,
    Stage,
    StageEvent,
    configure_from_settings,
    configure_logging,
    get_logger,
    log_context,
)
from .pipeline import RequestPipeline, to_jsonable
from .ratelimit import FixedWindowRateLimiter, RateDecision, RateWindow
from .sanitize import Sanitizer
from .session import Session, SessionNegotiator, SessionState

__all__ = [
    "Authenticator",
    "BoundLogger",
    "DenyAllVerifier",
    "EventCollector",
    "FixedWindowRateLimiter",
    "Identity",
    "KeyedLocks",
    "LoggingCollector",
    "MemoryCollector",
    "NullCollector",
    "Outcome",
    "RateDecision",
    "RateWindow",
    "RequestPipeline",
    "Sanitizer",
    "Session",
    "SessionNegotiator",
    "SessionState",
    "Stage",
    "StageEvent",
    "StaticTokenVerifier",
    "Verifier",
    "authorize",
    "authorize_list",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "log_context",
    "scope_matches",
    "to_jsonable",
]
