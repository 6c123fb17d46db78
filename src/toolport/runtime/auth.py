"""Caller authentication and scope-based authorization.

Verifiers are pluggable: anything with ``async verify(credential)`` returning
an ``Identity`` (or ``None`` for a rejected credential) will do. Scope
patterns are ``{catalog}:{action}:{name}`` strings; a trailing ``*`` matches
any suffix, so ``tools:*`` grants every tool action and ``*`` grants all.
"""

from __future__ import annotations

import hmac
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from toolport.foundation.config import AuthSettings
from toolport.foundation.errors import AuthenticationError, AuthorizationError

if TYPE_CHECKING:
    from toolport.foundation.core import Capability, CapabilityKind

    from .session import Session

ANONYMOUS = "anonymous"


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated (or anonymous) caller.

    Attributes:
        subject: Stable caller id; rate limits are keyed on it
        identity_class: Coarse class shared by callers who may share cache entries
        scopes: Granted scope patterns
    """

    subject: str
    identity_class: str = "user"
    scopes: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def anonymous(cls, session_id: str, scopes: Iterable[str] = ("*",)) -> Identity:
        return cls(subject=f"{ANONYMOUS}:{session_id}", identity_class=ANONYMOUS, scopes=frozenset(scopes))

    @property
    def is_anonymous(self) -> bool:
        return self.identity_class == ANONYMOUS

    def allows(self, required: str) -> bool:
        return any(scope_matches(granted, required) for granted in self.scopes)


def scope_matches(granted: str, required: str) -> bool:
    """Wildcard-suffix match of one granted pattern against a required scope.

    >>> scope_matches("tools:*", "tools:call:weather")
    True
    >>> scope_matches("tools:call:weather", "tools:call:weather-admin")
    False
    """
    if granted.endswith("*"):
        return required.startswith(granted[:-1])
    return granted == required


@runtime_checkable
class Verifier(Protocol):
    """Resolves a caller-supplied credential into an identity."""

    async def verify(self, credential: str) -> Identity | None: ...


class StaticTokenVerifier:
    """Fixed table of bearer tokens, compared in constant time.

    Example:
        >>> verifier = StaticTokenVerifier({"s3cret": Identity("alice", scopes=frozenset({"tools:*"}))})
    """

    __slots__ = ("_table",)

    def __init__(self, tokens: Mapping[str, Identity]) -> None:
        self._table = tuple((token.encode(), identity) for token, identity in tokens.items())

    async def verify(self, credential: str) -> Identity | None:
        presented = credential.encode()
        found: Identity | None = None
        # every entry is compared so timing does not reveal table position
        for token, identity in self._table:
            if hmac.compare_digest(token, presented):
                found = identity
        return found


class DenyAllVerifier:
    """Rejects every credential. Default when no verifier is configured."""

    __slots__ = ()

    async def verify(self, credential: str) -> Identity | None:
        return None


class Authenticator:
    """Resolves the identity for each request on a session.

    A verified credential binds the session's identity once. Later requests
    may omit the credential or repeat one resolving to the same identity;
    a credential resolving to a different identity fails instead of
    replacing the bound one. Without any credential the caller is anonymous
    unless authentication is required.
    """

    __slots__ = ("_verifier", "_settings")

    def __init__(self, verifier: Verifier | None = None, settings: AuthSettings | None = None) -> None:
        self._verifier = verifier if verifier is not None else DenyAllVerifier()
        self._settings = settings or AuthSettings()

    async def authenticate(self, session: Session, credential: str | None) -> Identity:
        if credential:
            identity = await self._verifier.verify(credential)
            if identity is None:
                raise AuthenticationError("Invalid credential")
            if session.identity is None:
                session.identity = identity
            elif session.identity != identity:
                raise AuthenticationError("Credential does not match the identity bound to this session")
            return session.identity
        if session.identity is not None:
            return session.identity
        if self._settings.required:
            raise AuthenticationError("Authentication required")
        return Identity.anonymous(session.session_id, self._settings.anonymous_scopes)


def authorize_list(identity: Identity, catalog: CapabilityKind) -> None:
    required = f"{catalog}:list"
    if not identity.allows(required):
        raise AuthorizationError(f"Not allowed to list {catalog}", required=required)


def authorize(identity: Identity, capability: Capability) -> None:
    """Every required scope of the capability must be granted."""
    for required in capability.required_scopes:
        if not identity.allows(required):
            raise AuthorizationError(
                f"Not allowed to {capability.action} {capability.kind.value[:-1]} '{capability.name}'",
                required=required,
            )
