"""Sessions and the handshake that negotiates them.

State machine (no transition back):

    AWAITING_HANDSHAKE --handshake ok--> NEGOTIATED --close--> CLOSED
    AWAITING_HANDSHAKE --any failure---------------------> CLOSED
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from toolport.foundation.config import ProtocolSettings
from toolport.foundation.core import CapabilityKind
from toolport.foundation.errors import ProtocolOrderError, UnsupportedVersionError
from toolport.protocol import Message, ServerIdentity

if TYPE_CHECKING:
    from toolport.foundation.errors import JsonDict

    from .auth import Identity


class SessionState(StrEnum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    NEGOTIATED = "negotiated"
    CLOSED = "closed"


@dataclass(slots=True, eq=False)
class Session:
    """One connected transport instance.

    Owned by the server loop serving that transport. ``negotiated_capabilities``
    is fixed once negotiation succeeds; ``identity`` stays ``None`` until a
    credential verifies.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.AWAITING_HANDSHAKE
    negotiated_capabilities: frozenset[CapabilityKind] = frozenset()
    protocol_version: str | None = None
    client_info: JsonDict = field(default_factory=dict)
    identity: Identity | None = None
    transport_kind: str = "stream"

    @property
    def negotiated(self) -> bool:
        return self.state is SessionState.NEGOTIATED

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def allows(self, catalog: CapabilityKind) -> bool:
        return catalog in self.negotiated_capabilities

    def close(self) -> None:
        self.state = SessionState.CLOSED


class SessionNegotiator:
    """Validates the handshake and freezes the session's capability set.

    Agreed capabilities are the server's declared catalogs (in declaration
    order) filtered by the client's request; an absent request means all of
    them, and names the server does not know are ignored.

    Example:
        >>> negotiator = SessionNegotiator(ProtocolSettings())
        >>> ack = negotiator.negotiate(session, Message.handshake("1"))
        >>> ack.agreed_capabilities
        [<CapabilityKind.RESOURCES: 'resources'>, <CapabilityKind.TOOLS: 'tools'>, <CapabilityKind.PROMPTS: 'prompts'>]
    """

    __slots__ = ("_settings", "_identity", "_declared")

    def __init__(self, settings: ProtocolSettings | None = None, *, declared: Callable[[], list[CapabilityKind]] | None = None) -> None:
        self._settings = settings or ProtocolSettings()
        self._identity = ServerIdentity(name=self._settings.server_name, version=self._settings.server_version)
        self._declared = declared or (lambda: [CapabilityKind(c) for c in self._settings.capabilities])

    @property
    def server_identity(self) -> ServerIdentity:
        return self._identity

    @property
    def supported_versions(self) -> list[str]:
        return list(self._settings.supported_versions)

    def negotiate(self, session: Session, message: Message) -> Message:
        """Apply the handshake to a session awaiting it; return the acknowledgement.

        Raises ProtocolOrderError (non-handshake first message, or a session
        past AWAITING_HANDSHAKE) or UnsupportedVersionError. Failure on an
        awaiting session closes it.
        """
        if session.state is not SessionState.AWAITING_HANDSHAKE:
            raise ProtocolOrderError(f"Handshake not allowed in state '{session.state}'", state=str(session.state))
        try:
            if not message.is_handshake:
                raise ProtocolOrderError(
                    f"Expected 'initialize' before '{message.method or 'response'}'",
                    method=message.method,
                )
            version = message.protocol_version
            if version not in self._settings.supported_versions:
                raise UnsupportedVersionError(
                    f"Protocol version {version!r} is not supported",
                    supported=self.supported_versions,
                )
        except (ProtocolOrderError, UnsupportedVersionError):
            session.close()
            raise

        declared = self._declared()
        if message.requested_capabilities is None:
            agreed = declared
        else:
            requested = set(message.requested_capabilities)
            agreed = [c for c in declared if c.value in requested]

        session.negotiated_capabilities = frozenset(agreed)
        session.protocol_version = version
        session.client_info = dict(message.client_info or {})
        session.state = SessionState.NEGOTIATED
        return Message.success(
            message.correlation_id,
            {"protocol_version": version},
            server_identity=self._identity,
            agreed_capabilities=agreed,
        )
