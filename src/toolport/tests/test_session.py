"""Tests for the handshake and session state machine."""

import pytest

from toolport.foundation.config import ProtocolSettings
from toolport.foundation.core import CapabilityKind
from toolport.foundation.errors import ProtocolOrderError, UnsupportedVersionError
from toolport.protocol import Message
from toolport.runtime import Session, SessionNegotiator, SessionState


@pytest.fixture
def negotiator() -> SessionNegotiator:
    return SessionNegotiator(ProtocolSettings(supported_versions=["1", "2"], server_name="test-server"))


def test_handshake_agrees_on_all_declared(negotiator: SessionNegotiator) -> None:
    session = Session()
    ack = negotiator.negotiate(session, Message.handshake("1", client_info={"name": "cli"}))

    assert session.state is SessionState.NEGOTIATED
    assert session.protocol_version == "1"
    assert session.client_info == {"name": "cli"}
    assert ack.agreed_capabilities == [CapabilityKind.RESOURCES, CapabilityKind.TOOLS, CapabilityKind.PROMPTS]
    assert ack.server_identity is not None and ack.server_identity.name == "test-server"
    assert ack.result == {"protocol_version": "1"}
    assert ack.correlation_id == 0


def test_requested_subset_in_declared_order(negotiator: SessionNegotiator) -> None:
    session = Session()
    ack = negotiator.negotiate(session, Message.handshake("2", ["prompts", "tools", "telepathy"]))
    assert ack.agreed_capabilities == [CapabilityKind.TOOLS, CapabilityKind.PROMPTS]
    assert session.allows(CapabilityKind.TOOLS)
    assert not session.allows(CapabilityKind.RESOURCES)


def test_numeric_version_accepted(negotiator: SessionNegotiator) -> None:
    session = Session()
    negotiator.negotiate(session, Message.from_wire({"correlation_id": 1, "method": "initialize", "protocol_version": 2}))
    assert session.protocol_version == "2"


def test_unsupported_version_closes(negotiator: SessionNegotiator) -> None:
    session = Session()
    with pytest.raises(UnsupportedVersionError) as exc:
        negotiator.negotiate(session, Message.handshake("9"))
    assert exc.value.fatal
    assert exc.value.details["supported"] == ["1", "2"]
    assert session.closed


def test_request_before_handshake_closes(negotiator: SessionNegotiator) -> None:
    session = Session()
    with pytest.raises(ProtocolOrderError):
        negotiator.negotiate(session, Message.request("tools/list", correlation_id=1))
    assert session.closed


def test_second_handshake_leaves_capabilities_unchanged(negotiator: SessionNegotiator) -> None:
    session = Session()
    negotiator.negotiate(session, Message.handshake("1", ["tools"]))
    with pytest.raises(ProtocolOrderError):
        negotiator.negotiate(session, Message.handshake("1", ["resources", "tools", "prompts"]))
    assert session.negotiated_capabilities == frozenset({CapabilityKind.TOOLS})
    assert session.negotiated


def test_declared_callable_is_consulted() -> None:
    negotiator = SessionNegotiator(declared=lambda: [CapabilityKind.TOOLS])
    session = Session()
    ack = negotiator.negotiate(session, Message.handshake("1"))
    assert ack.agreed_capabilities == [CapabilityKind.TOOLS]


def test_closed_session_cannot_negotiate(negotiator: SessionNegotiator) -> None:
    session = Session()
    session.close()
    with pytest.raises(ProtocolOrderError):
        negotiator.negotiate(session, Message.handshake("1"))
