"""Tests for wire messages and request routing."""

import pytest

from toolport.foundation.core import CapabilityKind
from toolport.foundation.errors import ErrorBody, ErrorKind, InputValidationError, InvalidMessageError, NotFoundError
from toolport.protocol import Message, Method, Request, list_changed


class TestMessage:
    def test_classification(self) -> None:
        assert Message.handshake("1").is_handshake
        assert Message.notification("notifications/initialized").is_notification
        assert Message.success(1, {"ok": True}).is_response
        assert Message.failure(1, ErrorBody.create(ErrorKind.NOT_FOUND, "gone")).is_response
        request = Message.request("tools/list", correlation_id=1)
        assert not (request.is_notification or request.is_response or request.is_handshake)

    def test_null_result_still_written(self) -> None:
        assert Message.success(3, None).to_wire() == {"correlation_id": 3, "result": None}

    def test_error_wire_shape(self) -> None:
        wire = Message.failure(2, ErrorBody.create(ErrorKind.PROTOCOL_ORDER, "handshake first")).to_wire()
        assert wire == {
            "correlation_id": 2,
            "error": {"kind": "ProtocolOrderError", "message": "handshake first", "details": {}, "fatal": True},
        }

    def test_unknown_fields_ignored(self) -> None:
        message = Message.from_wire({"correlation_id": "x", "method": "tools/list", "jsonrpc": "2.0"})
        assert message.correlation_id == "x"

    @pytest.mark.parametrize("data", [[], "tools/list", {"correlation_id": [1]}, {"params": "nope"}])
    def test_malformed(self, data: object) -> None:
        with pytest.raises(InvalidMessageError):
            Message.from_wire(data)

    def test_list_changed_method(self) -> None:
        assert list_changed(CapabilityKind.RESOURCES) == "notifications/resources/list_changed"


class TestRequest:
    def test_tool_call(self) -> None:
        message = Message.request(
            "tools/call", {"name": "add", "arguments": {"a": 1}, "timeout": 2}, correlation_id=9, credential="tok"
        )
        request = Request.from_message(message)
        assert request.method is Method.TOOLS_CALL
        assert request.catalog is CapabilityKind.TOOLS
        assert request.target_name == "add"
        assert request.arguments == {"a": 1}
        assert request.timeout == 2.0
        assert request.credential == "tok"
        assert not request.is_list

    def test_resource_read_targets_uri(self) -> None:
        request = Request.from_message(Message.request("resources/read", {"uri": "docs://acme/readme"}, correlation_id=1))
        assert request.target_name == "docs://acme/readme"
        assert request.arguments == {}

    def test_list(self) -> None:
        request = Request.from_message(Message.request("prompts/list", correlation_id=1))
        assert request.is_list
        assert request.target_name is None

    @pytest.mark.parametrize("method", ["tools/explode", "initialize", "notifications/initialized"])
    def test_not_routable(self, method: str) -> None:
        with pytest.raises(NotFoundError):
            Request.from_message(Message.request(method, correlation_id=1))

    @pytest.mark.parametrize(("params", "field"), [
        ({}, "name"),
        ({"name": ""}, "name"),
        ({"name": "add", "arguments": [1, 2]}, "arguments"),
        ({"name": "add", "timeout": -1}, "timeout"),
        ({"name": "add", "timeout": True}, "timeout"),
    ])
    def test_invalid_params(self, params: dict, field: str) -> None:
        with pytest.raises(InputValidationError) as exc:
            Request.from_message(Message.request("tools/call", params, correlation_id=1))
        assert exc.value.fields == [field]
