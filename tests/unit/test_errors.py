"""Tests for the error message conventions."""

from __future__ import annotations

from simrelay.errors import (
    ClientProtocolError,
    ErrorCategory,
    ErrorCode,
    ErrorResponse,
    ProcessFailure,
    TransportFailure,
    process_error,
    protocol_error,
)


class TestErrorResponse:
    def test_wire_shape(self) -> None:
        data = ErrorResponse(message="bad", code="invalid_json", category="protocol").to_dict()

        assert data["type"] == "error"
        assert data["message"] == "bad"
        assert data["code"] == "invalid_json"
        assert data["category"] == "protocol"
        assert isinstance(data["timestamp"], int)
        assert "details" not in data

    def test_details_included_when_present(self) -> None:
        data = ErrorResponse(message="x", details={"required": ["nodeId"]}).to_dict()
        assert data["details"] == {"required": ["nodeId"]}


class TestFactories:
    def test_protocol_error_defaults(self) -> None:
        data = protocol_error("Message must be a JSON object")

        assert data["code"] == ErrorCode.INVALID_ENVELOPE.value
        assert data["category"] == ErrorCategory.PROTOCOL.value

    def test_protocol_error_details(self) -> None:
        data = protocol_error("missing", ErrorCode.MISSING_ARGUMENT, required=["events"])
        assert data["details"] == {"required": ["events"]}

    def test_process_error(self) -> None:
        data = process_error("exit code 2", exitCode=2)

        assert data["code"] == "nonzero_exit"
        assert data["category"] == "process"
        assert data["details"] == {"exitCode": 2}


class TestRelayErrors:
    def test_categories(self) -> None:
        assert ClientProtocolError("x", ErrorCode.INVALID_ARGUMENT).category is ErrorCategory.PROTOCOL
        assert TransportFailure("x", ErrorCode.SEND_FAILED).category is ErrorCategory.TRANSPORT
        assert ProcessFailure("x", ErrorCode.TIMEOUT).category is ErrorCategory.PROCESS

    def test_to_message(self) -> None:
        error = ClientProtocolError("Unknown client role", ErrorCode.INVALID_ARGUMENT, allowed=["observer"])

        data = error.to_message()

        assert str(error) == "Unknown client role"
        assert data["code"] == "invalid_argument"
        assert data["category"] == "protocol"
        assert data["details"] == {"allowed": ["observer"]}
