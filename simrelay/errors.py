"""Error conventions for the relay.

Client-facing failures are rendered as a wire ``error`` message with a
machine-readable code and category, so observers can switch on the code
rather than parse the text. Internal failures that cross a component
boundary are raised as ``RelayError`` subclasses.

Usage:
    from simrelay.errors import protocol_error, ErrorCode

    await broadcaster.send_to(session_id, protocol_error(
        "get_node_history requires nodeId",
        code=ErrorCode.MISSING_ARGUMENT,
        required=["nodeId"],
    ))
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error classification.

    - PROTOCOL: client sent something unusable
    - PROCESS: the simulation process failed
    - TRANSPORT: delivery to a client failed
    - PARSE: simulation output could not be decoded
    - STATE: an event disagrees with the current state
    """

    PROTOCOL = "protocol"
    PROCESS = "process"
    TRANSPORT = "transport"
    PARSE = "parse"
    STATE = "state"


class ErrorCode(str, Enum):
    """Specific error codes for programmatic handling."""

    # Protocol errors
    INVALID_JSON = "invalid_json"
    INVALID_ENVELOPE = "invalid_envelope"
    MISSING_ARGUMENT = "missing_argument"
    INVALID_ARGUMENT = "invalid_argument"
    UNKNOWN_COMMAND = "unknown_command"

    # Run control
    ALREADY_RUNNING = "already_running"
    NOT_RUNNING = "not_running"

    # Process errors
    SPAWN_FAILED = "spawn_failed"
    TIMEOUT = "timeout"
    NONZERO_EXIT = "nonzero_exit"
    SIMULATION_STDERR = "simulation_stderr"

    # Output and state anomalies
    PARSE_FAILURE = "parse_failure"
    UNKNOWN_ENTITY = "unknown_entity"

    # Transport errors
    SEND_FAILED = "send_failed"
    QUEUE_FULL = "queue_full"


class RelayError(Exception):
    """Base class for relay errors carrying an error code."""

    category: ErrorCategory = ErrorCategory.PROTOCOL

    def __init__(self, message: str, code: ErrorCode, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_message(self) -> dict[str, object]:
        """Render as a wire error message."""
        return ErrorResponse(
            message=self.message,
            code=self.code.value,
            category=self.category.value,
            details=self.details or None,
        ).to_dict()


class ClientProtocolError(RelayError):
    """Inbound client message is unparsable or its command is unusable."""

    category = ErrorCategory.PROTOCOL


class TransportFailure(RelayError):
    """Delivery to one client's transport failed."""

    category = ErrorCategory.TRANSPORT


class ProcessFailure(RelayError):
    """Simulation process failed to spawn, timed out or exited non-zero."""

    category = ErrorCategory.PROCESS


@dataclass
class ErrorResponse:
    """Wire ``error`` message.

    Keeps the plain ``{"type": "error", "message": ...}`` shape and adds
    code and category for programmatic handling.
    """

    message: str = ""
    code: str = ""
    category: str = ""
    details: dict[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for serialization."""
        result: dict[str, object] = {
            "type": "error",
            "message": self.message,
            "code": self.code,
            "category": self.category,
            "timestamp": int(time.time() * 1000),
        }
        if self.details:
            result["details"] = self.details
        return result


def protocol_error(
    message: str,
    code: ErrorCode = ErrorCode.INVALID_ENVELOPE,
    **details: object,
) -> dict[str, object]:
    """Create an error message for a bad client message."""
    return ErrorResponse(
        message=message,
        code=code.value,
        category=ErrorCategory.PROTOCOL.value,
        details=dict(details) if details else None,
    ).to_dict()


def process_error(
    message: str,
    code: ErrorCode = ErrorCode.NONZERO_EXIT,
    **details: object,
) -> dict[str, object]:
    """Create an error message about the simulation process."""
    return ErrorResponse(
        message=message,
        code=code.value,
        category=ErrorCategory.PROCESS.value,
        details=dict(details) if details else None,
    ).to_dict()
