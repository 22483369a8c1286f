"""JSON-RPC 2.0 message formatting and response parsing.

Client side of the JSON-RPC 2.0 envelope used by MCP on both transports.
"""

from __future__ import annotations

import json
from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Maximum message size (1 MB)
MAX_MESSAGE_SIZE = 1_048_576


class JsonRpcError(Exception):
    """JSON-RPC error with code and message."""

    def __init__(self, code: int, message: str, data: Any | None = None) -> None:
        """Initialize the error.

        Args:
            code: JSON-RPC error code.
            message: Human-readable error message.
            data: Optional additional error data.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_error(cls, error: Any) -> JsonRpcError:
        """Build from the ``error`` member of a response."""
        if isinstance(error, dict):
            code = error.get("code")
            return cls(
                code if isinstance(code, int) else INTERNAL_ERROR,
                error_message(error),
                error.get("data"),
            )
        return cls(INTERNAL_ERROR, error_message(error))


def error_message(error: Any) -> str:
    """Extract a readable message from a JSON-RPC ``error`` member.

    Falls back to the JSON encoding of the whole error.
    """
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return json.dumps(error)


def make_request(
    msg_id: int | str, method: str, params: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Build a JSON-RPC request object.

    Args:
        msg_id: Request ID.
        method: Method name.
        params: Optional parameters.

    Returns:
        Request dictionary.
    """
    request: dict[str, Any] = {
        "jsonrpc": "2.0",
        "id": msg_id,
        "method": method,
    }
    if params is not None:
        request["params"] = params
    return request


def make_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC notification object (no id, no response expected)."""
    notification: dict[str, Any] = {
        "jsonrpc": "2.0",
        "method": method,
    }
    if params is not None:
        notification["params"] = params
    return notification


def format_request(
    msg_id: int | str, method: str, params: dict[str, Any] | None = None
) -> str:
    """Format a JSON-RPC request.

    Returns:
        JSON string.
    """
    return json.dumps(make_request(msg_id, method, params))


def format_notification(method: str, params: dict[str, Any] | None = None) -> str:
    """Format a JSON-RPC notification.

    Returns:
        JSON string.
    """
    return json.dumps(make_notification(method, params))


def parse_response(raw: str, strict: bool = True) -> dict[str, Any]:
    """Parse a JSON-RPC response from a string.

    Args:
        raw: Raw JSON string.
        strict: Require the ``jsonrpc: "2.0"`` member. Servers that omit it
            are still understood when False.

    Returns:
        Response object (may carry ``result`` or ``error``).

    Raises:
        JsonRpcError: If the message is not a JSON object (or, when strict,
            not a JSON-RPC 2.0 message).
    """
    if len(raw) > MAX_MESSAGE_SIZE:
        raise JsonRpcError(
            PARSE_ERROR, f"Message too large: {len(raw)} bytes exceeds {MAX_MESSAGE_SIZE} limit"
        )

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise JsonRpcError(PARSE_ERROR, f"Parse error: {e}") from e

    if not isinstance(data, dict):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Response: message must be an object")

    if strict and data.get("jsonrpc") != "2.0":
        raise JsonRpcError(INVALID_REQUEST, "Invalid Response: jsonrpc must be '2.0'")

    return data
