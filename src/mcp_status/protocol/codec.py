"""MCP handshake messages and HTTP body framing.

Builds the initialize handshake, frames and parses Server-Sent Events
bodies, and moves query-string credentials into request headers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

from mcp_status.protocol.jsonrpc import make_notification, make_request
from mcp_status.protocol.serverinfo import MAX_LINE_LENGTH, parse_server_info

# Protocol version advertised in initialize
MCP_PROTOCOL_VERSION = "2024-11-05"

MCP_CLIENT_INFO = {"name": "codemoss-ide", "version": "1.0.0"}

INITIALIZE_REQUEST_ID = 1
TOOLS_LIST_REQUEST_ID = 2

SESSION_HEADER = "Mcp-Session-Id"
AUTH_PARAM = "Authorization"

BASE_HTTP_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/event-stream",
}


@dataclass
class SseEvent:
    """One decoded Server-Sent Event."""

    data: Any
    event: str | None = None


def initialize_params() -> dict[str, Any]:
    """Parameters of the initialize request."""
    return {
        "protocolVersion": MCP_PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": dict(MCP_CLIENT_INFO),
    }


def build_initialize_request(request_id: int = INITIALIZE_REQUEST_ID) -> dict[str, Any]:
    """Build the JSON-RPC initialize request."""
    return make_request(request_id, "initialize", initialize_params())


def build_initialized_notification() -> dict[str, Any]:
    """Build the notification sent after a successful initialize."""
    return make_notification("notifications/initialized")


def build_tools_list_request(request_id: int = TOOLS_LIST_REQUEST_ID) -> dict[str, Any]:
    """Build the JSON-RPC tools/list request."""
    return make_request(request_id, "tools/list", {})


def encode_line(message: dict[str, Any]) -> bytes:
    """Encode a message for the newline-delimited STDIO transport."""
    return (json.dumps(message) + "\n").encode("utf-8")


class SseDecoder:
    """Incremental Server-Sent Events parser fed one line at a time.

    Used on live event streams, where events arrive over time.
    """

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, line: str) -> tuple[str | None, str] | None:
        """Consume one line; a trailing line terminator is ignored.

        Returns:
            ``(event, data)`` when a blank line completes an event that
            carried data, otherwise None.
        """
        line = line.rstrip("\r\n")
        if not line:
            event, data = self._event, self._data
            self._event, self._data = None, []
            if not data:
                return None
            return event, "\n".join(data)

        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value.strip() or None
        return None


def parse_sse(body: str) -> list[SseEvent]:
    """Parse a Server-Sent Events body.

    Events are separated by blank lines. The ``data:`` lines of an event are
    joined with newlines and JSON-decoded. Events without data or with
    undecodable data are skipped.

    Args:
        body: Raw response text.

    Returns:
        Decoded events in order; empty if none is well-formed.
    """
    events: list[SseEvent] = []
    decoder = SseDecoder()
    normalized = body.replace("\r\n", "\n").replace("\r", "\n")

    for line in [*normalized.split("\n"), ""]:
        raw = decoder.feed(line)
        if raw is None:
            continue
        event_name, payload = raw
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            continue
        events.append(SseEvent(data=data, event=event_name))

    return events


def format_sse(data: Any, event: str | None = None) -> str:
    """Frame a JSON value as one Server-Sent Event.

    Multi-line JSON is split across several ``data:`` lines.
    """
    lines = []
    if event:
        lines.append(f"event: {event}")
    payload = data if isinstance(data, str) else json.dumps(data, indent=2)
    lines.extend(f"data: {line}" for line in payload.split("\n"))
    return "\n".join(lines) + "\n\n"


def decode_body(text: str) -> dict[str, Any]:
    """Decode an HTTP response body, trying SSE framing before plain JSON.

    Raises:
        ValueError: If neither framing yields a JSON object.
    """
    events = parse_sse(text)
    if events and isinstance(events[0].data, dict):
        return events[0].data

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse response: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Failed to parse response: body is not a JSON object")
    return data


def extract_auth_from_query(
    url: str, headers: dict[str, str] | None = None
) -> tuple[str, dict[str, str]]:
    """Move an ``Authorization`` query parameter into the request headers.

    Args:
        url: Configured server URL.
        headers: Headers to extend (copied, not modified).

    Returns:
        The URL without the parameter and the updated headers; the inputs
        unchanged when there is no such parameter or the URL does not parse.
    """
    result_headers = dict(headers or {})
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return url, result_headers

    auth = parsed.params.get(AUTH_PARAM)
    if not auth:
        return url, result_headers

    result_headers[AUTH_PARAM] = auth
    return str(parsed.copy_remove_param(AUTH_PARAM)), result_headers


def build_request_headers(
    url: str, configured: dict[str, str] | None = None
) -> tuple[str, dict[str, str]]:
    """Build POST headers for an HTTP server.

    Configured headers are kept (non-string values dropped), query-string
    credentials moved into ``Authorization``, and the MCP content headers set.

    Returns:
        Target URL and headers.
    """
    clean = {
        str(k): v for k, v in (configured or {}).items() if isinstance(v, str)
    }
    target, headers = extract_auth_from_query(url, clean)
    headers.update(BASE_HTTP_HEADERS)
    return target, headers


def has_handshake_completed(buffer: str, max_line_length: int = MAX_LINE_LENGTH) -> bool:
    """Check whether buffered output contains an initialize result with serverInfo."""
    return parse_server_info(buffer, max_line_length) is not None
