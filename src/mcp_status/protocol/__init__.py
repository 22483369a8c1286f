"""MCP wire protocol: JSON-RPC envelope, handshake messages and SSE framing."""

from mcp_status.protocol.codec import (
    MCP_CLIENT_INFO,
    MCP_PROTOCOL_VERSION,
    SESSION_HEADER,
    SseDecoder,
    SseEvent,
    build_initialize_request,
    build_initialized_notification,
    build_request_headers,
    build_tools_list_request,
    decode_body,
    encode_line,
    extract_auth_from_query,
    format_sse,
    has_handshake_completed,
    parse_sse,
)
from mcp_status.protocol.jsonrpc import (
    INVALID_REQUEST,
    JsonRpcError,
    error_message,
    format_notification,
    format_request,
    parse_response,
)
from mcp_status.protocol.serverinfo import parse_server_info, server_info_from_line

__all__ = [
    "INVALID_REQUEST",
    "MCP_CLIENT_INFO",
    "MCP_PROTOCOL_VERSION",
    "SESSION_HEADER",
    "JsonRpcError",
    "SseDecoder",
    "SseEvent",
    "build_initialize_request",
    "build_initialized_notification",
    "build_request_headers",
    "build_tools_list_request",
    "decode_body",
    "encode_line",
    "error_message",
    "extract_auth_from_query",
    "format_notification",
    "format_request",
    "format_sse",
    "has_handshake_completed",
    "parse_response",
    "parse_server_info",
    "parse_sse",
    "server_info_from_line",
]
