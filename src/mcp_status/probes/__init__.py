"""Connectivity probes for STDIO and HTTP/SSE servers."""

from mcp_status.probes.http_session import HttpStatusError, McpHttpSession, ProbeError
from mcp_status.probes.http_tools import get_http_tools
from mcp_status.probes.http_verifier import verify_http_server
from mcp_status.probes.sse_legacy import (
    EndpointNotFound,
    LegacySseSession,
    get_sse_tools,
    verify_sse_server,
)
from mcp_status.probes.stdio_tools import ToolsFetchState, get_stdio_tools
from mcp_status.probes.stdio_verifier import VerifyState, verify_stdio_server

__all__ = [
    "EndpointNotFound",
    "HttpStatusError",
    "LegacySseSession",
    "McpHttpSession",
    "ProbeError",
    "ToolsFetchState",
    "VerifyState",
    "get_http_tools",
    "get_sse_tools",
    "get_stdio_tools",
    "verify_http_server",
    "verify_sse_server",
    "verify_stdio_server",
]
