"""HTTP/SSE tools listing.

Runs ``initialize`` then ``tools/list`` over one session, carrying the
server-issued session id between the two requests. Each request is bounded
by its own retry schedule, so the fetch has no overall deadline.
"""

from __future__ import annotations

import logging

import httpx

from mcp_status.models import ServerConfig, ToolDescriptor, ToolsRecord, parse_tools
from mcp_status.probes.http_session import McpHttpSession, ProbeError
from mcp_status.protocol.codec import initialize_params
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)


def tools_from_response(name: str, response: dict) -> list[ToolDescriptor]:
    """Read the tools of a ``tools/list`` response."""
    result = response.get("result")
    raw_tools = result.get("tools") if isinstance(result, dict) else None
    tools = parse_tools(raw_tools)
    logger.info("[MCP Tools] %s received tools/list response: %d tools", name, len(tools))
    return tools


async def _fetch_tools(session: McpHttpSession) -> list[ToolDescriptor]:
    init_response = await session.send_request("initialize", initialize_params())
    if "result" not in init_response or init_response["result"] is None:
        raise ProbeError("Invalid initialize response: missing result")

    logger.info("[MCP Tools] %s initialized successfully", session.name)
    if session.session_id:
        logger.info("[MCP Tools] %s using session", session.name)

    tools_response = await session.send_request("tools/list", {})
    return tools_from_response(session.name, tools_response)


async def get_http_tools(
    name: str,
    config: ServerConfig,
    settings: ProbeSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolsRecord:
    """List the tools of an HTTP or SSE server.

    Args:
        name: Server name.
        config: Server configuration.
        settings: Probe settings (defaults to built-in defaults).
        transport: Optional httpx transport (used by tests).

    Returns:
        ToolsRecord with the tools, or with ``error`` set on any failure.
    """
    settings = settings or ProbeSettings()
    record = ToolsRecord(name, server_type=config.type or "sse")
    if not config.url:
        record.error = "No URL specified for HTTP/SSE server"
        return record

    logger.info("[MCP Tools] Starting tools fetch for HTTP/SSE server: %s", name)

    try:
        async with McpHttpSession(name, config.url, config.headers, settings, transport) as session:
            record.tools = await _fetch_tools(session)
    except ProbeError as e:
        record.error = str(e)

    if record.error:
        logger.error("[MCP Tools] %s failed: %s", name, record.error)
    return record
