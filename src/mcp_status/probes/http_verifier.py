"""HTTP/SSE server verification.

Sends a single ``initialize`` POST and judges the server by its answer.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from mcp_status.models import ServerConfig, ServerState, ServerStatus
from mcp_status.probes.http_session import McpHttpSession, ProbeError, describe_transport_error
from mcp_status.protocol.codec import build_initialize_request, decode_body
from mcp_status.protocol.jsonrpc import error_message
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)


def status_from_initialize(name: str, data: dict) -> ServerStatus:
    """Judge a server by its decoded initialize response.

    Raises:
        ProbeError: If the response carries a JSON-RPC error.
    """
    if data.get("error") is not None:
        raise ProbeError(f"Server error: {error_message(data['error'])}")

    result = data.get("result")
    server_info = result.get("serverInfo") if isinstance(result, dict) else None
    if isinstance(server_info, dict):
        logger.info("[MCP Verify] HTTP/SSE server connected: %s", name)
        return ServerStatus(name, ServerState.CONNECTED, server_info)

    # A result without serverInfo, or no result at all, still counts
    logger.info("[MCP Verify] HTTP/SSE server connected (no serverInfo): %s", name)
    return ServerStatus(name, ServerState.CONNECTED)


async def _initialize(session: McpHttpSession, deadline: float) -> ServerStatus:
    response = await session.post(build_initialize_request(), deadline)
    try:
        data = decode_body(response.text)
    except ValueError as e:
        raise ProbeError(str(e)) from e
    return status_from_initialize(session.name, data)


async def verify_http_server(
    name: str,
    config: ServerConfig,
    settings: ProbeSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServerStatus:
    """Verify an HTTP or SSE server with one initialize request.

    Args:
        name: Server name.
        config: Server configuration.
        settings: Probe settings (defaults to built-in defaults).
        transport: Optional httpx transport (used by tests).

    Returns:
        ``connected`` when the server answers, ``pending`` on timeout,
        ``failed`` otherwise.
    """
    settings = settings or ProbeSettings()
    if not config.url:
        return ServerStatus(name, ServerState.FAILED, error="No URL specified for HTTP/SSE server")

    deadline = settings.verify_timeout_for(config.type)
    logger.info("[MCP Verify] Verifying HTTP/SSE server: %s URL: %s", name, config.url)

    try:
        async with McpHttpSession(name, config.url, config.headers, settings, transport) as session:
            return await asyncio.wait_for(_initialize(session, deadline), deadline)
    except (TimeoutError, httpx.TimeoutException):
        logger.debug("[MCP Verify] HTTP/SSE server timeout: %s", name)
        return ServerStatus(name, ServerState.PENDING, error="Connection timeout")
    except httpx.RequestError as e:
        message = describe_transport_error(e)
        logger.debug("[MCP Verify] HTTP/SSE server failed: %s %s", name, message)
        return ServerStatus(name, ServerState.FAILED, error=message)
    except ProbeError as e:
        logger.debug("[MCP Verify] HTTP/SSE server failed: %s %s", name, e)
        return ServerStatus(name, ServerState.FAILED, error=str(e))
