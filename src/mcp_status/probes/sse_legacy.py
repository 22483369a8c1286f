"""Legacy HTTP+SSE transport.

Older MCP servers keep a GET event stream open and announce, in an
``endpoint`` event, the URI that accepts POSTed JSON-RPC messages. POSTs
are acknowledged (usually ``202 Accepted``) and the responses arrive on the
stream as ``message`` events.

Servers that never announce an endpoint, or refuse the GET, are handed to
the Streamable HTTP functions instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from mcp_status.log import redact_mapping
from mcp_status.models import (
    ServerConfig,
    ServerState,
    ServerStatus,
    ToolDescriptor,
    ToolsRecord,
)
from mcp_status.probes.http_session import HttpStatusError, ProbeError, describe_transport_error
from mcp_status.probes.http_tools import get_http_tools, tools_from_response
from mcp_status.probes.http_verifier import status_from_initialize, verify_http_server
from mcp_status.protocol.codec import (
    SseDecoder,
    build_initialized_notification,
    build_request_headers,
    decode_body,
    initialize_params,
)
from mcp_status.protocol.jsonrpc import JsonRpcError, error_message, make_request, parse_response
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"


class EndpointNotFound(ProbeError):
    """Raised when a server does not offer a legacy event stream."""

    pass


class LegacySseSession:
    """JSON-RPC session over a legacy MCP event stream."""

    def __init__(
        self,
        name: str,
        url: str,
        headers: dict[str, str] | None = None,
        settings: ProbeSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            name: Server name, for logging.
            url: Event stream URL; an ``Authorization`` query parameter is
                moved into the headers.
            headers: Configured request headers.
            settings: Probe settings (defaults to built-in defaults).
            transport: Optional httpx transport (used by tests).
        """
        self.name = name
        self.settings = settings or ProbeSettings()
        self.url, self.headers = build_request_headers(url, headers)
        self.transport = transport
        self.endpoint: str | None = None

        self._request_id = 0
        self._client: httpx.AsyncClient | None = None
        self._reader: asyncio.Task | None = None
        self._endpoint_ready: asyncio.Future[str] | None = None
        self._pending: dict[Any, asyncio.Future[dict[str, Any]]] = {}
        self._failure: Exception | None = None

    async def __aenter__(self) -> LegacySseSession:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Stop reading the event stream and close the HTTP client."""
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        ready = self._endpoint_ready
        if ready is not None and ready.done() and not ready.cancelled():
            # Mark a failure nobody waited for as seen
            ready.exception()
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def connect(self) -> str:
        """Open the event stream and wait for the endpoint announcement.

        Returns:
            Absolute URL to POST messages to.

        Raises:
            EndpointNotFound: If the stream is refused or stays silent for
                ``sse_endpoint_timeout`` seconds.
            HttpStatusError: On any other non-2xx answer to the GET.
            httpx.RequestError: If the stream cannot be opened.
        """
        self._endpoint_ready = asyncio.get_running_loop().create_future()
        self._client = httpx.AsyncClient(transport=self.transport)
        self._reader = asyncio.create_task(self._read_stream(self._client))

        timeout = self.settings.sse_endpoint_timeout
        try:
            return await asyncio.wait_for(asyncio.shield(self._endpoint_ready), timeout)
        except TimeoutError as e:
            raise EndpointNotFound(f"No endpoint event within {timeout:g}s") from e

    async def _read_stream(self, client: httpx.AsyncClient) -> None:
        headers = {k: v for k, v in self.headers.items() if k != "Content-Type"}
        headers["Accept"] = EVENT_STREAM
        logger.debug("[MCP SSE] %s headers: %s", self.name, redact_mapping(headers))
        # The stream stays open for the whole session
        timeout = httpx.Timeout(self.settings.request_timeout, read=None)

        try:
            async with client.stream(
                "GET", self.url, headers=headers, timeout=timeout
            ) as response:
                if response.status_code in (404, 405):
                    raise EndpointNotFound(f"Event stream not offered: HTTP {response.status_code}")
                if not response.is_success:
                    raise HttpStatusError(response.status_code, response.reason_phrase)
                content_type = response.headers.get("Content-Type", "")
                if EVENT_STREAM not in content_type:
                    raise EndpointNotFound(f"Unexpected content type: {content_type or 'none'}")

                decoder = SseDecoder()
                async for line in response.aiter_lines():
                    event = decoder.feed(line)
                    if event is not None:
                        self._dispatch(*event)
                event = decoder.feed("")
                if event is not None:
                    self._dispatch(*event)
            self._fail(ProbeError("Event stream closed"))
        except httpx.InvalidURL as e:
            self._fail(ProbeError(f"Invalid URL: {e}"))
        except (ProbeError, httpx.HTTPError) as e:
            self._fail(e)

    def _dispatch(self, event: str | None, data: str) -> None:
        if event == "endpoint":
            if self._endpoint_ready is not None and not self._endpoint_ready.done():
                self.endpoint = str(httpx.URL(self.url).join(data.strip()))
                logger.info("[MCP SSE] %s announced endpoint", self.name)
                self._endpoint_ready.set_result(self.endpoint)
            return
        if event not in (None, "message"):
            logger.debug("[MCP SSE] %s ignoring %s event", self.name, event)
            return

        try:
            message = parse_response(data, strict=False)
        except JsonRpcError as e:
            logger.debug("[MCP SSE] %s skipped event: %s", self.name, e)
            return
        waiter = self._pending.get(message.get("id"))
        if waiter is not None and not waiter.done():
            waiter.set_result(message)

    def _fail(self, error: Exception) -> None:
        """Settle every waiter with the error that ended the stream."""
        if self._failure is None:
            self._failure = error
            logger.debug("[MCP SSE] %s stream ended: %s", self.name, error)
        if self._endpoint_ready is not None and not self._endpoint_ready.done():
            self._endpoint_ready.set_exception(error)
        for waiter in self._pending.values():
            if not waiter.done():
                waiter.set_exception(error)

    async def post(self, message: dict[str, Any], timeout: float) -> httpx.Response:
        """POST one JSON-RPC message to the announced endpoint.

        Raises:
            HttpStatusError: On a non-2xx response.
            ProbeError: If no endpoint is known or the stream has ended.
        """
        if self._client is None or self.endpoint is None:
            raise ProbeError("Not connected")
        if self._failure is not None:
            raise self._failure

        response = await self._client.post(
            self.endpoint, json=message, headers=self.headers, timeout=timeout
        )
        if not response.is_success:
            raise HttpStatusError(response.status_code, response.reason_phrase)
        return response

    async def send_request(
        self, method: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Send a request and wait for its response on the event stream.

        A response carried directly in the POST body is accepted as well.

        Raises:
            ProbeError: On a JSON-RPC error or when the stream ends.
            TimeoutError: If no response arrives within the request timeout.
        """
        request = make_request(self.next_id(), method, params if params is not None else {})
        timeout = self.settings.request_timeout
        waiter: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request["id"]] = waiter
        logger.info("[MCP SSE] %s sending %s request (id: %s)", self.name, method, request["id"])

        try:
            response = await self.post(request, timeout)
            if response.status_code != 202 and response.text.strip():
                try:
                    inline = decode_body(response.text)
                except ValueError:
                    inline = None
                if inline is not None and inline.get("id") == request["id"] and not waiter.done():
                    waiter.set_result(inline)
            data = await asyncio.wait_for(waiter, timeout)
        finally:
            self._pending.pop(request["id"], None)

        if data.get("error") is not None:
            raise ProbeError(f"Server error: {error_message(data['error'])}")
        return data

    async def notify(self, message: dict[str, Any]) -> None:
        await self.post(message, self.settings.request_timeout)


async def _initialize(session: LegacySseSession) -> ServerStatus:
    await session.connect()
    data = await session.send_request("initialize", initialize_params())
    return status_from_initialize(session.name, data)


async def verify_sse_server(
    name: str,
    config: ServerConfig,
    settings: ProbeSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServerStatus:
    """Verify a server declared with ``type: sse``.

    Tries the legacy event stream first and falls back to a Streamable
    HTTP initialize when the server announces no endpoint.

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
    logger.info("[MCP Verify] Verifying legacy SSE server: %s URL: %s", name, config.url)

    try:
        async with LegacySseSession(
            name, config.url, config.headers, settings, transport
        ) as session:
            return await asyncio.wait_for(_initialize(session), deadline)
    except EndpointNotFound as e:
        logger.info("[MCP Verify] %s: %s, trying Streamable HTTP", name, e)
        return await verify_http_server(name, config, settings, transport)
    except (TimeoutError, httpx.TimeoutException):
        logger.debug("[MCP Verify] Legacy SSE server timeout: %s", name)
        return ServerStatus(name, ServerState.PENDING, error="Connection timeout")
    except httpx.RequestError as e:
        message = describe_transport_error(e)
        logger.debug("[MCP Verify] Legacy SSE server failed: %s %s", name, message)
        return ServerStatus(name, ServerState.FAILED, error=message)
    except ProbeError as e:
        logger.debug("[MCP Verify] Legacy SSE server failed: %s %s", name, e)
        return ServerStatus(name, ServerState.FAILED, error=str(e))


async def _fetch_tools(session: LegacySseSession) -> list[ToolDescriptor]:
    await session.connect()
    init_response = await session.send_request("initialize", initialize_params())
    if init_response.get("result") is None:
        raise ProbeError("Invalid initialize response: missing result")
    logger.info("[MCP Tools] %s initialized successfully", session.name)

    await session.notify(build_initialized_notification())
    tools_response = await session.send_request("tools/list", {})
    return tools_from_response(session.name, tools_response)


async def get_sse_tools(
    name: str,
    config: ServerConfig,
    settings: ProbeSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolsRecord:
    """List the tools of a server declared with ``type: sse``.

    The legacy exchange (stream setup, endpoint discovery, initialize and
    tools/list) must finish within ``sse_tools_timeout``. Servers without
    an endpoint event are listed over Streamable HTTP instead.

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

    logger.info("[MCP Tools] Starting tools fetch for legacy SSE server: %s", name)
    timeout = settings.sse_tools_timeout

    try:
        async with LegacySseSession(
            name, config.url, config.headers, settings, transport
        ) as session:
            record.tools = await asyncio.wait_for(_fetch_tools(session), timeout)
    except EndpointNotFound as e:
        logger.info("[MCP Tools] %s: %s, trying Streamable HTTP", name, e)
        return await get_http_tools(name, config, settings, transport)
    except (TimeoutError, httpx.TimeoutException):
        record.error = f"Timeout after {timeout:g}s"
    except httpx.RequestError as e:
        record.error = describe_transport_error(e)
    except ProbeError as e:
        record.error = str(e)

    if record.error:
        logger.error("[MCP Tools] %s failed: %s", name, record.error)
    return record
