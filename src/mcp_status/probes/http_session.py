"""HTTP client for MCP servers reached over Streamable HTTP or SSE.

POSTs JSON-RPC messages, decodes SSE or plain JSON bodies, keeps the
``Mcp-Session-Id`` issued by the server and retries transient failures.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from mcp_status.log import redact_mapping
from mcp_status.protocol.codec import SESSION_HEADER, build_request_headers, decode_body
from mcp_status.protocol.jsonrpc import INVALID_REQUEST, error_message, make_request
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """Raised when an HTTP exchange with a server fails."""

    pass


class HttpStatusError(ProbeError):
    """Raised for non-2xx responses."""

    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(f"HTTP {status_code}: {reason}")
        self.status_code = status_code
        self.reason = reason


def is_session_error(error: Any) -> bool:
    """Check whether a JSON-RPC error looks like a session negotiation failure."""
    if not isinstance(error, dict):
        return False
    message = error.get("message")
    return error.get("code") == INVALID_REQUEST or (
        isinstance(message, str) and "session" in message
    )


def describe_transport_error(error: httpx.HTTPError) -> str:
    return str(error) or type(error).__name__


class McpHttpSession:
    """JSON-RPC session with one HTTP MCP server."""

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
            url: Server endpoint; an ``Authorization`` query parameter is moved
                into the headers.
            headers: Configured request headers.
            settings: Probe settings (defaults to built-in defaults).
            transport: Optional httpx transport (used by tests).
        """
        self.name = name
        self.settings = settings or ProbeSettings()
        self.url, self.headers = build_request_headers(url, headers)
        self.transport = transport
        self.session_id: str | None = None

        self._request_id = 0
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> McpHttpSession:
        """Async context manager entry."""
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(transport=self.transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def request_headers(self) -> dict[str, str]:
        headers = dict(self.headers)
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    async def post(self, message: dict[str, Any], timeout: float) -> httpx.Response:
        """POST one JSON-RPC message.

        The first ``Mcp-Session-Id`` response header is kept for later requests.

        Raises:
            HttpStatusError: On a non-2xx response.
            httpx.TimeoutException: If the request times out.
            httpx.RequestError: On connection failures.
            ProbeError: If the URL is malformed.
        """
        client = await self._get_client()
        headers = self.request_headers()
        logger.debug("[MCP HTTP] %s headers: %s", self.name, redact_mapping(headers))

        try:
            response = await client.post(
                self.url, json=message, headers=headers, timeout=timeout
            )
        except httpx.InvalidURL as e:
            raise ProbeError(f"Invalid URL: {e}") from e

        if not response.is_success:
            if response.status_code in (404, 405):
                logger.warning(
                    "[MCP Tools] Server returned %d, may be using legacy SSE transport",
                    response.status_code,
                )
            raise HttpStatusError(response.status_code, response.reason_phrase)

        session_id = response.headers.get(SESSION_HEADER)
        if session_id and not self.session_id:
            self.session_id = session_id
            logger.info("[MCP Tools] Received session ID for %s", self.name)
        return response

    async def send_request(
        self, method: str, params: dict[str, Any] | None = None, retry_count: int = 0
    ) -> dict[str, Any]:
        """Send a request and return the decoded response, retrying transient failures.

        Session negotiation errors and connection failures are retried after
        a linear backoff. A timed-out attempt is retried at once with a
        longer timeout.

        Args:
            method: MCP method name.
            params: Request parameters.
            retry_count: Current retry attempt number.

        Returns:
            Decoded JSON-RPC response.

        Raises:
            ProbeError: When the request fails and no retries remain.
        """
        request = make_request(self.next_id(), method, params if params is not None else {})
        timeout = self.settings.attempt_timeout(retry_count)
        can_retry = retry_count < self.settings.max_retries
        logger.info(
            "[MCP Tools] %s sending %s request (id: %s)", self.name, method, request["id"]
        )

        try:
            response = await self.post(request, timeout)
        except httpx.TimeoutException as e:
            if can_retry:
                logger.warning("[MCP Tools] %s request timed out, retrying...", self.name)
                return await self.send_request(method, params, retry_count + 1)
            raise ProbeError(f"Request timeout after {int(timeout * 1000)}ms") from e
        except httpx.RequestError as e:
            if can_retry:
                logger.warning(
                    "[MCP Tools] Network error, retrying... %s", describe_transport_error(e)
                )
                await asyncio.sleep(self.settings.network_retry_backoff * (retry_count + 1))
                return await self.send_request(method, params, retry_count + 1)
            logger.error(
                "[MCP Tools] %s request failed: %s", self.name, describe_transport_error(e)
            )
            raise ProbeError(describe_transport_error(e)) from e

        try:
            data = decode_body(response.text)
        except ValueError as e:
            raise ProbeError(str(e)) from e

        error = data.get("error")
        if error is not None:
            if is_session_error(error) and can_retry:
                logger.warning("[MCP Tools] Session error, retrying...")
                await asyncio.sleep(self.settings.session_retry_backoff * (retry_count + 1))
                return await self.send_request(method, params, retry_count + 1)
            raise ProbeError(f"Server error: {error_message(error)}")

        return data
