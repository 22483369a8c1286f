"""MCP server status service.

Ties configuration loading, the security gate and the probes together:
verifies every configured server concurrently and lists the tools of one
server. Failures never escape; they are reported per server.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any

import httpx

from mcp_status.config.loader import load_all_servers, load_enabled_servers
from mcp_status.log import redact_args
from mcp_status.models import ServerConfig, ServerState, ServerStatus, ToolsRecord, Transport
from mcp_status.probes.http_tools import get_http_tools
from mcp_status.probes.http_verifier import verify_http_server
from mcp_status.probes.sse_legacy import get_sse_tools, verify_sse_server
from mcp_status.probes.stdio_tools import get_stdio_tools
from mcp_status.probes.stdio_verifier import verify_stdio_server
from mcp_status.protocol.codec import extract_auth_from_query
from mcp_status.security.audit import AuditLogger
from mcp_status.security.gate import validate_command
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)


async def verify_server_status(
    name: str,
    config: ServerConfig,
    settings: ProbeSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServerStatus:
    """Verify one server over the transport its config selects."""
    if config.transport is Transport.HTTP and config.type == "sse":
        return await verify_sse_server(name, config, settings, transport)
    if config.transport is Transport.HTTP:
        return await verify_http_server(name, config, settings, transport)
    return await verify_stdio_server(name, config, settings)


async def get_server_tools(
    name: str,
    config: ServerConfig,
    settings: ProbeSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ToolsRecord:
    """List the tools of one server over the transport its config selects."""
    if config.transport is Transport.HTTP and config.type == "sse":
        return await get_sse_tools(name, config, settings, transport)
    if config.transport is Transport.HTTP:
        return await get_http_tools(name, config, settings, transport)
    return await get_stdio_tools(name, config, settings)


def _audit_details(config: ServerConfig) -> dict[str, Any]:
    if config.transport is Transport.HTTP:
        url, _ = extract_auth_from_query(config.url or "")
        return {
            "transport": Transport.HTTP.value,
            "type": config.type,
            "url": url,
            "headers": dict(config.headers),
        }
    return {
        "transport": Transport.STDIO.value,
        "command": config.command,
        "args": redact_args(config.args),
        "env": dict(config.env),
    }


class StatusService:
    """Runs probes with shared settings and an optional audit trail."""

    def __init__(
        self,
        settings: ProbeSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Probe settings (defaults to built-in defaults).
            transport: Optional httpx transport for HTTP probes (used by tests).
        """
        self._settings = settings or ProbeSettings()
        self._transport = transport

        if self._settings.audit_log_file:
            self._audit_logger: AuditLogger | None = AuditLogger(
                Path(self._settings.audit_log_file)
            )
        else:
            self._audit_logger = None

    @property
    def settings(self) -> ProbeSettings:
        return self._settings

    def generate_request_id(self) -> str:
        """Generate a unique request ID."""
        return str(uuid.uuid4())

    def _check_command(self, name: str, config: ServerConfig) -> None:
        if config.transport is not Transport.STDIO or not config.command:
            return
        validation = validate_command(config.command)
        if not validation.valid and self._audit_logger:
            self._audit_logger.log_security_event(
                "command_not_allowlisted",
                {"server_name": name, "command": config.command, "reason": validation.reason},
            )

    async def verify(self, name: str, config: ServerConfig) -> ServerStatus:
        """Verify one server, recording the probe in the audit trail."""
        request_id = self.generate_request_id()
        if self._audit_logger:
            self._audit_logger.log_request(request_id, name, "verify", _audit_details(config))
        self._check_command(name, config)

        start = time.perf_counter()
        status = await verify_server_status(name, config, self._settings, self._transport)

        if self._audit_logger:
            duration_ms = (time.perf_counter() - start) * 1000
            self._audit_logger.log_response(
                request_id, name, "verify", status.status.value, duration_ms
            )
        return status

    async def fetch_tools(self, name: str, config: ServerConfig) -> ToolsRecord:
        """List the tools of one server, recording the probe in the audit trail."""
        request_id = self.generate_request_id()
        if self._audit_logger:
            self._audit_logger.log_request(request_id, name, "tools", _audit_details(config))
        self._check_command(name, config)

        start = time.perf_counter()
        record = await get_server_tools(name, config, self._settings, self._transport)

        if self._audit_logger:
            duration_ms = (time.perf_counter() - start) * 1000
            outcome = "error" if record.error else "ok"
            self._audit_logger.log_response(request_id, name, "tools", outcome, duration_ms)
        return record

    async def get_servers_status(self, cwd: str | None = None) -> list[ServerStatus]:
        """Report every configured server.

        Enabled servers are verified concurrently. Disabled and invalid
        servers are reported as failed with the reason.

        Args:
            cwd: Working directory used to find project-scoped servers.

        Returns:
            Statuses in order enabled, disabled, invalid; empty if loading
            fails unexpectedly.
        """
        try:
            inventory = load_all_servers(cwd, self._settings.config_path)
            logger.info(
                "Found %d enabled, %d disabled, %d invalid MCP servers",
                len(inventory.enabled),
                len(inventory.disabled),
                len(inventory.invalid),
            )

            verified = await asyncio.gather(
                *(self.verify(config.name, config) for config in inventory.enabled)
            )
            disabled = [
                ServerStatus(name, ServerState.FAILED, error="Server is disabled")
                for name in inventory.disabled
            ]
            invalid = [
                ServerStatus(
                    entry.name, ServerState.FAILED, error=f"Invalid config: {entry.reason}"
                )
                for entry in inventory.invalid
            ]
        except Exception as e:
            logger.error("Failed to get MCP servers status: %s", e)
            return []

        results = [*verified, *disabled, *invalid]
        logger.info(
            "[MCP Status] Completed: total %d servers (%d verified, %d disabled, %d invalid)",
            len(results),
            len(verified),
            len(disabled),
            len(invalid),
        )
        return results

    async def get_tools_for_server(self, server_id: str, cwd: str | None = None) -> dict[str, Any]:
        """List the tools of one enabled server by name.

        Args:
            server_id: Configured server name.
            cwd: Working directory used to find project-scoped servers.

        Returns:
            Result with ``success``, ``serverId``, ``serverName``, ``tools`` and
            ``error``. ``success`` is true when there is no error or at least
            one tool was listed. Unknown servers yield only ``success``,
            ``serverId`` and ``error``.
        """
        logger.info("Getting tools for MCP server: %s", server_id)
        servers = load_enabled_servers(cwd, self._settings.config_path)
        target = next((config for config in servers if config.name == server_id), None)
        if target is None:
            return {
                "success": False,
                "serverId": server_id,
                "error": f"Server not found: {server_id}",
            }

        record = await self.fetch_tools(target.name, target)
        tools = [tool.to_dict() for tool in record.tools]
        return {
            "success": not record.error or len(tools) > 0,
            "serverId": server_id,
            "serverName": record.name,
            "tools": tools,
            "error": record.error,
        }

    def close(self) -> None:
        """Close the service and flush the audit trail."""
        if self._audit_logger:
            self._audit_logger.close()

    def __enter__(self) -> StatusService:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


async def get_servers_status(
    cwd: str | None = None, settings: ProbeSettings | None = None
) -> list[ServerStatus]:
    """Report every configured server. See StatusService.get_servers_status."""
    with StatusService(settings) as service:
        return await service.get_servers_status(cwd)


async def get_tools_for_server(
    server_id: str, cwd: str | None = None, settings: ProbeSettings | None = None
) -> dict[str, Any]:
    """List the tools of one server by name. See StatusService.get_tools_for_server."""
    with StatusService(settings) as service:
        return await service.get_tools_for_server(server_id, cwd)
