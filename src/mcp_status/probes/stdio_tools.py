"""STDIO tools listing.

Runs the full MCP handshake over a spawned process:
``initialize`` -> ``notifications/initialized`` -> ``tools/list``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import IntEnum
from typing import Any

from mcp_status.log import redact_args
from mcp_status.models import ServerConfig, ToolDescriptor, ToolsRecord, parse_tools
from mcp_status.process import (
    LineSplitter,
    Outcome,
    SpawnError,
    pump_streams,
    spawn_process,
    terminate,
    write_message,
)
from mcp_status.probes.stdio_verifier import warn_if_not_allowed
from mcp_status.protocol.codec import (
    INITIALIZE_REQUEST_ID,
    TOOLS_LIST_REQUEST_ID,
    build_initialize_request,
    build_initialized_notification,
    build_tools_list_request,
    encode_line,
)
from mcp_status.protocol.jsonrpc import JsonRpcError, error_message, parse_response
from mcp_status.security.gate import create_safe_env
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)

# Characters of stderr kept while running, and quoted on failure
STDERR_BUFFER_LENGTH = 500
STDERR_QUOTE_LENGTH = 200


class ToolsFetchState(IntEnum):
    """Handshake progress of one tools fetch."""

    UNINITIALIZED = 0
    AWAITING_INITIALIZE = 1
    INITIALIZED = 2
    AWAITING_TOOLS = 3
    DONE = 4


class StdioToolsFetch:
    """State machine for listing the tools of one STDIO server."""

    def __init__(self, name: str, config: ServerConfig, settings: ProbeSettings) -> None:
        self.name = name
        self.config = config
        self.settings = settings
        self.state = ToolsFetchState.UNINITIALIZED
        self.outcome = Outcome()
        self.splitter = LineSplitter(settings.stdio_tools_max_line_length)
        self.stderr = ""
        self.process: asyncio.subprocess.Process | None = None

    def finish(
        self, tools: list[ToolDescriptor] | None = None, error: str | None = None
    ) -> None:
        """Move to DONE and settle the record. Only the first call has any effect."""
        if self.state is ToolsFetchState.DONE:
            return
        self.state = ToolsFetchState.DONE
        if error:
            logger.error("[MCP Tools] %s failed: %s", self.name, error)
        else:
            logger.info("[MCP Tools] %s completed: %d tools", self.name, len(tools or []))
        self.outcome.settle(ToolsRecord(self.name, tools or [], error))

    def send(self, message: dict[str, Any]) -> None:
        if self.process is None or self.process.stdin is None:
            return
        try:
            self.process.stdin.write(encode_line(message))
        except OSError as e:
            logger.debug("[MCP Tools] %s write failed: %s", self.name, e)

    def on_stdout(self, text: str) -> None:
        for line in self.splitter.feed(text):
            if self.state is ToolsFetchState.DONE:
                return
            if not line.strip():
                continue
            logger.debug("[MCP Tools] %s stdout: %s", self.name, line[:100])
            try:
                message = parse_response(line, strict=False)
            except JsonRpcError:
                logger.debug("[MCP Tools] %s skipped unparseable line", self.name)
                continue
            self.handle_message(message)

    def handle_message(self, message: dict[str, Any]) -> None:
        """Advance the handshake with one decoded message."""
        msg_id = message.get("id")

        if self.state is ToolsFetchState.AWAITING_INITIALIZE and msg_id == INITIALIZE_REQUEST_ID:
            if "error" in message:
                self.finish(error=f"Initialize error: {error_message(message['error'])}")
            elif "result" in message:
                logger.info("[MCP Tools] %s received initialize response", self.name)
                self.send(build_initialized_notification())
                self.state = ToolsFetchState.INITIALIZED
                logger.info("[MCP Tools] %s sending tools/list request", self.name)
                self.send(build_tools_list_request())
                self.state = ToolsFetchState.AWAITING_TOOLS
            return

        if self.state is ToolsFetchState.AWAITING_TOOLS and msg_id == TOOLS_LIST_REQUEST_ID:
            if "error" in message:
                self.finish(error=f"Tools/list error: {error_message(message['error'])}")
            elif "result" in message:
                result = message["result"]
                raw_tools = result.get("tools") if isinstance(result, dict) else None
                if raw_tools is None:
                    logger.warning(
                        "[MCP Tools] %s received tools/list without tools array", self.name
                    )
                    raw_tools = []
                self.finish(tools=parse_tools(raw_tools))
            return

        if "error" in message:
            self.finish(error=f"Server error: {error_message(message['error'])}")

    def on_stderr(self, text: str) -> None:
        self.stderr = (self.stderr + text)[-STDERR_BUFFER_LENGTH:]

    def on_error(self, error: BaseException) -> None:
        self.finish(error=f"Process error: {error}")

    def on_close(self, returncode: int | None) -> None:
        logger.debug("[MCP Tools] %s process closed with code: %s", self.name, returncode)
        if returncode == 0:
            self.finish(error="Process closed without response")
            return
        message = f"Process exited with code {returncode}"
        if self.stderr:
            message += f". stderr: {self.stderr[-STDERR_QUOTE_LENGTH:]}"
        self.finish(error=message)

    async def run(self) -> ToolsRecord:
        command = self.config.command or ""
        env = create_safe_env(self.config.env)
        logger.info("[MCP Tools] Getting tools for STDIO server: %s", self.name)
        logger.debug(
            "[MCP Tools] Command: %s Args: %s",
            command,
            " ".join(redact_args(self.config.args)) if self.config.args else "(none)",
        )

        try:
            self.process = await spawn_process(command, self.config.args, env)
        except SpawnError as e:
            self.finish(error=f"Failed to spawn process: {e}")
            return self.outcome.result()
        logger.info("[MCP Tools] Spawned process PID: %s", self.process.pid)

        pump = asyncio.create_task(
            pump_streams(self.process, self.on_stdout, self.on_stderr, self.on_error, self.on_close)
        )

        timeout = self.settings.tools_timeout
        try:
            logger.info("[MCP Tools] %s sending initialize request", self.name)
            # Set before writing so a fast reply is not ignored
            self.state = ToolsFetchState.AWAITING_INITIALIZE
            try:
                await write_message(self.process, encode_line(build_initialize_request()))
            except OSError as e:
                self.finish(error=f"Failed to write initialize request: {e}")

            try:
                await self.outcome.wait(timeout)
            except TimeoutError:
                self.finish(error=f"Timeout after {timeout:g}s")
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            await terminate(self.process, self.settings.kill_grace_period, self.name)

        return self.outcome.result()


async def get_stdio_tools(
    name: str, config: ServerConfig, settings: ProbeSettings | None = None
) -> ToolsRecord:
    """List the tools of a STDIO server.

    Args:
        name: Server name.
        config: Server configuration.
        settings: Probe settings (defaults to built-in defaults).

    Returns:
        ToolsRecord with the tools, or with ``error`` set on any failure.
    """
    settings = settings or ProbeSettings()
    if not config.command:
        return ToolsRecord(name, error="No command specified")

    warn_if_not_allowed(name, config.command, "Tools")
    return await StdioToolsFetch(name, config, settings).run()
