"""STDIO server verification.

Spawns the server, sends ``initialize`` and waits for a response carrying
``serverInfo``. The process is always terminated before returning.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from mcp_status.log import redact_mapping
from mcp_status.models import ServerConfig, ServerState, ServerStatus
from mcp_status.process import (
    Outcome,
    ProcessOutput,
    SpawnError,
    pump_streams,
    spawn_process,
    terminate,
    write_message,
)
from mcp_status.protocol.codec import build_initialize_request, encode_line
from mcp_status.security.gate import create_safe_env, validate_command
from mcp_status.settings import ProbeSettings

logger = logging.getLogger(__name__)


class VerifyState(Enum):
    """Lifecycle of one STDIO verification."""

    SPAWNING = "spawning"
    AWAITING_RESPONSE = "awaiting-response"
    DONE = "done"


def warn_if_not_allowed(name: str, command: str, action: str) -> bool:
    """Log a warning for commands outside the allow-list.

    The check is advisory: the probe proceeds either way.

    Returns:
        True if the command is allow-listed.
    """
    validation = validate_command(command)
    if validation.valid:
        return True
    logger.warning(
        "[MCP %s] Non-whitelisted command for %s: %s (%s)",
        action,
        name,
        command,
        validation.reason,
    )
    logger.info("[MCP %s] Proceeding with user-configured server: %s", action, name)
    return False


class StdioVerification:
    """State machine for verifying one STDIO server."""

    def __init__(self, name: str, config: ServerConfig, settings: ProbeSettings) -> None:
        self.name = name
        self.config = config
        self.settings = settings
        self.state = VerifyState.SPAWNING
        self.outcome = Outcome()
        self.process: asyncio.subprocess.Process | None = None

    def finish(
        self,
        status: ServerState,
        server_info: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Move to the terminal state. Only the first call has any effect."""
        if self.state is VerifyState.DONE:
            return
        self.state = VerifyState.DONE
        self.outcome.settle(ServerStatus(self.name, status, server_info, error))

    async def run(self) -> ServerStatus:
        command = self.config.command or ""
        env = create_safe_env(self.config.env)
        logger.info("Verifying STDIO server: %s command: %s", self.name, command)
        logger.debug("Full command args: %d arguments", len(self.config.args))
        if self.config.env:
            logger.debug("Server env: %s", redact_mapping(self.config.env))

        try:
            self.process = await spawn_process(command, self.config.args, env)
        except SpawnError as e:
            logger.debug("Failed to spawn process for %s: %s", self.name, e)
            self.finish(ServerState.FAILED, error=f"Failed to spawn process: {e}")
            return self.outcome.result()

        self.state = VerifyState.AWAITING_RESPONSE
        output = ProcessOutput(self.name, self.finish, self.settings.max_line_length)
        pump = asyncio.create_task(
            pump_streams(
                self.process, output.on_stdout, output.on_stderr, output.on_error, output.on_close
            )
        )

        try:
            try:
                await write_message(self.process, encode_line(build_initialize_request()))
            except OSError as e:
                # The close handler reports the exit
                logger.debug("Failed to write to stdin for %s: %s", self.name, e)

            try:
                await self.outcome.wait(self.settings.stdio_verify_timeout)
            except TimeoutError:
                logger.debug(
                    "Timeout for %s after %ss", self.name, self.settings.stdio_verify_timeout
                )
                self.finish(ServerState.PENDING)
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            await terminate(self.process, self.settings.kill_grace_period, self.name)

        return self.outcome.result()


async def verify_stdio_server(
    name: str, config: ServerConfig, settings: ProbeSettings | None = None
) -> ServerStatus:
    """Verify a STDIO server by completing the initialize handshake.

    Args:
        name: Server name.
        config: Server configuration.
        settings: Probe settings (defaults to built-in defaults).

    Returns:
        ``connected`` with the server info, ``failed`` with a reason, or
        ``pending`` when the server neither answered nor failed in time.
    """
    settings = settings or ProbeSettings()
    if not config.command:
        return ServerStatus(name, ServerState.FAILED, error="No command specified")

    warn_if_not_allowed(name, config.command, "Verify")
    return await StdioVerification(name, config, settings).run()
