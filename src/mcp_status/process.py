"""Child process management for STDIO servers.

Spawns server processes, pumps their output into call-scoped handlers and
terminates them. Every probe owns exactly one process and terminates it
before returning.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import subprocess
import sys
from collections.abc import Callable, Sequence
from typing import Any

from mcp_status.models import ServerState
from mcp_status.protocol.serverinfo import MAX_LINE_LENGTH, server_info_from_line
from mcp_status.security.gate import needs_shell

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

# Grace period between SIGTERM and SIGKILL (seconds)
KILL_GRACE_PERIOD = 0.5

# Characters of stderr/stdout kept in failure messages
OUTPUT_TAIL_LENGTH = 500

CLOSED_WITHOUT_ANSWER = "Process closed without answering"

# Hides the console window of children on Windows
CREATE_NO_WINDOW = 0x08000000


class SpawnError(Exception):
    """Raised when a server process cannot be started."""

    pass


class Outcome:
    """One-shot result slot: only the first settled value is kept."""

    def __init__(self) -> None:
        self._future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def settle(self, value: Any) -> bool:
        """Store the result unless one is already stored.

        Returns:
            True if this call stored the value.
        """
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def result(self) -> Any:
        return self._future.result()

    async def wait(self, timeout: float | None = None) -> Any:
        """Wait for the result.

        Raises:
            TimeoutError: If nothing is settled within ``timeout`` seconds.
        """
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)

    def __await__(self):
        return self._future.__await__()


async def spawn_process(
    command: str,
    args: Sequence[str],
    env: dict[str, str],
    platform: str | None = None,
) -> asyncio.subprocess.Process:
    """Start a server process with piped stdio.

    Args:
        command: Executable to run.
        args: Command arguments.
        env: Complete child environment.
        platform: Platform name used for the shell decision (defaults to
            sys.platform).

    Returns:
        The running process.

    Raises:
        SpawnError: If the process cannot be started.
    """
    kwargs: dict[str, Any] = {
        "stdin": asyncio.subprocess.PIPE,
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "env": env,
    }
    if sys.platform == "win32":
        kwargs["creationflags"] = CREATE_NO_WINDOW

    try:
        if needs_shell(command, platform):
            cmdline = subprocess.list2cmdline([command, *args])
            logger.debug("Using shell for command: %s", command)
            return await asyncio.create_subprocess_shell(cmdline, **kwargs)
        return await asyncio.create_subprocess_exec(command, *args, **kwargs)
    except (OSError, ValueError) as e:
        raise SpawnError(str(e)) from e


async def terminate(
    process: asyncio.subprocess.Process | None,
    grace_period: float = KILL_GRACE_PERIOD,
    name: str = "",
) -> None:
    """Stop a process: SIGTERM, then SIGKILL after the grace period.

    Does nothing if the process has already exited.
    """
    if process is None or process.returncode is not None:
        return

    try:
        process.terminate()
    except ProcessLookupError:
        return

    try:
        await asyncio.wait_for(process.wait(), grace_period)
        return
    except TimeoutError:
        pass

    try:
        process.kill()
    except ProcessLookupError:
        return
    logger.debug("Force killed process for %s", name or process.pid)
    await process.wait()


def tail(text: str, length: int = OUTPUT_TAIL_LENGTH) -> str:
    return text[-length:] if len(text) > length else text


class LineSplitter:
    """Split decoded process output into complete lines.

    The trailing partial line is carried over to the next chunk. Lines
    longer than ``max_line_length`` are dropped, including a partial line
    that grows past the limit before its newline arrives.
    """

    def __init__(self, max_line_length: int) -> None:
        self.max_line_length = max_line_length
        self._partial = ""
        self._discarding = False

    @property
    def partial(self) -> str:
        """Text received after the last newline."""
        return self._partial

    def feed(self, text: str) -> list[str]:
        """Add a chunk and return the lines it completed."""
        pieces = (self._partial + text).split("\n")
        self._partial = pieces.pop()

        lines = []
        for line in pieces:
            if self._discarding:
                # Tail of an oversized line
                self._discarding = False
                continue
            if len(line) > self.max_line_length:
                logger.debug("Dropping oversized line (%d chars)", len(line))
                continue
            lines.append(line)

        if len(self._partial) > self.max_line_length:
            logger.debug("Dropping oversized partial line")
            self._partial = ""
            self._discarding = True
        return lines

    def flush(self) -> str | None:
        """Return the unterminated last line at end of output, if any."""
        line, self._partial = self._partial, ""
        if self._discarding:
            self._discarding = False
            return None
        return line or None


class ProcessOutput:
    """Output handlers that turn a verification process into a verdict.

    Scans stdout line by line for the handshake and keeps only the last
    characters of each stream for failure messages. Reports through
    ``finish``, which receives the state, the server info and an error
    message.
    """

    def __init__(
        self,
        name: str,
        finish: Callable[[ServerState, dict[str, Any] | None, str | None], None],
        max_line_length: int = MAX_LINE_LENGTH,
    ) -> None:
        self.name = name
        self.finish = finish
        self.max_line_length = max_line_length
        self.splitter = LineSplitter(max_line_length)
        self.server_info: dict[str, Any] | None = None
        self.stdout_tail = ""
        self.stderr_tail = ""

    def _scan(self, line: str | None) -> None:
        if self.server_info is None and line:
            self.server_info = server_info_from_line(line, self.max_line_length)

    def on_stdout(self, text: str) -> None:
        self.stdout_tail = tail(self.stdout_tail + text)
        for line in self.splitter.feed(text):
            self._scan(line)
        # An unterminated line may already hold the whole response
        self._scan(self.splitter.partial)
        if self.server_info is not None:
            self.finish(ServerState.CONNECTED, self.server_info, None)

    def on_stderr(self, text: str) -> None:
        self.stderr_tail = tail(self.stderr_tail + text)
        line = text.strip()
        if line:
            logger.debug("[%s] stderr: %s", self.name, line[:200])

    def on_error(self, error: BaseException) -> None:
        logger.debug("Process error for %s: %s", self.name, error)
        self.finish(ServerState.FAILED, None, f"Process error: {error}")

    def on_close(self, returncode: int | None) -> None:
        """Settle the verdict once the process has exited.

        A completed handshake anywhere in stdout counts as connected whatever
        the exit code.
        """
        self._scan(self.splitter.flush())
        if self.server_info is not None:
            self.finish(ServerState.CONNECTED, self.server_info, None)
        elif returncode == 0:
            self.finish(ServerState.PENDING, None, self.stderr_tail or CLOSED_WITHOUT_ANSWER)
        else:
            details = f"Process exited with code {returncode}"
            if self.stderr_tail:
                details += f". stderr: {self.stderr_tail}"
            if self.stdout_tail:
                details += f". stdout: {self.stdout_tail}"
            self.finish(ServerState.FAILED, None, details)


async def _read_stream(
    stream: asyncio.StreamReader | None, callback: Callable[[str], None]
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            rest = decoder.decode(b"", final=True)
            if rest:
                callback(rest)
            return
        text = decoder.decode(chunk)
        if text:
            callback(text)


async def pump_streams(
    process: asyncio.subprocess.Process,
    on_stdout: Callable[[str], None],
    on_stderr: Callable[[str], None],
    on_error: Callable[[BaseException], None],
    on_close: Callable[[int | None], None],
) -> None:
    """Feed decoded process output to handlers until the process exits.

    ``on_close`` runs once both pipes reached EOF and the process is reaped.
    Read failures go to ``on_error`` instead. Cancelling the pump cancels
    both readers.
    """
    readers = [
        asyncio.create_task(_read_stream(process.stdout, on_stdout)),
        asyncio.create_task(_read_stream(process.stderr, on_stderr)),
    ]
    try:
        await asyncio.gather(*readers)
        returncode = await process.wait()
    except OSError as e:
        on_error(e)
        return
    finally:
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

    on_close(returncode)


async def write_message(process: asyncio.subprocess.Process, data: bytes) -> None:
    """Write bytes to the process stdin and flush them.

    Raises:
        OSError: If stdin is closed or the pipe is broken.
    """
    if process.stdin is None:
        raise BrokenPipeError("stdin is not available")
    process.stdin.write(data)
    await process.stdin.drain()
