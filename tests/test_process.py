"""Tests for child process management."""

import asyncio
import sys

import pytest

from mcp_status.models import ServerState
from mcp_status.process import (
    CLOSED_WITHOUT_ANSWER,
    LineSplitter,
    Outcome,
    ProcessOutput,
    SpawnError,
    pump_streams,
    spawn_process,
    terminate,
)

HANDSHAKE_LINE = '{"jsonrpc":"2.0","id":1,"result":{"serverInfo":{"name":"demo"}}}\n'


async def run_python(source: str) -> asyncio.subprocess.Process:
    return await spawn_process(sys.executable, ["-c", source], {})


class Verdicts:
    """Collects ProcessOutput verdicts."""

    def __init__(self):
        self.calls = []

    def __call__(self, state, server_info, error):
        self.calls.append((state, server_info, error))


class TestOutcome:
    """Tests for the one-shot result slot."""

    def test_first_settle_wins(self):
        """Should keep only the first value."""

        async def scenario():
            outcome = Outcome()
            assert outcome.settle("first") is True
            assert outcome.settle("second") is False
            return await outcome

        assert asyncio.run(scenario()) == "first"

    def test_wait_times_out(self):
        """Should raise TimeoutError and stay settleable."""

        async def scenario():
            outcome = Outcome()
            with pytest.raises(TimeoutError):
                await outcome.wait(0.01)
            assert not outcome.done
            outcome.settle("late")
            return outcome.result()

        assert asyncio.run(scenario()) == "late"


class TestProcessOutput:
    """Tests for the verification verdict rules."""

    def test_handshake_on_stdout_connects(self):
        """Should report connected as soon as the handshake arrives."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts)

        output.on_stdout("starting\n")
        assert verdicts.calls == []

        output.on_stdout(HANDSHAKE_LINE)
        assert verdicts.calls == [(ServerState.CONNECTED, {"name": "demo"}, None)]

    def test_handshake_split_across_chunks(self):
        """Should detect a handshake delivered in pieces."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts)

        output.on_stdout(HANDSHAKE_LINE[:20])
        output.on_stdout(HANDSHAKE_LINE[20:])

        assert verdicts.calls[0][0] is ServerState.CONNECTED

    def test_close_after_handshake_is_connected(self):
        """Should treat a completed handshake as success whatever the exit code."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", lambda *verdict: None)
        output.on_stdout(HANDSHAKE_LINE)
        output.finish = verdicts

        output.on_close(1)

        assert verdicts.calls == [(ServerState.CONNECTED, {"name": "demo"}, None)]

    def test_unterminated_handshake_at_close(self):
        """Should find a handshake on a last line without newline."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts)
        output.on_stdout("log line\n" + HANDSHAKE_LINE.rstrip("\n")[:30])
        output.on_stdout(HANDSHAKE_LINE.rstrip("\n")[30:])

        output.on_close(1)

        assert verdicts.calls[-1] == (ServerState.CONNECTED, {"name": "demo"}, None)

    def test_keeps_bounded_output_tails(self):
        """Should keep only the last characters of long output."""
        output = ProcessOutput("demo", Verdicts())

        for _ in range(100):
            output.on_stdout("y" * 99 + "\n")
            output.on_stderr("z" * 100)

        assert len(output.stdout_tail) == 500
        assert len(output.stderr_tail) == 500
        assert output.stdout_tail.endswith("y\n")

    def test_skips_oversized_lines(self):
        """Should ignore a handshake on a line over the length limit."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts, max_line_length=20)

        output.on_stdout(HANDSHAKE_LINE)
        output.on_close(0)

        assert verdicts.calls == [(ServerState.PENDING, None, CLOSED_WITHOUT_ANSWER)]

    def test_clean_exit_is_pending(self):
        """Should report pending for exit code 0 without an answer."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts)

        output.on_close(0)

        assert verdicts.calls == [(ServerState.PENDING, None, CLOSED_WITHOUT_ANSWER)]

    def test_clean_exit_reports_stderr(self):
        """Should use the stderr tail as the pending reason when present."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts)
        output.on_stderr("missing API key\n")

        output.on_close(0)

        assert verdicts.calls[0][2] == "missing API key\n"

    def test_failed_exit_includes_output_tails(self):
        """Should cite the exit code and the last stderr and stdout characters."""
        verdicts = Verdicts()
        output = ProcessOutput("demo", verdicts)
        output.on_stderr("x" * 600 + "fatal")
        output.on_stdout("partial output")

        output.on_close(2)

        state, info, error = verdicts.calls[0]
        assert state is ServerState.FAILED
        assert info is None
        assert error.startswith("Process exited with code 2. stderr: ")
        assert error.endswith(". stdout: partial output")
        assert "fatal" in error
        assert "x" * 501 not in error

    def test_process_error_fails(self):
        """Should report process errors as failed."""
        verdicts = Verdicts()
        ProcessOutput("demo", verdicts).on_error(OSError("pipe closed"))

        assert verdicts.calls == [(ServerState.FAILED, None, "Process error: pipe closed")]


class TestLineSplitter:
    """Tests for LineSplitter class."""

    def test_carries_partial_line(self):
        """Should hold an unterminated line until its newline arrives."""
        splitter = LineSplitter(100)

        assert splitter.feed("first\nsec") == ["first"]
        assert splitter.partial == "sec"
        assert splitter.feed("ond\n") == ["second"]

    def test_drops_oversized_lines(self):
        """Should drop complete lines over the limit."""
        splitter = LineSplitter(5)

        assert splitter.feed("toolong\nok\n") == ["ok"]

    def test_drops_oversized_partial(self):
        """Should drop a partial line that outgrows the limit before its newline."""
        splitter = LineSplitter(5)

        assert splitter.feed("abcdefgh") == []
        assert splitter.feed("ijk\nnext\n") == ["next"]

    def test_flush_returns_last_line(self):
        """Should hand back the unterminated line once output ends."""
        splitter = LineSplitter(100)
        splitter.feed("one\ntwo")

        assert splitter.flush() == "two"
        assert splitter.flush() is None

    def test_flush_drops_oversized_partial(self):
        """Should not return the remains of an oversized line."""
        splitter = LineSplitter(5)
        splitter.feed("abcdefgh")
        splitter.feed("ij")

        assert splitter.flush() is None


class TestSpawnProcess:
    """Tests for spawn_process function."""

    def test_missing_executable(self, tmp_path):
        """Should raise SpawnError for a command that does not exist."""

        async def scenario():
            await spawn_process(str(tmp_path / "no-such-server"), [], {})

        with pytest.raises(SpawnError):
            asyncio.run(scenario())


class TestPumpStreams:
    """Tests for pump_streams function."""

    def test_reports_output_and_exit(self):
        """Should deliver stdout, stderr and the exit code."""

        async def scenario():
            process = await run_python(
                "import sys; sys.stdout.write('out'); sys.stderr.write('err'); sys.exit(4)"
            )
            stdout, stderr, closed = [], [], []
            await pump_streams(process, stdout.append, stderr.append, pytest.fail, closed.append)
            return "".join(stdout), "".join(stderr), closed

        assert asyncio.run(scenario()) == ("out", "err", [4])

    def test_multibyte_split_across_writes(self):
        """Should decode characters split across pipe reads."""
        source = (
            "import sys, time\n"
            "data = 'h\\u00e9llo \\u2713'.encode('utf-8')\n"
            "sys.stdout.buffer.write(data[:2]); sys.stdout.flush(); time.sleep(0.1)\n"
            "sys.stdout.buffer.write(data[2:]); sys.stdout.flush()\n"
        )

        async def scenario():
            process = await run_python(source)
            chunks = []
            await pump_streams(process, chunks.append, lambda t: None, pytest.fail, lambda c: None)
            return "".join(chunks)

        assert asyncio.run(scenario()) == "héllo ✓"


class TestTerminate:
    """Tests for terminate function."""

    def test_terminates_running_process(self):
        """Should stop a running process."""

        async def scenario():
            process = await run_python("import time; time.sleep(30)")
            await terminate(process, grace_period=1.0)
            return process.returncode

        assert asyncio.run(scenario()) is not None

    def test_escalates_to_kill(self):
        """Should kill a process that ignores SIGTERM."""
        if sys.platform == "win32":
            pytest.skip("SIGTERM cannot be ignored on Windows")
        source = (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(30)\n"
        )

        async def scenario():
            process = await run_python(source)
            await process.stdout.readline()
            await terminate(process, grace_period=0.2)
            return process.returncode

        assert asyncio.run(scenario()) == -9

    def test_already_exited_is_noop(self):
        """Should do nothing for a process that has exited."""

        async def scenario():
            process = await run_python("pass")
            await process.wait()
            await terminate(process)
            await terminate(process)
            return process.returncode

        assert asyncio.run(scenario()) == 0

    def test_none_is_noop(self):
        """Should accept a missing process."""
        asyncio.run(terminate(None))
