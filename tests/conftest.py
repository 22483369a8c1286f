"""Pytest configuration and fixtures for MCP status tests."""

import json
import logging
import sys
import textwrap
from pathlib import Path

import pytest

from mcp_status.log import LOGGER_NAME
from mcp_status.models import ServerConfig
from mcp_status.settings import ProbeSettings

# A well-behaved STDIO server: answers initialize and tools/list, ignores
# notifications, and writes some log noise to stdout first.
HANDSHAKE_SERVER = """
import json
import sys

print("fixture server starting", flush=True)
for line in sys.stdin:
    msg = json.loads(line)
    method = msg.get("method")
    if method == "initialize":
        reply = {
            "jsonrpc": "2.0",
            "id": msg["id"],
            "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": {},
                "serverInfo": {"name": "fixture", "version": "0.1.0"},
            },
        }
    elif method == "tools/list":
        reply = {
            "jsonrpc": "2.0",
            "id": msg["id"],
            "result": {
                "tools": [
                    {
                        "name": "echo",
                        "description": "Echo input",
                        "inputSchema": {"type": "object"},
                    },
                    {"name": "ping"},
                ]
            },
        }
    else:
        continue
    sys.stdout.write(json.dumps(reply) + "\\n")
    sys.stdout.flush()
"""


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging so records reach pytest's capture again."""
    logger = logging.getLogger(LOGGER_NAME)
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def fast_settings() -> ProbeSettings:
    """Settings with short deadlines and no retry backoff."""
    return ProbeSettings(
        http_verify_timeout=2.0,
        sse_verify_timeout=2.0,
        stdio_verify_timeout=10.0,
        tools_timeout=10.0,
        sse_tools_timeout=5.0,
        sse_endpoint_timeout=0.5,
        session_retry_backoff=0.0,
        network_retry_backoff=0.0,
        kill_grace_period=0.2,
    )


@pytest.fixture
def make_script(tmp_path: Path):
    """Write a Python script and return a STDIO server config that runs it."""

    def _make(source: str, name: str = "server") -> ServerConfig:
        script = tmp_path / f"{name}.py"
        script.write_text(textwrap.dedent(source), encoding="utf-8")
        return ServerConfig(name=name, command=sys.executable, args=(str(script),))

    return _make


@pytest.fixture
def handshake_server(make_script) -> ServerConfig:
    """Config for a STDIO server that completes the full handshake."""
    return make_script(HANDSHAKE_SERVER, name="fixture")


@pytest.fixture
def write_config(tmp_path: Path):
    """Write an MCP config file and return its path."""

    def _write(config: dict) -> Path:
        path = tmp_path / "claude.json"
        path.write_text(json.dumps(config), encoding="utf-8")
        return path

    return _write
