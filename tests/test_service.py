"""Tests for the status service."""

import asyncio
import json
from dataclasses import replace

import httpx

from mcp_status.models import ServerConfig, ServerState, ServerStatus
from mcp_status.service import (
    StatusService,
    get_servers_status,
    get_tools_for_server,
    verify_server_status,
)

URL = "https://mcp.example.com/mcp"


def mcp_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body["method"] == "initialize":
        result = {"serverInfo": {"name": "remote", "version": "1.0"}}
    else:
        result = {"tools": [{"name": "lookup", "description": "Look things up"}]}
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def read_audit(path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestVerifyServerStatus:
    """Tests for transport dispatch."""

    def test_dispatches_http(self, fast_settings):
        """Should verify url servers over HTTP."""
        config = ServerConfig(name="remote", url=URL)

        status = asyncio.run(
            verify_server_status("remote", config, fast_settings, httpx.MockTransport(mcp_handler))
        )

        assert status.status is ServerState.CONNECTED
        assert status.server_info["name"] == "remote"

    def test_dispatches_sse_to_event_stream_first(self, fast_settings):
        """Should open the event stream for sse servers before POSTing."""
        config = ServerConfig(name="remote", url=URL, type="sse")
        seen = []

        def handler(request):
            seen.append(request.method)
            if request.method == "GET":
                return httpx.Response(405)
            return mcp_handler(request)

        status = asyncio.run(
            verify_server_status("remote", config, fast_settings, httpx.MockTransport(handler))
        )

        assert status.status is ServerState.CONNECTED
        assert seen == ["GET", "POST"]

    def test_dispatches_stdio(self, handshake_server, fast_settings):
        """Should verify command servers over STDIO."""
        status = asyncio.run(verify_server_status("fixture", handshake_server, fast_settings))

        assert status.status is ServerState.CONNECTED


class TestGetServersStatus:
    """Tests for StatusService.get_servers_status."""

    def test_reports_enabled_disabled_and_invalid(self, write_config, fast_settings):
        """Should list verified servers, then disabled, then invalid."""
        path = write_config(
            {
                "mcpServers": {
                    "broken": {"args": ["x"]},
                    "remote": {"type": "http", "url": URL},
                    "off": {"command": "node", "args": ["server.js"]},
                },
                "disabledMcpServers": ["off"],
            }
        )
        settings = replace(fast_settings, config_path=path)

        with StatusService(settings, httpx.MockTransport(mcp_handler)) as service:
            statuses = asyncio.run(service.get_servers_status())

        assert [status.to_dict() for status in statuses] == [
            {
                "name": "remote",
                "status": "connected",
                "serverInfo": {"name": "remote", "version": "1.0"},
            },
            {"name": "off", "status": "failed", "serverInfo": None, "error": "Server is disabled"},
            {
                "name": "broken",
                "status": "failed",
                "serverInfo": None,
                "error": "Invalid config: Missing command or url",
            },
        ]

    def test_verifies_servers_concurrently(self, write_config, fast_settings):
        """Should check all enabled servers at the same time."""
        servers = {f"s{i}": {"type": "http", "url": f"{URL}/{i}"} for i in range(4)}
        settings = replace(fast_settings, config_path=write_config({"mcpServers": servers}))

        async def slow_handler(request):
            await asyncio.sleep(0.5)
            return mcp_handler(request)

        async def scenario():
            with StatusService(settings, httpx.MockTransport(slow_handler)) as service:
                loop = asyncio.get_running_loop()
                start = loop.time()
                statuses = await service.get_servers_status()
                return statuses, loop.time() - start

        statuses, elapsed = asyncio.run(scenario())

        assert [status.name for status in statuses] == ["s0", "s1", "s2", "s3"]
        assert all(status.status is ServerState.CONNECTED for status in statuses)
        assert elapsed < 1.5

    def test_missing_config_file(self, tmp_path, fast_settings):
        """Should report no servers when there is no config file."""
        settings = replace(fast_settings, config_path=tmp_path / "missing.json")

        assert asyncio.run(get_servers_status(settings=settings)) == []

    def test_project_servers(self, write_config, handshake_server, fast_settings):
        """Should verify project-scoped servers for the given cwd."""
        path = write_config(
            {
                "mcpServers": {},
                "projects": {"/work/app": {"mcpServers": {"fixture": handshake_server.to_dict()}}},
            }
        )
        settings = replace(fast_settings, config_path=path)

        statuses = asyncio.run(get_servers_status("/work/app/", settings))

        assert statuses == [
            ServerStatus(
                "fixture", ServerState.CONNECTED, {"name": "fixture", "version": "0.1.0"}
            )
        ]


class TestGetToolsForServer:
    """Tests for StatusService.get_tools_for_server."""

    def test_unknown_server(self, write_config, fast_settings):
        """Should report a missing server without serverName."""
        settings = replace(fast_settings, config_path=write_config({"mcpServers": {}}))

        result = asyncio.run(get_tools_for_server("ghost", settings=settings))

        assert result == {
            "success": False,
            "serverId": "ghost",
            "error": "Server not found: ghost",
        }

    def test_disabled_server_not_found(self, write_config, fast_settings):
        """Should not list tools of a disabled server."""
        path = write_config(
            {"mcpServers": {"off": {"command": "node"}}, "disabledMcpServers": ["off"]}
        )
        settings = replace(fast_settings, config_path=path)

        result = asyncio.run(get_tools_for_server("off", settings=settings))

        assert result["error"] == "Server not found: off"

    def test_http_tools(self, write_config, fast_settings):
        """Should return the tools as dictionaries."""
        path = write_config({"mcpServers": {"remote": {"type": "http", "url": URL}}})
        settings = replace(fast_settings, config_path=path)

        with StatusService(settings, httpx.MockTransport(mcp_handler)) as service:
            result = asyncio.run(service.get_tools_for_server("remote"))

        assert result == {
            "success": True,
            "serverId": "remote",
            "serverName": "remote",
            "tools": [{"name": "lookup", "description": "Look things up"}],
            "error": None,
        }

    def test_stdio_tools(self, write_config, handshake_server, fast_settings):
        """Should list tools of a STDIO server."""
        path = write_config({"mcpServers": {"fixture": handshake_server.to_dict()}})
        settings = replace(fast_settings, config_path=path)

        result = asyncio.run(get_tools_for_server("fixture", settings=settings))

        assert result["success"] is True
        assert [tool["name"] for tool in result["tools"]] == ["echo", "ping"]

    def test_failure_is_unsuccessful(self, write_config, fast_settings):
        """Should report failure with the fetch error when no tools were listed."""
        path = write_config({"mcpServers": {"remote": {"type": "http", "url": URL}}})
        settings = replace(fast_settings, config_path=path)
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        with StatusService(settings, transport) as service:
            result = asyncio.run(service.get_tools_for_server("remote"))

        assert result["success"] is False
        assert result["tools"] == []
        assert result["error"] == "HTTP 503: Service Unavailable"


class TestAuditTrail:
    """Tests for audit logging of server checks."""

    def test_verify_writes_request_and_response(self, tmp_path, fast_settings):
        """Should log each check with matching request ids and redacted headers."""
        audit_path = tmp_path / "logs" / "audit.jsonl"
        settings = replace(fast_settings, audit_log_file=str(audit_path))
        config = ServerConfig(
            name="remote",
            url=f"{URL}?Authorization=Bearer%20secret",
            headers={"Authorization": "Bearer other", "X-Team": "core"},
        )

        with StatusService(settings, httpx.MockTransport(mcp_handler)) as service:
            asyncio.run(service.verify("remote", config))

        request, response = read_audit(audit_path)
        assert request["type"] == "request"
        assert request["operation"] == "verify"
        assert "secret" not in json.dumps(request)
        assert request["details"]["headers"] == {
            "Authorization": "[REDACTED]",
            "X-Team": "core",
        }
        assert response["type"] == "response"
        assert response["request_id"] == request["request_id"]
        assert response["result_status"] == "connected"
        assert response["execution_time_ms"] >= 0

    def test_tools_failure_logged_as_error(self, tmp_path, fast_settings):
        """Should record a failed tools fetch with status error."""
        audit_path = tmp_path / "audit.jsonl"
        settings = replace(fast_settings, audit_log_file=str(audit_path))
        config = ServerConfig(name="remote", url=URL)
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        with StatusService(settings, transport) as service:
            asyncio.run(service.fetch_tools("remote", config))

        _, response = read_audit(audit_path)
        assert response["operation"] == "tools"
        assert response["result_status"] == "error"

    def test_command_outside_allow_list(self, tmp_path, fast_settings):
        """Should record a security event and still attempt the launch."""
        audit_path = tmp_path / "audit.jsonl"
        settings = replace(fast_settings, audit_log_file=str(audit_path))
        config = ServerConfig(
            name="ghost", command=str(tmp_path / "ghost-server"), env={"API_TOKEN": "t0k"}
        )

        with StatusService(settings) as service:
            status = asyncio.run(service.verify("ghost", config))

        assert status.status is ServerState.FAILED
        assert status.error.startswith("Failed to spawn process:")

        records = read_audit(audit_path)
        assert [record["type"] for record in records] == ["request", "security", "response"]
        assert records[0]["details"]["env"] == {"API_TOKEN": "[REDACTED]"}
        event = records[1]
        assert event["event_type"] == "command_not_allowlisted"
        assert event["details"]["server_name"] == "ghost"
        assert "not in the allowed list" in event["details"]["reason"]

    def test_redacts_secret_arguments(self, tmp_path, fast_settings):
        """Should hide the values of sensitive command line flags."""
        audit_path = tmp_path / "audit.jsonl"
        settings = replace(fast_settings, audit_log_file=str(audit_path))
        config = ServerConfig(
            name="ghost",
            command=str(tmp_path / "ghost-server"),
            args=("--api-key", "k-123", "--password=hunter2", "--verbose"),
        )

        with StatusService(settings) as service:
            asyncio.run(service.verify("ghost", config))

        request = read_audit(audit_path)[0]
        assert request["details"]["args"] == [
            "--api-key",
            "[REDACTED]",
            "--password=[REDACTED]",
            "--verbose",
        ]
        assert "k-123" not in audit_path.read_text()

    def test_no_audit_file_by_default(self, tmp_path, fast_settings, monkeypatch):
        """Should not write an audit log unless one is configured."""
        monkeypatch.chdir(tmp_path)
        config = ServerConfig(name="remote", url=URL)

        with StatusService(fast_settings, httpx.MockTransport(mcp_handler)) as service:
            asyncio.run(service.verify("remote", config))

        assert list(tmp_path.iterdir()) == []
