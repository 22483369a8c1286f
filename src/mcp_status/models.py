"""Data models for MCP server probes.

Server configuration as read from the config file, and the status and
tool records handed back to the IDE bridge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Server types served by the HTTP path
HTTP_SERVER_TYPES = frozenset({"http", "streamable-http", "sse"})


class Transport(Enum):
    """How a server is reached."""

    STDIO = "stdio"
    HTTP = "http"


class ServerState(Enum):
    """Verification result states."""

    PENDING = "pending"
    CONNECTED = "connected"
    FAILED = "failed"
    NEEDS_AUTH = "needs-auth"


@dataclass(frozen=True)
class ServerConfig:
    """One configured MCP server."""

    name: str
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    type: str | None = None

    @classmethod
    def from_dict(cls, name: str, config: dict[str, Any]) -> ServerConfig:
        """Create a ServerConfig from a config file entry.

        The entry is expected to have passed shape validation.

        Args:
            name: Server name (the key in ``mcpServers``).
            config: Raw server entry.

        Returns:
            ServerConfig instance.
        """
        return cls(
            name=name,
            command=config.get("command") or None,
            args=tuple(str(arg) for arg in config.get("args") or ()),
            env={str(k): str(v) for k, v in (config.get("env") or {}).items()},
            url=config.get("url") or None,
            headers={str(k): str(v) for k, v in (config.get("headers") or {}).items()},
            type=config.get("type"),
        )

    @property
    def transport(self) -> Transport:
        """Select the transport from the declared type, then from the fields set."""
        if self.type in HTTP_SERVER_TYPES:
            return Transport.HTTP
        if self.type == "stdio":
            return Transport.STDIO
        return Transport.HTTP if self.url else Transport.STDIO

    def to_dict(self) -> dict[str, Any]:
        """Convert back to config file format."""
        data: dict[str, Any] = {}
        if self.command:
            data["command"] = self.command
            data["args"] = list(self.args)
        if self.env:
            data["env"] = dict(self.env)
        if self.url:
            data["url"] = self.url
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.type:
            data["type"] = self.type
        return data


@dataclass
class ServerStatus:
    """Verification result for one server."""

    name: str
    status: ServerState = ServerState.PENDING
    server_info: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the bridge wire format."""
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "serverInfo": self.server_info,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ToolDescriptor:
    """A tool advertised by a server's tools/list response."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ToolDescriptor:
        """Create a descriptor from a tools/list entry, keeping unknown keys."""
        known = {"name", "description", "inputSchema"}
        description = raw.get("description")
        input_schema = raw.get("inputSchema")
        return cls(
            name=str(raw.get("name", "")),
            description=description if isinstance(description, str) else None,
            input_schema=input_schema if isinstance(input_schema, dict) else None,
            extra={k: v for k, v in raw.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP tool format."""
        data: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            data["description"] = self.description
        if self.input_schema is not None:
            data["inputSchema"] = self.input_schema
        data.update(self.extra)
        return data


def parse_tools(raw_tools: Any) -> list[ToolDescriptor]:
    """Convert a tools/list ``tools`` array into descriptors.

    Entries that are not objects are dropped.
    """
    if not isinstance(raw_tools, list):
        return []
    return [ToolDescriptor.from_dict(tool) for tool in raw_tools if isinstance(tool, dict)]


@dataclass
class ToolsRecord:
    """Tools fetch result for one server."""

    name: str
    tools: list[ToolDescriptor] = field(default_factory=list)
    error: str | None = None
    server_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the bridge wire format."""
        data: dict[str, Any] = {
            "name": self.name,
            "tools": [tool.to_dict() for tool in self.tools],
            "error": self.error,
        }
        if self.server_type:
            data["serverType"] = self.server_type
        return data


@dataclass
class InvalidServer:
    """A configured server whose entry failed validation."""

    name: str
    reason: str


@dataclass
class ServerInventory:
    """All configured servers, partitioned."""

    enabled: list[ServerConfig] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    invalid: list[InvalidServer] = field(default_factory=list)
