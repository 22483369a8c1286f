"""MCP server connectivity checks.

Verifies configured Model Context Protocol servers over STDIO and
HTTP/SSE and lists the tools they advertise.
"""

__version__ = "1.0.0"

from mcp_status.models import (  # noqa: E402
    ServerConfig,
    ServerState,
    ServerStatus,
    ToolDescriptor,
    ToolsRecord,
    Transport,
)
from mcp_status.service import (  # noqa: E402
    StatusService,
    get_server_tools,
    get_servers_status,
    get_tools_for_server,
    verify_server_status,
)
from mcp_status.settings import ProbeSettings, load_settings  # noqa: E402

__all__ = [
    "ProbeSettings",
    "ServerConfig",
    "ServerState",
    "ServerStatus",
    "StatusService",
    "ToolDescriptor",
    "ToolsRecord",
    "Transport",
    "__version__",
    "get_server_tools",
    "get_servers_status",
    "get_tools_for_server",
    "load_settings",
    "verify_server_status",
]
