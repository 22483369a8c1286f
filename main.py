#!/usr/bin/env python3
"""MCP server status checker - Main entry point.

Verifies every MCP server configured in ~/.claude.json (or the file given
with --config) and lists the tools of a single server.

Usage:
    python main.py status
    python main.py --cwd /path/to/project status
    python main.py tools <server-name>
    python main.py --settings settings.yaml --debug status

Results are printed on stdout, tagged for the IDE bridge:

    [MCP_SERVER_STATUS][{"name": "...", "status": "connected", ...}]
    [MCP_SERVER_TOOLS] {"success": true, "serverId": "...", ...}

Log output goes to stderr.
"""

import sys

from mcp_status.cli import main

if __name__ == "__main__":
    sys.exit(main())
