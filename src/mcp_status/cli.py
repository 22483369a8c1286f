"""Command line entry point.

Prints results on stdout with the tags the IDE bridge looks for; all
logging goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from mcp_status import __version__
from mcp_status.log import configure_logging
from mcp_status.service import get_servers_status, get_tools_for_server
from mcp_status.settings import SettingsError, load_settings

STATUS_TAG = "[MCP_SERVER_STATUS]"
TOOLS_TAG = "[MCP_SERVER_TOOLS]"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="mcp-status",
        description="Check MCP server connectivity and list server tools",
    )
    parser.add_argument(
        "--settings",
        "-s",
        type=Path,
        default=None,
        help="Path to a YAML settings file overriding environment defaults",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to the MCP server config file (default: ~/.claude.json)",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory used to select project-scoped servers",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"mcp-status {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Verify every configured server")
    tools = subparsers.add_parser("tools", help="List the tools of one server")
    tools.add_argument("server_id", help="Configured server name")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.settings)
    except SettingsError as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    if args.config is not None:
        settings = replace(settings, config_path=args.config)
    if args.debug:
        settings = replace(settings, debug=True)
    configure_logging(settings.debug)

    try:
        if args.command == "status":
            statuses = asyncio.run(get_servers_status(args.cwd, settings))
            print(STATUS_TAG + json.dumps([status.to_dict() for status in statuses]))
        else:
            result = asyncio.run(get_tools_for_server(args.server_id, args.cwd, settings))
            result_json = json.dumps(result)
            if "serverName" in result:
                print(f"{TOOLS_TAG} {result_json}")
            print(result_json)
    except KeyboardInterrupt:
        return 130
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
