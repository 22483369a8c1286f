"""MCP server configuration loading."""

from mcp_status.config.loader import (
    Classification,
    ConfigError,
    ParsedConfig,
    classify,
    load_all_servers,
    load_enabled_servers,
    parse_config,
    resolve_servers,
)

__all__ = [
    "Classification",
    "ConfigError",
    "ParsedConfig",
    "classify",
    "load_all_servers",
    "load_enabled_servers",
    "parse_config",
    "resolve_servers",
]
