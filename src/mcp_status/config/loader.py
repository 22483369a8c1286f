"""MCP server configuration loader.

Reads server definitions from the JSON config file (``~/.claude.json`` by
default), resolves project-scoped overrides for a working directory and
partitions servers into enabled, disabled and invalid.

Loading never raises: a missing or malformed file yields no servers, and a
bad server entry is skipped without affecting the others.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from mcp_status.models import InvalidServer, ServerConfig, ServerInventory
from mcp_status.settings import default_config_path

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the configuration source cannot be read or decoded."""

    pass


CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "mcpServers": {"type": "object"},
        "disabledMcpServers": {"type": "array"},
        "projects": {"type": "object"},
    },
}

SERVER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "command": {"type": "string"},
        "args": {"type": "array"},
        "env": {"type": "object"},
        "url": {"type": "string"},
        "headers": {"type": "object"},
        "type": {"type": "string"},
    },
}

_config_validator = Draft202012Validator(CONFIG_SCHEMA)
_server_validator = Draft202012Validator(SERVER_SCHEMA)


@dataclass
class ParsedConfig:
    """Servers and disabled names in effect for one working directory."""

    servers: dict[str, Any]
    disabled: frozenset[str]


@dataclass
class Classification:
    """Outcome of classifying one server entry."""

    kind: str  # "enabled", "disabled" or "invalid"
    config: ServerConfig | None = None
    reason: str | None = None


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def server_config_error(config: Any) -> str | None:
    """Validate one server entry.

    Args:
        config: Raw ``mcpServers`` entry.

    Returns:
        None when valid, otherwise the reason it is invalid.
    """
    if not isinstance(config, dict):
        return "Invalid config structure: server entry must be an object"

    has_command = _non_empty_string(config.get("command"))
    has_url = _non_empty_string(config.get("url"))
    if not has_command and not has_url:
        return "Missing command or url"
    if has_command and has_url:
        return "Invalid config structure: command and url are mutually exclusive"

    errors = sorted(_server_validator.iter_errors(config), key=lambda e: list(e.path))
    if errors:
        error = errors[0]
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        return f"Invalid config structure: '{path}' {error.message}"
    return None


def validate_config_structure(config: Any) -> str | None:
    """Validate the top-level config shape.

    Per-server problems are only logged here; they are handled entry by
    entry during classification.

    Returns:
        None when valid, otherwise the reason.
    """
    if not isinstance(config, dict):
        return "Config must be an object"

    errors = list(_config_validator.iter_errors(config))
    if errors:
        error = errors[0]
        key = str(error.path[0]) if error.path else "root"
        return f"{key}: {error.message}"

    for name, server in (config.get("mcpServers") or {}).items():
        if server_config_error(server) is not None:
            logger.warning('Invalid server config for "%s", skipping', name)
    return None


def read_config(path: Path) -> dict[str, Any] | None:
    """Read and decode the config file.

    Returns:
        Decoded config, or None when the file does not exist.

    Raises:
        ConfigError: If the file cannot be read or is not valid JSON.
    """
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e


def normalize_cwd(cwd: str) -> str:
    """Normalize a working directory the way project keys are written."""
    normalized = cwd.replace("\\", "/")
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def find_project_config(projects: dict[str, Any], cwd: str) -> dict[str, Any] | None:
    """Find the project entry for a working directory.

    Tries an exact key match first, then compares normalized project keys
    against slash, backslash and leading-slash variants of the cwd.
    """
    normalized = normalize_cwd(cwd)
    project = projects.get(normalized)
    if isinstance(project, dict):
        return project

    variants = {normalized, normalized.replace("/", "\\"), "/" + normalized}
    for project_path, project in projects.items():
        if project_path.replace("\\", "/") in variants and isinstance(project, dict):
            logger.info("Found project config for: %s", project_path)
            return project
    return None


def _names(value: Any) -> set[str]:
    if not isinstance(value, list):
        return set()
    return {str(name) for name in value}


def _servers(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def resolve_servers(config: dict[str, Any], cwd: str | None = None) -> ParsedConfig:
    """Select the servers and disabled list in effect for a working directory.

    A matched project with its own servers replaces the global list. A matched
    project without servers falls back to the global servers, and the global
    and project disabled lists are merged.
    """
    global_servers = _servers(config.get("mcpServers"))
    global_disabled = _names(config.get("disabledMcpServers"))

    project = None
    if cwd and isinstance(config.get("projects"), dict):
        project = find_project_config(config["projects"], cwd)

    if project is None:
        logger.info("[MCP Config] Using global MCP configuration")
        return ParsedConfig(global_servers, frozenset(global_disabled))

    logger.info("[MCP Config] Using project-specific MCP configuration")
    project_servers = _servers(project.get("mcpServers"))
    project_disabled = _names(project.get("disabledMcpServers"))
    if project_servers:
        return ParsedConfig(project_servers, frozenset(project_disabled))

    logger.info("[MCP Config] Project has no MCP servers, using global config")
    return ParsedConfig(global_servers, frozenset(global_disabled | project_disabled))


def _load_validated(config_path: Path | None) -> dict[str, Any] | None:
    path = config_path or default_config_path()
    try:
        config = read_config(path)
    except ConfigError as e:
        logger.error("Failed to load MCP servers config: %s", e)
        return None

    if config is None:
        logger.info("%s not found", path)
        return None

    reason = validate_config_structure(config)
    if reason is not None:
        logger.error("Invalid config structure: %s", reason)
        return None
    return config


def parse_config(
    cwd: str | None = None, config_path: Path | None = None
) -> ParsedConfig | None:
    """Read the config file and resolve servers for a working directory.

    Args:
        cwd: Working directory used to find a project entry.
        config_path: Config file (defaults to ``~/.claude.json``).

    Returns:
        ParsedConfig, or None when the file is missing or malformed.
    """
    config = _load_validated(config_path)
    if config is None:
        return None
    return resolve_servers(config, cwd)


def classify(name: str, config: Any, disabled: frozenset[str] | set[str]) -> Classification:
    """Classify one server entry as enabled, disabled or invalid."""
    if name in disabled:
        return Classification("disabled")
    reason = server_config_error(config)
    if reason is not None:
        return Classification("invalid", reason=reason)
    return Classification("enabled", config=ServerConfig.from_dict(name, config))


def load_enabled_servers(
    cwd: str | None = None, config_path: Path | None = None
) -> list[ServerConfig]:
    """Load the enabled, valid servers for a working directory.

    Returns:
        List of server configs; empty on any loading problem.
    """
    parsed = parse_config(cwd, config_path)
    if parsed is None:
        return []

    enabled = []
    for name, raw in parsed.servers.items():
        result = classify(name, raw, parsed.disabled)
        if result.kind == "invalid":
            logger.warning("Skipping invalid server config: %s", name)
        elif result.kind == "enabled" and result.config is not None:
            enabled.append(result.config)

    logger.info("[MCP Config] Loaded %d enabled MCP servers", len(enabled))
    return enabled


def load_all_servers(cwd: str | None = None, config_path: Path | None = None) -> ServerInventory:
    """Load every configured server, including disabled and invalid ones.

    When a cwd is given, servers that exist only in the global config are
    added after the project-scoped ones, classified with the global
    disabled list.

    Returns:
        ServerInventory; empty on any loading problem.
    """
    inventory = ServerInventory()
    config = _load_validated(config_path)
    if config is None:
        return inventory

    scopes = [resolve_servers(config, cwd)]
    if cwd:
        scopes.append(resolve_servers(config, None))

    seen: set[str] = set()
    for scope in scopes:
        for name, raw in scope.servers.items():
            if name in seen:
                continue
            seen.add(name)
            result = classify(name, raw, scope.disabled)
            if result.kind == "disabled":
                inventory.disabled.append(name)
            elif result.kind == "invalid":
                inventory.invalid.append(InvalidServer(name, result.reason or ""))
            elif result.config is not None:
                inventory.enabled.append(result.config)

    logger.info(
        "[MCP Config] All servers: %d enabled, %d disabled, %d invalid",
        len(inventory.enabled),
        len(inventory.disabled),
        len(inventory.invalid),
    )
    return inventory
