"""Probe settings loader.

Timeouts, retry policy and parsing limits used by every probe. Settings are
built once (from environment variables and an optional YAML file) and passed
explicitly into each component.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml


class SettingsError(Exception):
    """Raised when settings loading or validation fails."""

    pass


# Environment variables holding millisecond timeouts, keyed by settings field
TIMEOUT_ENV_VARS = {
    "http_verify_timeout": "MCP_HTTP_VERIFY_TIMEOUT",
    "sse_verify_timeout": "MCP_SSE_VERIFY_TIMEOUT",
    "sse_tools_timeout": "MCP_SSE_TOOLS_TIMEOUT",
    "stdio_verify_timeout": "MCP_STDIO_VERIFY_TIMEOUT",
    "tools_timeout": "MCP_TOOLS_TIMEOUT",
}


def real_home_dir() -> Path:
    """Return the user's home directory with symlinks resolved.

    Falls back to the unresolved path if resolution fails.
    """
    home = Path.home()
    try:
        return home.resolve()
    except (OSError, RuntimeError):
        return home


def default_config_path() -> Path:
    """Return the default MCP server configuration file (``~/.claude.json``)."""
    return real_home_dir() / ".claude.json"


def _env_millis(name: str, default: float, environ: Mapping[str, str]) -> float:
    """Read a millisecond duration from the environment as seconds.

    Missing, non-numeric and non-positive values fall back to ``default``.
    """
    raw = environ.get(name)
    if not raw:
        return default
    try:
        millis = int(raw.strip())
    except ValueError:
        return default
    if millis <= 0:
        return default
    return millis / 1000.0


@dataclass(frozen=True)
class ProbeSettings:
    """Immutable probe configuration.

    All durations are in seconds.
    """

    # Verification deadlines
    http_verify_timeout: float = 6.0
    sse_verify_timeout: float = 10.0
    stdio_verify_timeout: float = 15.0

    # Tools fetch deadlines
    tools_timeout: float = 45.0
    sse_tools_timeout: float = 30.0

    # Wait for the endpoint event of a legacy SSE stream
    sse_endpoint_timeout: float = 3.0

    # HTTP retry policy
    max_retries: int = 2
    session_retry_backoff: float = 0.5
    network_retry_backoff: float = 1.0
    request_timeout: float = 10.0
    request_timeout_step: float = 5.0

    # Process handling
    kill_grace_period: float = 0.5

    # Output parsing limits
    max_line_length: int = 10_000
    stdio_tools_max_line_length: int = 1024 * 1024

    # Sources and diagnostics
    config_path: Path | None = None
    audit_log_file: str = ""
    debug: bool = False

    @property
    def resolved_config_path(self) -> Path:
        """Path of the server configuration file to read."""
        return self.config_path if self.config_path is not None else default_config_path()

    def verify_timeout_for(self, server_type: str | None) -> float:
        """Get the HTTP verification deadline for a server type."""
        if server_type == "sse":
            return self.sse_verify_timeout
        return self.http_verify_timeout

    def attempt_timeout(self, retry_count: int) -> float:
        """Get the per-attempt HTTP request timeout for a retry number."""
        return self.request_timeout + self.request_timeout_step * retry_count

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> ProbeSettings:
        """Create settings from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ).

        Returns:
            ProbeSettings with defaults for anything unset or invalid.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        values: dict[str, Any] = {
            field_name: _env_millis(var, getattr(defaults, field_name), env)
            for field_name, var in TIMEOUT_ENV_VARS.items()
        }
        values["debug"] = env.get("MCP_DEBUG") == "true" or env.get("DEBUG") == "true"

        config_path = env.get("MCP_CONFIG_PATH")
        if config_path:
            values["config_path"] = Path(os.path.expanduser(config_path))
        values["audit_log_file"] = env.get("MCP_AUDIT_LOG", "")

        return cls(**values)

    @classmethod
    def from_dict(
        cls, config: Mapping[str, Any], base: ProbeSettings | None = None
    ) -> ProbeSettings:
        """Overlay a configuration mapping onto base settings.

        Args:
            config: Mapping parsed from YAML; keys are field names.
            base: Settings to start from (defaults to built-in defaults).

        Returns:
            New ProbeSettings instance.

        Raises:
            SettingsError: If a key is unknown or a value has the wrong type.
        """
        base = base or cls()
        known = {f.name for f in fields(cls)}
        updates: dict[str, Any] = {}

        for key, value in config.items():
            if key not in known:
                raise SettingsError(f"Unknown setting: {key}")
            current = getattr(base, key)
            if key == "config_path":
                updates[key] = Path(os.path.expanduser(str(value))) if value else None
            elif isinstance(current, bool):
                if not isinstance(value, bool):
                    raise SettingsError(f"Setting '{key}' must be a boolean")
                updates[key] = value
            elif isinstance(current, int | float):
                if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
                    raise SettingsError(f"Setting '{key}' must be a non-negative number")
                updates[key] = type(current)(value)
            else:
                updates[key] = str(value)

        return replace(base, **updates)


def load_settings(path: Path | None = None) -> ProbeSettings:
    """Load settings from the environment, overlaid with an optional YAML file.

    Args:
        path: Optional path to a YAML settings file.

    Returns:
        ProbeSettings instance.

    Raises:
        SettingsError: If the file cannot be found, parsed, or validated.
    """
    settings = ProbeSettings.from_environment()
    if path is None:
        return settings

    if not path.exists():
        raise SettingsError(f"Settings file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SettingsError(f"Failed to parse settings YAML: {e}") from e

    if config is None:
        return settings
    if not isinstance(config, dict):
        raise SettingsError("Settings must be a YAML mapping")

    return ProbeSettings.from_dict(config, base=settings)
