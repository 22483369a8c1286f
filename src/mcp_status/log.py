"""Logging setup for MCP status probes.

Log records go to stderr so they never corrupt JSON written to stdout.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping, Sequence
from typing import Any, TextIO

LOGGER_NAME = "mcp_status"
LOG_FORMAT = "[McpStatus] [%(levelname)s] %(message)s"

# Patterns for sensitive key names in env maps and headers
SENSITIVE_PATTERNS = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"auth", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"private[_-]?key", re.IGNORECASE),
]

REDACTED = "[REDACTED]"


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    return any(pattern.search(key) for pattern in SENSITIVE_PATTERNS)


def redact_mapping(mapping: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy a mapping with sensitive values redacted.

    Nested mappings are redacted recursively.

    Args:
        mapping: Env vars, headers or request details.

    Returns:
        New dictionary safe to log.
    """
    redacted: dict[str, Any] = {}
    for key, value in (mapping or {}).items():
        if is_sensitive_key(str(key)):
            redacted[key] = REDACTED
        elif isinstance(value, Mapping):
            redacted[key] = redact_mapping(value)
        else:
            redacted[key] = value
    return redacted


def redact_args(args: Sequence[str] | None) -> list[str]:
    """Copy command arguments with the values of sensitive flags redacted.

    Handles both ``--api-key=value`` and ``--api-key value``.

    Args:
        args: Server command arguments.

    Returns:
        New list safe to log.
    """
    redacted: list[str] = []
    hide_next = False
    for arg in args or []:
        if hide_next:
            redacted.append(REDACTED)
            hide_next = False
            continue
        if arg.startswith("-"):
            flag, sep, _ = arg.partition("=")
            if is_sensitive_key(flag):
                if sep:
                    redacted.append(f"{flag}={REDACTED}")
                    continue
                hide_next = True
        redacted.append(arg)
    return redacted


def configure_logging(debug: bool = False, stream: TextIO | None = None) -> logging.Logger:
    """Install a stderr handler on the package logger.

    Calling this again replaces the previous handler.

    Args:
        debug: Emit DEBUG records when True, INFO and above otherwise.
        stream: Output stream (defaults to sys.stderr).

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    return logger
