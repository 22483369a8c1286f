"""Server info extraction from noisy process output.

Servers often interleave log text with JSON-RPC on stdout. The parser finds
the initialize response on a line containing ``"serverInfo"`` without
requiring the whole line to be JSON.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Longer lines are skipped
MAX_LINE_LENGTH = 10_000

SERVER_INFO_MARKER = '"serverInfo"'


def find_balanced_span(text: str, start: int) -> int | None:
    """Find the end of the JSON object opening at ``start``.

    Tracks brace depth, ignoring braces inside JSON strings.

    Args:
        text: Text to scan.
        start: Index of an opening ``{``.

    Returns:
        Index one past the matching ``}``, or None if the object never closes.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def extract_server_info(line: str) -> dict[str, Any] | None:
    """Extract ``result.serverInfo`` from one output line."""
    start = line.find("{")
    if start == -1:
        return None
    end = find_balanced_span(line, start)
    if end is None:
        return None

    try:
        parsed = json.loads(line[start:end])
    except json.JSONDecodeError as e:
        logger.debug("Failed to parse server info: %s", e)
        return None

    if not isinstance(parsed, dict):
        return None
    result = parsed.get("result")
    if not isinstance(result, dict):
        return None
    server_info = result.get("serverInfo")
    return server_info if isinstance(server_info, dict) else None


def server_info_from_line(
    line: str, max_line_length: int = MAX_LINE_LENGTH
) -> dict[str, Any] | None:
    """Return the serverInfo carried by one line, skipping oversized lines."""
    if SERVER_INFO_MARKER not in line:
        return None
    if len(line) > max_line_length:
        logger.debug("Skipping oversized line in parse_server_info")
        return None
    return extract_server_info(line)


def parse_server_info(text: str, max_line_length: int = MAX_LINE_LENGTH) -> dict[str, Any] | None:
    """Find the first ``serverInfo`` object in accumulated output.

    Args:
        text: Accumulated stdout.
        max_line_length: Lines longer than this are skipped.

    Returns:
        The serverInfo mapping, or None if no line carries one.
    """
    if SERVER_INFO_MARKER not in text:
        return None

    for line in text.split("\n"):
        server_info = server_info_from_line(line, max_line_length)
        if server_info is not None:
            return server_info
    return None
