"""Audit trail for MCP server probes.

Append-only JSON Lines log of probe requests, results and security
events such as non-allow-listed launch commands.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mcp_status.log import redact_mapping


def _get_timestamp() -> str:
    """Get current UTC timestamp in ISO 8601 format."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class ProbeEvent:
    """Represents one completed probe."""

    timestamp: str
    request_id: str
    server_name: str
    operation: str
    result_status: str
    execution_time_ms: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "timestamp": self.timestamp,
            "request_id": self.request_id,
            "server_name": self.server_name,
            "operation": self.operation,
            "result_status": self.result_status,
            "execution_time_ms": self.execution_time_ms,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class SecurityEvent:
    """Represents a security-related event."""

    timestamp: str
    event_type: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "timestamp": self.timestamp,
            "event_type": self.event_type,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())


class AuditLogger:
    """Append-only audit logger with JSON Lines format.

    Every record is flushed as soon as it is written.
    """

    def __init__(self, log_path: Path) -> None:
        """Initialize the audit logger.

        Args:
            log_path: Path to the audit log file.
        """
        self._log_path = log_path
        self._ensure_directory()
        self._file = open(log_path, "a", encoding="utf-8")  # noqa: SIM115

    def _ensure_directory(self) -> None:
        """Create log directory if it doesn't exist."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write_line(self, data: dict[str, Any]) -> None:
        """Write a JSON line to the log file and flush."""
        self._file.write(json.dumps(data, default=str) + "\n")
        self._file.flush()

    def log_request(
        self, request_id: str, server_name: str, operation: str, details: dict[str, Any]
    ) -> None:
        """Log the start of a probe.

        Args:
            request_id: Unique identifier for this probe.
            server_name: Configured server name.
            operation: Probe kind ("verify" or "tools").
            details: Transport details (will be redacted).
        """
        self._write_line(
            {
                "type": "request",
                "timestamp": _get_timestamp(),
                "request_id": request_id,
                "server_name": server_name,
                "operation": operation,
                "details": redact_mapping(details),
            }
        )

    def log_response(
        self,
        request_id: str,
        server_name: str,
        operation: str,
        status: str,
        duration_ms: float,
    ) -> None:
        """Log a probe result.

        Args:
            request_id: Request identifier to correlate with.
            server_name: Configured server name.
            operation: Probe kind ("verify" or "tools").
            status: Result status (connected/failed/pending, or ok/error for tools).
            duration_ms: Probe time in milliseconds.
        """
        event = ProbeEvent(
            timestamp=_get_timestamp(),
            request_id=request_id,
            server_name=server_name,
            operation=operation,
            result_status=status,
            execution_time_ms=duration_ms,
        )
        self._write_line({"type": "response", **event.to_dict()})

    def log_security_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a security-related event.

        Args:
            event_type: Type of security event.
            details: Additional details about the event (will be redacted).
        """
        event = SecurityEvent(
            timestamp=_get_timestamp(),
            event_type=event_type,
            details=redact_mapping(details),
        )
        self._write_line({"type": "security", **event.to_dict()})

    def close(self) -> None:
        """Close the log file."""
        if self._file and not self._file.closed:
            self._file.close()

    def __enter__(self) -> AuditLogger:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
