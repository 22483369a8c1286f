"""Security layer: launch command checks, child environments and audit trail."""

from mcp_status.security.audit import AuditLogger, ProbeEvent, SecurityEvent
from mcp_status.security.gate import (
    ALLOWED_COMMANDS,
    ALLOWED_ENV_VARS,
    CommandValidation,
    create_safe_env,
    enhance_path,
    needs_shell,
    validate_command,
)

__all__ = [
    "ALLOWED_COMMANDS",
    "ALLOWED_ENV_VARS",
    "AuditLogger",
    "CommandValidation",
    "ProbeEvent",
    "SecurityEvent",
    "create_safe_env",
    "enhance_path",
    "needs_shell",
    "validate_command",
]
