"""Command allow-list checks and child process environment construction.

The command allow-list is advisory: callers log a warning for commands
outside it and still launch the user-configured server.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass

# Common MCP server launchers
ALLOWED_COMMANDS = frozenset(
    {
        "node",
        "npx",
        "npm",
        "pnpm",
        "yarn",
        "bunx",
        "bun",
        "python",
        "python3",
        "uvx",
        "uv",
        "deno",
        "docker",
        "cargo",
        "go",
        "java",
        "javaw",
        "kotlin",
    }
)

# Executable extensions accepted after an allow-listed name (Windows)
VALID_EXTENSIONS = frozenset({"", ".exe", ".cmd", ".bat"})

# Host variables copied into the child environment
ALLOWED_ENV_VARS = (
    # System essentials
    "PATH",
    "HOME",
    "USER",
    "SHELL",
    "LANG",
    "LC_ALL",
    "LC_CTYPE",
    "TERM",
    "TMPDIR",
    "TMP",
    "TEMP",
    # Node.js
    "NODE_ENV",
    "NODE_PATH",
    "NODE_OPTIONS",
    # Python
    "PYTHONPATH",
    "PYTHONHOME",
    "VIRTUAL_ENV",
    # Runtimes
    "DENO_DIR",
    "CARGO_HOME",
    "GOPATH",
    "GOROOT",
    # Windows
    "USERPROFILE",
    "APPDATA",
    "LOCALAPPDATA",
    "PROGRAMFILES",
    "PROGRAMFILES(X86)",
    "SYSTEMROOT",
    "WINDIR",
    "COMSPEC",
    # XDG
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "XDG_CACHE_HOME",
)

# Launchers that are script shims on Windows and need a shell there
SHELL_LAUNCHERS = frozenset({"npx", "npm", "pnpm", "yarn"})


@dataclass(frozen=True)
class CommandValidation:
    """Result of an allow-list check."""

    valid: bool
    reason: str | None = None


def command_basename(command: str) -> str:
    """Strip any POSIX or Windows path prefix from a command."""
    return command.replace("\\", "/").rsplit("/", 1)[-1]


def validate_command(command: object) -> CommandValidation:
    """Check a command against the launcher allow-list.

    Args:
        command: Command as configured for the server.

    Returns:
        CommandValidation with a reason when the command is not allowed.
    """
    if not command or not isinstance(command, str):
        return CommandValidation(False, "Command is empty or invalid")

    base = command_basename(command)
    if base in ALLOWED_COMMANDS:
        return CommandValidation(True)

    dot = base.rfind(".")
    if dot > 0:
        stem = base[:dot]
        ext = base[dot:].lower()
        if ext not in VALID_EXTENSIONS:
            allowed = ", ".join(sorted(e for e in VALID_EXTENSIONS if e))
            return CommandValidation(
                False, f'Invalid command extension "{ext}". Allowed extensions: {allowed}'
            )
        if stem in ALLOWED_COMMANDS:
            return CommandValidation(True)

    return CommandValidation(
        False,
        f'Command "{base}" is not in the allowed list. '
        f"Allowed: {', '.join(sorted(ALLOWED_COMMANDS))}",
    )


def enhance_path(current_path: str, home: str, separator: str = os.pathsep) -> str:
    """Append user tool directories to a PATH value.

    Args:
        current_path: Existing PATH value (may be empty).
        home: User home directory; PATH is returned unchanged when empty.
        separator: PATH separator for the target platform.

    Returns:
        PATH with ``~/.local/bin`` and ``~/.cargo/bin`` present exactly once.
    """
    if not home:
        return current_path

    parts = current_path.split(separator) if current_path else []
    seen = set(parts)
    for extra in (f"{home}/.local/bin", f"{home}/.cargo/bin"):
        if extra not in seen:
            parts.append(extra)
            seen.add(extra)
    return separator.join(parts)


def create_safe_env(
    server_env: Mapping[str, str] | None = None,
    host_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build a minimal environment for a server child process.

    Args:
        server_env: Variables declared in the server config; these win.
        host_env: Host environment to copy from (defaults to os.environ).

    Returns:
        New environment dictionary.
    """
    host = os.environ if host_env is None else host_env
    env = {key: host[key] for key in ALLOWED_ENV_VARS if key in host}

    home = host.get("HOME") or host.get("USERPROFILE") or ""
    env["PATH"] = enhance_path(env.get("PATH", ""), home)

    for key, value in (server_env or {}).items():
        env[str(key)] = str(value)
    return env


def needs_shell(command: str, platform: str | None = None) -> bool:
    """Check whether a command must run through a shell wrapper.

    Only Windows script shims need one; everything else runs directly.
    """
    platform = platform or sys.platform
    if platform != "win32":
        return False
    lowered = command.lower()
    return lowered.endswith((".cmd", ".bat")) or command in SHELL_LAUNCHERS
