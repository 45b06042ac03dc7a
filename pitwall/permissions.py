"""Permission modes, safe-command rules and the persistent allow-list."""

import hashlib
import json
import os
import shlex
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pitwall.constants import (
    PREFIX_TOOLS,
    SAFE_COMMAND_PREFIXES,
    SAFE_COMMANDS,
    SHELL_TOOL,
    UNSAFE_OPTIONS,
)


class PermissionMode(str, Enum):
    """How tool calls are gated for the current session."""

    DEFAULT = "default"
    ACCEPT_EDITS = "accept-edits"
    PLAN = "plan"
    BYPASS = "bypass"

    @classmethod
    def parse(cls, value: "str | PermissionMode") -> "PermissionMode":
        """Parse a mode name, accepting a few common aliases.

        Raises:
            ValueError: If the name is not a known mode
        """
        if isinstance(value, PermissionMode):
            return value
        aliases = {
            "acceptedits": cls.ACCEPT_EDITS,
            "accept_edits": cls.ACCEPT_EDITS,
            "bypasspermissions": cls.BYPASS,
        }
        key = value.strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            names = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown permission mode: {value}. Expected one of: {names}")

    def next(self) -> "PermissionMode":
        """Mode that follows this one when cycling."""
        order = list(PermissionMode)
        return order[(order.index(self) + 1) % len(order)]


# Operator characters; a token made only of these chains, pipes or redirects
SHELL_OPERATORS = set("();<>|&")


def is_compound_command(command: str) -> bool:
    """Check whether a command line does more than run a single program.

    Chaining, pipes, redirection, background jobs and command substitution
    all count, as does a line that cannot be tokenized.

    Args:
        command: Shell command line

    Returns:
        True if the command is not a single simple command
    """
    if any(marker in command for marker in ("\n", "\r", "`", "$(")):
        return True
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    # The shell only starts a comment at a word boundary
    lexer.commenters = ""
    try:
        tokens = list(lexer)
    except ValueError:
        return True
    return any(token and set(token) <= SHELL_OPERATORS for token in tokens)


def is_safe_bash_command(command: str) -> bool:
    """Check whether a shell command is read-only enough to skip confirmation.

    Args:
        command: Shell command line

    Returns:
        True if the command matches a known safe command or prefix
    """
    if is_compound_command(command):
        return False
    normalized = command.strip().lower()
    if normalized in SAFE_COMMANDS:
        return True
    if any(option in normalized for option in UNSAFE_OPTIONS):
        return False
    return any(normalized.startswith(prefix) for prefix in SAFE_COMMAND_PREFIXES)


def get_command_prefix(command: str) -> Optional[str]:
    """Get the approvable prefix of a shell command.

    Args:
        command: Shell command line

    Returns:
        First word of the command if it is a multi-command tool, else None
    """
    if is_compound_command(command):
        return None
    parts = command.strip().split()
    if not parts:
        return None
    first = parts[0]
    return first if first in PREFIX_TOOLS else None


def canonical_args(args: dict[str, Any]) -> str:
    """Stable JSON rendering of tool arguments."""
    return json.dumps(args, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def permission_key(tool_name: str, args: dict[str, Any], as_prefix: bool = False) -> str:
    """Build the allow-list record for a tool call.

    Args:
        tool_name: Name of the tool
        args: Tool arguments
        as_prefix: Record the shell command prefix instead of the exact command

    Returns:
        Record string such as ``Bash(npm:*)`` or ``Write({...})``

    Raises:
        ValueError: If a prefix record is requested for a command without one
    """
    if tool_name == SHELL_TOOL:
        command = str(args.get("command", "")).strip()
        if as_prefix:
            prefix = get_command_prefix(command)
            if prefix is None:
                raise ValueError(f"Command has no approvable prefix: {command}")
            return f"{SHELL_TOOL}({prefix}:*)"
        return f"{SHELL_TOOL}({command})"
    return f"{tool_name}({canonical_args(args)})"


def project_hash(project_root: Path) -> str:
    """Short stable identifier for a project directory."""
    return hashlib.sha256(str(project_root.resolve()).encode("utf-8")).hexdigest()[:16]


class PermissionStore:
    """Project-scoped allow-list of previously approved tool calls.

    Records live in ``<data_dir>/projects/<hash>/permissions.json``. Reads hit
    the disk every time so approvals made by another session are honoured.
    """

    def __init__(self, data_dir: Optional[Path], project_root: Path):
        """Initialize permission store.

        Args:
            data_dir: Base data directory (None keeps records in memory only)
            project_root: Project the records apply to
        """
        self.project_root = project_root
        self.path: Optional[Path] = None
        if data_dir is not None:
            self.path = data_dir / "projects" / project_hash(project_root) / "permissions.json"
        self._memory: list[str] = []

    def records(self) -> list[str]:
        """Get all allow-list records.

        Returns:
            List of record strings
        """
        if self.path is None:
            return list(self._memory)
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            return []
        return list(data.get("allowed_tools", []))

    def is_allowed(self, tool_name: str, args: dict[str, Any]) -> bool:
        """Check whether a call is covered by a safe rule or a stored record.

        Args:
            tool_name: Name of the tool
            args: Tool arguments

        Returns:
            True if the call may run without asking
        """
        records = set(self.records())

        if tool_name == SHELL_TOOL:
            command = str(args.get("command", "")).strip()
            # Stored records only ever cover single commands
            if is_compound_command(command):
                return False
            if is_safe_bash_command(command):
                return True
            if permission_key(tool_name, args) in records:
                return True
            prefix = get_command_prefix(command)
            return prefix is not None and f"{SHELL_TOOL}({prefix}:*)" in records

        return permission_key(tool_name, args) in records or tool_name in records

    def remember(self, tool_name: str, args: dict[str, Any], as_prefix: bool = False) -> str:
        """Persist an approval.

        Args:
            tool_name: Name of the tool
            args: Tool arguments
            as_prefix: Approve the whole shell command prefix

        Returns:
            The record that was stored
        """
        record = permission_key(tool_name, args, as_prefix=as_prefix)
        records = self.records()
        if record in records:
            return record
        records.append(record)

        if self.path is None:
            self._memory = records
            return record

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"project": str(self.project_root), "allowed_tools": records}
        fd, temp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(temp_name, self.path)
        except OSError:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise
        return record
