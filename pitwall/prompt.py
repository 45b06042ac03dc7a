"""System prompt and ambient context assembly."""

import platform
import subprocess
from datetime import date
from pathlib import Path
from typing import Optional

from pitwall.constants import CONTINUATION_REMINDER
from pitwall.messages import AssistantMessage, HumanMessage, SystemMessage
from pitwall.permissions import PermissionMode

CONTEXT_FILES = ["AGENTS.md", "CLAUDE.md", "AGENTS.local.md"]
MAX_CONTEXT_FILE_CHARS = 40000


class SystemPromptBuilder:
    """Builds the system prompt and the per-turn context reminder."""

    def __init__(self, project_root: Path):
        """Initialize system prompt builder.

        Args:
            project_root: Project root directory
        """
        self.project_root = project_root
        self._git_status: Optional[str] = None

    def build(self, mode: PermissionMode) -> str:
        """Build the full system prompt for a permission mode."""
        parts = [
            self._build_core_identity(),
            self._build_tool_policy(),
            self._build_environment(),
        ]
        if mode == PermissionMode.PLAN:
            parts.append(self._build_plan_mode())
        parts.append(self._build_git_status())
        return "\n\n".join(parts)

    def _build_core_identity(self) -> str:
        """Build core identity and role description."""
        return """# Pitwall Coding Assistant

You are Pitwall, an AI coding assistant working in the user's terminal. You help developers understand codebases, implement changes, debug issues and run commands.

## Operating Principles
1. **Action-oriented**: Use the tools to inspect and change the project instead of guessing
2. **Complete implementations**: Write full, working code, never placeholders
3. **Context-aware**: Follow the project's existing conventions
4. **Respect decisions**: If the user rejects a tool call, stop and ask how to proceed

## Communication Style
- Concise and direct
- Reference files as path:line when pointing at code
- Explain reasoning only when it matters"""

    def _build_tool_policy(self) -> str:
        """Build tool usage rules."""
        return """# Tool Usage
- Use Read, Glob, Grep and LS to explore. Do not use Bash for cat, find or grep.
- Read a file before editing it. Edit replaces exact text; keep old_string unique.
- Use Write only for new files or full rewrites.
- Calls to Bash, Write and Edit may need the user's approval.
- Independent read-only lookups can be requested together in one response."""

    def _build_environment(self) -> str:
        """Build environment information."""
        is_repo = (self.project_root / ".git").exists()
        return f"""# Environment Information
Working directory: {self.project_root}
Is directory a git repo: {"Yes" if is_repo else "No"}
Platform: {platform.system().lower()}
Today's date: {date.today().isoformat()}"""

    def _build_plan_mode(self) -> str:
        """Build plan-mode instructions."""
        return """# Plan Mode
Plan mode is active. You may only use read-only tools. Do not modify files or run commands.
Research the codebase, then present a concise step-by-step plan and wait for the user to approve it before making changes."""

    def _build_git_status(self) -> str:
        """Build the git status snapshot (taken once per builder)."""
        if self._git_status is None:
            self._git_status = self._read_git_status()
        return self._git_status

    def _read_git_status(self) -> str:
        if not (self.project_root / ".git").exists():
            return "gitStatus: Not a git repository"

        def git(*args: str) -> str:
            result = subprocess.run(
                ["git", *args],
                cwd=str(self.project_root),
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode != 0:
                raise subprocess.CalledProcessError(result.returncode, args, result.stderr)
            return result.stdout.strip()

        try:
            branch = git("branch", "--show-current")
            status = git("status", "--short")
            commits = git("log", "--oneline", "-5")
        except (OSError, subprocess.SubprocessError):
            return "gitStatus: Git status unavailable"

        return (
            "gitStatus: This is the git status at the start of the conversation. "
            "It is a snapshot and will not update during the conversation.\n"
            f"Current branch: {branch or '(detached)'}\n\n"
            f"Status:\n{status or '(clean)'}\n\n"
            f"Recent commits:\n{commits or '(none)'}"
        )

    def load_context_docs(self) -> list[tuple[str, str]]:
        """Load project instruction files.

        Returns:
            List of (file name, content) for each file found
        """
        docs = []
        for name in CONTEXT_FILES:
            path = self.project_root / name
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (IOError, UnicodeDecodeError):
                continue
            if content.strip():
                docs.append((name, content[:MAX_CONTEXT_FILE_CHARS]))
        return docs

    def context_injection(self) -> Optional[str]:
        """Build the system-reminder block carrying project instructions."""
        docs = self.load_context_docs()
        if not docs:
            return None

        sections = "\n\n".join(f"Contents of {name}:\n\n{content}" for name, content in docs)
        return (
            "<system-reminder>\n"
            "As you answer the user's questions, you can use the following context. "
            "These project instructions override default behavior.\n\n"
            f"{sections}\n"
            "</system-reminder>"
        )


def assemble_prompt(system_prompt: str, history: list, reminder: Optional[str]) -> list:
    """Build the outgoing prompt for one model call.

    The reminder is added to the last human message; it is never stored in
    the conversation history. A history ending with an assistant message
    (right after compaction) gets a trailing user turn so the model continues.

    Args:
        system_prompt: System prompt text
        history: Conversation history
        reminder: Optional ambient context block

    Returns:
        Messages to send to the model
    """
    messages: list = [SystemMessage(content=system_prompt)]
    messages.extend(history)

    if history and isinstance(history[-1], AssistantMessage) and not history[-1].tool_calls:
        messages.append(HumanMessage(content=CONTINUATION_REMINDER))

    if reminder:
        for i in range(len(messages) - 1, -1, -1):
            if isinstance(messages[i], HumanMessage):
                original = messages[i]
                messages[i] = original.model_copy(
                    update={"content": f"{reminder}\n\n{original.content}"}
                )
                break

    return messages
