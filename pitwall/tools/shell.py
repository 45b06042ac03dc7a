"""Shell command execution with safety checks."""

import asyncio
import os
import resource
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pitwall.budget import truncate_tool_result
from pitwall.cancellation import CancellationToken
from pitwall.constants import DANGEROUS_PATTERNS, DEFAULT_EXEC_TIMEOUT, SHELL_TOOL
from pitwall.errors import RunCancelled, ToolExecutionFailure
from pitwall.tools.registry import Tool, ToolContext

MAX_OUTPUT_CHARS = 30000


@dataclass
class ExecResult:
    """Result of command execution."""

    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    command: str
    timed_out: bool = False


class ShellArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1, description="The shell command to execute")
    timeout: Optional[int] = Field(
        default=None, gt=0, le=600, description="Optional timeout in seconds"
    )
    description: Optional[str] = Field(
        default=None, description="Short description of what the command does"
    )


class Executor:
    """Executes shell commands with safety checks and resource limits."""

    def __init__(self, project_root: Path, timeout: int = DEFAULT_EXEC_TIMEOUT):
        """Initialize executor.

        Args:
            project_root: Project root directory (cwd for commands)
            timeout: Default timeout in seconds
        """
        self.project_root = project_root
        self.timeout = timeout

    async def run(
        self,
        command: str,
        timeout: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecResult:
        """Run a command.

        Args:
            command: Command to execute
            timeout: Optional timeout override
            cancel: Token that kills the command when cancelled

        Returns:
            ExecResult with execution details

        Raises:
            RunCancelled: If the token was cancelled while the command ran
        """
        is_dangerous, reason = self.is_dangerous(command)
        if is_dangerous:
            return ExecResult(
                success=False,
                stdout="",
                stderr=f"Command blocked: {reason}",
                exit_code=-1,
                duration_ms=0,
                command=command,
            )

        timeout_val = timeout if timeout is not None else self.timeout
        start_time = time.time()

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(self.project_root),
            env=self._prepare_env(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
            preexec_fn=self._setup_limits,
        )

        communicate = asyncio.ensure_future(process.communicate())
        waiters = {communicate}
        cancelled = None
        if cancel is not None:
            cancelled = asyncio.ensure_future(cancel.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_val, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if cancelled is not None and not cancelled.done():
                cancelled.cancel()

        if communicate not in done:
            self._kill(process)
            stdout, stderr = await communicate
            if cancelled is not None and cancelled in done:
                raise RunCancelled(f"Command cancelled: {command}")
            return ExecResult(
                success=False,
                stdout=self._decode(stdout),
                stderr=self._decode(stderr) or f"Command timed out after {timeout_val}s",
                exit_code=-1,
                duration_ms=int((time.time() - start_time) * 1000),
                command=command,
                timed_out=True,
            )

        stdout, stderr = communicate.result()
        return ExecResult(
            success=process.returncode == 0,
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
            exit_code=process.returncode,
            duration_ms=int((time.time() - start_time) * 1000),
            command=command,
        )

    def is_dangerous(self, command: str) -> tuple[bool, str]:
        """Check if a command matches dangerous patterns.

        Args:
            command: Command to check

        Returns:
            Tuple of (is_dangerous, reason)
        """
        for pattern, reason in DANGEROUS_PATTERNS:
            if pattern.search(command):
                return True, reason

        return False, ""

    def _prepare_env(self) -> dict[str, str]:
        """Prepare a minimal environment for the command."""
        env = {}
        keep_vars = ["PATH", "HOME", "USER", "LANG", "TERM", "PYTHONPATH", "VIRTUAL_ENV"]

        for var in keep_vars:
            if var in os.environ:
                env[var] = os.environ[var]

        return env

    def _setup_limits(self) -> None:
        """Set resource limits in the child before exec."""
        try:
            cpu = max(60, self.timeout * 2)
            resource.setrlimit(resource.RLIMIT_CPU, (cpu, cpu))
        except (ValueError, OSError):
            pass  # Limits are best effort on some platforms

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Kill the command and everything it spawned."""
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            try:
                process.kill()
            except ProcessLookupError:
                pass

    @staticmethod
    def _decode(data: Optional[bytes]) -> str:
        return data.decode("utf-8", errors="replace") if data else ""


def format_exec_result(result: ExecResult) -> str:
    """Render an ExecResult as tool result text."""
    parts = [f"Exit code: {result.exit_code}"]
    if result.stdout:
        parts.append(truncate_tool_result(result.stdout.rstrip(), MAX_OUTPUT_CHARS))
    if result.stderr:
        parts.append("STDERR:\n" + truncate_tool_result(result.stderr.rstrip(), MAX_OUTPUT_CHARS))
    if not result.stdout and not result.stderr:
        parts.append("(no output)")
    return "\n".join(parts)


def shell_tool(project_root: Path, timeout: int = DEFAULT_EXEC_TIMEOUT) -> Tool:
    """Build the shell tool."""
    executor = Executor(project_root, timeout)

    async def handler(args: ShellArgs, ctx: ToolContext) -> str:
        is_dangerous, reason = executor.is_dangerous(args.command)
        if is_dangerous:
            raise ToolExecutionFailure(f"Command blocked: {reason}")
        ctx.progress(f"$ {args.command}")
        result = await executor.run(args.command, timeout=args.timeout, cancel=ctx.cancel)
        if result.timed_out:
            raise ToolExecutionFailure(
                f"Command timed out after {args.timeout or executor.timeout}s\n"
                + format_exec_result(result)
            )
        return format_exec_result(result)

    return Tool(
        name=SHELL_TOOL,
        description=(
            "Execute a shell command in the project directory. "
            "Use it for git, builds, tests and other command-line tasks. "
            "Prefer the Read, Glob, Grep and LS tools for looking at files."
        ),
        args_model=ShellArgs,
        handler=handler,
        read_only=False,
        needs_permission=True,
        category="execution",
    )
