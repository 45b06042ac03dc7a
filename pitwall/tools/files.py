"""File reading, writing and editing tools."""

import difflib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pitwall.constants import (
    DEFAULT_MAX_READ_MB,
    DEFAULT_MAX_WRITE_MB,
    EDIT_TOOL,
    READ_TOOL,
    WRITE_TOOL,
)
from pitwall.errors import ToolExecutionFailure
from pitwall.tools.registry import Tool, ToolContext

DEFAULT_READ_LIMIT = 2000
MAX_LINE_CHARS = 2000
MAX_DIFF_LINES = 200


class ReadArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file_path: str = Field(min_length=1, description="Path to the file, relative to the project root or absolute")
    offset: Optional[int] = Field(default=None, ge=1, description="Line number to start reading from")
    limit: Optional[int] = Field(default=None, ge=1, description="Number of lines to read")


class WriteArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file_path: str = Field(min_length=1, description="Path to the file to write")
    content: str = Field(description="Full content of the file")


class EditArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file_path: str = Field(min_length=1, description="Path to the file to edit")
    old_string: str = Field(min_length=1, description="Exact text to replace")
    new_string: str = Field(description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class ReadWrite:
    """Handles file I/O operations with safety checks."""

    def __init__(
        self,
        project_root: Path,
        max_read_mb: int = DEFAULT_MAX_READ_MB,
        max_write_mb: int = DEFAULT_MAX_WRITE_MB,
    ):
        """Initialize ReadWrite tool.

        Args:
            project_root: Project root directory
            max_read_mb: Maximum file size to read (MB)
            max_write_mb: Maximum file size to write (MB)
        """
        self.project_root = project_root.resolve()
        self.max_read_bytes = max_read_mb * 1024 * 1024
        self.max_write_bytes = max_write_mb * 1024 * 1024

    def read(self, path: str) -> tuple[bool, Optional[str], Optional[str]]:
        """Read a file.

        Args:
            path: Relative or absolute path to file

        Returns:
            Tuple of (success, content, error)
        """
        file_path = self._resolve_path(path)

        if not self._is_safe_path(file_path):
            return False, None, f"Path outside project root: {path}"

        if not file_path.exists():
            return False, None, f"File not found: {path}"

        if not file_path.is_file():
            return False, None, f"Not a file: {path}"

        try:
            size = file_path.stat().st_size
            if size > self.max_read_bytes:
                size_mb = size / (1024 * 1024)
                max_mb = self.max_read_bytes / (1024 * 1024)
                return False, None, f"File too large: {size_mb:.2f} MB (max: {max_mb} MB)"
        except OSError as e:
            return False, None, f"Cannot stat file: {e}"

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                content = f.read()
            return True, content, None
        except UnicodeDecodeError:
            return False, None, "File is not valid UTF-8 text"
        except IOError as e:
            return False, None, f"Cannot read file: {e}"

    def write(self, path: str, content: str) -> tuple[bool, Optional[str]]:
        """Write content to a file.

        Args:
            path: Relative or absolute path to file
            content: Content to write

        Returns:
            Tuple of (success, error)
        """
        file_path = self._resolve_path(path)

        if not self._is_safe_path(file_path):
            return False, f"Path outside project root: {path}"

        content_bytes = len(content.encode("utf-8"))
        if content_bytes > self.max_write_bytes:
            size_mb = content_bytes / (1024 * 1024)
            max_mb = self.max_write_bytes / (1024 * 1024)
            return False, f"Content too large: {size_mb:.2f} MB (max: {max_mb} MB)"

        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write atomically (temp file + rename)
        temp_path = file_path.with_suffix(file_path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
            temp_path.replace(file_path)
            return True, None
        except IOError as e:
            if temp_path.exists():
                temp_path.unlink()
            return False, f"Cannot write file: {e}"

    def edit(
        self, path: str, old_string: str, new_string: str, replace_all: bool = False
    ) -> tuple[bool, Optional[str], Optional[str]]:
        """Replace exact text in a file.

        Args:
            path: Relative or absolute path to file
            old_string: Text to replace
            new_string: Replacement text
            replace_all: Replace every occurrence instead of requiring one

        Returns:
            Tuple of (success, unified diff, error)
        """
        success, content, error = self.read(path)
        if not success:
            return False, None, error

        count = content.count(old_string)
        if count == 0:
            return False, None, f"old_string not found in {path}"
        if count > 1 and not replace_all:
            return False, None, (
                f"old_string appears {count} times in {path}. "
                "Provide more context or set replace_all"
            )

        updated = content.replace(old_string, new_string, -1 if replace_all else 1)
        write_success, write_error = self.write(path, updated)
        if not write_success:
            return False, None, write_error

        return True, self.make_diff(path, content, updated), None

    def make_diff(self, path: str, before: str, after: str) -> str:
        """Unified diff between two versions of a file, capped in length."""
        lines = list(difflib.unified_diff(
            before.splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        ))
        if len(lines) > MAX_DIFF_LINES:
            omitted = len(lines) - MAX_DIFF_LINES
            lines = lines[:MAX_DIFF_LINES] + [f"\n... [{omitted} diff lines omitted]\n"]
        return "".join(lines)

    def exists(self, path: str) -> bool:
        return self._resolve_path(path).exists()

    def display_path(self, path: str) -> str:
        """Path relative to the project root when possible."""
        file_path = self._resolve_path(path)
        try:
            return file_path.relative_to(self.project_root).as_posix()
        except ValueError:
            return str(file_path)

    def _resolve_path(self, path: str) -> Path:
        """Resolve a path string to absolute Path.

        Args:
            path: Path string (relative or absolute)

        Returns:
            Absolute Path
        """
        p = Path(path)
        if p.is_absolute():
            return p.resolve()
        return (self.project_root / p).resolve()

    def _is_safe_path(self, path: Path) -> bool:
        """Check if a path is within project root.

        Args:
            path: Absolute path to check

        Returns:
            True if path is safe (within project root)
        """
        try:
            path.resolve().relative_to(self.project_root)
            return True
        except ValueError:
            return False


def number_lines(content: str, offset: Optional[int] = None, limit: Optional[int] = None) -> str:
    """Render file content with line numbers, like ``cat -n``."""
    lines = content.splitlines()
    start = (offset or 1) - 1
    end = start + (limit or DEFAULT_READ_LIMIT)
    selected = lines[start:end]
    if not selected:
        return f"(no lines at offset {start + 1}; file has {len(lines)} lines)"

    rendered = []
    for number, line in enumerate(selected, start=start + 1):
        if len(line) > MAX_LINE_CHARS:
            line = line[:MAX_LINE_CHARS] + "..."
        rendered.append(f"{number:>6}\t{line}")
    if end < len(lines):
        rendered.append(f"... ({len(lines) - end} more lines)")
    return "\n".join(rendered)


def file_tools(
    project_root: Path,
    max_read_mb: int = DEFAULT_MAX_READ_MB,
    max_write_mb: int = DEFAULT_MAX_WRITE_MB,
) -> list[Tool]:
    """Build the Read, Write and Edit tools."""
    rw = ReadWrite(project_root, max_read_mb, max_write_mb)

    async def read_handler(args: ReadArgs, ctx: ToolContext) -> str:
        success, content, error = rw.read(args.file_path)
        if not success:
            raise ToolExecutionFailure(error)
        if not content:
            return "(empty file)"
        return number_lines(content, args.offset, args.limit)

    async def write_handler(args: WriteArgs, ctx: ToolContext) -> str:
        existed = rw.exists(args.file_path)
        success, error = rw.write(args.file_path, args.content)
        if not success:
            raise ToolExecutionFailure(error)
        action = "Updated" if existed else "Created"
        line_count = len(args.content.splitlines())
        return f"{action} {rw.display_path(args.file_path)} ({line_count} lines)"

    async def edit_handler(args: EditArgs, ctx: ToolContext) -> str:
        success, diff, error = rw.edit(
            args.file_path, args.old_string, args.new_string, args.replace_all
        )
        if not success:
            raise ToolExecutionFailure(error)
        return f"Edited {rw.display_path(args.file_path)}\n{diff}"

    return [
        Tool(
            name=READ_TOOL,
            description=(
                "Read a text file from the project. Returns numbered lines. "
                "Use offset and limit for large files."
            ),
            args_model=ReadArgs,
            handler=read_handler,
            read_only=True,
            needs_permission=False,
            category="files",
        ),
        Tool(
            name=WRITE_TOOL,
            description="Create or overwrite a file with the given content.",
            args_model=WriteArgs,
            handler=write_handler,
            read_only=False,
            needs_permission=True,
            category="files",
        ),
        Tool(
            name=EDIT_TOOL,
            description=(
                "Replace exact text in a file. old_string must match exactly and be "
                "unique unless replace_all is set. Read the file first."
            ),
            args_model=EditArgs,
            handler=edit_handler,
            read_only=False,
            needs_permission=True,
            category="files",
        ),
    ]
