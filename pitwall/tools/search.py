"""Read-only search tools: Glob, Grep and LS."""

import asyncio
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pitwall.constants import GLOB_TOOL, GREP_TOOL, LS_TOOL
from pitwall.errors import ToolExecutionFailure
from pitwall.tools.registry import Tool, ToolContext
from pitwall.utils.ignore import IgnoreRules

MAX_GLOB_RESULTS = 200
MAX_GREP_MATCHES = 200
MAX_LS_ENTRIES = 500
MAX_GREP_FILE_BYTES = 1024 * 1024
PROGRESS_EVERY = 200


class GlobArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(min_length=1, description="Glob pattern, e.g. '**/*.py'")
    path: Optional[str] = Field(default=None, description="Directory to search in (project root by default)")


class GrepArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(min_length=1, description="Regular expression to search for")
    path: Optional[str] = Field(default=None, description="Directory or file to search (project root by default)")
    include: Optional[str] = Field(default=None, description="Only search files matching this glob, e.g. '*.py'")
    case_insensitive: bool = Field(default=False, description="Ignore case when matching")


class LSArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: Optional[str] = Field(default=None, description="Directory to list (project root by default)")


class ProjectSearch:
    """Searches project files while honouring ignore rules."""

    def __init__(self, project_root: Path, ignore_rules: Optional[IgnoreRules] = None):
        """Initialize project search.

        Args:
            project_root: Project root directory
            ignore_rules: Ignore rules (built from the project if None)
        """
        self.project_root = project_root.resolve()
        self.ignore_rules = ignore_rules or IgnoreRules(self.project_root)

    def resolve_dir(self, path: Optional[str]) -> Path:
        """Resolve a directory argument inside the project.

        Raises:
            ToolExecutionFailure: If the path is outside the project or missing
        """
        target = self.project_root if not path else Path(path)
        if not target.is_absolute():
            target = self.project_root / target
        target = target.resolve()
        try:
            target.relative_to(self.project_root)
        except ValueError:
            raise ToolExecutionFailure(f"Path outside project root: {path}")
        if not target.exists():
            raise ToolExecutionFailure(f"Path not found: {path}")
        return target

    def relative(self, path: Path) -> str:
        return path.relative_to(self.project_root).as_posix()

    def glob(self, pattern: str, path: Optional[str] = None) -> list[str]:
        """Find files matching a glob pattern, newest first.

        Args:
            pattern: Glob pattern relative to the search directory
            path: Directory to search in

        Returns:
            Relative file paths
        """
        base = self.resolve_dir(path)
        matches = []
        for candidate in base.glob(pattern):
            if not candidate.is_file() or self.ignore_rules.should_ignore(candidate, is_dir=False):
                continue
            # Skip files inside ignored directories
            rel_parts = candidate.relative_to(self.project_root).parts[:-1]
            if any(
                self.ignore_rules.should_ignore(Path(*rel_parts[:i + 1]), is_dir=True)
                for i in range(len(rel_parts))
            ):
                continue
            matches.append(candidate)

        matches.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [self.relative(p) for p in matches]

    def list_dir(self, path: Optional[str] = None) -> list[str]:
        """List a directory; directories get a trailing slash."""
        base = self.resolve_dir(path)
        if not base.is_dir():
            raise ToolExecutionFailure(f"Not a directory: {path}")

        entries = []
        for entry in sorted(base.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())):
            is_dir = entry.is_dir()
            if self.ignore_rules.should_ignore(entry, is_dir=is_dir):
                continue
            entries.append(entry.name + ("/" if is_dir else ""))
        return entries

    async def grep(
        self,
        pattern: str,
        ctx: ToolContext,
        path: Optional[str] = None,
        include: Optional[str] = None,
        case_insensitive: bool = False,
    ) -> tuple[list[str], int]:
        """Search file contents with a regular expression.

        Args:
            pattern: Regular expression
            ctx: Tool context (cancellation and progress)
            path: Directory or file to search
            include: Glob restricting the searched file names
            case_insensitive: Ignore case

        Returns:
            Tuple of (matches as ``path:line: text``, files scanned)
        """
        try:
            regex = re.compile(pattern, re.IGNORECASE if case_insensitive else 0)
        except re.error as e:
            raise ToolExecutionFailure(f"Invalid regular expression: {e}")

        target = self.resolve_dir(path)
        files = [target] if target.is_file() else self.ignore_rules.walk(target)

        matches: list[str] = []
        scanned = 0
        for file_path in files:
            if include and not file_path.match(include):
                continue
            scanned += 1
            if scanned % PROGRESS_EVERY == 0:
                ctx.progress(f"Searched {scanned} files, {len(matches)} matches")
                await asyncio.sleep(0)
                ctx.cancel.raise_if_cancelled()

            try:
                if file_path.stat().st_size > MAX_GREP_FILE_BYTES:
                    continue
                text = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue  # Binary or unreadable

            for number, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    matches.append(f"{self.relative(file_path)}:{number}: {line.strip()[:300]}")
                    if len(matches) >= MAX_GREP_MATCHES:
                        return matches, scanned

        return matches, scanned


def search_tools(project_root: Path, ignore_rules: Optional[IgnoreRules] = None) -> list[Tool]:
    """Build the Glob, Grep and LS tools."""
    search = ProjectSearch(project_root, ignore_rules)

    async def glob_handler(args: GlobArgs, ctx: ToolContext) -> str:
        matches = search.glob(args.pattern, args.path)
        if not matches:
            return "No files found"
        shown = matches[:MAX_GLOB_RESULTS]
        text = "\n".join(shown)
        if len(matches) > len(shown):
            text += f"\n... ({len(matches) - len(shown)} more files)"
        return text

    async def grep_handler(args: GrepArgs, ctx: ToolContext) -> str:
        matches, scanned = await search.grep(
            args.pattern, ctx, args.path, args.include, args.case_insensitive
        )
        if not matches:
            return f"No matches found ({scanned} files searched)"
        text = "\n".join(matches)
        if len(matches) >= MAX_GREP_MATCHES:
            text += f"\n... (stopped after {MAX_GREP_MATCHES} matches)"
        return text

    async def ls_handler(args: LSArgs, ctx: ToolContext) -> str:
        entries = search.list_dir(args.path)
        if not entries:
            return "(empty directory)"
        text = "\n".join(entries[:MAX_LS_ENTRIES])
        if len(entries) > MAX_LS_ENTRIES:
            text += f"\n... ({len(entries) - MAX_LS_ENTRIES} more entries)"
        return text

    return [
        Tool(
            name=GLOB_TOOL,
            description="Find files by glob pattern. Returns paths sorted by modification time.",
            args_model=GlobArgs,
            handler=glob_handler,
            read_only=True,
            needs_permission=False,
            category="search",
        ),
        Tool(
            name=GREP_TOOL,
            description="Search file contents with a regular expression. Returns path:line: text matches.",
            args_model=GrepArgs,
            handler=grep_handler,
            read_only=True,
            needs_permission=False,
            category="search",
        ),
        Tool(
            name=LS_TOOL,
            description="List files and directories in a directory.",
            args_model=LSArgs,
            handler=ls_handler,
            read_only=True,
            needs_permission=False,
            category="search",
        ),
    ]
