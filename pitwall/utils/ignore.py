"""File ignore rules handling using pathspec."""

import os
from pathlib import Path
from typing import Iterator, Optional

import pathspec

from pitwall.constants import BUILTIN_IGNORES


class IgnoreRules:
    """Handles file ignore rules from .gitignore and .pitwallignore."""

    def __init__(self, project_root: Path):
        """Initialize ignore rules.

        Args:
            project_root: Root directory to search for ignore files
        """
        self.project_root = project_root.resolve()
        self.spec = self._build_spec()

    def _build_spec(self) -> pathspec.PathSpec:
        """Build combined PathSpec from all ignore sources."""
        patterns = list(BUILTIN_IGNORES)

        for name in (".gitignore", ".pitwallignore"):
            ignore_path = self.project_root / name
            if ignore_path.exists():
                try:
                    patterns.extend(ignore_path.read_text(encoding="utf-8").splitlines())
                except (IOError, UnicodeDecodeError):
                    pass  # Unreadable ignore files are skipped

        # Filter out empty lines and comments
        patterns = [p.strip() for p in patterns if p.strip() and not p.strip().startswith("#")]

        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def should_ignore(self, path: Path, is_dir: Optional[bool] = None) -> bool:
        """Check if a path should be ignored.

        Args:
            path: Path to check (can be absolute or relative)
            is_dir: Whether the path is a directory (looked up if None)

        Returns:
            True if the path should be ignored
        """
        try:
            if path.is_absolute():
                rel_path = path.resolve().relative_to(self.project_root)
            else:
                rel_path = path
        except ValueError:
            # Path is outside project root
            return True

        rel = rel_path.as_posix()
        if rel in ("", "."):
            return False

        if is_dir is None:
            is_dir = (self.project_root / rel_path).is_dir()
        if is_dir:
            rel += "/"

        return self.spec.match_file(rel)

    def walk(self, start: Optional[Path] = None) -> Iterator[Path]:
        """Yield non-ignored files below a directory, pruning ignored directories.

        Args:
            start: Directory to walk (project root by default)

        Yields:
            Absolute file paths in a stable order
        """
        base = (start or self.project_root).resolve()
        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames if not self.should_ignore(current / d, is_dir=True)
            )
            for name in sorted(filenames):
                file_path = current / name
                if not self.should_ignore(file_path, is_dir=False):
                    yield file_path
