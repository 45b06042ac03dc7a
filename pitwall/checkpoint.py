"""Checkpoint storage for conversation threads.

Every thread owns an append-only log of snapshots, one per node boundary.
The newest snapshot is the thread's current state.
"""

import asyncio
import os
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from pitwall.state import ConversationSnapshot

THREAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class Checkpoint(BaseModel):
    """One persisted snapshot of a thread."""

    thread_id: str
    step: int
    source: str
    created_at: datetime = Field(default_factory=datetime.now)
    values: ConversationSnapshot


def validate_thread_id(thread_id: str) -> str:
    """Reject thread ids that cannot be used as a directory name.

    Raises:
        ValueError: If the id is empty or contains unsafe characters
    """
    if not thread_id or not THREAD_ID_PATTERN.match(thread_id) or thread_id in (".", ".."):
        raise ValueError(f"Invalid thread id: {thread_id!r}")
    return thread_id


class CheckpointStore(ABC):
    """Persistence contract for thread checkpoints."""

    @abstractmethod
    async def save(self, thread_id: str, state: ConversationSnapshot, source: str) -> Checkpoint:
        """Append a snapshot to the thread's log.

        Args:
            thread_id: Thread identifier
            state: Snapshot to store
            source: Node or operation that produced it

        Returns:
            The stored Checkpoint
        """

    @abstractmethod
    async def history(self, thread_id: str) -> list[Checkpoint]:
        """All checkpoints of a thread, oldest first."""

    @abstractmethod
    async def threads(self) -> list[str]:
        """Ids of all threads with at least one checkpoint."""

    @abstractmethod
    async def delete(self, thread_id: str) -> bool:
        """Remove a thread and all of its checkpoints.

        Returns:
            True if the thread existed
        """

    async def latest(self, thread_id: str) -> Optional[Checkpoint]:
        """Newest checkpoint of a thread, or None."""
        history = await self.history(thread_id)
        return history[-1] if history else None

    async def load(self, thread_id: str) -> Optional[ConversationSnapshot]:
        """Current state of a thread, or None if it has never been saved."""
        checkpoint = await self.latest(thread_id)
        return checkpoint.values if checkpoint else None


class MemoryCheckpointStore(CheckpointStore):
    """Keeps checkpoints in process memory."""

    def __init__(self):
        self._logs: dict[str, list[Checkpoint]] = {}

    async def save(self, thread_id: str, state: ConversationSnapshot, source: str) -> Checkpoint:
        log = self._logs.setdefault(validate_thread_id(thread_id), [])
        checkpoint = Checkpoint(
            thread_id=thread_id,
            step=len(log) + 1,
            source=source,
            values=state.model_copy(deep=True),
        )
        log.append(checkpoint)
        return checkpoint

    async def history(self, thread_id: str) -> list[Checkpoint]:
        return list(self._logs.get(thread_id, []))

    async def threads(self) -> list[str]:
        return sorted(self._logs)

    async def delete(self, thread_id: str) -> bool:
        return self._logs.pop(thread_id, None) is not None


class FileCheckpointStore(CheckpointStore):
    """Stores checkpoints as JSON files.

    Directory structure:
        threads/
            <thread_id>/
                000001.json
                000002.json
    """

    def __init__(self, base_path: Path):
        """Initialize file checkpoint store.

        Args:
            base_path: Data directory (e.g., ~/.pitwall)
        """
        self.base_path = Path(base_path)
        self.threads_dir = self.base_path / "threads"

    def _thread_dir(self, thread_id: str) -> Path:
        return self.threads_dir / validate_thread_id(thread_id)

    async def save(self, thread_id: str, state: ConversationSnapshot, source: str) -> Checkpoint:
        thread_dir = self._thread_dir(thread_id)

        def _write() -> Checkpoint:
            thread_dir.mkdir(parents=True, exist_ok=True)
            steps = [int(p.stem) for p in thread_dir.glob("*.json") if p.stem.isdigit()]
            checkpoint = Checkpoint(
                thread_id=thread_id,
                step=max(steps, default=0) + 1,
                source=source,
                values=state,
            )
            path = thread_dir / f"{checkpoint.step:06d}.json"

            # Write atomically (temp file + rename)
            fd, temp_name = tempfile.mkstemp(dir=thread_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(checkpoint.model_dump_json(indent=2))
                os.replace(temp_name, path)
            except OSError:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                raise
            return checkpoint

        return await asyncio.to_thread(_write)

    async def history(self, thread_id: str) -> list[Checkpoint]:
        thread_dir = self._thread_dir(thread_id)

        def _read() -> list[Checkpoint]:
            if not thread_dir.exists():
                return []
            paths = sorted(p for p in thread_dir.glob("*.json") if p.stem.isdigit())
            return [Checkpoint.model_validate_json(p.read_text(encoding="utf-8")) for p in paths]

        return await asyncio.to_thread(_read)

    async def latest(self, thread_id: str) -> Optional[Checkpoint]:
        thread_dir = self._thread_dir(thread_id)

        def _read() -> Optional[Checkpoint]:
            if not thread_dir.exists():
                return None
            paths = sorted(p for p in thread_dir.glob("*.json") if p.stem.isdigit())
            if not paths:
                return None
            return Checkpoint.model_validate_json(paths[-1].read_text(encoding="utf-8"))

        return await asyncio.to_thread(_read)

    async def threads(self) -> list[str]:
        if not self.threads_dir.exists():
            return []
        return sorted(p.name for p in self.threads_dir.iterdir() if p.is_dir())

    async def delete(self, thread_id: str) -> bool:
        thread_dir = self._thread_dir(thread_id)
        if not thread_dir.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, thread_dir)
        return True
