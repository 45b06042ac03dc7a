"""Run logging utilities."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


class SessionLogger:
    """Appends newline-delimited JSON records for each thread's runs.

    Records land in ``<log_root>/<thread_id>/run.ndjson``. A logger without a
    log root writes nothing.
    """

    def __init__(self, log_root: Optional[Path]):
        """Initialize session logger.

        Args:
            log_root: Directory holding per-thread logs (None disables logging)
        """
        self.log_root = log_root

    def log_path(self, thread_id: str) -> Optional[Path]:
        """Path of the thread's log file, or None when disabled."""
        if self.log_root is None:
            return None
        return self.log_root / thread_id / "run.ndjson"

    def log(self, thread_id: str, kind: str, **fields: Any) -> None:
        """Append one record.

        Args:
            thread_id: Thread the record belongs to
            kind: Record kind (node_start, node_end, edge, event, checkpoint, error)
            **fields: Extra JSON-serializable fields
        """
        path = self.log_path(thread_id)
        if path is None:
            return

        entry = {"ts": datetime.now().isoformat(), "kind": kind, **fields}
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def node_start(self, thread_id: str, node: str) -> None:
        self.log(thread_id, "node_start", node=node)

    def node_end(self, thread_id: str, node: str, duration_ms: int, **fields: Any) -> None:
        self.log(thread_id, "node_end", node=node, duration_ms=duration_ms, **fields)

    def edge(self, thread_id: str, source: str, target: str) -> None:
        self.log(thread_id, "edge", source=source, target=target)

    def error(self, thread_id: str, error: str, **fields: Any) -> None:
        self.log(thread_id, "error", error=error, **fields)

    def read(self, thread_id: str) -> list[dict]:
        """Read back a thread's records.

        Returns:
            Records in write order (empty when disabled or missing)
        """
        path = self.log_path(thread_id)
        if path is None or not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
