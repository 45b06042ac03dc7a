"""Run events and the per-run event stream."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, AsyncIterator, Mapping, Optional


class EventKind(str, Enum):
    """Types of events published while a run executes."""

    THINKING = "thinking"
    STREAMING_DELTA = "streaming_delta"
    TOOL_INVOKED = "tool_invoked"
    TOOL_PROGRESS = "tool_progress"
    TOOL_RESULT = "tool_result"
    RESPONSE_READY = "response_ready"
    CONFIRMATION_REQUIRED = "confirmation_required"
    COMPACTION_STARTED = "compaction_started"
    COMPACTION_COMPLETED = "compaction_completed"
    TOKEN_USAGE = "token_usage"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class Event:
    """An event observed during a run. Never modified after publication."""

    kind: EventKind
    thread_id: str
    seq: int
    data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "kind": self.kind.value,
            "thread_id": self.thread_id,
            "seq": self.seq,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


_CLOSED = object()


class EventStream:
    """Ordered events of one run, fanned out to any number of subscribers.

    The runtime is the only writer. ``publish`` never blocks: each subscriber
    owns an unbounded queue, so a slow reader cannot stall the executor.
    Subscribers that join late replay the history first.
    """

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        self.history: list[Event] = []
        self._queues: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, kind: EventKind, **data: Any) -> Optional[Event]:
        """Publish an event.

        Args:
            kind: Event kind
            **data: Event payload

        Returns:
            The published event, or None once the stream is closed
        """
        if self._closed:
            return None
        event = Event(kind=kind, thread_id=self.thread_id, seq=len(self.history), data=data)
        self.history.append(event)
        for queue in self._queues:
            queue.put_nowait(event)
        return event

    def close(self) -> None:
        """End the stream; subscribers finish after draining."""
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(_CLOSED)

    async def subscribe(self) -> AsyncIterator[Event]:
        """Iterate over events until the stream closes."""
        queue: asyncio.Queue = asyncio.Queue()
        for event in self.history:
            queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues.append(queue)

        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)
