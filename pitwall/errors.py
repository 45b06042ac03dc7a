"""Exception types raised by the Pitwall runtime."""

from typing import Optional


class PitwallError(Exception):
    """Base class for runtime errors."""


class ModelInvocationError(PitwallError):
    """The model backend failed (network, provider, or protocol error)."""


class MalformedToolCall(PitwallError):
    """The model requested an unknown tool or sent arguments that fail validation."""

    def __init__(self, message: str, tool_name: Optional[str] = None, tool_call_id: Optional[str] = None):
        super().__init__(message)
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id


class ToolExecutionFailure(PitwallError):
    """A tool failed while running. Reported to the model as an error result."""


class CompactionFailure(PitwallError):
    """Summarizing the history failed; compaction is skipped."""


class RunCancelled(PitwallError):
    """Cancellation was observed at a cancellation point."""


class RunStateError(PitwallError):
    """The requested operation is not valid in the thread's current state."""


class ThreadBusyError(PitwallError):
    """A run is already in progress on the thread."""
