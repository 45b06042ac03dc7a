"""Cooperative cancellation for runs and tool batches."""

import asyncio
from typing import Optional

from pitwall.errors import RunCancelled


class CancellationToken:
    """Cancellation flag observed at cancellation points.

    Cancelling a token also cancels every child token minted from it.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children: list["CancellationToken"] = []
        if parent is not None and parent.cancelled:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation (idempotent)."""
        self._event.set()
        for child in self._children:
            child.cancel()

    def child(self) -> "CancellationToken":
        """Mint a token that is cancelled together with this one."""
        token = CancellationToken(parent=self)
        self._children.append(token)
        return token

    def raise_if_cancelled(self) -> None:
        """Raise RunCancelled when cancellation was requested."""
        if self.cancelled:
            raise RunCancelled("Run cancelled by the user")

    async def wait(self) -> None:
        """Wait until the token is cancelled."""
        await self._event.wait()


class CancellationCoordinator:
    """Tracks the cancellation token of each thread's active run."""

    def __init__(self):
        self._runs: dict[str, CancellationToken] = {}
        self._tools: dict[str, CancellationToken] = {}

    def mint(self, thread_id: str) -> CancellationToken:
        """Create a fresh token for a new run on the thread."""
        token = CancellationToken()
        self._runs[thread_id] = token
        self._tools.pop(thread_id, None)
        return token

    def tool_scope(self, thread_id: str) -> CancellationToken:
        """Create a token for the thread's current tool batch.

        Raises:
            KeyError: If the thread has no active run
        """
        token = self._runs[thread_id].child()
        self._tools[thread_id] = token
        return token

    def cancel(self, thread_id: str) -> bool:
        """Cancel the thread's active run.

        Returns:
            True if a run was active and is now cancelled
        """
        token = self._runs.get(thread_id)
        if token is None or token.cancelled:
            return False
        token.cancel()
        return True

    def abort_tool(self, thread_id: str) -> bool:
        """Cancel only the tools currently running on the thread.

        Returns:
            True if a tool batch was active
        """
        token = self._tools.get(thread_id)
        if token is None or token.cancelled:
            return False
        token.cancel()
        return True

    def release(self, thread_id: str, token: Optional[CancellationToken] = None) -> None:
        """Forget the thread's tokens once its run has ended."""
        if token is not None and self._runs.get(thread_id) is not token:
            return
        self._runs.pop(thread_id, None)
        self._tools.pop(thread_id, None)

    def active(self, thread_id: str) -> bool:
        return thread_id in self._runs
