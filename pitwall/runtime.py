"""Agent runtime: runs threads through the graph and persists every step."""

import asyncio
import itertools
import time
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

from pitwall.budget import can_compact, compaction_updates, summarize_history
from pitwall.cancellation import CancellationCoordinator, CancellationToken
from pitwall.checkpoint import (
    Checkpoint,
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
    validate_thread_id,
)
from pitwall.config import Config
from pitwall.constants import COMPACT_NOTICE, INTERRUPTED_MESSAGE
from pitwall.errors import MalformedToolCall, RunCancelled, RunStateError, ThreadBusyError
from pitwall.events import Event, EventKind, EventStream
from pitwall.gate import ConfirmationGate
from pitwall.graph import AgentGraph, RunContext
from pitwall.llm import AnthropicChatModel, ChatModel, parse_model_string
from pitwall.messages import (
    AssistantMessage,
    HumanMessage,
    ToolResultMessage,
    merge_messages,
    unanswered_tool_calls,
)
from pitwall.permissions import PermissionMode, PermissionStore
from pitwall.prompt import SystemPromptBuilder
from pitwall.settings import RuntimeSettings, SettingsHolder
from pitwall.state import RUNNING, ConfirmationDecision, ConversationSnapshot, PendingConfirmation
from pitwall.tools.builtin import build_default_registry
from pitwall.utils.logging import SessionLogger

RECURSION_LIMIT = 500
TITLE_WIDTH = 60

_thread_counter = itertools.count(1)


def new_thread_id() -> str:
    """Mint a thread id that is unique for this process."""
    return f"thread_{int(time.time() * 1000)}_{next(_thread_counter)}"


@dataclass
class RunResult:
    """Outcome of one submit or resume."""

    thread_id: str
    text: str = ""
    interrupted: bool = False
    suspended: bool = False
    pending: Optional[PendingConfirmation] = None
    error: Optional[str] = None


@dataclass
class ThreadSummary:
    """Listing entry for a stored thread."""

    thread_id: str
    updated_at: datetime
    message_count: int
    title: str
    suspended: bool = False


def thread_title(messages: list, width: int = TITLE_WIDTH) -> str:
    """First line of the first user message, shortened to ``width``."""
    for message in messages:
        text = message.content.strip() if isinstance(message, HumanMessage) else ""
        if text and text != COMPACT_NOTICE:
            line = text.splitlines()[0]
            if len(line) > width:
                line = line[: width - 3] + "..."
            return line
    return "(compacted)" if messages else "(empty)"


class Run:
    """Handle to a run in progress.

    Iterate ``events()`` to observe it and ``await`` it for the RunResult.
    """

    def __init__(self, context: RunContext):
        self.context = context
        self.thread_id = context.thread_id
        self._task: Optional[asyncio.Task] = None

    def _start(self, coro) -> None:
        self._task = asyncio.create_task(coro)

    def events(self) -> AsyncIterator[Event]:
        return self.context.stream.subscribe()

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def __await__(self):
        return self._task.__await__()


class AgentRuntime:
    """Public interface of the engine: submit, resume, inspect, compact, cancel."""

    def __init__(
        self,
        agent_graph: AgentGraph,
        store: CheckpointStore,
        coordinator: Optional[CancellationCoordinator] = None,
    ):
        """Initialize the runtime.

        Args:
            agent_graph: Graph definition and its collaborators
            store: Checkpoint store
            coordinator: Cancellation coordinator
        """
        self.agent_graph = agent_graph
        self.graph = agent_graph.build_graph()
        self.store = store
        self.coordinator = coordinator or CancellationCoordinator()
        self.logger = agent_graph.logger
        self._busy: set[str] = set()

    @classmethod
    def from_config(
        cls,
        project_root: Path,
        config: Config,
        model: Optional[ChatModel] = None,
        store: Optional[CheckpointStore] = None,
    ) -> "AgentRuntime":
        """Build a runtime with the built-in tools for a project.

        Args:
            project_root: Project root directory
            config: Loaded configuration
            model: Model capability (Anthropic client from config if None)
            store: Checkpoint store (files under the data dir if None)

        Returns:
            AgentRuntime
        """
        settings = SettingsHolder(
            RuntimeSettings(
                model=config.default_model,
                permission_mode=PermissionMode.parse(config.permission_mode),
                context_window=config.resolve_context_window(),
            ),
            context_window_override=config.context_window,
        )
        registry = build_default_registry(
            project_root, config.exec_timeout, config.max_read_mb, config.max_write_mb
        )
        gate = ConfirmationGate(
            PermissionStore(config.data_dir, project_root), registry.sensitive_tools()
        )
        logger = SessionLogger(config.data_dir / "runs" if config.data_dir else None)

        if model is None:
            if not config.anthropic_api_key:
                raise ValueError("No Anthropic API key found. Set ANTHROPIC_API_KEY in .env")
            model = AnthropicChatModel(
                parse_model_string(config.default_model), config.anthropic_api_key
            )
        if store is None:
            store = FileCheckpointStore(config.data_dir) if config.data_dir else MemoryCheckpointStore()

        agent_graph = AgentGraph(
            model=model,
            registry=registry,
            gate=gate,
            settings=settings,
            project_root=project_root,
            prompt_builder=SystemPromptBuilder(project_root),
            logger=logger,
            keep_recent=config.keep_recent_messages,
        )
        return cls(agent_graph, store)

    @property
    def settings(self) -> SettingsHolder:
        return self.agent_graph.settings

    def new_thread(self) -> str:
        return new_thread_id()

    def is_busy(self, thread_id: str) -> bool:
        return thread_id in self._busy

    # Runs

    async def submit(self, thread_id: str, text: str) -> Run:
        """Append a user message and run the thread.

        A thread suspended on a confirmation treats the new message as a
        rejection of the pending calls.

        Args:
            thread_id: Thread to run
            text: User message

        Returns:
            Run handle

        Raises:
            ThreadBusyError: If the thread is already running
        """
        token = self._claim(thread_id)
        try:
            snapshot = await self.store.load(thread_id) or ConversationSnapshot()
            snapshot = self._prepare_submit(snapshot, text)
        except BaseException:
            self._release(thread_id, token)
            raise
        return self._launch(thread_id, token, snapshot, "input")

    async def resume(self, thread_id: str, decision: ConfirmationDecision) -> Run:
        """Resolve a pending confirmation and continue the run.

        Args:
            thread_id: Suspended thread
            decision: Approval or rejection

        Returns:
            Run handle

        Raises:
            RunStateError: If the thread is not suspended
            ThreadBusyError: If the thread is already running
        """
        token = self._claim(thread_id)
        try:
            snapshot = await self.store.load(thread_id)
            if snapshot is None or not snapshot.suspended or snapshot.pending_confirmation is None:
                raise RunStateError(f"Thread {thread_id} is not waiting for a confirmation")
            if decision.tool_index is not None and not (
                0 <= decision.tool_index < len(snapshot.pending_confirmation.calls)
            ):
                raise ValueError(f"tool_index out of range: {decision.tool_index}")
            snapshot = snapshot.model_copy(update={"confirmation_decision": decision})
        except BaseException:
            self._release(thread_id, token)
            raise
        return self._launch(thread_id, token, snapshot, "resume")

    def cancel(self, thread_id: str) -> bool:
        """Cancel the thread's run (best effort)."""
        return self.coordinator.cancel(thread_id)

    def abort_tool(self, thread_id: str) -> bool:
        """Stop only the tools currently running on the thread."""
        return self.coordinator.abort_tool(thread_id)

    def _claim(self, thread_id: str) -> CancellationToken:
        validate_thread_id(thread_id)
        if thread_id in self._busy:
            raise ThreadBusyError(f"Thread {thread_id} is already running")
        self._busy.add(thread_id)
        return self.coordinator.mint(thread_id)

    def _release(self, thread_id: str, token: CancellationToken) -> None:
        self._busy.discard(thread_id)
        self.coordinator.release(thread_id, token)

    def _launch(
        self, thread_id: str, token: CancellationToken, snapshot: ConversationSnapshot, source: str
    ) -> Run:
        context = RunContext(
            thread_id=thread_id,
            stream=EventStream(thread_id),
            cancel=token,
            coordinator=self.coordinator,
        )
        run = Run(context)
        run._start(self._execute(context, snapshot, source))
        return run

    def _prepare_submit(self, snapshot: ConversationSnapshot, text: str) -> ConversationSnapshot:
        """Close open tool calls and append the user message."""
        messages = list(snapshot.messages)
        updates: list = []

        pending = snapshot.pending_confirmation
        if snapshot.suspended and pending is not None:
            message = next(
                (m for m in messages if isinstance(m, AssistantMessage) and m.id == pending.assistant_message_id),
                None,
            )
            updates.extend(self.agent_graph.gate.reject(pending, message))

        answered = {r.tool_call_id for r in updates}
        for call in unanswered_tool_calls(messages):
            if call.id not in answered:
                updates.append(ToolResultMessage(
                    tool_call_id=call.id,
                    name=call.name,
                    content=INTERRUPTED_MESSAGE,
                    is_error=True,
                ))

        updates.append(HumanMessage(content=text))
        return snapshot.model_copy(update={
            "messages": merge_messages(messages, updates),
            "status": RUNNING,
            "pending_confirmation": None,
            "confirmation_decision": None,
            "compact_requested": False,
            "error": None,
        })

    async def _execute(self, ctx: RunContext, snapshot: ConversationSnapshot, source: str) -> RunResult:
        """Drive the graph, checkpointing every node before publishing its events."""
        thread_id = ctx.thread_id
        interrupted = False
        try:
            try:
                await self._checkpoint(thread_id, snapshot, source)
                config = {
                    "configurable": {"run": ctx, "thread_id": thread_id},
                    "recursion_limit": RECURSION_LIMIT,
                }
                previous = source
                finished: list[str] = []
                stream = self.graph.astream(
                    snapshot.to_state(), config, stream_mode=["updates", "values"]
                )
                async with aclosing(stream) as chunks:
                    async for mode, chunk in chunks:
                        if mode == "updates":
                            for node in chunk:
                                if node.startswith("__"):
                                    continue
                                self.logger.edge(thread_id, previous, node)
                                previous = node
                                finished.append(node)
                            continue

                        if not finished:
                            continue
                        snapshot = ConversationSnapshot.from_state(chunk)
                        await self._checkpoint(thread_id, snapshot, finished[-1])
                        finished = []
                        ctx.flush()

                        if ctx.cancel.cancelled:
                            interrupted = True
                            break
            except RunCancelled:
                interrupted = True

            # Events of uncommitted work are dropped
            ctx.deferred.clear()

            if snapshot.error and not interrupted:
                raise MalformedToolCall(snapshot.error)

            result = RunResult(
                thread_id=thread_id,
                text=self._final_text(snapshot),
                interrupted=interrupted,
                suspended=snapshot.suspended,
                pending=snapshot.pending_confirmation if snapshot.suspended else None,
            )
            ctx.emit(
                EventKind.DONE,
                interrupted=interrupted,
                suspended=result.suspended,
                text=result.text,
            )
            return result
        except Exception as e:
            ctx.deferred.clear()
            self.logger.error(thread_id, str(e), type=type(e).__name__)
            ctx.emit(EventKind.ERROR, error=str(e), type=type(e).__name__)
            ctx.emit(EventKind.DONE, interrupted=False, suspended=False, text="")
            raise
        finally:
            ctx.stream.close()
            self._release(thread_id, ctx.cancel)

    @staticmethod
    def _final_text(snapshot: ConversationSnapshot) -> str:
        if snapshot.messages and isinstance(snapshot.messages[-1], AssistantMessage):
            return snapshot.messages[-1].content
        return ""

    async def _checkpoint(self, thread_id: str, snapshot: ConversationSnapshot, source: str) -> Checkpoint:
        checkpoint = await self.store.save(thread_id, snapshot, source)
        self.logger.log(
            thread_id, "checkpoint", step=checkpoint.step, source=source,
            messages=len(snapshot.messages), status=snapshot.status,
        )
        return checkpoint

    # Inspection and maintenance

    async def get_state(self, thread_id: str) -> Optional[ConversationSnapshot]:
        """Current state of a thread, or None if it does not exist."""
        return await self.store.load(thread_id)

    async def get_history(self, thread_id: str) -> list[Checkpoint]:
        """All checkpoints of a thread, oldest first."""
        return await self.store.history(thread_id)

    async def get_messages(self, thread_id: str) -> list:
        """Messages of the thread's current state."""
        snapshot = await self.store.load(thread_id)
        return list(snapshot.messages) if snapshot else []

    async def list_threads(self) -> list[ThreadSummary]:
        """Stored threads, most recently updated first."""
        summaries = []
        for thread_id in await self.store.threads():
            checkpoint = await self.store.latest(thread_id)
            if checkpoint is None:
                continue
            snapshot = checkpoint.values
            summaries.append(ThreadSummary(
                thread_id=thread_id,
                updated_at=checkpoint.created_at,
                message_count=len(snapshot.messages),
                title=thread_title(snapshot.messages),
                suspended=snapshot.suspended,
            ))
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    async def latest_thread(self) -> Optional[str]:
        """Id of the most recently updated thread, or None."""
        summaries = await self.list_threads()
        return summaries[0].thread_id if summaries else None

    async def delete_thread(self, thread_id: str) -> bool:
        """Remove a stored thread.

        Raises:
            ThreadBusyError: If the thread is running
        """
        token = self._claim(thread_id)
        try:
            return await self.store.delete(thread_id)
        finally:
            self._release(thread_id, token)

    def clear(self, thread_id: str) -> str:
        """Start a new conversation; the old thread stays in the store.

        Returns:
            New thread id
        """
        self.coordinator.cancel(thread_id)
        return self.new_thread()

    async def compact(self, thread_id: str) -> dict:
        """Summarize the thread's history on request.

        Returns:
            Dict with message counts ``before`` and ``after``

        Raises:
            RunStateError: If the thread is waiting for a confirmation
            CompactionFailure: If the summary request failed
        """
        token = self._claim(thread_id)
        try:
            snapshot = await self.store.load(thread_id)
            if snapshot is None:
                return {"before": 0, "after": 0}
            if snapshot.suspended:
                raise RunStateError("Cannot compact while waiting for a confirmation")

            before = len(snapshot.messages)
            if not can_compact(snapshot.messages):
                return {"before": before, "after": before}

            summary = await summarize_history(self.agent_graph.model, snapshot.messages, token)
            messages = merge_messages(
                snapshot.messages, compaction_updates(snapshot.messages, summary)
            )
            compacted = snapshot.model_copy(update={
                "messages": messages,
                "last_usage": None,
                "skip_next_check": False,
            })
            await self._checkpoint(thread_id, compacted, "compact")
            return {"before": before, "after": len(messages)}
        finally:
            self._release(thread_id, token)

    async def pending_confirmation(self, thread_id: str) -> Optional[PendingConfirmation]:
        snapshot = await self.store.load(thread_id)
        if snapshot is None or not snapshot.suspended:
            return None
        return snapshot.pending_confirmation
