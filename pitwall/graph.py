"""LangGraph workflow: check, agent, confirm_tools, tools and summarize nodes."""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from pitwall.budget import (
    BudgetManager,
    can_compact,
    compaction_updates,
    non_system_messages,
    summarize_history,
)
from pitwall.cancellation import CancellationCoordinator, CancellationToken
from pitwall.constants import INTERRUPTED_MESSAGE, KEEP_RECENT_MESSAGES
from pitwall.errors import CompactionFailure, MalformedToolCall, RunCancelled
from pitwall.events import EventKind, EventStream
from pitwall.gate import ConfirmationGate
from pitwall.llm import ChatModel
from pitwall.messages import (
    AssistantMessage,
    ToolCallRequest,
    ToolResultMessage,
    unanswered_tool_calls,
)
from pitwall.prompt import SystemPromptBuilder, assemble_prompt
from pitwall.settings import RuntimeSettings, SettingsHolder
from pitwall.state import RUNNING, SUSPENDED, ConversationState
from pitwall.tools.registry import ToolContext, ToolRegistry
from pitwall.utils.logging import SessionLogger


@dataclass
class RunContext:
    """Per-run collaborators handed to the nodes through the graph config.

    Progress events are published right away. Events describing new state
    are held back until the runtime has checkpointed that state.
    """

    thread_id: str
    stream: EventStream
    cancel: CancellationToken
    coordinator: Optional[CancellationCoordinator] = None
    deferred: list[tuple[EventKind, dict]] = field(default_factory=list)

    def emit(self, kind: EventKind, **data: Any) -> None:
        self.stream.publish(kind, **data)

    def defer(self, kind: EventKind, **data: Any) -> None:
        self.deferred.append((kind, data))

    def flush(self) -> None:
        """Publish the held-back events in order."""
        pending, self.deferred = self.deferred, []
        for kind, data in pending:
            self.stream.publish(kind, **data)

    def tool_scope(self) -> CancellationToken:
        """Token for one tool batch, cancelled with the run or on abort_tool."""
        if self.coordinator is not None and self.coordinator.active(self.thread_id):
            return self.coordinator.tool_scope(self.thread_id)
        return self.cancel.child()


def run_context(config: RunnableConfig) -> RunContext:
    return config["configurable"]["run"]


def last_assistant(messages: list) -> Optional[AssistantMessage]:
    for message in reversed(messages):
        if isinstance(message, AssistantMessage):
            return message
    return None


class AgentGraph:
    """Builds and runs the fixed agent graph for any number of threads."""

    def __init__(
        self,
        model: ChatModel,
        registry: ToolRegistry,
        gate: ConfirmationGate,
        settings: SettingsHolder,
        project_root: Path,
        prompt_builder: Optional[SystemPromptBuilder] = None,
        logger: Optional[SessionLogger] = None,
        keep_recent: int = KEEP_RECENT_MESSAGES,
    ):
        """Initialize the graph.

        Args:
            model: Model invocation capability
            registry: Tool registry
            gate: Confirmation gate
            settings: Holder of the active runtime settings
            project_root: Project root directory (tool working directory)
            prompt_builder: System prompt builder
            logger: Run logger
            keep_recent: Messages the trim fallback always keeps
        """
        self.model = model
        self.registry = registry
        self.gate = gate
        self.settings = settings
        self.project_root = project_root
        self.prompt_builder = prompt_builder or SystemPromptBuilder(project_root)
        self.logger = logger or SessionLogger(None)
        self.keep_recent = keep_recent

    def budget_for(self, settings: RuntimeSettings) -> BudgetManager:
        return BudgetManager(settings.context_window, keep_recent=self.keep_recent)

    def build_graph(self):
        """Build the LangGraph workflow.

        Returns:
            Compiled StateGraph
        """
        workflow = StateGraph(ConversationState)

        workflow.add_node("check", self._instrument("check", self.check_node))
        workflow.add_node("agent", self._instrument("agent", self.agent_node))
        workflow.add_node("confirm_tools", self._instrument("confirm_tools", self.confirm_tools_node))
        workflow.add_node("tools", self._instrument("tools", self.tools_node))
        workflow.add_node("summarize", self._instrument("summarize", self.summarize_node))

        workflow.add_conditional_edges(
            START, self.route_start, {"check": "check", "confirm_tools": "confirm_tools"}
        )
        workflow.add_conditional_edges(
            "check", self.route_check, {"summarize": "summarize", "agent": "agent"}
        )
        workflow.add_conditional_edges(
            "agent",
            self.route_agent,
            {"tools": "tools", "confirm_tools": "confirm_tools", END: END},
        )
        workflow.add_conditional_edges(
            "confirm_tools", self.route_confirm, {"tools": "tools", "agent": "agent", END: END}
        )
        workflow.add_edge("tools", "check")
        workflow.add_edge("summarize", "agent")

        return workflow.compile()

    def _instrument(self, name: str, node):
        """Wrap a node with start/end logging."""

        async def wrapper(state: ConversationState, config: RunnableConfig) -> dict:
            run = run_context(config)
            self.logger.node_start(run.thread_id, name)
            start_time = time.time()
            try:
                update = await node(state, config)
            except RunCancelled:
                self.logger.log(run.thread_id, "cancelled", node=name)
                raise
            except Exception as e:
                self.logger.error(run.thread_id, str(e), node=name, type=type(e).__name__)
                raise
            duration_ms = int((time.time() - start_time) * 1000)
            self.logger.node_end(run.thread_id, name, duration_ms, keys=sorted(update))
            return update

        return wrapper

    # Routing

    def route_start(self, state: ConversationState) -> str:
        """Suspended threads go straight to the gate."""
        if state.get("status") == SUSPENDED:
            return "confirm_tools"
        return "check"

    def route_check(self, state: ConversationState) -> str:
        return "summarize" if state.get("compact_requested") else "agent"

    def route_agent(self, state: ConversationState) -> str:
        """Finish, ask for confirmation, or run the requested tools."""
        if state.get("error"):
            return END
        messages = state.get("messages", [])
        last = messages[-1] if messages else None
        if not isinstance(last, AssistantMessage) or not last.tool_calls:
            return END
        mode = self.settings.current.permission_mode
        if self.gate.gated_calls(last, mode):
            return "confirm_tools"
        return "tools"

    def route_confirm(self, state: ConversationState) -> str:
        """Stay suspended, continue with the model after a rejection, or run tools."""
        if state.get("status") == SUSPENDED:
            return END
        messages = state.get("messages", [])
        if messages and isinstance(messages[-1], ToolResultMessage):
            return "agent"
        return "tools"

    # Nodes

    async def check_node(self, state: ConversationState, config: RunnableConfig) -> dict:
        """Measure context usage and decide whether to compact."""
        run = run_context(config)
        settings = self.settings.current
        budget = self.budget_for(settings)

        usage = budget.usage(state.get("messages", []), state.get("last_usage"))
        run.emit(EventKind.TOKEN_USAGE, **usage.to_dict())

        skip = state.get("skip_next_check", False)
        return {
            "skip_next_check": False,
            "compact_requested": not skip and budget.should_compact(usage),
        }

    async def agent_node(self, state: ConversationState, config: RunnableConfig) -> dict:
        """Invoke the model with the history and the permitted tools."""
        run = run_context(config)
        settings = self.settings.current
        run.cancel.raise_if_cancelled()

        messages = list(state.get("messages", []))
        allowed = self.registry.names_for_mode(settings.permission_mode)

        # Compaction was skipped or failed: send a trimmed copy instead
        history = messages
        budget = self.budget_for(settings)
        if budget.should_compact(budget.usage(messages, state.get("last_usage"))):
            history = budget.trim(messages)
            self.logger.log(
                run.thread_id, "trim", before=len(messages), after=len(history)
            )

        prompt = assemble_prompt(
            self.prompt_builder.build(settings.permission_mode),
            history,
            self.prompt_builder.context_injection(),
        )

        run.emit(EventKind.THINKING, model=settings.model)
        response = await self.model.invoke(
            prompt,
            tools=self.registry.schemas(allowed) or None,
            stream=True,
            on_delta=lambda text: run.emit(EventKind.STREAMING_DELTA, text=text),
            cancel=run.cancel,
            model=settings.model,
        )

        known_ids = {
            call.id
            for m in messages
            if isinstance(m, AssistantMessage)
            for call in m.tool_calls
        }
        calls: list[ToolCallRequest] = []
        try:
            for raw in response.tool_calls:
                if raw.id in known_ids or any(c.id == raw.id for c in calls):
                    raise MalformedToolCall(
                        f"Tool call id already used: {raw.id}",
                        tool_name=raw.name,
                        tool_call_id=raw.id,
                    )
                calls.append(self.registry.validate(raw, allowed))
        except MalformedToolCall as e:
            return {"error": str(e), "last_usage": response.usage}

        message = AssistantMessage(content=response.content, tool_calls=calls, usage=response.usage)
        run.defer(
            EventKind.RESPONSE_READY,
            message_id=message.id,
            content=message.content,
            tool_calls=[c.model_dump() for c in calls],
            usage=response.usage.model_dump() if response.usage else None,
        )
        return {"messages": [message], "last_usage": response.usage, "error": None}

    async def confirm_tools_node(self, state: ConversationState, config: RunnableConfig) -> dict:
        """Suspend on gated calls, or apply the decision supplied by resume."""
        run = run_context(config)
        messages = state.get("messages", [])
        pending = state.get("pending_confirmation")
        decision = state.get("confirmation_decision")

        if pending is None:
            last = messages[-1] if messages else None
            if not isinstance(last, AssistantMessage):
                return {"status": RUNNING}
            gated = self.gate.gated_calls(last, self.settings.current.permission_mode)
            if not gated:
                return {"status": RUNNING}
            pending = self.gate.suspend(last, gated)
            run.defer(
                EventKind.CONFIRMATION_REQUIRED,
                assistant_message_id=last.id,
                calls=[c.model_dump() for c in gated],
            )
            return {"status": SUSPENDED, "pending_confirmation": pending}

        if decision is None:
            # Already announced; keep waiting
            return {"status": SUSPENDED}

        cleared = {"status": RUNNING, "pending_confirmation": None, "confirmation_decision": None}
        if decision.approved:
            self.gate.approve(pending, decision)
            return cleared

        message = next(
            (m for m in messages if isinstance(m, AssistantMessage) and m.id == pending.assistant_message_id),
            None,
        )
        results = self.gate.reject(pending, message)
        for result in results:
            run.defer(
                EventKind.TOOL_RESULT,
                tool_call_id=result.tool_call_id,
                name=result.name,
                content=result.content,
                is_error=True,
                rejected=True,
            )
        return {**cleared, "messages": results}

    async def tools_node(self, state: ConversationState, config: RunnableConfig) -> dict:
        """Execute every requested call that has no result yet."""
        run = run_context(config)
        messages = state.get("messages", [])
        last = last_assistant(messages)
        if last is None:
            return {}
        pending_ids = {c.id for c in unanswered_tool_calls(messages)}
        calls = [c for c in last.tool_calls if c.id in pending_ids]
        if not calls:
            return {}

        token = run.tool_scope()

        async def run_one(call: ToolCallRequest) -> ToolResultMessage:
            if token.cancelled:
                return ToolResultMessage(
                    tool_call_id=call.id, name=call.name, content=INTERRUPTED_MESSAGE, is_error=True
                )
            run.emit(EventKind.TOOL_INVOKED, tool_call_id=call.id, name=call.name, args=dict(call.args))
            ctx = ToolContext(
                project_root=self.project_root,
                cancel=token,
                progress=lambda text: run.emit(
                    EventKind.TOOL_PROGRESS, tool_call_id=call.id, name=call.name, message=text
                ),
            )
            try:
                content, is_error = await self.registry.execute(call, ctx)
            except RunCancelled:
                content, is_error = INTERRUPTED_MESSAGE, True
            return ToolResultMessage(
                tool_call_id=call.id, name=call.name, content=content, is_error=is_error
            )

        if all(self.registry.is_read_only(c.name) for c in calls):
            results = list(await asyncio.gather(*(run_one(c) for c in calls)))
        else:
            results = []
            for call in calls:
                results.append(await run_one(call))

        for result in results:
            run.defer(
                EventKind.TOOL_RESULT,
                tool_call_id=result.tool_call_id,
                name=result.name,
                content=result.content,
                is_error=result.is_error,
            )
        return {"messages": results}

    async def summarize_node(self, state: ConversationState, config: RunnableConfig) -> dict:
        """Replace the history with a structured summary."""
        run = run_context(config)
        messages = state.get("messages", [])

        if not can_compact(messages):
            return {"skip_next_check": True, "compact_requested": False}

        run.emit(EventKind.COMPACTION_STARTED, messages=len(messages))
        try:
            summary = await summarize_history(self.model, messages, run.cancel)
        except CompactionFailure as e:
            self.logger.error(run.thread_id, str(e), node="summarize")
            run.defer(EventKind.COMPACTION_COMPLETED, compacted=False, reason=str(e))
            return {"skip_next_check": True, "compact_requested": False}

        updates = compaction_updates(messages, summary)
        kept = len(messages) - len(non_system_messages(messages))
        run.defer(
            EventKind.COMPACTION_COMPLETED,
            compacted=True,
            messages_before=len(messages),
            messages_after=kept + 2,
        )
        return {
            "messages": updates,
            "last_usage": None,
            "skip_next_check": False,
            "compact_requested": False,
        }
