"""Token estimation, trimming and compaction of the conversation history."""

import json
import math
import re
from dataclasses import dataclass
from typing import Optional

from pitwall.constants import (
    AUTO_COMPACT_THRESHOLD,
    COMPACT_NOTICE,
    KEEP_RECENT_MESSAGES,
    MAX_TOOL_RESULT_CHARS,
    MESSAGE_OVERHEAD_TOKENS,
    MIN_MESSAGES_TO_COMPACT,
    TOKEN_TRIM_THRESHOLD,
    TOOL_CALL_OVERHEAD_TOKENS,
    TOOL_RESULT_PREVIEW_CHARS,
)
from pitwall.errors import CompactionFailure, ModelInvocationError
from pitwall.messages import (
    AssistantMessage,
    HumanMessage,
    RemoveMessage,
    SystemMessage,
    ToolResultMessage,
    UsageMetadata,
    last_assistant_index,
)

# Han (incl. extension A), kana and hangul syllables
CJK_PATTERN = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text.

    CJK characters count at about 1.5 characters per token, everything else
    at about 4.

    Args:
        text: Text to estimate

    Returns:
        Estimated token count
    """
    if not text:
        return 0
    cjk = len(CJK_PATTERN.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk / 1.5) + math.ceil(other / 4)


def estimate_message_tokens(message) -> int:
    """Estimate one message including structural and tool-call overhead."""
    tokens = MESSAGE_OVERHEAD_TOKENS + estimate_tokens(message.content)
    if isinstance(message, AssistantMessage):
        for call in message.tool_calls:
            tokens += estimate_tokens(call.name)
            tokens += estimate_tokens(json.dumps(call.args, ensure_ascii=False))
            tokens += TOOL_CALL_OVERHEAD_TOKENS
    return tokens


def count_message_tokens(messages: list) -> int:
    """Estimate the token count of a message list."""
    return sum(estimate_message_tokens(m) for m in messages)


def non_system_messages(messages: list) -> list:
    return [m for m in messages if not isinstance(m, SystemMessage)]


def truncate_tool_result(text: str, limit: int = MAX_TOOL_RESULT_CHARS) -> str:
    """Shorten a tool result, keeping its head and tail.

    Args:
        text: Tool result text
        limit: Number of characters to keep

    Returns:
        The text unchanged if short enough, else head + elision marker + tail
    """
    if len(text) <= limit:
        return text
    head = limit // 2
    tail = limit - head
    elided = len(text) - head - tail
    return f"{text[:head]}\n\n... [{elided} characters elided] ...\n\n{text[-tail:]}"


@dataclass
class ContextUsage:
    """How much of the context window the conversation uses."""

    tokens: int
    limit: int
    method: str  # "hybrid" or "estimated"

    @property
    def percent(self) -> float:
        return round(self.tokens / self.limit * 100, 1) if self.limit else 100.0

    @property
    def tokens_remaining(self) -> int:
        return max(0, self.limit - self.tokens)

    def to_dict(self) -> dict:
        return {
            "tokens": self.tokens,
            "limit": self.limit,
            "percent": self.percent,
            "method": self.method,
            "tokens_remaining": self.tokens_remaining,
        }


class BudgetManager:
    """Keeps the conversation within the model's context window."""

    def __init__(
        self,
        context_window: int,
        auto_compact_threshold: float = AUTO_COMPACT_THRESHOLD,
        trim_threshold: float = TOKEN_TRIM_THRESHOLD,
        keep_recent: int = KEEP_RECENT_MESSAGES,
    ):
        """Initialize budget manager.

        Args:
            context_window: Model context window in tokens
            auto_compact_threshold: Fraction of the window that triggers compaction
            trim_threshold: Fraction of the window a trimmed prompt must fit in
            keep_recent: Non-system messages always kept verbatim by trim
        """
        self.context_window = context_window
        self.auto_compact_threshold = auto_compact_threshold
        self.trim_threshold = trim_threshold
        self.keep_recent = keep_recent

    def usage(self, messages: list, last_usage: Optional[UsageMetadata] = None) -> ContextUsage:
        """Compute context usage.

        With usage counters from the last model response, only the messages
        appended after that response are estimated.

        Args:
            messages: Conversation history
            last_usage: Counters reported with the last assistant message

        Returns:
            ContextUsage
        """
        if last_usage is not None and last_usage.total_tokens > 0:
            idx = last_assistant_index(messages)
            if idx >= 0:
                tail = messages[idx + 1:]
                tokens = last_usage.total_tokens + count_message_tokens(tail)
                return ContextUsage(tokens=tokens, limit=self.context_window, method="hybrid")

        return ContextUsage(
            tokens=count_message_tokens(messages),
            limit=self.context_window,
            method="estimated",
        )

    def should_compact(self, usage: ContextUsage) -> bool:
        """True when usage reached the auto-compact threshold."""
        return usage.tokens >= self.auto_compact_threshold * self.context_window

    def trim(self, messages: list) -> list:
        """Trim a message list to fit the trim threshold.

        System messages and the most recent ``keep_recent`` non-system
        messages are kept. Older oversized tool results are truncated first,
        then the oldest messages are dropped. An assistant message with tool
        calls and the results answering them are kept or dropped together.
        If the oldest surviving message is not from the user, the closest
        earlier user message is kept as well.

        Args:
            messages: Message list (not modified)

        Returns:
            Trimmed message list in original order
        """
        budget = int(self.trim_threshold * self.context_window)
        if count_message_tokens(messages) <= budget:
            return list(messages)

        units = self._group_units(messages)
        rest = non_system_messages(messages)
        recent_ids = {m.id for m in rest[-self.keep_recent:]} if self.keep_recent else set()
        protected = [any(m.id in recent_ids for m in unit) for unit in units]

        # Truncate old tool results before dropping anything
        replacements = {}
        for unit, keep in zip(units, protected):
            if keep:
                continue
            for m in unit:
                if isinstance(m, ToolResultMessage) and len(m.content) > MAX_TOOL_RESULT_CHARS:
                    replacements[m.id] = m.model_copy(
                        update={"content": truncate_tool_result(m.content)}
                    )
        current = [replacements.get(m.id, m) for m in messages]
        total = count_message_tokens(current)

        dropped: set[str] = set()
        for unit, keep in zip(units, protected):
            if total <= budget:
                break
            if keep:
                continue
            for m in unit:
                dropped.add(m.id)
                total -= estimate_message_tokens(replacements.get(m.id, m))

        # The prompt has to open with a user turn
        surviving = [i for i, unit in enumerate(units) if unit[0].id not in dropped]
        if surviving and not isinstance(units[surviving[0]][0], HumanMessage):
            for i in range(surviving[0] - 1, -1, -1):
                if isinstance(units[i][0], HumanMessage):
                    dropped.difference_update(m.id for m in units[i])
                    break

        return [m for m in current if m.id not in dropped]

    def _group_units(self, messages: list) -> list[list]:
        """Group non-system messages into units that must not be split."""
        units: list[list] = []
        owner: dict[str, int] = {}
        for m in messages:
            if isinstance(m, SystemMessage):
                continue
            if isinstance(m, ToolResultMessage) and m.tool_call_id in owner:
                units[owner[m.tool_call_id]].append(m)
                continue
            units.append([m])
            if isinstance(m, AssistantMessage):
                for call in m.tool_calls:
                    owner[call.id] = len(units) - 1
        return units


def messages_to_text(messages: list) -> str:
    """Render non-system history as plain text for summarization."""
    lines = []
    for m in messages:
        if isinstance(m, HumanMessage):
            lines.append(f"User: {m.content}")
        elif isinstance(m, AssistantMessage):
            if m.tool_calls:
                names = ", ".join(c.name for c in m.tool_calls)
                text = f"{m.content}\n" if m.content else ""
                lines.append(f"Assistant: {text}[called tools: {names}]")
            else:
                lines.append(f"Assistant: {m.content}")
        elif isinstance(m, ToolResultMessage):
            content = m.content
            if len(content) > TOOL_RESULT_PREVIEW_CHARS:
                content = content[:TOOL_RESULT_PREVIEW_CHARS] + "..."
            lines.append(f"Tool[{m.name}] result: {content}")
        elif isinstance(m, SystemMessage):
            continue
        else:
            raise TypeError(f"Unknown message type: {type(m).__name__}")
    return "\n\n".join(lines)


def build_summary_prompt(messages: list) -> str:
    """Build the structured summarization prompt for a history."""
    conversation = messages_to_text(non_system_messages(messages))
    return f"""Please provide a comprehensive summary of our conversation structured as follows:

## Technical Context
Development environment, tools, frameworks, and configurations in use. Programming languages, libraries, and technical constraints. File structure, directory organization, and project architecture.

## Project Overview
Main project goals, features, and scope. Key components, modules, and their relationships. Data models, APIs, and integration patterns.

## Code Changes
Files created, modified, or analyzed during our conversation. Specific code implementations, functions, and algorithms added. Configuration changes and structural modifications.

## Debugging & Issues
Problems encountered and their root causes. Solutions implemented and their effectiveness. Error messages, logs, and diagnostic information.

## Current Status
What we just completed successfully. Current state of the codebase and any ongoing work. Test results, validation steps, and verification performed.

## Pending Tasks
Immediate next steps and priorities. Planned features, improvements, and refactoring. Known issues, technical debt, and areas needing attention.

## User Preferences
Coding style, formatting, and organizational preferences. Communication patterns and feedback style. Tool choices and workflow preferences.

## Key Decisions
Important technical decisions made and their rationale. Alternative approaches considered and why they were rejected. Trade-offs accepted and their implications.

Focus on information essential for continuing the conversation effectively, including specific details about code, files, errors, and plans.

Conversation:
{conversation}"""


def can_compact(messages: list) -> bool:
    """True when there is enough history to be worth summarizing."""
    return len(non_system_messages(messages)) >= MIN_MESSAGES_TO_COMPACT


async def summarize_history(model, messages: list, cancel=None) -> str:
    """Ask the model for a structured summary of the history.

    Args:
        model: ChatModel used for the summary call
        messages: Conversation history
        cancel: Optional cancellation token

    Returns:
        Summary text

    Raises:
        CompactionFailure: If the model call fails or returns nothing
    """
    prompt = build_summary_prompt(messages)
    try:
        response = await model.invoke([HumanMessage(content=prompt)], stream=False, cancel=cancel)
    except ModelInvocationError as e:
        raise CompactionFailure(f"Summary request failed: {e}") from e

    summary = response.content.strip()
    if not summary:
        raise CompactionFailure("Model returned an empty summary")
    return summary


def compaction_updates(messages: list, summary: str) -> list:
    """Updates replacing all non-system history with a notice and the summary.

    Args:
        messages: Current history
        summary: Summary text

    Returns:
        Remove markers followed by the two new messages
    """
    updates: list = [RemoveMessage(id=m.id) for m in non_system_messages(messages)]
    updates.append(HumanMessage(content=COMPACT_NOTICE))
    updates.append(AssistantMessage(content=summary))
    return updates
