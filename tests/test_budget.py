"""Tests for token estimation, trimming and compaction helpers."""

import pytest

from pitwall.budget import (
    BudgetManager,
    build_summary_prompt,
    can_compact,
    compaction_updates,
    estimate_tokens,
    summarize_history,
    truncate_tool_result,
)
from pitwall.constants import COMPACT_NOTICE
from pitwall.errors import CompactionFailure, ModelInvocationError
from pitwall.messages import (
    AssistantMessage,
    HumanMessage,
    SystemMessage,
    ToolCallRequest,
    ToolResultMessage,
    UsageMetadata,
    merge_messages,
)

from conftest import ScriptedChatModel, text_response


def test_estimate_tokens_ascii_and_cjk():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("你好") == 2
    assert estimate_tokens("你好abcd") == 3


def test_compaction_threshold_on_small_window():
    budget = BudgetManager(32768)

    # 4 tokens of overhead plus ceil(chars / 4)
    below = [HumanMessage(content="x" * (4 * 30142))]
    at = [HumanMessage(content="x" * (4 * 30143))]

    assert not budget.should_compact(budget.usage(below))
    assert budget.should_compact(budget.usage(at))


def test_usage_hybrid_counts_only_new_messages():
    budget = BudgetManager(100000)
    messages = [
        HumanMessage(content="question"),
        AssistantMessage(content="answer"),
        HumanMessage(content="x" * 40),
    ]

    usage = budget.usage(messages, UsageMetadata(total_tokens=1000))

    assert usage.method == "hybrid"
    assert usage.tokens == 1000 + 4 + 10


def test_usage_estimated_without_counters():
    budget = BudgetManager(1000)

    usage = budget.usage([HumanMessage(content="x" * 400)])

    assert usage.method == "estimated"
    assert usage.tokens == 104
    assert usage.percent == 10.4
    assert usage.tokens_remaining == 896


def test_truncate_tool_result():
    text = "a" * 3000 + "b" * 7000

    truncated = truncate_tool_result(text, limit=4000)

    assert truncated.startswith("a" * 2000)
    assert truncated.endswith("b" * 2000)
    assert "[6000 characters elided]" in truncated
    assert truncate_tool_result("short") == "short"


def test_trim_keeps_tool_pairs_together():
    budget = BudgetManager(1000, keep_recent=2)
    call = ToolCallRequest(id="c1", name="Read", args={"file_path": "big.txt"})
    messages = [
        SystemMessage(content="system"),
        HumanMessage(content="x" * 2000),
        AssistantMessage(content="", tool_calls=[call]),
        ToolResultMessage(tool_call_id="c1", name="Read", content="y" * 3000),
        HumanMessage(content="recent question"),
        AssistantMessage(content="recent answer"),
    ]

    trimmed = budget.trim(messages)

    assert [m.content for m in trimmed] == ["system", "recent question", "recent answer"]
    assert len(messages) == 6


def test_trim_keeps_a_user_message_first():
    budget = BudgetManager(1000, keep_recent=3)
    first = ToolCallRequest(id="c1", name="Read", args={"file_path": "big.txt"})
    second = ToolCallRequest(id="c2", name="Edit", args={"file_path": "big.txt"})
    messages = [
        SystemMessage(content="system"),
        HumanMessage(content="please refactor big.txt"),
        AssistantMessage(content="x" * 3000, tool_calls=[first]),
        ToolResultMessage(tool_call_id="c1", name="Read", content="y" * 3000),
        AssistantMessage(content="", tool_calls=[second]),
        ToolResultMessage(tool_call_id="c2", name="Edit", content="edited"),
        AssistantMessage(content="finished"),
    ]

    trimmed = budget.trim(messages)

    assert [m.content for m in trimmed] == [
        "system", "please refactor big.txt", "", "edited", "finished",
    ]
    assert isinstance(trimmed[1], HumanMessage)


def test_trim_truncates_old_tool_results_first():
    budget = BudgetManager(10000, keep_recent=1)
    call = ToolCallRequest(id="c1", name="Bash", args={"command": "cat log"})
    messages = [
        HumanMessage(content="show the log"),
        AssistantMessage(content="", tool_calls=[call]),
        ToolResultMessage(tool_call_id="c1", name="Bash", content="z" * 40000),
        AssistantMessage(content="done"),
    ]

    trimmed = budget.trim(messages)

    assert len(trimmed) == 4
    assert "characters elided" in trimmed[2].content


def test_trim_noop_under_budget():
    budget = BudgetManager(100000)
    messages = [HumanMessage(content="hi"), AssistantMessage(content="hello")]

    assert budget.trim(messages) == messages


def test_can_compact_counts_non_system():
    assert not can_compact([SystemMessage(content="s"), HumanMessage(content="a"), AssistantMessage(content="b")])
    assert can_compact([HumanMessage(content="a"), AssistantMessage(content="b"), HumanMessage(content="c")])


def test_summary_prompt_sections():
    prompt = build_summary_prompt([HumanMessage(content="fix the parser")])

    for section in ("## Technical Context", "## Code Changes", "## Pending Tasks", "## Key Decisions"):
        assert section in prompt
    assert "User: fix the parser" in prompt


def test_compaction_updates_replace_history():
    system = SystemMessage(content="sys")
    history = [system, HumanMessage(content="a"), AssistantMessage(content="b"), HumanMessage(content="c")]

    compacted = merge_messages(history, compaction_updates(history, "the summary"))

    assert compacted[0] is system
    assert [type(m) for m in compacted[1:]] == [HumanMessage, AssistantMessage]
    assert compacted[1].content == COMPACT_NOTICE
    assert compacted[2].content == "the summary"
    assert not {m.id for m in history[1:]} & {m.id for m in compacted}


@pytest.mark.asyncio
async def test_summarize_history():
    model = ScriptedChatModel([text_response("  summary text  ")])

    summary = await summarize_history(model, [HumanMessage(content="a")])

    assert summary == "summary text"
    assert model.calls[0]["stream"] is False


@pytest.mark.asyncio
async def test_summarize_history_failures():
    model = ScriptedChatModel([ModelInvocationError("boom"), text_response("   ")])

    with pytest.raises(CompactionFailure):
        await summarize_history(model, [HumanMessage(content="a")])
    with pytest.raises(CompactionFailure):
        await summarize_history(model, [HumanMessage(content="a")])
