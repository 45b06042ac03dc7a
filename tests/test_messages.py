"""Tests for message models and the message reducer."""

import pytest

from pitwall.messages import (
    AssistantMessage,
    HumanMessage,
    RemoveMessage,
    SystemMessage,
    ToolCallRequest,
    ToolResultMessage,
    message_list_adapter,
    message_role,
    merge_messages,
    unanswered_tool_calls,
)


def test_merge_appends_and_keeps_inputs():
    left = [HumanMessage(content="hi")]
    right = [AssistantMessage(content="hello")]

    merged = merge_messages(left, right)

    assert [m.content for m in merged] == ["hi", "hello"]
    assert len(left) == 1
    assert len(right) == 1


def test_merge_replaces_by_id():
    original = HumanMessage(id="m1", content="draft")
    merged = merge_messages([original], HumanMessage(id="m1", content="final"))

    assert len(merged) == 1
    assert merged[0].content == "final"


def test_merge_removes_by_marker():
    a = HumanMessage(content="a")
    b = AssistantMessage(content="b")

    merged = merge_messages([a, b], [RemoveMessage(id=a.id), HumanMessage(content="c")])

    assert [m.content for m in merged] == ["b", "c"]


def test_merge_unknown_remove_raises():
    with pytest.raises(ValueError):
        merge_messages([HumanMessage(content="a")], [RemoveMessage(id="missing")])


def test_merge_accepts_serialized_messages():
    merged = merge_messages([], [{"kind": "human", "id": "x", "content": "from json"}])

    assert isinstance(merged[0], HumanMessage)
    assert merged[0].id == "x"


def test_messages_are_immutable():
    message = HumanMessage(content="a")

    with pytest.raises(Exception):
        message.content = "b"


def test_message_ids_unique():
    assert HumanMessage(content="a").id != HumanMessage(content="a").id


def test_serialization_keeps_kinds():
    messages = [
        SystemMessage(content="sys"),
        HumanMessage(content="hi"),
        AssistantMessage(content="", tool_calls=[ToolCallRequest(id="c1", name="LS", args={})]),
        ToolResultMessage(tool_call_id="c1", name="LS", content="src/", is_error=False),
    ]

    restored = message_list_adapter.validate_json(message_list_adapter.dump_json(messages))

    assert restored == messages
    assert [message_role(m) for m in restored] == ["system", "user", "assistant", "tool"]


def test_message_role_rejects_unknown():
    with pytest.raises(TypeError):
        message_role(object())


def test_unanswered_tool_calls():
    assistant = AssistantMessage(
        content="",
        tool_calls=[
            ToolCallRequest(id="c1", name="Read", args={"file_path": "a"}),
            ToolCallRequest(id="c2", name="Read", args={"file_path": "b"}),
        ],
    )
    result = ToolResultMessage(tool_call_id="c1", name="Read", content="ok")

    pending = unanswered_tool_calls([HumanMessage(content="go"), assistant, result])

    assert [c.id for c in pending] == ["c2"]
