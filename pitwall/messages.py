"""Conversation message models and the message-list reducer."""

import uuid
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def new_message_id() -> str:
    """Mint a unique message id."""
    return uuid.uuid4().hex


class UsageMetadata(BaseModel):
    """Token usage reported by the model for one response."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_read_tokens: Optional[int] = None
    cache_creation_tokens: Optional[int] = None


class ToolCallRequest(BaseModel):
    """A validated request from the model to run one tool."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class _BaseMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_message_id)
    content: str = ""


class HumanMessage(_BaseMessage):
    kind: Literal["human"] = "human"


class AssistantMessage(_BaseMessage):
    kind: Literal["assistant"] = "assistant"
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    usage: Optional[UsageMetadata] = None


class ToolResultMessage(_BaseMessage):
    kind: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    name: str
    is_error: bool = False


class SystemMessage(_BaseMessage):
    kind: Literal["system"] = "system"


Message = Annotated[
    Union[HumanMessage, AssistantMessage, ToolResultMessage, SystemMessage],
    Field(discriminator="kind"),
]

message_list_adapter = TypeAdapter(list[Message])


class RemoveMessage(BaseModel):
    """Marker asking the reducer to drop the message with this id."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: Literal["remove"] = "remove"


def merge_messages(left: list, right: Any) -> list:
    """Reducer for the ``messages`` state channel.

    Messages in ``right`` are appended, or replace an existing message with
    the same id. RemoveMessage markers delete the referenced message. The
    input lists are never modified.

    Args:
        left: Current message list
        right: A message, a marker, or a list of them

    Returns:
        New message list
    """
    if not isinstance(right, list):
        right = [right]

    merged = list(left or [])
    positions = {m.id: i for i, m in enumerate(merged)}
    removed: set[str] = set()

    for item in right:
        if isinstance(item, dict):
            item = message_list_adapter.validate_python([item])[0]
        if isinstance(item, RemoveMessage):
            if item.id not in positions:
                raise ValueError(f"Cannot remove unknown message id: {item.id}")
            removed.add(item.id)
        elif item.id in positions:
            merged[positions[item.id]] = item
            removed.discard(item.id)
        else:
            positions[item.id] = len(merged)
            merged.append(item)

    return [m for m in merged if m.id not in removed]


def message_role(message: Any) -> str:
    """Exhaustive dispatch over message kinds, used for transcripts."""
    if isinstance(message, HumanMessage):
        return "user"
    elif isinstance(message, AssistantMessage):
        return "assistant"
    elif isinstance(message, ToolResultMessage):
        return "tool"
    elif isinstance(message, SystemMessage):
        return "system"
    raise TypeError(f"Unknown message type: {type(message).__name__}")


def unanswered_tool_calls(messages: list) -> list[ToolCallRequest]:
    """Find tool calls that have no ToolResultMessage.

    Args:
        messages: Conversation history

    Returns:
        Requests without a result, in the order they were made
    """
    answered = {m.tool_call_id for m in messages if isinstance(m, ToolResultMessage)}
    pending = []
    for message in messages:
        if isinstance(message, AssistantMessage):
            pending.extend(c for c in message.tool_calls if c.id not in answered)
    return pending


def last_assistant_index(messages: list) -> int:
    """Index of the last assistant message, or -1."""
    for i in range(len(messages) - 1, -1, -1):
        if isinstance(messages[i], AssistantMessage):
            return i
    return -1
