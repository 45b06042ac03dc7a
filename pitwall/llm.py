"""LLM abstraction layer for Anthropic Claude models."""

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Protocol

import anthropic
from anthropic import AsyncAnthropic

from pitwall.cancellation import CancellationToken
from pitwall.constants import DEFAULT_CONTEXT_WINDOW, SUPPORTED_MODELS
from pitwall.errors import ModelInvocationError, RunCancelled
from pitwall.messages import (
    AssistantMessage,
    HumanMessage,
    SystemMessage,
    ToolResultMessage,
    UsageMetadata,
)


@dataclass
class ModelDescriptor:
    """Descriptor for an LLM model."""

    provider: Literal["anthropic"]
    name: str
    max_output_tokens: int
    context_window: int = DEFAULT_CONTEXT_WINDOW
    temperature: float = 0.7


@dataclass
class RawToolCall:
    """A tool call exactly as the model produced it, before validation."""

    id: str
    name: str
    arguments: Any
    parse_error: Optional[str] = None


@dataclass
class ModelResponse:
    """A complete model response."""

    content: str = ""
    tool_calls: list[RawToolCall] = field(default_factory=list)
    usage: Optional[UsageMetadata] = None


class ChatModel(Protocol):
    """Model invocation capability used by the graph."""

    async def invoke(
        self,
        messages: list,
        tools: Optional[list[dict]] = None,
        stream: bool = True,
        on_delta: Optional[Callable[[str], None]] = None,
        cancel: Optional[CancellationToken] = None,
        model: Optional[str] = None,
    ) -> ModelResponse:
        ...


def parse_model_string(model_str: str) -> ModelDescriptor:
    """Parse model string into ModelDescriptor.

    Args:
        model_str: Model string (e.g., "anthropic:claude-sonnet-4-5")

    Returns:
        ModelDescriptor

    Raises:
        ValueError: If model string is invalid
    """
    if model_str not in SUPPORTED_MODELS:
        raise ValueError(
            f"Unsupported model: {model_str}. "
            f"Supported: {', '.join(SUPPORTED_MODELS.keys())}"
        )

    model_config = SUPPORTED_MODELS[model_str]
    return ModelDescriptor(
        provider=model_config["provider"],
        name=model_config["name"],
        max_output_tokens=model_config["max_output_tokens"],
        context_window=model_config.get("context_window", DEFAULT_CONTEXT_WINDOW),
    )


def list_models() -> list[str]:
    """List all supported model strings."""
    return list(SUPPORTED_MODELS.keys())


class AnthropicChatModel:
    """Anthropic Claude chat model with streaming and cancellation."""

    def __init__(self, descriptor: ModelDescriptor, api_key: str, client: Optional[AsyncAnthropic] = None):
        """Initialize LLM client.

        Args:
            descriptor: Default model descriptor
            api_key: Anthropic API key
            client: Optional preconfigured client
        """
        if descriptor.provider != "anthropic":
            raise ValueError(f"Only Anthropic models are supported. Got: {descriptor.provider}")

        self.descriptor = descriptor
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def invoke(
        self,
        messages: list,
        tools: Optional[list[dict]] = None,
        stream: bool = True,
        on_delta: Optional[Callable[[str], None]] = None,
        cancel: Optional[CancellationToken] = None,
        model: Optional[str] = None,
    ) -> ModelResponse:
        """Generate a completion.

        Args:
            messages: Conversation messages (system messages become the system prompt)
            tools: Optional tool definitions in function-calling format
            stream: Stream the response, reporting text through on_delta
            on_delta: Callback for streamed text chunks
            cancel: Token checked before the call and between streamed chunks
            model: Model string overriding the default descriptor

        Returns:
            ModelResponse

        Raises:
            ModelInvocationError: If the provider call fails
            RunCancelled: If cancellation is observed mid-stream
        """
        descriptor = parse_model_string(model) if model else self.descriptor
        kwargs = self._build_request(messages, tools, descriptor)

        if cancel is not None:
            cancel.raise_if_cancelled()

        try:
            if not stream:
                final = await self.client.messages.create(**kwargs)
                return self._to_response(final)

            async with self.client.messages.stream(**kwargs) as response_stream:
                async for event in response_stream:
                    if cancel is not None and cancel.cancelled:
                        raise RunCancelled("Model output cancelled by the user")
                    if event.type == "text" and on_delta is not None:
                        on_delta(event.text)
                final = await response_stream.get_final_message()
        except anthropic.APIError as e:
            raise ModelInvocationError(f"Anthropic request failed: {e}") from e

        return self._to_response(final)

    def _build_request(self, messages: list, tools: Optional[list[dict]], descriptor: ModelDescriptor) -> dict[str, Any]:
        """Build keyword arguments for the messages API."""
        system_parts = [m.content for m in messages if isinstance(m, SystemMessage) and m.content]

        kwargs: dict[str, Any] = {
            "model": descriptor.name,
            "messages": self._convert_messages(messages),
            "temperature": descriptor.temperature,
            "max_tokens": descriptor.max_output_tokens,
        }

        if system_parts:
            # Cache the system prompt between turns
            kwargs["system"] = [{
                "type": "text",
                "text": "\n\n".join(system_parts),
                "cache_control": {"type": "ephemeral"},
            }]

        if tools:
            kwargs["tools"] = self._convert_tools_to_anthropic(tools)

        return kwargs

    def _convert_messages(self, messages: list) -> list[dict]:
        """Convert conversation messages to Anthropic format.

        Tool results travel as ``tool_result`` blocks in user turns, and
        consecutive turns of the same role are merged.
        """
        converted: list[dict] = []

        for m in messages:
            if isinstance(m, SystemMessage):
                continue
            elif isinstance(m, HumanMessage):
                role, blocks = "user", [{"type": "text", "text": m.content or "(empty)"}]
            elif isinstance(m, AssistantMessage):
                role, blocks = "assistant", []
                if m.content:
                    blocks.append({"type": "text", "text": m.content})
                for call in m.tool_calls:
                    blocks.append({
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": call.args,
                    })
                if not blocks:
                    blocks.append({"type": "text", "text": "(no content)"})
            elif isinstance(m, ToolResultMessage):
                role, blocks = "user", [{
                    "type": "tool_result",
                    "tool_use_id": m.tool_call_id,
                    "content": m.content,
                    "is_error": m.is_error,
                }]
            else:
                raise TypeError(f"Unknown message type: {type(m).__name__}")

            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})

        return converted

    def _convert_tools_to_anthropic(self, openai_tools: list[dict]) -> list[dict]:
        """Convert function-calling tool format to Anthropic format.

        Args:
            openai_tools: List of tool definitions

        Returns:
            List of Anthropic tool definitions
        """
        anthropic_tools = []
        for tool in openai_tools:
            if tool["type"] == "function":
                func = tool["function"]
                anthropic_tools.append({
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {}),
                })
        return anthropic_tools

    def _to_response(self, message: Any) -> ModelResponse:
        """Extract content, tool calls and usage from an Anthropic message."""
        result = ModelResponse()

        for block in message.content:
            if block.type == "text":
                result.content += block.text
            elif block.type == "tool_use":
                parse_error = None
                if not isinstance(block.input, dict):
                    parse_error = f"Tool input is not an object: {block.input!r}"
                result.tool_calls.append(RawToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=block.input,
                    parse_error=parse_error,
                ))

        usage = getattr(message, "usage", None)
        if usage is not None:
            cache_read = getattr(usage, "cache_read_input_tokens", None) or 0
            cache_creation = getattr(usage, "cache_creation_input_tokens", None) or 0
            result.usage = UsageMetadata(
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                total_tokens=usage.input_tokens + usage.output_tokens + cache_read + cache_creation,
                cache_read_tokens=cache_read,
                cache_creation_tokens=cache_creation,
            )

        return result
