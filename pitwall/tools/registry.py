"""Tool definitions, validation and execution."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from pitwall.cancellation import CancellationToken
from pitwall.constants import PLAN_MODE_TOOLS
from pitwall.errors import MalformedToolCall, RunCancelled, ToolExecutionFailure
from pitwall.llm import RawToolCall
from pitwall.messages import ToolCallRequest
from pitwall.permissions import PermissionMode


def _ignore_progress(message: str) -> None:
    return None


@dataclass
class ToolContext:
    """What a tool handler gets besides its arguments."""

    project_root: Path
    cancel: CancellationToken
    progress: Callable[[str], None] = _ignore_progress


@dataclass
class Tool:
    """A tool the model can call.

    Attributes:
        name: Tool name shown to the model
        description: Description shown to the model
        args_model: Pydantic model validating the arguments
        handler: Coroutine producing the result text
        read_only: Tool never changes files or runs commands
        needs_permission: Calls go through the confirmation gate
        category: Grouping used for display
    """

    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any, ToolContext], Awaitable[str]]
    read_only: bool = False
    needs_permission: bool = True
    category: str = "general"

    def schema(self) -> dict:
        """Tool definition in function-calling format."""
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class ToolRegistry:
    """Registered tools, looked up by name."""

    tools: dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name exists
        """
        if tool.name in self.tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self.tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def names(self) -> list[str]:
        return list(self.tools)

    def names_for_mode(self, mode: PermissionMode) -> list[str]:
        """Tools offered to the model under a permission mode."""
        if mode == PermissionMode.PLAN:
            return [name for name in self.tools if name in PLAN_MODE_TOOLS]
        return self.names()

    def sensitive_tools(self) -> set[str]:
        return {name for name, tool in self.tools.items() if tool.needs_permission}

    def is_read_only(self, name: str) -> bool:
        tool = self.tools.get(name)
        return tool is not None and tool.read_only

    def schemas(self, names: Optional[list[str]] = None) -> list[dict]:
        """Tool definitions for the given names (all tools by default)."""
        selected = names if names is not None else self.names()
        return [self.tools[name].schema() for name in selected if name in self.tools]

    def validate(self, raw: RawToolCall, allowed: Optional[list[str]] = None) -> ToolCallRequest:
        """Turn a raw model tool call into a validated request.

        Args:
            raw: Tool call as produced by the model
            allowed: Tool names offered for this turn (all tools if None)

        Returns:
            ToolCallRequest

        Raises:
            MalformedToolCall: If the tool is unknown or the arguments are invalid
        """
        if raw.parse_error:
            raise MalformedToolCall(
                f"Could not parse arguments for {raw.name}: {raw.parse_error}",
                tool_name=raw.name,
                tool_call_id=raw.id,
            )

        tool = self.tools.get(raw.name)
        if tool is None or (allowed is not None and raw.name not in allowed):
            raise MalformedToolCall(
                f"Unknown or unavailable tool: {raw.name}",
                tool_name=raw.name,
                tool_call_id=raw.id,
            )

        try:
            tool.args_model.model_validate(raw.arguments)
        except ValidationError as e:
            raise MalformedToolCall(
                f"Invalid arguments for {raw.name}: {e}",
                tool_name=raw.name,
                tool_call_id=raw.id,
            ) from e

        return ToolCallRequest(id=raw.id, name=raw.name, args=dict(raw.arguments))

    async def execute(self, call: ToolCallRequest, ctx: ToolContext) -> tuple[str, bool]:
        """Run a validated tool call.

        Failures are returned as result text, never raised. Cancellation is
        the only exception that leaves this method.

        Args:
            call: Validated tool call
            ctx: Tool context

        Returns:
            Tuple of (result text, is_error)

        Raises:
            RunCancelled: If the tool observed cancellation
        """
        tool = self.tools.get(call.name)
        if tool is None:
            return f"Error executing {call.name}: unknown tool", True

        try:
            ctx.cancel.raise_if_cancelled()
            args = tool.args_model.model_validate(call.args)
            return await tool.handler(args, ctx), False
        except RunCancelled:
            raise
        except ToolExecutionFailure as e:
            return f"Error: {e}", True
        except Exception as e:
            return f"Error executing {call.name}: {e}", True
