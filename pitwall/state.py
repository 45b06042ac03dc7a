"""State models for LangGraph."""

from typing import Annotated, Any, Literal, Optional, TypedDict

from pydantic import BaseModel, Field

from pitwall.messages import Message, UsageMetadata, merge_messages

RUNNING = "running"
SUSPENDED = "suspended"


class GatedCall(BaseModel):
    """A tool call waiting for the user's decision."""

    tool_call_id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    command_prefix: Optional[str] = None


class PendingConfirmation(BaseModel):
    """Confirmation the thread is suspended on."""

    assistant_message_id: str
    calls: list[GatedCall]
    announced: bool = False


class ConfirmationDecision(BaseModel):
    """The user's answer to a pending confirmation.

    Attributes:
        approved: Run the gated calls (True) or reject them (False)
        remember: Persist the approval for the exact call or its command prefix
        tool_index: Gated call the ``remember`` applies to (None means all)
    """

    approved: bool
    remember: Literal["none", "exact", "prefix"] = "none"
    tool_index: Optional[int] = None


class ConversationState(TypedDict, total=False):
    """The state object passed through the LangGraph workflow.

    Attributes:
        messages: Ordered conversation history
        skip_next_check: Skip the budget check once (after a no-op compaction)
        last_usage: Usage reported with the most recent model response
        status: "running" or "suspended" (waiting for confirmation)
        pending_confirmation: Gated calls the thread is suspended on
        confirmation_decision: Decision supplied by resume, applied by confirm_tools
        compact_requested: Router flag set by the check node
        error: Turn-fatal error recorded by a node
    """

    messages: Annotated[list[Message], merge_messages]
    skip_next_check: bool
    last_usage: Optional[UsageMetadata]
    status: str
    pending_confirmation: Optional[PendingConfirmation]
    confirmation_decision: Optional[ConfirmationDecision]
    compact_requested: bool
    error: Optional[str]


class ConversationSnapshot(BaseModel):
    """Serializable copy of a ConversationState."""

    messages: list[Message] = Field(default_factory=list)
    skip_next_check: bool = False
    last_usage: Optional[UsageMetadata] = None
    status: Literal["running", "suspended"] = RUNNING
    pending_confirmation: Optional[PendingConfirmation] = None
    confirmation_decision: Optional[ConfirmationDecision] = None
    compact_requested: bool = False
    error: Optional[str] = None

    @classmethod
    def from_state(cls, state: dict) -> "ConversationSnapshot":
        """Build a snapshot from graph state values."""
        values = {k: state[k] for k in cls.model_fields if k in state and state[k] is not None}
        return cls(**values)

    def to_state(self) -> ConversationState:
        """Graph input carrying every channel of this snapshot."""
        return ConversationState(
            messages=list(self.messages),
            skip_next_check=self.skip_next_check,
            last_usage=self.last_usage,
            status=self.status,
            pending_confirmation=self.pending_confirmation,
            confirmation_decision=self.confirmation_decision,
            compact_requested=self.compact_requested,
            error=self.error,
        )

    @property
    def suspended(self) -> bool:
        return self.status == SUSPENDED
