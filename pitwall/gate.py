"""Confirmation gate for sensitive tool calls."""

from typing import Optional

from pitwall.constants import REJECT_MESSAGE, SHELL_TOOL, SKIPPED_MESSAGE
from pitwall.messages import AssistantMessage, ToolCallRequest, ToolResultMessage
from pitwall.permissions import PermissionMode, PermissionStore, get_command_prefix
from pitwall.state import ConfirmationDecision, GatedCall, PendingConfirmation


class ConfirmationGate:
    """Decides which tool calls need the user's approval and applies decisions."""

    def __init__(self, store: PermissionStore, sensitive_tools: set[str]):
        """Initialize confirmation gate.

        Args:
            store: Project permission store
            sensitive_tools: Names of tools that need permission
        """
        self.store = store
        self.sensitive_tools = sensitive_tools

    def requires_confirmation(self, call: ToolCallRequest, mode: PermissionMode) -> bool:
        """Check whether a single call must be confirmed.

        Args:
            call: Validated tool call
            mode: Active permission mode

        Returns:
            True if the user has to approve the call
        """
        if mode == PermissionMode.BYPASS:
            return False
        if mode == PermissionMode.ACCEPT_EDITS and call.name != SHELL_TOOL:
            return False
        if call.name not in self.sensitive_tools:
            return False
        return not self.store.is_allowed(call.name, call.args)

    def gated_calls(self, message: AssistantMessage, mode: PermissionMode) -> list[GatedCall]:
        """Collect the calls of a response that need confirmation."""
        gated = []
        for call in message.tool_calls:
            if not self.requires_confirmation(call, mode):
                continue
            prefix = None
            if call.name == SHELL_TOOL:
                prefix = get_command_prefix(str(call.args.get("command", "")))
            gated.append(GatedCall(
                tool_call_id=call.id,
                name=call.name,
                args=dict(call.args),
                command_prefix=prefix,
            ))
        return gated

    def suspend(self, message: AssistantMessage, calls: list[GatedCall]) -> PendingConfirmation:
        """Build the pending confirmation a thread suspends on."""
        return PendingConfirmation(
            assistant_message_id=message.id,
            calls=calls,
            announced=True,
        )

    def approve(self, pending: PendingConfirmation, decision: ConfirmationDecision) -> list[str]:
        """Persist the approval if the decision asks for it.

        Args:
            pending: Confirmation being resolved
            decision: Approving decision

        Returns:
            Records written to the permission store
        """
        if decision.remember == "none":
            return []

        calls = pending.calls
        if decision.tool_index is not None:
            if not 0 <= decision.tool_index < len(calls):
                raise ValueError(f"tool_index out of range: {decision.tool_index}")
            calls = [calls[decision.tool_index]]

        records = []
        for call in calls:
            as_prefix = decision.remember == "prefix" and call.command_prefix is not None
            records.append(self.store.remember(call.name, call.args, as_prefix=as_prefix))
        return records

    def reject(
        self,
        pending: PendingConfirmation,
        message: Optional[AssistantMessage],
    ) -> list[ToolResultMessage]:
        """Build the results for a rejected confirmation.

        Every gated call gets the rejection guidance. Calls of the same
        response that did not need confirmation are reported as not executed,
        so no request is left without a result.

        Args:
            pending: Confirmation being rejected
            message: Assistant message holding the calls

        Returns:
            One ToolResultMessage per tool call of the response
        """
        gated = {c.tool_call_id: c for c in pending.calls}
        if message is None:
            calls = [(c.tool_call_id, c.name) for c in pending.calls]
        else:
            calls = [(c.id, c.name) for c in message.tool_calls]

        return [
            ToolResultMessage(
                tool_call_id=call_id,
                name=name,
                content=REJECT_MESSAGE if call_id in gated else SKIPPED_MESSAGE,
                is_error=True,
            )
            for call_id, name in calls
        ]
