"""Tests for permission modes, the allow-list and the confirmation gate."""

import json

import pytest

from pitwall.constants import REJECT_MESSAGE, SKIPPED_MESSAGE
from pitwall.gate import ConfirmationGate
from pitwall.messages import AssistantMessage, ToolCallRequest
from pitwall.permissions import (
    PermissionMode,
    PermissionStore,
    get_command_prefix,
    is_safe_bash_command,
    permission_key,
)
from pitwall.state import ConfirmationDecision

SENSITIVE = {"Bash", "Write", "Edit"}


def bash(call_id: str, command: str) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name="Bash", args={"command": command})


def write(call_id: str, path: str = "a.txt") -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name="Write", args={"file_path": path, "content": "x"})


@pytest.fixture
def gate(test_project):
    return ConfirmationGate(PermissionStore(None, test_project), SENSITIVE)


def test_safe_commands():
    assert is_safe_bash_command("ls")
    assert is_safe_bash_command("  Git Status ")
    assert is_safe_bash_command("git log --oneline -5")
    assert not is_safe_bash_command("git status && rm -rf build")
    assert not is_safe_bash_command("git diff > out.patch")
    assert not is_safe_bash_command("rm file.txt")


def test_chained_commands_are_never_safe():
    assert not is_safe_bash_command("git log -1\ntouch pwned")
    assert not is_safe_bash_command("git log -1\r\ntouch pwned")
    assert not is_safe_bash_command("git log & rm -rf src")
    assert not is_safe_bash_command("git diff < /etc/passwd")
    assert not is_safe_bash_command("git log a#;rm -rf src")
    assert not is_safe_bash_command("git show $(rm -rf src)")
    assert not is_safe_bash_command("git log \"unterminated")
    assert not is_safe_bash_command("git log --output=notes.txt")
    assert is_safe_bash_command("git log --grep=\"fix; tests\"")


def test_branch_deletion_is_not_safe():
    assert is_safe_bash_command("git branch")
    assert is_safe_bash_command("git branch -a")
    assert not is_safe_bash_command("git branch -D main")
    assert not is_safe_bash_command("git branch -m main old")


def test_command_prefix():
    assert get_command_prefix("npm install lodash") == "npm"
    assert get_command_prefix("pytest -x") == "pytest"
    assert get_command_prefix("ls -la") is None
    assert get_command_prefix("   ") is None
    assert get_command_prefix("npm test | tee out.txt") is None


def test_permission_keys():
    assert permission_key("Bash", {"command": " npm test "}) == "Bash(npm test)"
    assert permission_key("Bash", {"command": "npm test"}, as_prefix=True) == "Bash(npm:*)"
    assert permission_key("Write", {"file_path": "a", "content": "b"}) == 'Write({"content":"b","file_path":"a"})'
    with pytest.raises(ValueError):
        permission_key("Bash", {"command": "ls -la"}, as_prefix=True)


def test_mode_parse_and_cycle():
    assert PermissionMode.parse("acceptEdits") == PermissionMode.ACCEPT_EDITS
    assert PermissionMode.parse("BYPASS") == PermissionMode.BYPASS
    with pytest.raises(ValueError):
        PermissionMode.parse("yolo")

    mode = PermissionMode.DEFAULT
    seen = []
    for _ in range(4):
        mode = mode.next()
        seen.append(mode)
    assert seen == [PermissionMode.ACCEPT_EDITS, PermissionMode.PLAN, PermissionMode.BYPASS, PermissionMode.DEFAULT]


def test_store_persists_records(temp_dir, test_project):
    store = PermissionStore(temp_dir / "data", test_project)

    record = store.remember("Bash", {"command": "npm install"}, as_prefix=True)
    store.remember("Bash", {"command": "npm install"}, as_prefix=True)

    assert record == "Bash(npm:*)"
    reloaded = PermissionStore(temp_dir / "data", test_project)
    assert reloaded.records() == ["Bash(npm:*)"]
    assert reloaded.is_allowed("Bash", {"command": "npm run build"})
    assert not reloaded.is_allowed("Bash", {"command": "make"})
    assert not reloaded.is_allowed("Bash", {"command": "npm test; rm -rf src"})
    assert not reloaded.is_allowed("Bash", {"command": "npm test && rm -rf src"})
    assert not reloaded.is_allowed("Bash", {"command": "npm test\nrm -rf src"})

    payload = json.loads(store.path.read_text())
    assert payload["allowed_tools"] == ["Bash(npm:*)"]


def test_store_is_project_scoped(temp_dir, test_project):
    other = temp_dir / "other"
    other.mkdir()
    PermissionStore(temp_dir / "data", test_project).remember("Write", {"file_path": "a", "content": "x"})

    assert not PermissionStore(temp_dir / "data", other).is_allowed("Write", {"file_path": "a", "content": "x"})


def test_gate_default_mode(gate):
    assert gate.requires_confirmation(write("w1"), PermissionMode.DEFAULT)
    assert gate.requires_confirmation(bash("b1", "rm x"), PermissionMode.DEFAULT)
    assert not gate.requires_confirmation(bash("b2", "ls"), PermissionMode.DEFAULT)
    read = ToolCallRequest(id="r1", name="Read", args={"file_path": "a"})
    assert not gate.requires_confirmation(read, PermissionMode.DEFAULT)


def test_gate_accept_edits_and_bypass(gate):
    assert not gate.requires_confirmation(write("w1"), PermissionMode.ACCEPT_EDITS)
    assert gate.requires_confirmation(bash("b1", "npm test"), PermissionMode.ACCEPT_EDITS)
    assert not gate.requires_confirmation(bash("b1", "npm test"), PermissionMode.BYPASS)


def test_gated_calls_carry_prefix(gate):
    message = AssistantMessage(content="", tool_calls=[bash("b1", "npm test"), bash("b2", "ls"), write("w1")])

    gated = gate.gated_calls(message, PermissionMode.DEFAULT)

    assert [c.tool_call_id for c in gated] == ["b1", "w1"]
    assert gated[0].command_prefix == "npm"
    assert gated[1].command_prefix is None


def test_approve_remembers_prefix(gate):
    message = AssistantMessage(content="", tool_calls=[bash("b1", "npm test")])
    pending = gate.suspend(message, gate.gated_calls(message, PermissionMode.DEFAULT))

    records = gate.approve(pending, ConfirmationDecision(approved=True, remember="prefix"))

    assert records == ["Bash(npm:*)"]
    assert not gate.requires_confirmation(bash("b9", "npm run lint"), PermissionMode.DEFAULT)


def test_approve_prefix_without_prefix_falls_back_to_exact(gate):
    message = AssistantMessage(content="", tool_calls=[bash("b1", "rm build.log")])
    pending = gate.suspend(message, gate.gated_calls(message, PermissionMode.DEFAULT))

    records = gate.approve(pending, ConfirmationDecision(approved=True, remember="prefix"))

    assert records == ["Bash(rm build.log)"]


def test_approve_single_tool_index(gate):
    message = AssistantMessage(content="", tool_calls=[write("w1", "a.txt"), write("w2", "b.txt")])
    pending = gate.suspend(message, gate.gated_calls(message, PermissionMode.DEFAULT))

    gate.approve(pending, ConfirmationDecision(approved=True, remember="exact", tool_index=1))

    assert gate.requires_confirmation(write("w3", "a.txt"), PermissionMode.DEFAULT)
    assert not gate.requires_confirmation(write("w4", "b.txt"), PermissionMode.DEFAULT)


def test_approve_without_remember_stores_nothing(gate):
    message = AssistantMessage(content="", tool_calls=[write("w1")])
    pending = gate.suspend(message, gate.gated_calls(message, PermissionMode.DEFAULT))

    assert gate.approve(pending, ConfirmationDecision(approved=True)) == []
    assert gate.store.records() == []


def test_reject_answers_every_call_in_order(gate):
    read = ToolCallRequest(id="r1", name="Read", args={"file_path": "a"})
    message = AssistantMessage(content="", tool_calls=[read, write("w1"), bash("b1", "ls")])
    pending = gate.suspend(message, gate.gated_calls(message, PermissionMode.DEFAULT))

    results = gate.reject(pending, message)

    assert [r.tool_call_id for r in results] == ["r1", "w1", "b1"]
    assert [r.content for r in results] == [SKIPPED_MESSAGE, REJECT_MESSAGE, SKIPPED_MESSAGE]
    assert all(r.is_error for r in results)
