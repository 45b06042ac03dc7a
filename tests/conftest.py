"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path
from typing import Optional

import pytest

from pitwall.checkpoint import MemoryCheckpointStore
from pitwall.config import Config
from pitwall.llm import ModelResponse, RawToolCall
from pitwall.messages import UsageMetadata
from pitwall.runtime import AgentRuntime
from pitwall.utils.ignore import IgnoreRules


class ScriptedChatModel:
    """Chat model fake that replays queued responses.

    Each queued item is a ModelResponse or an exception to raise. Every
    call is recorded so tests can inspect the prompts that were sent.
    """

    def __init__(self, responses: Optional[list] = None):
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    async def invoke(self, messages, tools=None, stream=True, on_delta=None, cancel=None, model=None):
        self.calls.append({"messages": list(messages), "tools": tools, "stream": stream})
        if cancel is not None:
            cancel.raise_if_cancelled()
        if not self.responses:
            raise AssertionError("ScriptedChatModel ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if stream and on_delta and response.content:
            for word in response.content.split(" "):
                on_delta(word + " ")
        return response


def text_response(content: str, total_tokens: int = 0) -> ModelResponse:
    usage = UsageMetadata(total_tokens=total_tokens) if total_tokens else None
    return ModelResponse(content=content, usage=usage)


def tool_response(*calls: tuple, content: str = "") -> ModelResponse:
    """Response requesting tools; each call is (id, name, args)."""
    return ModelResponse(
        content=content,
        tool_calls=[RawToolCall(id=call_id, name=name, arguments=args) for call_id, name, args in calls],
    )


async def collect(run) -> tuple[list, object]:
    """Drain a run's events and return them with its result."""
    events = [event async for event in run.events()]
    result = await run
    return events, result


def kinds(events) -> list[str]:
    return [event.kind.value for event in events]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def test_project(temp_dir):
    """Create a test project structure."""
    project = temp_dir / "project"
    project.mkdir()

    # Create some files
    (project / "src").mkdir()
    (project / "src" / "main.py").write_text("def hello():\n    return 'world'\n")
    (project / "src" / "utils.py").write_text("def add(a, b):\n    return a + b\n")

    (project / "tests").mkdir()
    (project / "tests" / "test_main.py").write_text(
        "def test_hello():\n    from src.main import hello\n    assert hello() == 'world'\n"
    )

    (project / "README.md").write_text("# Test Project\n")

    yield project


@pytest.fixture
def mock_config(temp_dir):
    """Create a mock configuration."""
    return Config(
        anthropic_api_key="test_key",
        default_model="anthropic:claude-sonnet-4-5",
        data_dir=temp_dir / "data",
    )


@pytest.fixture
def ignore_rules(test_project):
    """Create ignore rules for the test project."""
    return IgnoreRules(test_project)


@pytest.fixture
def model():
    return ScriptedChatModel()


@pytest.fixture
def make_runtime(test_project, mock_config, model):
    """Factory for runtimes backed by the scripted model and an in-memory store."""

    def factory(mode: str = "default", context_window: Optional[int] = None) -> AgentRuntime:
        mock_config.permission_mode = mode
        mock_config.context_window = context_window
        return AgentRuntime.from_config(
            test_project, mock_config, model=model, store=MemoryCheckpointStore()
        )

    return factory
