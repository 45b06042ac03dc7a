"""Tests for file reading, writing and editing."""

import pytest

from pitwall.cancellation import CancellationToken
from pitwall.messages import ToolCallRequest
from pitwall.tools.files import ReadWrite, file_tools, number_lines
from pitwall.tools.registry import ToolContext, ToolRegistry


@pytest.fixture
def registry(test_project):
    registry = ToolRegistry()
    for tool in file_tools(test_project):
        registry.register(tool)
    return registry


@pytest.fixture
def ctx(test_project):
    return ToolContext(project_root=test_project, cancel=CancellationToken())


def test_read_file(test_project):
    """Test reading a file."""
    rw = ReadWrite(test_project)

    success, content, error = rw.read("src/main.py")

    assert success
    assert "def hello()" in content
    assert error is None


def test_read_nonexistent_file(test_project):
    """Test reading a nonexistent file."""
    rw = ReadWrite(test_project)

    success, content, error = rw.read("nonexistent.py")

    assert not success
    assert content is None
    assert "not found" in error.lower()


def test_write_file(test_project):
    """Test writing a file."""
    rw = ReadWrite(test_project)

    success, error = rw.write("new_file.py", "print('hello')\n")

    assert success
    assert error is None
    assert (test_project / "new_file.py").exists()

    # Verify content
    success, content, _ = rw.read("new_file.py")
    assert "print('hello')" in content


def test_write_creates_directories(test_project):
    """Test that write creates parent directories."""
    rw = ReadWrite(test_project)

    success, error = rw.write("deep/nested/file.txt", "content")

    assert success
    assert (test_project / "deep" / "nested" / "file.txt").exists()


def test_path_outside_project_rejected(test_project):
    rw = ReadWrite(test_project)

    success, error = rw.write("../escape.txt", "nope")
    assert not success
    assert "outside project root" in error

    success, _, error = rw.read("/etc/hostname")
    assert not success
    assert "outside project root" in error


def test_write_size_limit(test_project):
    rw = ReadWrite(test_project, max_write_mb=1)

    success, error = rw.write("big.txt", "x" * (1024 * 1024 + 1))

    assert not success
    assert "too large" in error.lower()


def test_edit_unique_match(test_project):
    rw = ReadWrite(test_project)

    success, diff, error = rw.edit("src/main.py", "'world'", "'there'")

    assert success
    assert error is None
    assert "-    return 'world'" in diff
    assert "+    return 'there'" in diff
    assert "'there'" in (test_project / "src" / "main.py").read_text()


def test_edit_ambiguous_match(test_project):
    (test_project / "dup.txt").write_text("a\na\n")
    rw = ReadWrite(test_project)

    success, _, error = rw.edit("dup.txt", "a", "b")
    assert not success
    assert "2 times" in error

    success, _, _ = rw.edit("dup.txt", "a", "b", replace_all=True)
    assert success
    assert (test_project / "dup.txt").read_text() == "b\nb\n"


def test_edit_missing_text(test_project):
    rw = ReadWrite(test_project)

    success, _, error = rw.edit("src/main.py", "not there", "x")

    assert not success
    assert "not found" in error


def test_number_lines():
    content = "one\ntwo\nthree\n"

    assert number_lines(content) == "     1\tone\n     2\ttwo\n     3\tthree"
    assert number_lines(content, offset=2, limit=1) == "     2\ttwo\n... (1 more lines)"
    assert "no lines at offset 9" in number_lines(content, offset=9)


@pytest.mark.asyncio
async def test_write_tool_reports_created_and_updated(registry, ctx, test_project):
    content, is_error = await registry.execute(
        ToolCallRequest(id="w1", name="Write", args={"file_path": "notes.txt", "content": "a\nb\n"}), ctx
    )
    assert not is_error
    assert content == "Created notes.txt (2 lines)"

    content, _ = await registry.execute(
        ToolCallRequest(id="w2", name="Write", args={"file_path": "notes.txt", "content": "c\n"}), ctx
    )
    assert content == "Updated notes.txt (1 lines)"


@pytest.mark.asyncio
async def test_read_tool_error_is_result(registry, ctx):
    content, is_error = await registry.execute(
        ToolCallRequest(id="r1", name="Read", args={"file_path": "missing.py"}), ctx
    )

    assert is_error
    assert content == "Error: File not found: missing.py"


@pytest.mark.asyncio
async def test_edit_tool_returns_diff(registry, ctx):
    content, is_error = await registry.execute(
        ToolCallRequest(
            id="e1",
            name="Edit",
            args={"file_path": "src/utils.py", "old_string": "a + b", "new_string": "b + a"},
        ),
        ctx,
    )

    assert not is_error
    assert content.startswith("Edited src/utils.py\n")
    assert "+    return b + a" in content
