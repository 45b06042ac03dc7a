"""Tests for ignore rules and the search tools."""

import pytest

from pitwall.cancellation import CancellationToken
from pitwall.errors import ToolExecutionFailure
from pitwall.tools.registry import ToolContext
from pitwall.tools.search import ProjectSearch
from pitwall.utils.ignore import IgnoreRules


@pytest.fixture
def ctx(test_project):
    return ToolContext(project_root=test_project, cancel=CancellationToken())


def test_builtin_ignores(test_project):
    """Test that built-in patterns are ignored."""
    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project / ".git" / "config")
    assert rules.should_ignore(test_project / "node_modules" / "package")
    assert rules.should_ignore(test_project / "__pycache__" / "module.pyc")
    assert rules.should_ignore(test_project / ".pitwall" / "config.json")


def test_gitignore_respected(test_project):
    """Test that .gitignore is respected."""
    # Create .gitignore
    (test_project / ".gitignore").write_text("*.log\nbuild/\n")

    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project / "debug.log")
    assert rules.should_ignore(test_project / "build" / "output")
    assert not rules.should_ignore(test_project / "src" / "main.py")


def test_pitwallignore_respected(test_project):
    """Test that .pitwallignore is respected."""
    (test_project / ".pitwallignore").write_text("*.tmp\ndata/\n")

    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project / "temp.tmp")
    assert rules.should_ignore(test_project / "data" / "file.txt")
    assert not rules.should_ignore(test_project / "src" / "main.py")


def test_normal_files_not_ignored(ignore_rules, test_project):
    """Test that normal files are not ignored."""
    assert not ignore_rules.should_ignore(test_project / "src" / "main.py")
    assert not ignore_rules.should_ignore(test_project / "README.md")
    assert not ignore_rules.should_ignore(test_project / "tests" / "test_main.py")


def test_walk_prunes_ignored_directories(test_project):
    (test_project / "node_modules" / "pkg").mkdir(parents=True)
    (test_project / "node_modules" / "pkg" / "index.js").write_text("x")

    files = list(IgnoreRules(test_project).walk())
    names = [p.relative_to(test_project).as_posix() for p in files]

    assert "src/main.py" in names
    assert "README.md" in names
    assert not any(n.startswith("node_modules") for n in names)


def test_glob_skips_ignored(test_project):
    (test_project / "__pycache__").mkdir()
    (test_project / "__pycache__" / "main.py").write_text("x")
    search = ProjectSearch(test_project)

    matches = search.glob("**/*.py")

    assert set(matches) == {"src/main.py", "src/utils.py", "tests/test_main.py"}


def test_list_dir_marks_directories(test_project):
    search = ProjectSearch(test_project)

    entries = search.list_dir()

    assert entries == ["src/", "tests/", "README.md"]


def test_resolve_dir_outside_project(test_project):
    search = ProjectSearch(test_project)

    with pytest.raises(ToolExecutionFailure):
        search.list_dir("..")


@pytest.mark.asyncio
async def test_grep_finds_matches(test_project, ctx):
    search = ProjectSearch(test_project)

    matches, scanned = await search.grep("def \\w+", ctx, include="*.py")

    assert scanned == 3
    assert "src/main.py:1: def hello():" in matches
    assert "src/utils.py:1: def add(a, b):" in matches


@pytest.mark.asyncio
async def test_grep_case_insensitive(test_project, ctx):
    search = ProjectSearch(test_project)

    matches, _ = await search.grep("TEST PROJECT", ctx, case_insensitive=True)

    assert matches == ["README.md:1: # Test Project"]


@pytest.mark.asyncio
async def test_grep_invalid_pattern(test_project, ctx):
    search = ProjectSearch(test_project)

    with pytest.raises(ToolExecutionFailure):
        await search.grep("(", ctx)
