"""Default tool set."""

from pathlib import Path

from pitwall.constants import DEFAULT_EXEC_TIMEOUT, DEFAULT_MAX_READ_MB, DEFAULT_MAX_WRITE_MB
from pitwall.tools.files import file_tools
from pitwall.tools.registry import ToolRegistry
from pitwall.tools.search import search_tools
from pitwall.tools.shell import shell_tool
from pitwall.utils.ignore import IgnoreRules


def build_default_registry(
    project_root: Path,
    exec_timeout: int = DEFAULT_EXEC_TIMEOUT,
    max_read_mb: int = DEFAULT_MAX_READ_MB,
    max_write_mb: int = DEFAULT_MAX_WRITE_MB,
) -> ToolRegistry:
    """Register Bash, Read, Write, Edit, Glob, Grep and LS for a project.

    Args:
        project_root: Project root directory
        exec_timeout: Default shell timeout in seconds
        max_read_mb: Maximum file size to read (MB)
        max_write_mb: Maximum file size to write (MB)

    Returns:
        ToolRegistry
    """
    registry = ToolRegistry()
    registry.register(shell_tool(project_root, exec_timeout))
    for tool in file_tools(project_root, max_read_mb, max_write_mb):
        registry.register(tool)
    for tool in search_tools(project_root, IgnoreRules(project_root)):
        registry.register(tool)
    return registry
