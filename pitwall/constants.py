"""Constants and default values for Pitwall."""

import re

# Default model configuration
DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"
DEFAULT_CONTEXT_WINDOW = 128000

# Execution defaults
DEFAULT_EXEC_TIMEOUT = 45  # seconds

# File size limits (in MB)
DEFAULT_MAX_READ_MB = 8
DEFAULT_MAX_WRITE_MB = 2

# Context budget
AUTO_COMPACT_THRESHOLD = 0.92
TOKEN_TRIM_THRESHOLD = 0.70
KEEP_RECENT_MESSAGES = 10
MIN_MESSAGES_TO_COMPACT = 3
TOOL_RESULT_PREVIEW_CHARS = 500
MAX_TOOL_RESULT_CHARS = 4000
MESSAGE_OVERHEAD_TOKENS = 4
TOOL_CALL_OVERHEAD_TOKENS = 10

# Tool names
SHELL_TOOL = "Bash"
READ_TOOL = "Read"
WRITE_TOOL = "Write"
EDIT_TOOL = "Edit"
GLOB_TOOL = "Glob"
GREP_TOOL = "Grep"
LS_TOOL = "LS"

# Tools offered to the model in plan mode
PLAN_MODE_TOOLS = [READ_TOOL, GLOB_TOOL, GREP_TOOL, LS_TOOL]

# Fixed guidance fed back to the model when the user rejects a tool call
REJECT_MESSAGE = (
    "The user rejected this tool use. The tool was NOT executed. "
    "STOP what you are doing and wait for the user to tell you how to proceed. "
    "Ask the user what they would like to do instead."
)
SKIPPED_MESSAGE = (
    "This tool call was NOT executed because another tool call in the same "
    "batch was rejected by the user."
)
INTERRUPTED_MESSAGE = "Tool execution was interrupted by the user."

COMPACT_NOTICE = (
    "Context automatically compressed due to token limit. "
    "Essential information preserved."
)
CONTINUATION_REMINDER = (
    "The conversation history above was compressed into a summary. "
    "Continue helping the user from where it left off."
)

# Shell commands that never need confirmation (matched exactly, case-insensitive)
SAFE_COMMANDS = {
    "git status",
    "git diff",
    "git log",
    "git branch",
    "git show",
    "git remote",
    "git tag",
    "git stash list",
    "git branch -a",
    "git branch -r",
    "git branch -v",
    "git branch --list",
    "git branch --show-current",
    "pwd",
    "whoami",
    "date",
    "which",
    "where",
    "echo",
    "env",
    "printenv",
    "ls",
    "dir",
    "tree",
    "node --version",
    "npm --version",
    "bun --version",
    "pnpm --version",
    "yarn --version",
    "python --version",
}

# Read-only commands whose arguments do not change their safety
SAFE_COMMAND_PREFIXES = [
    "git status ",
    "git diff ",
    "git log ",
    "git show ",
]

# Options that make otherwise read-only commands write files
UNSAFE_OPTIONS = ("--output",)

# Commands that take a subcommand; approvals for them may cover a prefix
PREFIX_TOOLS = {
    "npm",
    "yarn",
    "pnpm",
    "bun",
    "npx",
    "git",
    "docker",
    "kubectl",
    "make",
    "cargo",
    "go",
    "pip",
    "python",
    "node",
    "pytest",
}

# Built-in ignore patterns
BUILTIN_IGNORES = [
    # Version control and project metadata
    ".git/",

    # Pitwall internal
    ".pitwall/",

    # Python
    "__pycache__/",
    "*.pyc",
    "*.pyo",
    "*.egg-info/",
    ".pytest_cache/",
    ".mypy_cache/",
    ".ruff_cache/",
    ".tox/",

    # Virtual environments
    "venv/",
    ".venv/",

    # Build artifacts
    "dist/",
    "build/",

    # JavaScript/Node
    "node_modules/",

    # IDE and editor files
    ".DS_Store",
    "*.swp",
    ".vscode/",
    ".idea/",
]

# Dangerous command patterns (blocked before execution)
DANGEROUS_PATTERNS = [
    (re.compile(r'\bsudo\b'), "Use of sudo detected"),
    (re.compile(r'\brm\s+-rf\s+/(\s|$)'), "Recursive delete of root directory"),
    (re.compile(r':\(\)\s*\{.*\|.*&.*\}'), "Fork bomb pattern detected"),
    (re.compile(r'curl.*\|\s*(ba)?sh'), "Piping curl to shell"),
    (re.compile(r'wget.*\|\s*(ba)?sh'), "Piping wget to shell"),
    (re.compile(r'>\s*/dev/sd[a-z]'), "Writing to block device"),
    (re.compile(r'\bdd\s+.*of=/dev/'), "dd to block device"),
    (re.compile(r'\bmkfs(\.\w+)?\b'), "Filesystem format detected"),
]

# Model descriptors - Anthropic Claude models only
SUPPORTED_MODELS = {
    # Claude Sonnet 4.5 - flagship model for coding and agents
    "anthropic:claude-sonnet-4-5": {
        "provider": "anthropic",
        "name": "claude-sonnet-4-5-20250929",
        "max_output_tokens": 8192,
        "context_window": 200000,
    },
    # Claude Haiku 4.5 - fast and cost-effective
    "anthropic:claude-haiku-4-5": {
        "provider": "anthropic",
        "name": "claude-haiku-4-5-20251001",
        "max_output_tokens": 8192,
        "context_window": 200000,
    },
    # Claude Opus 4.1 - most capable for complex reasoning
    "anthropic:claude-opus-4-1": {
        "provider": "anthropic",
        "name": "claude-opus-4-1-20250805",
        "max_output_tokens": 8192,
        "context_window": 200000,
    },
}
