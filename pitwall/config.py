"""Configuration loading and management."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from pitwall.constants import (
    DEFAULT_MODEL,
    DEFAULT_EXEC_TIMEOUT,
    DEFAULT_MAX_READ_MB,
    DEFAULT_MAX_WRITE_MB,
    KEEP_RECENT_MESSAGES,
    SUPPORTED_MODELS,
)
from pitwall.permissions import PermissionMode


def default_data_dir() -> Path:
    """Directory holding checkpoints, permissions and run logs."""
    return Path(os.getenv("PITWALL_HOME", Path.home() / ".pitwall"))


@dataclass
class Config:
    """Pitwall configuration.

    Loads from .env and optionally .pitwall/config.json in the project.
    """

    # API Keys
    anthropic_api_key: Optional[str] = None

    # Model settings
    default_model: str = DEFAULT_MODEL
    context_window: Optional[int] = None  # overrides the model descriptor

    # Permission mode at startup
    permission_mode: str = PermissionMode.DEFAULT.value

    # Storage
    data_dir: Optional[Path] = None

    # Execution settings
    exec_timeout: int = DEFAULT_EXEC_TIMEOUT

    # File limits
    max_read_mb: int = DEFAULT_MAX_READ_MB
    max_write_mb: int = DEFAULT_MAX_WRITE_MB

    # Context budget
    keep_recent_messages: int = KEEP_RECENT_MESSAGES

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> "Config":
        """Load configuration from environment and project-specific config.

        Args:
            project_root: Project root directory (for .pitwall/config.json)

        Returns:
            Config instance
        """
        load_dotenv()

        window = os.getenv("PITWALL_CONTEXT_WINDOW")
        config = cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            default_model=os.getenv("PITWALL_MODEL", DEFAULT_MODEL),
            context_window=int(window) if window else None,
            permission_mode=os.getenv("PITWALL_PERMISSION_MODE", PermissionMode.DEFAULT.value),
            data_dir=default_data_dir(),
            exec_timeout=int(os.getenv("PITWALL_EXEC_TIMEOUT", DEFAULT_EXEC_TIMEOUT)),
            max_read_mb=int(os.getenv("PITWALL_MAX_READ_MB", DEFAULT_MAX_READ_MB)),
            max_write_mb=int(os.getenv("PITWALL_MAX_WRITE_MB", DEFAULT_MAX_WRITE_MB)),
            keep_recent_messages=int(os.getenv("PITWALL_KEEP_RECENT", KEEP_RECENT_MESSAGES)),
        )

        # Project-specific overrides
        if project_root:
            project_config_path = project_root / ".pitwall" / "config.json"
            if project_config_path.exists():
                try:
                    with open(project_config_path) as f:
                        project_config = json.load(f)
                except (json.JSONDecodeError, IOError):
                    project_config = {}  # Ignore invalid config
                config.default_model = project_config.get("model", config.default_model)
                config.permission_mode = project_config.get(
                    "permission_mode", config.permission_mode
                )
                config.context_window = project_config.get(
                    "context_window", config.context_window
                )

        return config

    def resolve_context_window(self) -> int:
        """Context window for the configured model, honouring the override."""
        if self.context_window:
            return self.context_window
        descriptor = SUPPORTED_MODELS.get(self.default_model, {})
        return descriptor.get("context_window", 128000)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not self.anthropic_api_key:
            errors.append("No API key found. Set ANTHROPIC_API_KEY")

        if self.default_model not in SUPPORTED_MODELS:
            errors.append(f"Unsupported model: {self.default_model}")

        try:
            PermissionMode.parse(self.permission_mode)
        except ValueError as e:
            errors.append(str(e))

        if self.context_window is not None and self.context_window <= 0:
            errors.append("context_window must be positive")

        if self.exec_timeout <= 0:
            errors.append("exec_timeout must be positive")

        if self.max_read_mb <= 0:
            errors.append("max_read_mb must be positive")

        if self.max_write_mb <= 0:
            errors.append("max_write_mb must be positive")

        if self.keep_recent_messages < 0:
            errors.append("keep_recent_messages must not be negative")

        return errors

    def to_dict(self) -> dict:
        """Convert config to dictionary (for logging/display)."""
        return {
            "default_model": self.default_model,
            "context_window": self.resolve_context_window(),
            "permission_mode": self.permission_mode,
            "data_dir": str(self.data_dir) if self.data_dir else None,
            "exec_timeout": self.exec_timeout,
            "max_read_mb": self.max_read_mb,
            "max_write_mb": self.max_write_mb,
            "keep_recent_messages": self.keep_recent_messages,
            "has_anthropic_key": bool(self.anthropic_api_key),
        }
