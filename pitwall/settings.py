"""Runtime settings snapshots shared by the CLI and the executor."""

import threading
from dataclasses import dataclass, replace
from typing import Optional

from pitwall.constants import SUPPORTED_MODELS
from pitwall.permissions import PermissionMode


@dataclass(frozen=True)
class RuntimeSettings:
    """Immutable view of the settings a node runs with."""

    model: str
    permission_mode: PermissionMode
    context_window: int


class SettingsHolder:
    """Holds the active RuntimeSettings snapshot.

    Writers replace the whole snapshot; readers take ``current`` once at node
    start and use that value for the rest of the node.
    """

    def __init__(self, settings: RuntimeSettings, context_window_override: Optional[int] = None):
        self._settings = settings
        self._override = context_window_override
        self._lock = threading.Lock()

    @property
    def current(self) -> RuntimeSettings:
        return self._settings

    def set_model(self, model: str) -> RuntimeSettings:
        """Switch the active model.

        Args:
            model: Model string (e.g., "anthropic:claude-haiku-4-5")

        Returns:
            The new snapshot

        Raises:
            ValueError: If the model is not supported
        """
        if model not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported model: {model}. "
                f"Supported: {', '.join(SUPPORTED_MODELS.keys())}"
            )
        window = self._override or SUPPORTED_MODELS[model].get(
            "context_window", self._settings.context_window
        )
        with self._lock:
            self._settings = replace(self._settings, model=model, context_window=window)
        return self._settings

    def set_permission_mode(self, mode: "str | PermissionMode") -> RuntimeSettings:
        """Switch the permission mode."""
        parsed = PermissionMode.parse(mode)
        with self._lock:
            self._settings = replace(self._settings, permission_mode=parsed)
        return self._settings

    def cycle_permission_mode(self) -> RuntimeSettings:
        """Advance to the next permission mode."""
        return self.set_permission_mode(self._settings.permission_mode.next())
