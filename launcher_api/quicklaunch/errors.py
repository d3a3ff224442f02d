from __future__ import annotations

from pathlib import Path
from typing import Optional


class LauncherError(Exception):
    """Base class for launcher failures."""


class KeywordStoreError(LauncherError):
    """The keyword store could not be read or written."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class LaunchError(LauncherError):
    """The OS refused to open a path or URL."""

    def __init__(self, target: str, reason: str = ""):
        super().__init__(f"Error launching: {target}" + (f" ({reason})" if reason else ""))
        self.target = target


class InvalidCommandError(LauncherError):
    """User input that is empty or sanitizes down to nothing."""
