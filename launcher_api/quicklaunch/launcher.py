"""
OS-facing collaborators: opening a target and asking whether it already runs.

The command queue decides what to open; these classes know how.
"""

from __future__ import annotations

import os
import subprocess
import sys
import webbrowser

import psutil

from .errors import LaunchError
from .keyword_cache import is_web_url
from .logging_utils import setup_launcher_logger

logger = setup_launcher_logger("launcher")


class LaunchInvoker:
    """Open a path or URL the way a double-click would."""

    def open(self, target: str) -> None:
        try:
            if is_web_url(target):
                if not webbrowser.open(target):
                    raise LaunchError(target, "no browser available")
                return
            self._shell_open(target)
        except LaunchError:
            raise
        except OSError as e:
            logger.error(f"Failed to open '{target}': {e}")
            raise LaunchError(target, str(e)) from e

    @staticmethod
    def _shell_open(path: str) -> None:
        if sys.platform == "win32":
            os.startfile(path)
        elif sys.platform == "darwin":
            subprocess.Popen(["open", path])
        else:
            subprocess.Popen(["xdg-open", path])


class ProcessChecker:
    """Best-effort "is this image already running" check."""

    def is_running(self, image_name: str) -> bool:
        target = (image_name or "").lower()
        if not target:
            return False
        try:
            for proc in psutil.process_iter(['name']):
                name = (proc.info.get('name') or "").lower()
                if name == target:
                    logger.debug(f"Found running process: {name}")
                    return True
        except (psutil.Error, OSError) as e:
            logger.warning(f"Error checking process {image_name}: {e}")
        return False
