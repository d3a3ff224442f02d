from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from .logging_utils import setup_launcher_logger
from .models import SearchRequest
from .status import ProgressReporter, StatusChannel

logger = setup_launcher_logger("crawler")


class CandidateSet:
    """Thread-safe set of matched absolute paths for one search."""

    def __init__(self):
        self._paths: set[str] = set()
        self._lock = threading.Lock()

    def add(self, path: str) -> None:
        with self._lock:
            self._paths.add(path)

    def to_list(self) -> List[str]:
        with self._lock:
            return sorted(self._paths)

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


class DirectoryCrawler:
    """Walk one volume root looking for launchable files that match a name.

    Per root:
      1. well-known launcher subdirectories first (Steam, Epic, XboxGames, ...)
      2. every top-level subdirectory of the root
    Excluded and recycle-bin subtrees are pruned, the request's cancellation
    token is checked before every directory and every file, and unreadable
    entries are logged and skipped.
    """

    def __init__(self,
                 launcher_dirs: Iterable[str],
                 excluded_dirs: Iterable[str],
                 executable_extensions: Iterable[str],
                 shortcut_extensions: Iterable[str] = (".lnk",),
                 package_store_marker: str = "xboxgames",
                 package_launcher_helper: str = "Content/gamelaunchhelper.exe",
                 status: Optional[StatusChannel] = None):
        self.launcher_dirs = list(launcher_dirs)
        self.excluded_dirs = set(excluded_dirs)
        self.executable_extensions = tuple(e.lower() for e in executable_extensions)
        self.shortcut_extensions = tuple(e.lower() for e in shortcut_extensions)
        self.package_store_marker = package_store_marker.lower()
        self.package_launcher_helper = Path(package_launcher_helper)
        self.status = status

    @classmethod
    def from_settings(cls, settings, status: Optional[StatusChannel] = None) -> "DirectoryCrawler":
        return cls(
            launcher_dirs=settings.launcher_dirs,
            excluded_dirs=settings.excluded_dirs,
            executable_extensions=settings.executable_extensions,
            shortcut_extensions=settings.shortcut_extensions,
            package_store_marker=settings.package_store_marker,
            package_launcher_helper=settings.package_launcher_helper,
            status=status,
        )

    def is_excluded(self, name: str) -> bool:
        return name in self.excluded_dirs or "recycle" in name.lower()

    def crawl_root(self, root: Path, request: SearchRequest, results: CandidateSet,
                   progress: Optional[ProgressReporter] = None) -> None:
        root = Path(root)
        for launcher_dir in self.launcher_dirs:
            if request.cancelled:
                return
            launcher_path = root / launcher_dir
            if launcher_path.is_dir():
                self._publish(f"Scanning launcher: {launcher_path}")
                self.crawl_tree(launcher_path, request, results, progress)

        try:
            with os.scandir(root) as it:
                subdirs = [Path(e.path) for e in it if _is_real_dir(e)]
        except OSError as e:
            logger.warning(f"Error scanning directory: {root}, error: {e}")
            self._publish(f"Error scanning drive: {root}")
            return

        for subdir in subdirs:
            if request.cancelled:
                return
            self.crawl_tree(subdir, request, results, progress)

    def crawl_tree(self, top: Path, request: SearchRequest, results: CandidateSet,
                   progress: Optional[ProgressReporter] = None) -> None:
        if self.is_excluded(top.name) or not top.is_dir():
            return

        def _on_error(err: OSError) -> None:
            logger.warning(f"Failed to access: {err.filename}, error: {err.strerror}")

        for dirpath, dirnames, filenames in os.walk(top, onerror=_on_error):
            if request.cancelled:
                return
            dirnames[:] = [d for d in dirnames if not self.is_excluded(d)]
            parent = Path(dirpath)
            for filename in filenames:
                if request.cancelled:
                    return
                path = parent / filename
                if progress is not None:
                    progress.file_visited(str(path))
                match = self.match_file(path, request)
                if match is not None:
                    logger.info(f"Found candidate: {match} for {request.original_name}")
                    results.add(match)

    def match_file(self, path: Path, request: SearchRequest) -> Optional[str]:
        """Return the path to record for ``path``, or None when it does not match."""
        original, normalized = request.terms
        file_name = path.name.lower()
        parent_name = path.parent.name.lower()

        is_discord = "discord" in original or "discord" in normalized or "discord" in parent_name
        if is_discord and not file_name.endswith(self.shortcut_extensions):
            # Discord trees are full of Update.exe / installer binaries
            return None

        if self.package_store_marker and self.package_store_marker in str(path.parent).lower():
            if original in parent_name or normalized in parent_name:
                helper = path.parent / self.package_launcher_helper
                if helper.exists():
                    return os.path.abspath(helper)
                return os.path.abspath(path)
            return None

        if not file_name.endswith(self.executable_extensions):
            return None
        if (original in file_name or normalized in file_name
                or original in parent_name or normalized in parent_name):
            return os.path.abspath(path)
        return None

    def _publish(self, text: str) -> None:
        if self.status is not None:
            self.status.publish(text)


def _is_real_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False
