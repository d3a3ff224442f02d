from __future__ import annotations

import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .errors import KeywordStoreError
from .logging_utils import setup_launcher_logger
from .models import KeywordRecord

logger = setup_launcher_logger("keyword_cache")

# Any scheme of two or more characters; a single letter is a drive, not a scheme
URL_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]+://", re.IGNORECASE)
WEB_PREFIXES = ("http://", "https://")

# The store format has no escaping for these
ALIAS_FORBIDDEN = (" ", ",", "=")


def is_url(target: str) -> bool:
    return bool(URL_SCHEME.match((target or "").strip()))


def is_web_url(target: str) -> bool:
    return (target or "").strip().lower().startswith(WEB_PREFIXES)


def parse_keywords(text: str) -> Dict[str, str]:
    """
    Parse the flat keyword store into an alias -> target mapping.

    Line format:
        alias1,alias2,...=target

    - blank lines and lines without ``=`` are skipped
    - aliases are trimmed and case-folded
    - a later line wins for an alias that appears twice
    """
    mapping: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or "=" not in line:
            continue
        aliases, target = line.split("=", 1)
        target = target.strip()
        for alias in aliases.split(","):
            alias = alias.strip().lower()
            if alias:
                mapping[alias] = target
    return mapping


def group_by_target(mapping: Dict[str, str]) -> List[KeywordRecord]:
    """Inverse index of the mapping: one record per target, aliases sorted."""
    grouped: Dict[str, set] = {}
    for alias, target in mapping.items():
        grouped.setdefault(target, set()).add(alias)
    return [
        KeywordRecord(aliases=sorted(aliases), target=target)
        for target, aliases in sorted(grouped.items())
    ]


def format_keywords(records: List[KeywordRecord]) -> str:
    return "".join(f"{','.join(r.aliases)}={r.target}\n" for r in records)


class KeywordCache:
    """Process-wide keyword -> target cache backed by a flat text store.

    Every public operation takes the internal lock, so a merge or removal
    followed by its persist is observed by other threads as one step. The
    store itself is replaced atomically (temporary file + ``os.replace``).
    """

    def __init__(self, store_path: Path | str):
        self.store_path = Path(store_path)
        self._entries: Dict[str, str] = {}
        self._lock = threading.RLock()

    def load(self, source: Optional[Path] = None) -> Optional[str]:
        """Replace the in-memory mapping with the store's content.

        Returns a warning message when the store is missing, unreadable or
        empty; the cache is then left empty (or as parsed) and usable.
        """
        path = Path(source) if source else self.store_path
        if not path.exists():
            warning = f"Keyword store not found at: {path.resolve()}"
            logger.warning(warning)
            with self._lock:
                self._entries = {}
            return warning

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            warning = f"Error reading keyword store: {e}"
            logger.warning(warning)
            with self._lock:
                self._entries = {}
            return warning

        mapping = parse_keywords(text)
        with self._lock:
            self._entries = mapping
        if not mapping:
            warning = f"Warning: {path.name} is empty or could not be loaded."
            logger.warning(warning)
            return warning
        logger.info(f"Loaded {len(mapping)} keywords from {path.name}")
        return None

    def lookup(self, keyword: str) -> Optional[str]:
        with self._lock:
            return self._entries.get((keyword or "").strip().lower())

    def merge(self, alias: str, target: str) -> bool:
        """Insert or overwrite ``alias -> target``.

        Rejected (returns False, nothing changes) when either side is empty,
        the alias contains a space, ``,`` or ``=``, or the target spans more
        than one line. An alias with a space carries a free-form argument and
        is not a standalone keyword; the others would not survive a reload.
        Returns True only if the mapping actually changed.
        """
        if not alias or not alias.strip() or not target or not target.strip():
            return False
        alias = alias.strip().lower()
        target = target.strip()
        if any(c in alias for c in ALIAS_FORBIDDEN) or "\n" in target or "\r" in target:
            logger.debug(f"Keyword not storable: {alias!r} -> {target!r}")
            return False
        if not is_url(target):
            target = os.path.abspath(target)
        with self._lock:
            if self._entries.get(alias) == target:
                return False
            self._entries[alias] = target
            return True

    def remove(self, alias: str) -> bool:
        with self._lock:
            return self._entries.pop((alias or "").strip().lower(), None) is not None

    def records(self) -> List[KeywordRecord]:
        with self._lock:
            return group_by_target(self._entries)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def persist(self, destination: Optional[Path] = None) -> None:
        """Rewrite the whole store grouped by target.

        Raises KeywordStoreError when the write fails; the in-memory mapping
        stays authoritative and the next successful persist reconciles it.
        """
        path = Path(destination) if destination else self.store_path
        with self._lock:
            content = format_keywords(group_by_target(self._entries))
            directory = path.parent if str(path.parent) else Path(".")
            tmp_name = None
            try:
                directory.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w", encoding="utf-8", dir=directory, prefix=f".{path.name}.",
                    suffix=".tmp", delete=False,
                ) as handle:
                    tmp_name = handle.name
                    handle.write(content)
                os.replace(tmp_name, path)
            except OSError as e:
                if tmp_name and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                logger.error(f"Error saving keyword store {path}: {e}")
                raise KeywordStoreError(f"Error saving to {path.name}", path) from e

    def merge_and_persist(self, alias: str, target: str) -> bool:
        with self._lock:
            changed = self.merge(alias, target)
            if changed:
                self.persist()
            return changed

    def remove_and_persist(self, alias: str) -> bool:
        with self._lock:
            removed = self.remove(alias)
            if removed:
                self.persist()
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, alias: str) -> bool:
        return self.lookup(alias) is not None
