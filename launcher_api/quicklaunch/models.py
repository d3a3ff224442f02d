from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .errors import InvalidCommandError

# Characters that can never appear in a file name on the volumes we crawl
ILLEGAL_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')


class KeywordRecord(BaseModel):
    aliases: List[str]
    target: str


class Resolution(str, Enum):
    CACHED_HIT = "cached_hit"     # cached path exists (or is a URL), launch now
    STALE_ENTRY = "stale_entry"   # cached path vanished, entry dropped, search
    MISS = "miss"                 # nothing cached, search


class ResolveResult(BaseModel):
    keyword: str
    resolution: Resolution
    target: Optional[str] = None

    @property
    def needs_search(self) -> bool:
        return self.resolution != Resolution.CACHED_HIT


class CancellationToken:
    """Cooperative cancellation shared by every crawl task of one search."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class SearchRequest:
    original_name: str     # case-folded, illegal characters stripped, spaces kept
    normalized_name: str   # original_name without any whitespace
    token: CancellationToken = field(default_factory=CancellationToken, compare=False)

    @classmethod
    def from_input(cls, raw: str) -> "SearchRequest":
        name = ILLEGAL_NAME_CHARS.sub("", raw).strip().lower()
        normalized = re.sub(r"\s+", "", name)
        if not normalized:
            raise InvalidCommandError(f"Invalid name: {raw}")
        return cls(original_name=name, normalized_name=normalized)

    @property
    def terms(self) -> tuple[str, str]:
        return self.original_name, self.normalized_name

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


class SearchStatus(str, Enum):
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SearchResult:
    request: SearchRequest
    paths: List[str]
    status: SearchStatus
    files_scanned: int = 0
    duration_ms: float = 0.0


class QueueState(str, Enum):
    IDLE = "idle"
    SPLITTING = "splitting"
    IMMEDIATE_DISPATCH = "immediate_dispatch"
    QUEUED = "queued"
    SEARCHING = "searching"
    AWAITING_SELECTION = "awaiting_selection"


class CommandOutcome(BaseModel):
    command: str
    action: str  # "opened" | "launched" | "already_running" | "queued" | "not_found" | ...
    target: Optional[str] = None
    candidates: Optional[List[str]] = None
    message: Optional[str] = None


class InputRequest(BaseModel):
    text: str


class LaunchRequest(BaseModel):
    path: Optional[str] = None


class StatusResponse(BaseModel):
    state: QueueState
    current: Optional[str] = None
    candidates: List[str] = []
    pending: int = 0
    status: Optional[str] = None
    messages: List[str] = []
