from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, List, Optional


def truncate_status(text: str, max_length: int = 200) -> str:
    if text is not None and len(text) > max_length:
        return text[:max_length - 3] + "..."
    return text


class StatusChannel:
    """One-way stream of status lines from the core to whoever displays them.

    Producers only ever ``publish``; the presentation side reads ``latest`` or
    ``drain()``s the backlog. Nothing here points back at the consumer.
    """

    def __init__(self, max_length: int = 200, history: int = 100):
        self.max_length = max_length
        self._messages: deque[str] = deque(maxlen=history)
        self._latest: Optional[str] = None
        self._lock = threading.Lock()

    def publish(self, text: str) -> str:
        text = truncate_status(text, self.max_length)
        with self._lock:
            self._messages.append(text)
            self._latest = text
        return text

    @property
    def latest(self) -> Optional[str]:
        with self._lock:
            return self._latest

    def drain(self) -> List[str]:
        with self._lock:
            messages = list(self._messages)
            self._messages.clear()
        return messages


class ProgressReporter:
    """Per-search file counter with rate-limited "Scanning: ..." updates.

    Shared by every crawl task of one search; the counter and the timestamp
    of the last update are only touched under the lock.
    """

    def __init__(self, channel: StatusChannel, interval_ms: int = 500,
                 clock: Callable[[], float] = time.monotonic):
        self.channel = channel
        self.interval = interval_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._last_update = float("-inf")

    def file_visited(self, path: str) -> None:
        with self._lock:
            self._count += 1
            now = self._clock()
            if now - self._last_update < self.interval:
                return
            self._last_update = now
        self.channel.publish(f"Scanning: {path}")

    @property
    def files_scanned(self) -> int:
        with self._lock:
            return self._count
