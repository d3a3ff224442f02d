from __future__ import annotations

import os
import re
import threading
from collections import deque
from typing import Callable, List, Optional, Tuple

from .coordinator import SearchCoordinator
from .errors import InvalidCommandError, KeywordStoreError, LaunchError
from .keyword_cache import KeywordCache, is_url
from .launcher import LaunchInvoker, ProcessChecker
from .logging_utils import setup_launcher_logger
from .models import (
    CommandOutcome,
    QueueState,
    Resolution,
    SearchRequest,
    SearchStatus,
)
from .resolver import PathResolver
from .status import StatusChannel
from .templates import TemplateExpander

logger = setup_launcher_logger("command_queue")

MULTI_COMMAND_SEPARATOR = re.compile(r"\s{2,}")


def split_commands(line: str) -> List[str]:
    """Two or more spaces separate sub-commands; a single space never does."""
    text = (line or "").strip()
    if not text:
        return []
    parts = MULTI_COMMAND_SEPARATOR.split(text) if "  " in text else [text]
    return [p.strip() for p in parts if p.strip()]


def parse_command(sub_command: str) -> Tuple[str, str]:
    """Split a sub-command into its lower-cased keyword and the free-form rest."""
    parts = sub_command.strip().split(None, 1)
    if not parts:
        return "", ""
    keyword = parts[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else ""
    return keyword, argument


class CommandQueue:
    """Drive one input line's sub-commands to completion, one search at a time.

    States:
        IDLE -> SPLITTING -> IMMEDIATE_DISPATCH -> QUEUED -> SEARCHING
             -> AWAITING_SELECTION (found) | QUEUED/IDLE (not found, cancelled)

    Sub-commands whose keyword is cached run immediately and in input order.
    The rest wait in a FIFO queue; ``drive()`` pops them one by one and stops
    whenever a search produced candidates, until ``select()`` or ``skip()``.
    ``cancel()`` stops the running search and drops everything still queued.
    """

    def __init__(self,
                 cache: KeywordCache,
                 coordinator: SearchCoordinator,
                 status: StatusChannel,
                 expander: Optional[TemplateExpander] = None,
                 invoker: Optional[LaunchInvoker] = None,
                 process_checker: Optional[ProcessChecker] = None,
                 resolver: Optional[PathResolver] = None):
        self.cache = cache
        self.coordinator = coordinator
        self.status = status
        self.expander = expander or TemplateExpander()
        self.invoker = invoker or LaunchInvoker()
        self.process_checker = process_checker or ProcessChecker()
        self.resolver = resolver or PathResolver(cache, status)

        self._pending: deque[str] = deque()
        self._state = QueueState.IDLE
        self._active: Optional[SearchRequest] = None
        self._current_name: Optional[str] = None
        self._candidates: List[str] = []
        self._lock = threading.RLock()
        self._drive_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> QueueState:
        with self._lock:
            return self._state

    @property
    def current_name(self) -> Optional[str]:
        with self._lock:
            return self._current_name

    @property
    def candidates(self) -> List[str]:
        with self._lock:
            return list(self._candidates)

    @property
    def pending(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------
    def submit(self, line: str) -> List[CommandOutcome]:
        """Split and classify one input line, running immediate commands now.

        Queued sub-commands replace whatever was still pending; they only
        start when ``drive()`` is called.
        """
        sub_commands = split_commands(line)
        if not sub_commands:
            self.status.publish("Enter a name or command.")
            raise InvalidCommandError("Enter a name or command.")

        with self._lock:
            if self._state == QueueState.SEARCHING:
                self.status.publish("A search is already running.")
                raise InvalidCommandError("A search is already running.")
            if self._state == QueueState.AWAITING_SELECTION:
                logger.info("New input replaces the pending selection")
                self._candidates = []

            self._state = QueueState.SPLITTING
            self._pending.clear()
            immediate = []
            outcomes = []
            for sub in sub_commands:
                keyword, _ = parse_command(sub)
                target = self.cache.lookup(keyword)
                if target is None:
                    self._pending.append(sub)
                    outcomes.append(CommandOutcome(command=sub, action="queued"))
                elif is_url(target):
                    immediate.append(sub)
                elif self.resolver.resolve(keyword).resolution == Resolution.CACHED_HIT:
                    immediate.append(sub)
                else:
                    # Stale path: searched again, in its input position
                    self.status.publish("Cleaning invalid keyword entry, searching...")
                    self._pending.append(sub)
                    outcomes.append(CommandOutcome(command=sub, action="queued",
                                                   message="stale keyword entry"))
            self._state = QueueState.IMMEDIATE_DISPATCH

        logger.debug(f"Split input into {len(sub_commands)} command(s), {len(immediate)} immediate")
        immediate_outcomes = [self._dispatch_immediate(sub) for sub in immediate]

        with self._lock:
            self._state = QueueState.QUEUED if self._pending else QueueState.IDLE
        return immediate_outcomes + outcomes

    def _dispatch_immediate(self, sub_command: str) -> CommandOutcome:
        keyword, argument = parse_command(sub_command)
        target = self.cache.lookup(keyword)

        if target is not None and is_url(target):
            url = self.expander.expand(target, argument)
            try:
                self.invoker.open(url)
            except LaunchError as e:
                logger.error(str(e))
                self.status.publish(f"Error opening target: {url}")
                return CommandOutcome(command=sub_command, action="error", target=url, message=str(e))
            message = self.status.publish(f"Opened: {url}")
            return CommandOutcome(command=sub_command, action="opened", target=url, message=message)

        resolved = self.resolver.resolve(keyword)
        if resolved.resolution == Resolution.CACHED_HIT:
            return self._launch_path(sub_command, keyword, resolved.target, remember=False, cached=True)

        # Stale or vanished entry: fall through to a fresh search
        self.status.publish("Cleaning invalid keyword entry, searching...")
        with self._lock:
            self._pending.append(sub_command)
        return CommandOutcome(command=sub_command, action="queued", message="stale keyword entry")

    # ------------------------------------------------------------------
    # Queue draining
    # ------------------------------------------------------------------
    def run_next(self) -> Optional[CommandOutcome]:
        """Process the next queued sub-command; None when there is nothing to do."""
        with self._lock:
            if self._state == QueueState.AWAITING_SELECTION:
                return None
            if not self._pending:
                self._state = QueueState.IDLE
                self._current_name = None
                self.status.publish("All inputs processed.")
                return None
            sub_command = self._pending.popleft()
            try:
                request = SearchRequest.from_input(sub_command)
            except InvalidCommandError as e:
                self.status.publish(str(e))
                return CommandOutcome(command=sub_command, action="invalid", message=str(e))
            self._active = request
            self._current_name = request.original_name

        try:
            resolved = self.resolver.resolve(request.normalized_name)
            if resolved.resolution == Resolution.CACHED_HIT:
                return self._launch_path(sub_command, request.normalized_name, resolved.target,
                                         remember=False, cached=True)

            with self._lock:
                self._state = QueueState.SEARCHING
            result = self.coordinator.search(request)
        finally:
            with self._lock:
                self._active = None

        with self._lock:
            name = request.original_name
            if result.status == SearchStatus.CANCELLED:
                self._state = QueueState.QUEUED if self._pending else QueueState.IDLE
                message = self.status.publish("Search cancelled.")
                return CommandOutcome(command=sub_command, action="cancelled", message=message)

            if result.status == SearchStatus.NOT_FOUND:
                self._state = QueueState.QUEUED if self._pending else QueueState.IDLE
                message = self.status.publish(f"No executables found for {name}")
                return CommandOutcome(command=sub_command, action="not_found", message=message)

            self._candidates = list(result.paths)
            self._state = QueueState.AWAITING_SELECTION
            if len(result.paths) == 1:
                message = self.status.publish(f"Path: {result.paths[0]}")
            else:
                message = self.status.publish(f"Multiple executables found for {name}. Select one to launch:")
            return CommandOutcome(command=sub_command, action="awaiting_selection",
                                  candidates=list(result.paths), message=message)

    def drive(self) -> List[CommandOutcome]:
        """Drain the queue on the single control path until input is needed.

        A second concurrent caller returns immediately with nothing.
        """
        if not self._drive_lock.acquire(blocking=False):
            return []
        try:
            outcomes = []
            while True:
                outcome = self.run_next()
                if outcome is None:
                    break
                outcomes.append(outcome)
                if self.state == QueueState.AWAITING_SELECTION:
                    break
            return outcomes
        finally:
            self._drive_lock.release()

    def process(self, line: str,
                chooser: Callable[[List[str]], Optional[str]]) -> List[CommandOutcome]:
        """Run a whole input line synchronously, asking ``chooser`` to pick candidates.

        ``chooser`` returns one of the candidates, or None to skip them.
        """
        outcomes = self.submit(line)
        while True:
            outcomes.extend(self.drive())
            if self.state != QueueState.AWAITING_SELECTION:
                return outcomes
            choice = chooser(self.candidates)
            if choice is None:
                self.skip()
            else:
                outcomes.append(self.select(choice))

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def select(self, path: Optional[str] = None) -> CommandOutcome:
        """Launch one of the candidates and remember it for the searched name."""
        with self._lock:
            if self._state != QueueState.AWAITING_SELECTION or not self._candidates:
                message = self.status.publish("No paths to launch.")
                return CommandOutcome(command=self._current_name or "", action="no_selection", message=message)
            if path is None:
                if len(self._candidates) != 1:
                    self.status.publish("Select a path from the list.")
                    raise InvalidCommandError("Select a path from the list.")
                path = self._candidates[0]
            elif path not in self._candidates:
                self.status.publish(f"Not a search result: {path}")
                raise InvalidCommandError(f"Not a search result: {path}")
            name = self._current_name or ""
            self._candidates = []
            self._state = QueueState.QUEUED if self._pending else QueueState.IDLE

        return self._launch_path(name, name, path, remember=True)

    def skip(self) -> None:
        with self._lock:
            if self._state != QueueState.AWAITING_SELECTION:
                return
            self._candidates = []
            self._state = QueueState.QUEUED if self._pending else QueueState.IDLE
        self.status.publish("Selection skipped.")

    def cancel(self) -> bool:
        """Cancel the running search and drop every queued sub-command.

        Returns True when a search was actually running.
        """
        with self._lock:
            self._pending.clear()
            active = self._active
            if active is not None:
                active.token.cancel()
            if self._state == QueueState.AWAITING_SELECTION:
                self._candidates = []
                self._state = QueueState.IDLE
            elif self._state != QueueState.SEARCHING:
                self._state = QueueState.IDLE
        self.status.publish("Search cancelled.")
        logger.info("Cancellation requested" + (" for running search" if active else ""))
        return active is not None

    # ------------------------------------------------------------------
    # Launching
    # ------------------------------------------------------------------
    def _launch_path(self, command: str, alias: str, path: str,
                     remember: bool, cached: bool = False) -> CommandOutcome:
        image_name = os.path.basename(path)
        if self.process_checker.is_running(image_name):
            message = self.status.publish(f"Already running: {image_name}")
            return CommandOutcome(command=command, action="already_running", target=path, message=message)

        try:
            self.invoker.open(path)
        except LaunchError as e:
            logger.error(str(e))
            message = self.status.publish(f"Error launching: {path}")
            return CommandOutcome(command=command, action="error", target=path, message=message)

        message = self.status.publish(f"Launched cached path: {path}" if cached else f"Launched: {path}")
        if remember:
            self._remember(alias, path)
        return CommandOutcome(command=command, action="launched", target=path, message=message)

    def _remember(self, alias: str, target: str) -> None:
        try:
            if self.cache.merge_and_persist(alias, target):
                logger.info(f"Saved keyword: {alias} -> {target}")
        except KeywordStoreError as e:
            self.status.publish(str(e))
