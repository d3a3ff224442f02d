from __future__ import annotations

import os
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import List, Optional, Sequence

import psutil

from .crawler import CandidateSet, DirectoryCrawler
from .logging_utils import create_request_id, log_search, setup_launcher_logger
from .models import SearchRequest, SearchResult, SearchStatus
from .status import ProgressReporter, StatusChannel

logger = setup_launcher_logger("coordinator")


def default_pool_size() -> int:
    return max(2, os.cpu_count() or 1)


class WorkerPool:
    """Explicitly owned thread pool that runs crawl tasks.

    Created once per process and shut down explicitly; ``shutdown`` drops
    queued work and gives in-flight crawls a bounded grace period.
    """

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max(2, max_workers or default_pool_size())
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                            thread_name_prefix="crawl")
        self._inflight: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn, *args, **kwargs) -> Future:
        with self._lock:
            if self._closed:
                raise RuntimeError("Worker pool is shut down")
            future = self._executor.submit(fn, *args, **kwargs)
            self._inflight.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def shutdown(self, grace_seconds: float = 5.0) -> bool:
        """Stop accepting work and wait up to ``grace_seconds`` for running tasks.

        Returns False when some tasks were still running at the deadline; those
        are abandoned (their threads exit once their current I/O returns).
        """
        with self._lock:
            self._closed = True
            pending = set(self._inflight)
        self._executor.shutdown(wait=False, cancel_futures=True)
        _, not_done = wait(pending, timeout=grace_seconds)
        if not_done:
            logger.error(f"Worker pool did not terminate in time, abandoning {len(not_done)} task(s)")
            return False
        return True

    @property
    def closed(self) -> bool:
        return self._closed


def enumerate_volume_roots() -> List[Path]:
    """Every enumerable top-level volume of this machine."""
    if sys.platform == "win32":
        roots = []
        try:
            for part in psutil.disk_partitions(all=False):
                roots.append(Path(part.mountpoint))
        except OSError as e:
            logger.warning(f"Could not enumerate partitions: {e}")
        return roots or [Path("C:\\")]
    return [Path("/")]


class SearchCoordinator:
    """Fan one search request out to one crawl task per volume root.

    Usage:
        coordinator = SearchCoordinator(crawler, pool, status)
        result = coordinator.search(SearchRequest.from_input("halo"))
        # -> SearchResult(paths=[...], status=SearchStatus.RESOLVED, ...)
    """

    def __init__(self,
                 crawler: DirectoryCrawler,
                 pool: WorkerPool,
                 status: StatusChannel,
                 roots: Optional[Sequence[str]] = None,
                 update_interval_ms: int = 500):
        self.crawler = crawler
        self.pool = pool
        self.status = status
        self.roots = [Path(r) for r in roots] if roots else None
        self.update_interval_ms = update_interval_ms
        self._current: Optional[SearchRequest] = None
        self._lock = threading.Lock()

    def volume_roots(self) -> List[Path]:
        return list(self.roots) if self.roots else enumerate_volume_roots()

    def cancel(self) -> bool:
        """Cancel the running search, if any."""
        with self._lock:
            current = self._current
        if current is None:
            return False
        current.token.cancel()
        return True

    @property
    def active(self) -> Optional[SearchRequest]:
        with self._lock:
            return self._current

    def search(self, request: SearchRequest) -> SearchResult:
        request_id = create_request_id()
        start_time = time.time()
        with self._lock:
            self._current = request

        try:
            self.status.publish(f"Searching for {request.original_name} on all drives...")
            progress = ProgressReporter(self.status, self.update_interval_ms)
            results = CandidateSet()
            futures = []
            searched = []

            for root in self.volume_roots():
                if not _is_accessible(root):
                    logger.warning(f"Cannot access drive: {root}")
                    self.status.publish(f"Cannot access drive: {root}")
                    continue
                searched.append(str(root))
                futures.append(self.pool.submit(self.crawler.crawl_root, root, request, results, progress))

            error = None
            for future in futures:
                try:
                    future.result()
                except Exception as e:
                    # One root failing never aborts the others
                    logger.error(f"Crawl task failed: {e}")
                    error = str(e)

            paths = results.to_list()
            if request.cancelled:
                outcome = SearchStatus.CANCELLED
            elif paths:
                outcome = SearchStatus.RESOLVED
            else:
                outcome = SearchStatus.NOT_FOUND

            duration_ms = (time.time() - start_time) * 1000
            log_search(logger, request_id, request.original_name, outcome.value, duration_ms,
                       candidates=paths, files_scanned=progress.files_scanned,
                       roots=searched, error=error)
            return SearchResult(request=request, paths=paths, status=outcome,
                                files_scanned=progress.files_scanned, duration_ms=duration_ms)
        finally:
            with self._lock:
                if self._current is request:
                    self._current = None


def _is_accessible(root: Path) -> bool:
    try:
        return root.is_dir() and os.access(root, os.R_OK)
    except OSError:
        return False
