import threading
from pathlib import Path

import pytest

from quicklaunch.config import DEFAULT_EXCLUDED_DIRS, DEFAULT_LAUNCHER_DIRS
from quicklaunch.coordinator import SearchCoordinator, WorkerPool
from quicklaunch.crawler import DirectoryCrawler
from quicklaunch.models import SearchRequest, SearchStatus
from quicklaunch.status import ProgressReporter, StatusChannel


def touch(root: Path, rel: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("")
    return path


@pytest.fixture
def pool():
    pool = WorkerPool(2)
    yield pool
    pool.shutdown(1.0)


@pytest.fixture
def status():
    return StatusChannel()


def make_coordinator(pool, status, roots, interval_ms=500):
    crawler = DirectoryCrawler(DEFAULT_LAUNCHER_DIRS, DEFAULT_EXCLUDED_DIRS, [".exe", ".lnk", ".bat"],
                               status=status)
    return SearchCoordinator(crawler, pool, status, roots=[str(r) for r in roots],
                             update_interval_ms=interval_ms)


class TestSearch:
    def test_union_across_roots(self, pool, status, tmp_path):
        c_drive = tmp_path / "c"
        d_drive = tmp_path / "d"
        first = touch(c_drive, "Games/Halo/halo.exe")
        second = touch(d_drive, "Epic Games/HaloMCC/mcc.exe")

        result = make_coordinator(pool, status, [c_drive, d_drive]).search(SearchRequest.from_input("halo"))

        assert result.status == SearchStatus.RESOLVED
        assert sorted(result.paths) == sorted([str(first), str(second)])
        assert result.files_scanned >= 2

    def test_nothing_found_is_not_an_error(self, pool, status, tmp_path):
        touch(tmp_path / "c", "Games/Other/other.exe")
        result = make_coordinator(pool, status, [tmp_path / "c"]).search(SearchRequest.from_input("halo"))
        assert result.status == SearchStatus.NOT_FOUND
        assert result.paths == []

    def test_inaccessible_root_is_skipped_with_warning(self, pool, status, tmp_path):
        good = tmp_path / "c"
        exe = touch(good, "Games/Halo/halo.exe")
        coordinator = make_coordinator(pool, status, [tmp_path / "missing", good])

        result = coordinator.search(SearchRequest.from_input("halo"))

        assert result.paths == [str(exe)]
        assert any(m.startswith("Cannot access drive:") for m in status.drain())

    def test_cancelled_before_start(self, pool, status, tmp_path):
        touch(tmp_path / "c", "Games/Halo/halo.exe")
        request = SearchRequest.from_input("halo")
        request.token.cancel()
        result = make_coordinator(pool, status, [tmp_path / "c"]).search(request)
        assert result.status == SearchStatus.CANCELLED
        assert result.paths == []

    def test_cancel_running_search(self, pool, status, tmp_path, monkeypatch):
        root = tmp_path / "c"
        for i in range(30):
            touch(root, f"Library/Game{i}/halo{i}.exe")
        coordinator = make_coordinator(pool, status, [root], interval_ms=0)
        request = SearchRequest.from_input("halo")

        started = threading.Event()
        original_visit = ProgressReporter.file_visited

        def visit_and_cancel(self, path):
            original_visit(self, path)
            started.set()
            coordinator.cancel()

        monkeypatch.setattr(ProgressReporter, "file_visited", visit_and_cancel)
        result = coordinator.search(request)

        assert started.is_set()
        assert result.status == SearchStatus.CANCELLED
        assert len(result.paths) < 30
        assert coordinator.active is None

    def test_status_reports_search_start(self, pool, status, tmp_path):
        (tmp_path / "c").mkdir()
        make_coordinator(pool, status, [tmp_path / "c"]).search(SearchRequest.from_input("Halo"))
        assert status.drain()[0] == "Searching for halo on all drives..."


class TestProgressReporter:
    def test_rate_limited(self):
        now = [0.0]
        channel = StatusChannel()
        progress = ProgressReporter(channel, interval_ms=500, clock=lambda: now[0])

        progress.file_visited("/a")
        progress.file_visited("/b")
        now[0] = 0.6
        progress.file_visited("/c")

        assert channel.drain() == ["Scanning: /a", "Scanning: /c"]
        assert progress.files_scanned == 3

    def test_counter_is_consistent_across_threads(self):
        progress = ProgressReporter(StatusChannel(), interval_ms=500)

        def worker():
            for i in range(500):
                progress.file_visited(f"/f{i}")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert progress.files_scanned == 2000


class TestWorkerPool:
    def test_minimum_two_workers(self):
        pool = WorkerPool(1)
        try:
            assert pool.max_workers == 2
        finally:
            pool.shutdown(1.0)

    def test_shutdown_waits_for_running_task(self):
        pool = WorkerPool(2)
        release = threading.Event()
        future = pool.submit(release.wait, 5)
        release.set()
        assert pool.shutdown(2.0) is True
        assert future.done()

    def test_shutdown_abandons_stuck_task(self):
        pool = WorkerPool(2)
        release = threading.Event()
        pool.submit(release.wait, 5)
        try:
            assert pool.shutdown(0.05) is False
        finally:
            release.set()

    def test_submit_after_shutdown_fails(self):
        pool = WorkerPool(2)
        pool.shutdown(0.1)
        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)
