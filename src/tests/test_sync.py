"""Tests for the shared index handle and the file watcher."""

import threading
import time

import pytest

from fubako.config import Settings
from fubako.core.errors import LockContentionError, PageNotFoundError, WatchError
from fubako.core.models import PageId
from fubako.core.sync import PageEventHandler, PageWatcher, SharedIndex

from .conftest import PAGE_1, PAGE_2, PAGE_3, assert_index_consistent

P1 = PageId.parse(PAGE_1)
P2 = PageId.parse(PAGE_2)
P3 = PageId.parse(PAGE_3)


def wait_for(predicate, timeout=5.0, poll_interval=0.05):
    """Poll until predicate() is true or the timeout passes."""
    start = time.time()
    while time.time() - start < timeout:
        if predicate():
            return True
        time.sleep(poll_interval)
    return False


@pytest.fixture
def settings(data_dir):
    return Settings(data_dir=data_dir, lock_timeout=0.05, watch=False)


@pytest.fixture
def shared(settings, write_page):
    write_page(PAGE_1, "# Test Page 1\n\nThis is a test page.")
    write_page(PAGE_2, f"# Test Page 2\n\nLink to [[{PAGE_1}]].")
    return SharedIndex.load(settings)


# ============================================================
# apply_change
# ============================================================


class TestApplyChange:
    def test_created(self, shared, write_page):
        path = write_page(PAGE_3, f"# Three\n\n[[{PAGE_1}]]")
        shared.apply_change(path)
        assert shared.page_view(P1).backlinks[1].id == P3

    def test_modified(self, shared, write_page):
        path = write_page(PAGE_2, "# Test Page 2\n\nNo link now.")
        shared.apply_change(path)
        assert shared.page_view(P1).backlinks == []

    def test_deleted(self, shared, data_dir):
        path = data_dir / f"{PAGE_2}.md"
        path.unlink()
        shared.apply_change(path)
        assert not shared.has_page(P2)
        with shared.locked() as index:
            assert_index_consistent(index)

    def test_non_page_path_ignored(self, shared, data_dir):
        path = data_dir / "notes.txt"
        path.write_text("[[x]]")
        before = shared.list_pages()
        shared.apply_change(path)
        assert shared.list_pages() == before

    def test_unreadable_page_skipped(self, shared, data_dir):
        path = data_dir / f"{PAGE_2}.md"
        path.write_bytes(b"\xff\xfe\x00bad")
        shared.apply_change(path)
        # Old entry stays in place
        assert shared.page_view(P2).title == "Test Page 2"

    def test_accepts_string_paths(self, shared, write_page):
        path = write_page(PAGE_3, "# Three")
        shared.apply_change(str(path))
        assert shared.has_page(P3)


# ============================================================
# Snapshots
# ============================================================


class TestSnapshots:
    def test_page_view(self, shared):
        view = shared.page_view(P1)
        assert view.title == "Test Page 1"
        assert [(b.id, b.title) for b in view.backlinks] == [(P2, "Test Page 2")]

    def test_page_view_missing(self, shared):
        with pytest.raises(PageNotFoundError):
            shared.page_view(P3)

    def test_page_view_skips_dangling_backlinks(self, shared, write_page):
        write_page(PAGE_3, f"[[{PAGE_1}]]")
        shared.apply_change(shared.storage.page_path(P3))
        with shared.locked() as index:
            # Simulate a source page whose entry vanished
            del index.page_metas[P3]
        assert [b.id for b in shared.page_view(P1).backlinks] == [P2]

    def test_title_fallback_to_id(self, shared, write_page):
        shared.apply_change(write_page(PAGE_3, "no heading"))
        assert shared.page_view(P3).title == PAGE_3

    def test_list_titles(self, shared):
        assert shared.list_titles() == [("Test Page 1", [P1]), ("Test Page 2", [P2])]

    def test_first_page_for_title(self, shared):
        assert shared.first_page_for_title("Test Page 2") == P2
        assert shared.first_page_for_title("nope") is None


# ============================================================
# Locking
# ============================================================


class TestLocking:
    def test_contention_raises(self, shared):
        with shared.locked():
            with pytest.raises(LockContentionError):
                shared.list_pages()

    def test_contention_from_other_thread(self, shared, write_page):
        path = write_page(PAGE_3, "# Three")
        errors = []

        def worker():
            try:
                shared.apply_change(path)
            except LockContentionError as e:
                errors.append(e)

        with shared.locked():
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        assert len(errors) == 1
        # Not retried
        assert not shared.has_page(P3)

    def test_lock_released_after_error(self, shared):
        with pytest.raises(PageNotFoundError):
            shared.page_view(P3)
        assert shared.has_page(P1)

    def test_concurrent_readers_see_whole_updates(self, shared, write_page):
        """Readers never see P2's old links removed without the new ones added."""
        stop = threading.Event()
        torn = []

        def reader():
            while not stop.is_set():
                with shared.locked() as index:
                    try:
                        assert_index_consistent(index)
                    except AssertionError as e:
                        torn.append(e)
                time.sleep(0.001)

        shared.settings.lock_timeout = 5.0
        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for n in range(50):
                target = PAGE_1 if n % 2 else PAGE_3
                shared.apply_change(write_page(PAGE_2, f"# Two\n\n[[{target}]]"))
        finally:
            stop.set()
            thread.join()
        assert torn == []


# ============================================================
# Event handler
# ============================================================


class FakeEvent:
    def __init__(self, src_path, dest_path="", is_directory=False):
        self.src_path = src_path
        self.dest_path = dest_path
        self.is_directory = is_directory


class TestPageEventHandler:
    def test_created(self, shared, write_page):
        handler = PageEventHandler(shared)
        handler.on_created(FakeEvent(str(write_page(PAGE_3, "# Three"))))
        assert shared.has_page(P3)

    def test_directory_ignored(self, shared, data_dir):
        handler = PageEventHandler(shared)
        handler.on_created(FakeEvent(str(data_dir / f"{PAGE_3}.md"), is_directory=True))
        assert not shared.has_page(P3)

    def test_moved_applies_both_paths(self, shared, data_dir):
        src = data_dir / f"{PAGE_2}.md"
        dest = data_dir / f"{PAGE_3}.md"
        src.rename(dest)
        PageEventHandler(shared).on_moved(FakeEvent(str(src), str(dest)))
        assert not shared.has_page(P2)
        assert shared.has_page(P3)
        assert [b.id for b in shared.page_view(P1).backlinks] == [P3]

    def test_lock_contention_logged_not_raised(self, shared, write_page):
        handler = PageEventHandler(shared)
        path = write_page(PAGE_3, "# Three")
        with shared.locked():
            result = []
            thread = threading.Thread(
                target=lambda: result.append(handler.on_modified(FakeEvent(str(path))))
            )
            thread.start()
            thread.join()
        assert result == [None]
        assert not shared.has_page(P3)


# ============================================================
# Watcher
# ============================================================


class TestPageWatcher:
    def test_picks_up_changes(self, shared, write_page, data_dir):
        watcher = PageWatcher(shared)
        watcher.start()
        try:
            assert watcher.is_alive()
            time.sleep(0.2)

            write_page(PAGE_3, f"# Three\n\n[[{PAGE_1}]]")
            assert wait_for(lambda: shared.has_page(P3))
            assert wait_for(lambda: P3 in {b.id for b in shared.page_view(P1).backlinks})

            (data_dir / f"{PAGE_2}.md").unlink()
            assert wait_for(lambda: not shared.has_page(P2))
        finally:
            watcher.stop()
        assert not watcher.is_alive()

    def test_start_twice(self, shared):
        watcher = PageWatcher(shared)
        watcher.start()
        watcher.start()
        assert watcher.is_alive()
        watcher.stop()

    def test_stop_when_not_started(self, shared):
        PageWatcher(shared).stop()

    def test_missing_directory(self, tmp_path, storage):
        settings = Settings(data_dir=tmp_path / "missing", watch=False)
        shared = SharedIndex(settings, storage, None)
        with pytest.raises(WatchError):
            PageWatcher(shared).start()

    @pytest.mark.asyncio
    async def test_monitor_raises_when_observer_dies(self, shared):
        watcher = PageWatcher(shared)
        watcher.start()
        observer = watcher._observer
        observer.stop()
        observer.join()
        try:
            with pytest.raises(WatchError):
                await watcher.monitor(0.01)
        finally:
            watcher.stop()

    @pytest.mark.asyncio
    async def test_monitor_returns_after_stop(self, shared):
        watcher = PageWatcher(shared)
        await watcher.monitor(0.01)
