"""Keeps the page index in step with the data directory.

A single watchdog observer thread applies filesystem events to the index
in the order they arrive, while request handlers read consistent snapshots.
Both sides go through one lock held by :class:`SharedIndex`. Page files are
read and rendered outside that lock.
"""

import asyncio
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from fubako.config import Settings
from fubako.core.errors import (
    InvalidPageIdError,
    LockContentionError,
    PageNotFoundError,
    PageReadError,
    WatchError,
)
from fubako.core.index import PageIndex
from fubako.core.models import BacklinkView, PageId, PageMeta, PageView
from fubako.core.storage import FileStorage

logger = logging.getLogger(__name__)


class SharedIndex:
    """Settings, storage and the page index behind one lock."""

    def __init__(
        self,
        settings: Settings,
        storage: FileStorage,
        index: PageIndex,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self._index = index
        self._lock = threading.Lock()

    @classmethod
    def load(cls, settings: Settings) -> "SharedIndex":
        """Build storage and index from settings."""
        storage = FileStorage(settings.data_dir)
        return cls(settings, storage, PageIndex.rebuild(storage))

    @contextmanager
    def locked(self) -> Iterator[PageIndex]:
        """Hold the lock for one logical operation on the index.

        Raises:
            LockContentionError: If the lock is not acquired in time.
        """
        if not self._lock.acquire(timeout=self.settings.lock_timeout):
            raise LockContentionError("timed out waiting for the index lock")
        try:
            yield self._index
        finally:
            self._lock.release()

    # ========== Mutations ==========

    def apply_change(self, path: Path) -> None:
        """Apply one filesystem change notification to the index.

        Paths that are not page files are skipped. Unreadable pages are
        logged and skipped; nothing is retried.
        """
        path = Path(path)
        try:
            page_id = self.storage.resolve_path_to_id(path)
        except InvalidPageIdError:
            logger.debug("Ignoring change to non-page path %s", path)
            return

        if not path.exists():
            with self.locked() as index:
                index.remove(page_id)
            logger.info("Removed page %s from index", page_id)
            return

        try:
            meta = self.storage.read_page_meta(page_id)
        except PageNotFoundError:
            # Deleted between the existence check and the read
            with self.locked() as index:
                index.remove(page_id)
            logger.info("Removed page %s from index", page_id)
            return
        except PageReadError:
            logger.exception("Failed to read page %s, index entry unchanged", page_id)
            return

        with self.locked() as index:
            index.set_meta(page_id, meta)
        logger.debug("Updated page %s: title=%r links=%d", page_id, meta.title, len(meta.links))

    # ========== Snapshots ==========

    def page_view(self, page_id: PageId) -> PageView:
        """Get a page's metadata with titled backlinks.

        Backlinks from pages no longer in the index are skipped.

        Raises:
            PageNotFoundError: If the page is not indexed.
        """
        with self.locked() as index:
            meta = index.get_meta(page_id)
            if meta is None:
                raise PageNotFoundError(f"page not found: {page_id}")
            backlinks = []
            for source_id in sorted(index.get_backlinks(page_id)):
                source = index.get_meta(source_id)
                if source is None:
                    continue
                backlinks.append(BacklinkView(id=source_id, title=source.title))
        return PageView(id=page_id, meta=meta, backlinks=backlinks)

    def has_page(self, page_id: PageId) -> bool:
        with self.locked() as index:
            return index.get_meta(page_id) is not None

    def list_pages(self) -> list[tuple[PageId, PageMeta]]:
        with self.locked() as index:
            return index.list_all()

    def list_titles(self) -> list[tuple[str, list[PageId]]]:
        with self.locked() as index:
            return index.list_titles()

    def first_page_for_title(self, title: str) -> PageId | None:
        with self.locked() as index:
            return index.first_page_for_title(title)


class PageEventHandler(FileSystemEventHandler):
    """Forwards page file events to the shared index."""

    def __init__(self, shared: SharedIndex):
        super().__init__()
        self._shared = shared

    def _apply(self, path: str | bytes) -> None:
        if isinstance(path, bytes):
            path = path.decode()
        try:
            self._shared.apply_change(Path(path))
        except LockContentionError:
            logger.error("Index lock busy, dropped change to %s", path)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation."""
        if not event.is_directory:
            self._apply(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        if not event.is_directory:
            self._apply(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file deletion."""
        if not event.is_directory:
            self._apply(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move/rename."""
        if event.is_directory:
            return
        self._apply(event.src_path)
        self._apply(event.dest_path)


class PageWatcher:
    """Watch the data directory and keep the index current."""

    def __init__(self, shared: SharedIndex):
        self._shared = shared
        self._observer: Observer | None = None

    @property
    def watch_dir(self) -> Path:
        return self._shared.settings.data_dir

    def start(self) -> None:
        """Start watching for file changes.

        Raises:
            WatchError: If the observer cannot watch the data directory.
        """
        if self._observer is not None:
            return

        observer = Observer()
        try:
            observer.schedule(
                PageEventHandler(self._shared), str(self.watch_dir), recursive=False
            )
            observer.start()
        except OSError as e:
            raise WatchError(f"cannot watch {self.watch_dir}: {e}") from e
        self._observer = observer
        logger.info("Started watching: %s", self.watch_dir)

    def stop(self) -> None:
        """Stop watching for file changes."""
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        logger.info("Stopped file watcher")

    def is_alive(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    async def monitor(self, interval: float) -> None:
        """Fail loudly if the observer thread dies while it should be running.

        Raises:
            WatchError: Once the observer is found dead.
        """
        while self._observer is not None:
            if not self._observer.is_alive():
                logger.critical(
                    "File watcher for %s died; the page index is now stale",
                    self.watch_dir,
                )
                raise WatchError(f"file watcher for {self.watch_dir} stopped")
            await asyncio.sleep(interval)
