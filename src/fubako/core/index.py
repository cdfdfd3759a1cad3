"""In-memory page index: titles, links and derived backlinks.

The index is rebuilt from the page files on startup and then kept current
one page at a time. ``PageIndex`` does no locking of its own; concurrent
access goes through :class:`fubako.core.sync.SharedIndex`.
"""

import logging

from fubako.core.errors import PageNotFoundError
from fubako.core.models import PageId, PageMeta
from fubako.core.storage import Storage

logger = logging.getLogger(__name__)


class PageIndex:
    """Page metadata plus its title and backlink inversions."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self.page_metas: dict[PageId, PageMeta] = {}
        self.page_titles: dict[str, set[PageId]] = {}
        self.backlinks: dict[PageId, set[PageId]] = {}

    @classmethod
    def rebuild(cls, storage: Storage) -> "PageIndex":
        """Build an index over every page in storage."""
        index = cls(storage)
        for page_id in sorted(storage.enumerate_page_ids()):
            index.page_metas[page_id] = storage.read_page_meta(page_id)

        for page_id, meta in index.page_metas.items():
            if meta.title is not None:
                index.page_titles.setdefault(meta.title, set()).add(page_id)
            for linked_id in meta.links:
                index.backlinks.setdefault(linked_id, set()).add(page_id)

        logger.info(
            "Index built: %d pages, %d titles",
            len(index.page_metas),
            len(index.page_titles),
        )
        return index

    def update(self, page_id: PageId) -> None:
        """Re-read a page and replace its entry.

        A page whose file has gone is removed instead.

        Raises:
            PageReadError: If the file exists but cannot be read.
        """
        try:
            meta = self.storage.read_page_meta(page_id)
        except PageNotFoundError:
            self.remove(page_id)
            return
        self.set_meta(page_id, meta)

    def set_meta(self, page_id: PageId, meta: PageMeta) -> None:
        """Replace a page's metadata and its derived entries."""
        self._unlink(page_id)

        self.page_metas[page_id] = meta
        for linked_id in meta.links:
            self.backlinks.setdefault(linked_id, set()).add(page_id)
        if meta.title is not None:
            self.page_titles.setdefault(meta.title, set()).add(page_id)

    def remove(self, page_id: PageId) -> None:
        """Drop a page from the index. No-op for unknown pages.

        ``backlinks[page_id]`` is left alone: other pages may still link here.
        """
        if page_id not in self.page_metas:
            return
        self._unlink(page_id)
        del self.page_metas[page_id]

    def _unlink(self, page_id: PageId) -> None:
        old = self.page_metas.get(page_id)
        if old is None:
            return

        for linked_id in old.links:
            sources = self.backlinks.get(linked_id)
            if sources is None:
                continue
            sources.discard(page_id)
            if not sources:
                del self.backlinks[linked_id]

        if old.title is not None:
            ids = self.page_titles.get(old.title)
            if ids is not None:
                ids.discard(page_id)
                if not ids:
                    del self.page_titles[old.title]

    # ========== Queries ==========

    def get_meta(self, page_id: PageId) -> PageMeta | None:
        return self.page_metas.get(page_id)

    def get_backlinks(self, page_id: PageId) -> set[PageId]:
        return set(self.backlinks.get(page_id, ()))

    def list_all(self) -> list[tuple[PageId, PageMeta]]:
        """All pages in ascending ID order."""
        return sorted(self.page_metas.items())

    def find_by_title(self, title: str) -> set[PageId]:
        return set(self.page_titles.get(title, ()))

    def list_titles(self) -> list[tuple[str, list[PageId]]]:
        """All titles in sorted order, each with its page IDs ascending."""
        return [
            (title, sorted(ids)) for title, ids in sorted(self.page_titles.items())
        ]

    def first_page_for_title(self, title: str) -> PageId | None:
        """Pick one page for a title: the lowest ID."""
        ids = self.page_titles.get(title)
        if not ids:
            return None
        return min(ids)
