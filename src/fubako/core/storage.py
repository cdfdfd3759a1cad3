"""Storage abstraction for wiki pages."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from fubako.core.errors import (
    DataDirNotFoundError,
    ForbiddenPathError,
    InvalidPageIdError,
    PageNotFoundError,
    PageReadError,
)
from fubako.core.meta import extract_page_meta
from fubako.core.models import PageId, PageMeta

logger = logging.getLogger(__name__)

PAGE_SUFFIX = ".md"


class Storage(ABC):
    """Abstract base class for page storage."""

    @abstractmethod
    def enumerate_page_ids(self) -> set[PageId]:
        """List all page IDs. Fails if the data directory is missing."""
        ...

    @abstractmethod
    def read_raw(self, page_id: PageId) -> str:
        """Get raw markdown. Raises PageNotFoundError if absent."""
        ...

    @abstractmethod
    def resolve_path_to_id(self, path: Path) -> PageId:
        """Map a page file path to its ID. Raises InvalidPageIdError."""
        ...

    @abstractmethod
    def page_exists(self, page_id: PageId) -> bool:
        """Check if a page exists."""
        ...

    @abstractmethod
    def create_page(self) -> PageId:
        """Create a new empty page under a fresh ID."""
        ...

    def read_page_meta(self, page_id: PageId) -> PageMeta:
        """Read a page and extract its title and links."""
        return extract_page_meta(self.read_raw(page_id))


class FileStorage(Storage):
    """File-based storage implementation.

    Pages are stored as Markdown files directly in the data directory.
    File naming: <PageId>.md, e.g. 20251224T000000Z.md
    """

    def __init__(self, base_path: Path):
        self.base_path = base_path

    @property
    def images_dir(self) -> Path:
        return self.base_path / "images"

    def page_path(self, page_id: PageId) -> Path:
        """Get full path for a page."""
        return self.base_path / f"{page_id}{PAGE_SUFFIX}"

    def resolve_path_to_id(self, path: Path) -> PageId:
        """Convert a page file path to its page ID."""
        path = Path(path)
        if path.suffix != PAGE_SUFFIX:
            raise InvalidPageIdError(f"not a page file: {path}")
        return PageId.parse(path.stem)

    def enumerate_page_ids(self) -> set[PageId]:
        """List all page IDs present in the data directory."""
        if not self.base_path.is_dir():
            raise DataDirNotFoundError(f"data dir not found: {self.base_path}")

        page_ids = set()
        for path in self.base_path.iterdir():
            if not path.is_file():
                continue
            try:
                page_ids.add(self.resolve_path_to_id(path))
            except InvalidPageIdError:
                logger.debug("Skipping non-page file %s", path)
        return page_ids

    def read_raw(self, page_id: PageId) -> str:
        """Get raw markdown content."""
        path = self.page_path(page_id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise PageNotFoundError(f"page not found: {page_id}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise PageReadError(f"failed to read page {page_id}: {e}") from e

    def page_exists(self, page_id: PageId) -> bool:
        """Check if a page exists."""
        return self.page_path(page_id).is_file()

    def create_page(self) -> PageId:
        """Create an empty page.

        Pages created within the same second would share an ID, so the ID
        moves forward one second at a time until an unused one is found.
        """
        self.base_path.mkdir(parents=True, exist_ok=True)
        page_id = PageId.now()
        while True:
            try:
                with self.page_path(page_id).open("x", encoding="utf-8"):
                    pass
            except FileExistsError:
                page_id = page_id.next()
                continue
            logger.info("Created page %s", page_id)
            return page_id

    def image_path(self, image_name: str) -> Path:
        """Resolve an image file inside the images directory.

        Raises:
            ForbiddenPathError: If the name escapes the images directory.
            PageNotFoundError: If the image does not exist.
        """
        images_dir = self.images_dir.resolve()
        path = (images_dir / image_name).resolve()
        if not path.is_relative_to(images_dir) or path == images_dir:
            raise ForbiddenPathError(f"image path outside images dir: {image_name}")
        if not path.is_file():
            raise PageNotFoundError(f"image not found: {image_name}")
        return path
