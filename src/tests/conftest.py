"""Shared fixtures for Fubako tests."""

from pathlib import Path

import pytest

from fubako.core.index import PageIndex
from fubako.core.models import PageId
from fubako.core.storage import FileStorage

PAGE_1 = "20251224T000000Z"
PAGE_2 = "20251224T000001Z"
PAGE_3 = "20251224T000002Z"


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path_factory, monkeypatch):
    """Keep the user's own config file and environment out of tests."""
    missing = tmp_path_factory.mktemp("config") / "config.json"
    monkeypatch.setenv("FUBAKO_CONFIG_FILE", str(missing))
    for name in ("FUBAKO_DATA_DIR", "FUBAKO_PORT", "FUBAKO_DEBUG", "FUBAKO_WATCH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "pages"
    path.mkdir()
    return path


@pytest.fixture
def storage(data_dir) -> FileStorage:
    return FileStorage(data_dir)


@pytest.fixture
def write_page(data_dir):
    """Write a page file and return its path."""

    def _write(page_id: str, content: str) -> Path:
        path = data_dir / f"{page_id}.md"
        path.write_text(content, encoding="utf-8")
        return path

    return _write


def assert_index_consistent(index: PageIndex) -> None:
    """Titles and backlinks must be exactly what ``page_metas`` implies."""
    expected_backlinks: dict[PageId, set[PageId]] = {}
    expected_titles: dict[str, set[PageId]] = {}
    for page_id, meta in index.page_metas.items():
        for linked_id in meta.links:
            expected_backlinks.setdefault(linked_id, set()).add(page_id)
        if meta.title is not None:
            expected_titles.setdefault(meta.title, set()).add(page_id)

    assert index.backlinks == expected_backlinks, "backlinks out of sync"
    assert index.page_titles == expected_titles, "page titles out of sync"
