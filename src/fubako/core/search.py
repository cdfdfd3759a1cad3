"""Full-text page filtering."""

import logging

from fubako.core.errors import PageNotFoundError
from fubako.core.models import PageId, PageMeta
from fubako.core.parser import render_page
from fubako.core.storage import Storage

logger = logging.getLogger(__name__)


def query_tokens(query: str) -> list[str]:
    """Lower-case a query and split it on whitespace."""
    return query.lower().split()


def matches_query(content: str, query: str) -> bool:
    """True if every query token occurs in the content, ignoring case.

    An empty query matches everything.
    """
    content = content.lower()
    return all(token in content for token in query_tokens(query))


def filter_pages(
    storage: Storage,
    pages: list[tuple[PageId, PageMeta]],
    query: str,
) -> list[tuple[PageId, PageMeta]]:
    """Keep the pages whose rendered HTML matches the query.

    Pages that disappear before they can be rendered are dropped.
    """
    if not query_tokens(query):
        return pages

    results = []
    for page_id, meta in pages:
        try:
            html = render_page(storage, page_id)
        except PageNotFoundError:
            logger.debug("Page %s vanished during search", page_id)
            continue
        if matches_query(html, query):
            results.append((page_id, meta))
    return results
