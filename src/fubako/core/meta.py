"""Title and wiki link extraction from page markdown."""

import re
from xml.etree.ElementTree import Element

from markdown import Markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

from fubako.core.errors import InvalidPageIdError
from fubako.core.models import PageId, PageMeta

# Pattern for wiki links: [[20251224T000000Z]]
WIKI_LINK_PATTERN = r"\[\[([^\[\]]+)\]\]"

WIKI_LINK_RE = re.compile(WIKI_LINK_PATTERN)


class TitleTreeprocessor(Treeprocessor):
    """Record the text of the first level-1 heading."""

    def run(self, root: Element) -> None:
        self.md.page_title = None
        for el in root.iter("h1"):
            text = "".join(el.itertext()).strip()
            self.md.page_title = text or None
            break


class TitleExtension(Extension):
    """Markdown extension exposing the first ``h1`` as ``md.page_title``."""

    def extendMarkdown(self, md: Markdown) -> None:
        md.page_title = None
        md.treeprocessors.register(TitleTreeprocessor(md), "page_title", 5)


def extract_title(content: str) -> str | None:
    """Return the first top-level heading of a markdown document."""
    md = Markdown(extensions=["fenced_code", TitleExtension()])
    md.convert(content)
    return md.page_title


def extract_wiki_links(content: str) -> list[PageId]:
    """Extract all wiki links that name a valid page ID.

    Bracketed text that is not a page ID is skipped.

    Args:
        content: Markdown content with wiki links.

    Returns:
        Page IDs in document order, duplicates included.
    """
    links = []
    for m in WIKI_LINK_RE.finditer(content):
        try:
            links.append(PageId.parse(m.group(1)))
        except InvalidPageIdError:
            continue
    return links


def extract_page_meta(content: str) -> PageMeta:
    """Compute the title and outgoing links of a page."""
    return PageMeta(
        title=extract_title(content),
        links=frozenset(extract_wiki_links(content)),
    )
