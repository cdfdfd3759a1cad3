"""Markdown renderer with wiki link resolution and code highlighting."""

import re
from abc import ABC, abstractmethod
from xml.etree.ElementTree import Element

from markdown import Markdown
from markdown.extensions import Extension
from markdown.inlinepatterns import (
    REFERENCE_RE,
    InlineProcessor,
    ReferenceInlineProcessor,
    ShortReferenceInlineProcessor,
    SimpleTagInlineProcessor,
)
from markdown.preprocessors import Preprocessor
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexer import Lexer
from pygments.lexers import TextLexer, get_lexer_by_name, get_lexer_for_filename
from pygments.util import ClassNotFound

from fubako.core.errors import InvalidPageIdError
from fubako.core.meta import WIKI_LINK_PATTERN
from fubako.core.models import PageId
from fubako.core.storage import Storage

# Dark theme used for every fenced code block
HIGHLIGHT_STYLE = "monokai"

# Pattern for strikethrough: ~~text~~
# Group 2 must contain the text (SimpleTagInlineProcessor expectation)
STRIKETHROUGH_PATTERN = r"(~~)(.*?)~~"


def page_url(page_id: PageId) -> str:
    return f"/{page_id}"


def make_page_link(page_id: PageId, text: str | None = None) -> Element:
    el = Element("a")
    el.text = text if text is not None else str(page_id)
    el.set("href", page_url(page_id))
    el.set("class", "wiki-link")
    return el


class StrikethroughExtension(Extension):
    """Markdown extension for ~~strikethrough~~ text."""

    def extendMarkdown(self, md: Markdown) -> None:
        """Add strikethrough pattern to markdown parser."""
        md.inlinePatterns.register(
            SimpleTagInlineProcessor(STRIKETHROUGH_PATTERN, "del"),
            "strikethrough",
            50,
        )


class WikiLinkInlineProcessor(InlineProcessor):
    """Inline processor for ``[[page-id]]`` links."""

    def handleMatch(self, m: re.Match, data: str) -> tuple[Element | None, int | None, int | None]:
        """Convert a wiki link naming a valid page ID to an anchor."""
        try:
            page_id = PageId.parse(m.group(1))
        except InvalidPageIdError:
            # Left in place as literal text
            return None, None, None
        return make_page_link(page_id), m.start(0), m.end(0)


class PageReferenceMixin(ABC):
    """Resolve otherwise undefined reference links that name a page ID."""

    def handleMatch(self, m: re.Match, data: str) -> tuple[Element | None, int | None, int | None]:
        el, start, end = super().handleMatch(m, data)
        if el is not None or start is None:
            return el, start, end

        text, index, _ = self.getText(data, m.end(0))
        try:
            page_id = PageId.parse(self.reference_text(data, index, text))
        except InvalidPageIdError:
            return el, start, end
        return self.makeTag(page_url(page_id), None, text), start, end

    @abstractmethod
    def reference_text(self, data: str, index: int, text: str) -> str:
        """Return the reference label that should name a page ID."""
        ...


class PageReferenceInlineProcessor(PageReferenceMixin, ReferenceInlineProcessor):
    """``[text][page-id]`` and ``[page-id][]`` fallback."""

    def reference_text(self, data: str, index: int, text: str) -> str:
        m = self.RE_LINK.match(data, pos=index)
        if m is None:
            return text
        return m.group(1) or text


class PageShortReferenceInlineProcessor(PageReferenceMixin, ShortReferenceInlineProcessor):
    """``[page-id]`` fallback."""

    def reference_text(self, data: str, index: int, text: str) -> str:
        return text


class WikiLinkExtension(Extension):
    """Markdown extension for page ID links."""

    def extendMarkdown(self, md: Markdown) -> None:
        """Add wiki link pattern and replace the reference processors."""
        # Above "reference" (170) so [[id]] is taken whole
        md.inlinePatterns.register(
            WikiLinkInlineProcessor(WIKI_LINK_PATTERN, md), "wiki_link", 175
        )
        md.inlinePatterns.register(
            PageReferenceInlineProcessor(REFERENCE_RE, md), "reference", 170
        )
        md.inlinePatterns.register(
            PageShortReferenceInlineProcessor(REFERENCE_RE, md),
            "short_reference",
            130,
        )


def find_lexer(info_string: str) -> Lexer:
    """Select a lexer from a fenced block's info string.

    The first word is tried as a lexer alias, then as a file extension.
    Falls back to plain text.
    """
    words = info_string.split()
    if not words:
        return TextLexer()
    token = words[0].lstrip(".{").rstrip("}")
    try:
        return get_lexer_by_name(token)
    except ClassNotFound:
        pass
    try:
        return get_lexer_for_filename(f"file.{token}")
    except ClassNotFound:
        return TextLexer()


def highlight_code(code: str, info_string: str = "") -> str:
    """Render a code block as highlighted HTML with inline styles."""
    formatter = HtmlFormatter(style=HIGHLIGHT_STYLE, noclasses=True)
    return highlight(code, find_lexer(info_string), formatter)


def strip_container_prefix(line: str, prefix: str) -> str | None:
    """Remove a list indent or blockquote prefix from one line.

    Returns None if the line is not inside the same container.
    """
    if line.startswith(prefix):
        return line[len(prefix):]
    if line.strip() == prefix.strip():
        return ""
    return None


class HighlightedFencePreprocessor(Preprocessor):
    """Replace fenced code blocks with highlighted HTML.

    Fences may sit inside list items (indented) or blockquotes (``>``
    prefixed). The closing fence uses the opening fence's character and is
    at least as long.
    """

    FENCE_OPEN_RE = re.compile(
        r"^(?P<prefix>(?:[ ]{0,3}>[ ]?)*[ ]*)"
        r"(?P<fence>`{3,}|~{3,})[ ]*(?P<info>[^`]*?)[ ]*$"
    )

    def find_closing_fence(self, lines: list[str], start: int, prefix: str, fence: str) -> int | None:
        """Index of the line closing the block opened at ``start``."""
        close_re = re.compile(
            rf"^[ ]{{0,3}}{re.escape(fence)}{re.escape(fence[0])}*[ ]*$"
        )
        for i in range(start + 1, len(lines)):
            rest = strip_container_prefix(lines[i], prefix)
            if rest is None:
                return None
            if close_re.match(rest):
                return i
        return None

    def run(self, lines: list[str]) -> list[str]:
        """Process lines, stashing each highlighted block."""
        if not any("```" in line or "~~~" in line for line in lines):
            return lines

        result = []
        i = 0
        while i < len(lines):
            m = self.FENCE_OPEN_RE.match(lines[i])
            end = None
            if m:
                prefix, fence = m.group("prefix"), m.group("fence")
                end = self.find_closing_fence(lines, i, prefix, fence)
            if end is None:
                result.append(lines[i])
                i += 1
                continue

            code = "\n".join(
                strip_container_prefix(line, prefix) for line in lines[i + 1:end]
            )
            html = highlight_code(code + "\n", m.group("info"))
            placeholder = self.md.htmlStash.store(html)
            result.extend(["", f"{prefix}{placeholder}", ""])
            i = end + 1
        return result


class HighlightedFenceExtension(Extension):
    """Markdown extension for syntax highlighted fenced code blocks."""

    def extendMarkdown(self, md: Markdown) -> None:
        md.preprocessors.register(
            HighlightedFencePreprocessor(md),
            "highlighted_fence",
            25,
        )


def create_parser() -> Markdown:
    """Create a Markdown parser with page link support.

    Returns:
        Configured Markdown parser instance.
    """
    return Markdown(
        extensions=[
            # Core formatting
            "tables",
            "sane_lists",
            # PyMdown extensions
            "pymdownx.tasklist",  # Task lists with checkboxes
            # Custom extensions
            StrikethroughExtension(),  # ~~strikethrough~~
            WikiLinkExtension(),  # [[20251224T000000Z]]
            HighlightedFenceExtension(),  # ```lang ... ```
        ]
    )


def render_markdown(content: str) -> str:
    """Render markdown to an HTML fragment.

    Args:
        content: Markdown content with wiki links.

    Returns:
        HTML string without any page skeleton.
    """
    return create_parser().convert(content)


def render_page(storage: Storage, page_id: PageId) -> str:
    """Read a page from storage and render it.

    Raises:
        PageNotFoundError: If the page file does not exist.
    """
    return render_markdown(storage.read_raw(page_id))
