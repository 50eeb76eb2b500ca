"""Plain-text helpers for feed summaries and article HTML."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
WHITESPACE_RE = re.compile(r"\s+")
SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([.,!?;:])")
TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
LEADING_SPACE_RE = re.compile(r"\n[ \t]+")
BLANK_LINES_RE = re.compile(r"\n{3,}")
INLINE_SPACE_RE = re.compile(r"[ \t]{2,}")

NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]
BLOCK_TAGS = [
    "p", "li", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "section",
    "article", "div", "pre", "figcaption", "tr", "dt", "dd",
]


def normalize_whitespace(value: str | None) -> str:
    """Collapse every whitespace run to a single space and trim."""
    if not value:
        return ""
    return WHITESPACE_RE.sub(" ", value).strip()


def truncate(value: str, max_chars: int) -> str:
    """Cap ``value`` at ``max_chars`` characters, marking the cut with ``...``."""
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars].rstrip()}..."


def html_soup(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup, "html.parser")


def drop_non_content(node: Tag) -> Tag:
    for element in node.find_all(NON_CONTENT_TAGS):
        element.decompose()
    return node


def strip_html(raw: str | None) -> str:
    """Reduce a feed summary fragment to a single line of plain text."""
    if not raw:
        return ""
    soup = drop_non_content(html_soup(CDATA_RE.sub(r"\1", raw)))
    text = WHITESPACE_RE.sub(" ", soup.get_text(" "))
    text = SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    return text.strip()


def tidy_paragraphs(text: str) -> str:
    """Normalize line structure: no trailing spaces, at most one blank line."""
    text = text.replace("\r", "").replace("\xa0", " ")
    text = TRAILING_SPACE_RE.sub("\n", text)
    text = LEADING_SPACE_RE.sub("\n", text)
    text = BLANK_LINES_RE.sub("\n\n", text)
    text = INLINE_SPACE_RE.sub(" ", text)
    return text.strip()


def mark_blocks(node: Tag) -> Tag:
    """Drop non-content elements and end every block element with a line break.

    Mutates ``node`` in place, so call it once per tree.
    """
    drop_non_content(node)
    for br in node.find_all("br"):
        br.replace_with("\n")
    for block in node.find_all(BLOCK_TAGS):
        block.append("\n")
    return node


def node_text(node: Tag) -> str:
    """Paragraph-preserving text of a tree already passed through ``mark_blocks``."""
    return tidy_paragraphs(node.get_text())


def html_to_text(fragment: str) -> str:
    """Convert an HTML fragment to paragraph-preserving plain text."""
    return node_text(mark_blocks(html_soup(fragment)))


def dedupe_categories(values: Iterable[Optional[str]]) -> List[str]:
    """Case-insensitive dedupe that keeps the first casing seen and input order."""
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        normalized = normalize_whitespace(value)
        if not normalized:
            continue
        key = normalized.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(normalized)
    return result
