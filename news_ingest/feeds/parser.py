"""
RSS 2.0 / Atom parsing into CandidateArticle objects.

feedparser does the XML work and tolerates broken documents; a malformed
feed yields whatever entries could be recovered, possibly none, instead of
raising.
"""

from __future__ import annotations

import calendar
import re
from datetime import timezone
from typing import Any, List, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import feedparser
from dateutil import parser as date_parser

from news_ingest.core.logging import get_logger
from news_ingest.ingestion.text import dedupe_categories, normalize_whitespace, strip_html
from news_ingest.models import CandidateArticle

logger = get_logger(__name__)

TRACKING_PARAMS = frozenset({"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content"})
DATE_FIELDS = ("published", "updated", "created", "date")
XML_ENCODING_DECL_RE = re.compile(r"^(\s*<\?xml[^>]*?encoding=)([\"'])[^\"']*\2", re.IGNORECASE)


def normalize_url(raw: Optional[str]) -> str:
    """Drop the fragment and UTM tracking parameters; keep everything else verbatim.

    Values that are not absolute URLs are returned trimmed but otherwise
    untouched. Applying the function twice gives the same result as once.
    """
    value = (raw or "").strip()
    if not value:
        return ""
    try:
        parts = urlsplit(value)
    except ValueError:
        return value
    if not parts.scheme or not parts.netloc:
        return value

    query = parts.query
    if query:
        kept = [
            pair for pair in query.split("&")
            if pair and pair.split("=", 1)[0] not in TRACKING_PARAMS
        ]
        query = "&".join(kept)

    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def parse_date_ms(entry: Any) -> Optional[int]:
    """Epoch milliseconds from the first populated date field, or None."""
    for field in DATE_FIELDS:
        raw = entry.get(field)
        if not raw:
            continue

        parsed_struct = entry.get(f"{field}_parsed")
        if parsed_struct:
            try:
                return calendar.timegm(parsed_struct) * 1000
            except (TypeError, ValueError, OverflowError):
                pass

        try:
            parsed = date_parser.parse(str(raw))
        except (ValueError, TypeError, OverflowError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def _is_http_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def _select_link(entry: Any) -> str:
    """Prefer a rel="alternate" link, else the first link carrying an href."""
    links = entry.get("links") or []
    for link in links:
        rel = (link.get("rel") or "alternate").lower()
        if rel == "alternate" and link.get("href"):
            return str(link["href"]).strip()
    for link in links:
        if link.get("href"):
            return str(link["href"]).strip()
    return str(entry.get("link") or "").strip()


def _summary_source(entry: Any) -> str:
    for key in ("summary", "description"):
        value = entry.get(key)
        if value:
            return str(value)
    for content in entry.get("content") or []:
        value = content.get("value")
        if value:
            return str(value)
    return ""


def _categories(entry: Any) -> List[str]:
    return dedupe_categories(tag.get("term") or tag.get("label") for tag in entry.get("tags") or [])


def _author(entry: Any) -> Optional[str]:
    author = normalize_whitespace(entry.get("author"))
    if author:
        return author
    detail = entry.get("author_detail") or {}
    return normalize_whitespace(detail.get("name")) or None


def _to_candidate(entry: Any, *, allow_guid_link: bool) -> Optional[CandidateArticle]:
    title = normalize_whitespace(entry.get("title"))
    raw_link = _select_link(entry)
    guid = normalize_whitespace(entry.get("id"))
    if not raw_link and allow_guid_link and _is_http_url(guid):
        raw_link = guid
    link = normalize_url(raw_link)
    if not title or not link:
        return None

    return CandidateArticle(
        external_id=guid or link,
        canonical_url=link,
        title=title,
        summary=strip_html(_summary_source(entry)),
        categories=_categories(entry),
        author=_author(entry),
        published_at_ms=parse_date_ms(entry),
    )


def _as_document(document: Union[str, bytes]) -> bytes:
    if isinstance(document, bytes):
        return document
    # Text is already decoded, so a declared legacy encoding would be wrong now.
    return XML_ENCODING_DECL_RE.sub(r"\1\2utf-8\2", document, count=1).encode("utf-8")


def parse_feed(document: Union[str, bytes]) -> List[CandidateArticle]:
    """Parse an RSS 2.0 or Atom document into candidate articles.

    RSS items are tried first; Atom entries are used when the document is
    Atom or no RSS item survived. Entries without a title or link are dropped.
    """
    if not document or not document.strip():
        return []

    parsed = feedparser.parse(_as_document(document))
    version = parsed.get("version") or ""
    if parsed.get("bozo"):
        logger.warning(
            "feed_parse_issues",
            version=version,
            error=str(parsed.get("bozo_exception")),
            recovered_entries=len(parsed.entries),
        )

    if not version.startswith("atom"):
        rss_items = [
            item for item in (_to_candidate(entry, allow_guid_link=True) for entry in parsed.entries)
            if item is not None
        ]
        if rss_items:
            return rss_items

    atom_items = [
        item for item in (_to_candidate(entry, allow_guid_link=False) for entry in parsed.entries)
        if item is not None
    ]
    logger.debug("feed_parsed", version=version, entries=len(parsed.entries), items=len(atom_items))
    return atom_items

