"""Article full-text extraction from publisher HTML pages."""

from __future__ import annotations

import json
from typing import Any, List, Optional

import httpx
from bs4 import BeautifulSoup

from news_ingest.core.logging import get_logger
from news_ingest.feeds.base import (
    DEFAULT_USER_AGENT,
    HTML_ACCEPT,
    FeedFetchError,
    get_text,
)
from news_ingest.ingestion.text import html_to_text, html_soup, mark_blocks, node_text

logger = get_logger(__name__)

JSON_LD_MIN_CHARS = 20
CONTAINER_MIN_CHARS = 180
DEFAULT_ARTICLE_TIMEOUT_MS = 12_000


class ArticleFetchError(FeedFetchError):
    """Raised when an article page cannot be fetched."""


class ExtractionError(Exception):
    """Raised when an article page yields no usable text."""


def _is_json_ld(value: Optional[str]) -> bool:
    return bool(value) and value.split(";")[0].strip().lower() == "application/ld+json"


def _collect_article_bodies(value: Any, out: List[str]) -> None:
    if isinstance(value, list):
        for item in value:
            _collect_article_bodies(item, out)
        return
    if not isinstance(value, dict):
        return

    body = value.get("articleBody")
    if isinstance(body, str) and body.strip():
        out.append(body.strip())
    for nested in value.values():
        _collect_article_bodies(nested, out)


def _json_ld_body(soup: BeautifulSoup) -> str:
    bodies: List[str] = []
    for script in soup.find_all("script", attrs={"type": _is_json_ld}):
        block = (script.string or "").strip()
        if not block:
            continue
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError:
            continue
        _collect_article_bodies(parsed, bodies)

    if not bodies:
        return ""
    # articleBody may itself carry entities or inline markup
    return html_to_text(max(bodies, key=len))


def extract_json_ld_body(page_html: str) -> str:
    """Longest ``articleBody`` found anywhere in the page's JSON-LD blocks."""
    return _json_ld_body(html_soup(page_html))


def extract_article_text(page_html: str) -> str:
    """Extract readable article text.

    Strategies, strongest signal first; each must clear a length gate:
    JSON-LD ``articleBody`` (20 chars), then the first ``<article>``,
    ``<main>`` or ``<body>`` element (180 chars), then the whole document.
    """
    if not page_html or not page_html.strip():
        return ""

    soup = html_soup(page_html)
    json_ld_text = _json_ld_body(soup)
    if len(json_ld_text) >= JSON_LD_MIN_CHARS:
        return json_ld_text

    mark_blocks(soup)
    container = soup.find("article") or soup.find("main") or soup.find("body")
    if container is not None:
        container_text = node_text(container)
        if len(container_text) >= CONTAINER_MIN_CHARS:
            return container_text

    return node_text(soup)


async def fetch_article_html(
    url: str,
    *,
    timeout_ms: int = DEFAULT_ARTICLE_TIMEOUT_MS,
    user_agent: str = DEFAULT_USER_AGENT,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Fetch an article page, raising ArticleFetchError on any failure or empty body."""
    try:
        response = await get_text(
            url,
            timeout_ms=timeout_ms,
            user_agent=user_agent,
            accept=HTML_ACCEPT,
            client=client,
        )
    except FeedFetchError as exc:
        raise ArticleFetchError(
            f"Article request failed: {exc}",
            url=url,
            status_code=exc.status_code,
        ) from exc

    page_html = response.text
    if not page_html.strip():
        raise ArticleFetchError("Article response body was empty.", url=url, status_code=response.status_code)
    return page_html


async def fetch_full_text(
    url: str,
    *,
    timeout_ms: int = DEFAULT_ARTICLE_TIMEOUT_MS,
    user_agent: str = DEFAULT_USER_AGENT,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Fetch an article page and return its extracted plain text.

    Raises:
        ArticleFetchError: the page could not be retrieved.
        ExtractionError: the page contained no extractable text.
    """
    page_html = await fetch_article_html(url, timeout_ms=timeout_ms, user_agent=user_agent, client=client)
    text = extract_article_text(page_html)
    if not text.strip():
        logger.warning("article_extraction_empty", url=url)
        raise ExtractionError("Unable to extract article text from HTML.")
    return text
