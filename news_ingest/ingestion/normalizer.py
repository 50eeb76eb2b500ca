"""Per-batch cleanup of parsed feed items before hydration and storage."""

from __future__ import annotations

from typing import Iterable, List

from news_ingest.ingestion.text import dedupe_categories, normalize_whitespace, truncate
from news_ingest.models import CandidateArticle

MAX_TITLE_CHARS = 500
MAX_SUMMARY_CHARS = 4_000
MAX_AUTHOR_CHARS = 120
MAX_CATEGORIES = 12


def normalize_items(candidates: Iterable[CandidateArticle], max_items_per_source: int) -> List[CandidateArticle]:
    """Clean, dedupe, and cap one source's parsed items.

    Order of operations: normalize/cap text fields, drop items with an empty
    URL or title, dedupe by lowercased URL (first wins), then stop once
    ``max_items_per_source`` items are kept. Feed order is preserved, so the
    cap keeps the newest items for feeds that list newest first.
    """
    max_items = max(1, max_items_per_source)
    results: List[CandidateArticle] = []
    seen: set[str] = set()

    for item in candidates:
        if len(results) >= max_items:
            break

        canonical_url = normalize_whitespace(item.canonical_url)
        title = truncate(normalize_whitespace(item.title), MAX_TITLE_CHARS)
        if not canonical_url or not title:
            continue

        dedupe_key = canonical_url.lower()
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)

        author = normalize_whitespace(item.author)
        results.append(
            CandidateArticle(
                external_id=normalize_whitespace(item.external_id) or canonical_url,
                canonical_url=canonical_url,
                title=title,
                summary=truncate(normalize_whitespace(item.summary), MAX_SUMMARY_CHARS),
                categories=dedupe_categories(item.categories)[:MAX_CATEGORIES],
                author=truncate(author, MAX_AUTHOR_CHARS) if author else None,
                published_at_ms=item.published_at_ms,
                full_text=item.full_text,
                full_text_error=item.full_text_error,
            )
        )

    return results
