"""Content-addressed identity, change fingerprints, and byte-bounded chunking."""

from __future__ import annotations

import hashlib
from typing import List

from news_ingest.models import CandidateArticle

DEFAULT_CHUNK_TARGET_BYTES = 350 * 1024
GROW_STEP_CHARS = 4_096
SHRINK_STEP_CHARS = 1_024


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def article_id_from_url(canonical_url: str) -> str:
    """Stable document id for an article: sha256 of the lowercased canonical URL."""
    return hash_text(canonical_url.strip().lower())


def feed_fingerprint(article: CandidateArticle) -> str:
    """Hash over every feed-derived field that should trigger a rewrite."""
    payload = "::".join(
        [
            article.canonical_url,
            article.title,
            article.summary,
            str(article.published_at_ms or 0),
            article.external_id,
            article.author or "",
            "|".join(article.categories),
        ]
    )
    return hash_text(payload)


def chunk_id(article_id: str, chunk_index: int) -> str:
    return f"{article_id}_{chunk_index:04d}"


def _utf8_len(value: str) -> int:
    return len(value.encode("utf-8"))


def _largest_fitting_end(value: str, start: int, low: int, high: int, target: int) -> int:
    """Largest ``stop`` in ``[low, high)`` whose slice from ``start`` fits, or ``low``."""
    best = low
    lo, hi = low + 1, high - 1
    while lo <= hi:
        mid = (lo + hi) // 2
        if _utf8_len(value[start:mid]) <= target:
            best = mid
            lo = mid + 1
        else:
            hi = mid - 1
    return best


def chunk_text_by_bytes(value: str, target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES) -> List[str]:
    """Split ``value`` into chunks whose UTF-8 size stays within ``target_bytes``.

    Each chunk grows in 4 KiB character steps until it reaches the target,
    then backs off in 1 KiB steps and bisects between the last step that
    fit and the first that did not, so every chunk but the last is filled
    as close to the target as the text allows. A chunk is never empty: if
    a single character exceeds the target it becomes a chunk of its own.
    ``"".join(chunks) == value``.
    """
    if not value:
        return []

    target = max(1, target_bytes)
    chunks: List[str] = []
    cursor = 0
    length = len(value)

    while cursor < length:
        end = min(length, cursor + max(GROW_STEP_CHARS, target // 2))
        while end < length and _utf8_len(value[cursor:end]) < target:
            end = min(length, end + GROW_STEP_CHARS)

        if _utf8_len(value[cursor:end]) > target:
            overshoot = end
            while end - cursor > SHRINK_STEP_CHARS and _utf8_len(value[cursor:end]) > target:
                overshoot = end
                end -= SHRINK_STEP_CHARS
            if _utf8_len(value[cursor:end]) > target:
                end = _largest_fitting_end(value, cursor, cursor + 1, end, target)
            else:
                end = _largest_fitting_end(value, cursor, end, overshoot, target)

        chunks.append(value[cursor:end])
        cursor = end

    return chunks
