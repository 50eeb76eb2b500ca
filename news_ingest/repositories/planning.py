"""Backend-independent upsert decisions for one candidate article.

Both store implementations load the existing article document, ask
``plan_article_write`` what to do, and apply the returned plan. Keeping the
decision in one pure function keeps the in-memory fake and the SQL store in
lockstep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from news_ingest.models import CandidateArticle, SourceConfig, SourceSyncStateInput
from news_ingest.repositories.fingerprints import (
    article_id_from_url,
    chunk_text_by_bytes,
    feed_fingerprint,
    hash_text,
)

WriteOutcome = Literal["inserted", "updated", "unchanged"]


@dataclass
class ArticleWritePlan:
    """What to write for one article.

    ``fields`` is merged into the stored document (or becomes it on insert).
    When ``chunks`` is not None the chunk set is rewritten to exactly
    ``range(len(chunks))`` and every stored index at or above that is deleted.
    """

    article_id: str
    outcome: WriteOutcome
    fields: Dict[str, Any]
    chunks: Optional[List[str]] = None
    full_text_changed: bool = False
    previous_chunk_count: int = 0
    notes: List[str] = field(default_factory=list)

    def log_fields(self) -> Dict[str, Any]:
        """Structured-log context describing what this plan changes."""
        return {
            "article_id": self.article_id,
            "outcome": self.outcome,
            "changed": list(self.notes),
            "full_text_changed": self.full_text_changed,
            "previous_chunk_count": self.previous_chunk_count,
            "chunk_count": None if self.chunks is None else len(self.chunks),
        }


def _published_at(article: CandidateArticle) -> Optional[datetime]:
    if article.published_at_ms is None:
        return None
    return datetime.fromtimestamp(article.published_at_ms / 1000, tz=timezone.utc)


def _feed_fields(source: SourceConfig, article: CandidateArticle, fingerprint: str) -> Dict[str, Any]:
    return {
        "source_id": source.id,
        "source_name": source.name,
        "source": source.snapshot(),
        "canonical_url": article.canonical_url,
        "title": article.title,
        "summary": article.summary,
        "categories": list(article.categories),
        "external_id": article.external_id,
        "author": article.author,
        "published_at": _published_at(article),
        "feed_fingerprint": fingerprint,
    }


def _full_text_patch(
    article: CandidateArticle,
    existing: Optional[Mapping[str, Any]],
    now: datetime,
    chunk_target_bytes: int,
) -> tuple[Dict[str, Any], Optional[List[str]]]:
    """Return (fields, chunks) for the full-text part; empty fields means no change."""
    existing = existing or {}

    full_text = (article.full_text or "").strip()
    if full_text:
        fingerprint = hash_text(full_text)
        chunks = chunk_text_by_bytes(full_text, chunk_target_bytes)
        stored_count = max(0, int(existing.get("full_text_chunk_count") or 0))
        if existing.get("full_text_fingerprint") == fingerprint and stored_count == len(chunks):
            return {}, None
        return (
            {
                "full_text_status": "ready",
                "full_text_error": None,
                "full_text_length": len(full_text),
                "full_text_chunk_count": len(chunks),
                "full_text_fingerprint": fingerprint,
                "full_text_updated_at": now,
            },
            chunks,
        )

    if article.full_text_error:
        if existing.get("full_text_status") == "error" and existing.get("full_text_error") == article.full_text_error:
            return {}, None
        return (
            {
                "full_text_status": "error",
                "full_text_error": article.full_text_error,
                "full_text_updated_at": now,
            },
            None,
        )

    return {}, None


def plan_article_write(
    existing: Optional[Mapping[str, Any]],
    source: SourceConfig,
    article: CandidateArticle,
    now: datetime,
    chunk_target_bytes: int,
) -> ArticleWritePlan:
    """Decide insert / update / unchanged for one candidate.

    ``existing`` is the stored article document as a mapping, or None. The
    feed fingerprint and the full-text patch are evaluated independently; a
    change in either makes the article "updated". ``last_seen_at`` is bumped
    in every branch; ``first_seen_at`` and ``created_at`` are only ever set
    on insert.
    """
    article_id = article_id_from_url(article.canonical_url)
    fingerprint = feed_fingerprint(article)
    full_text_fields, chunks = _full_text_patch(article, existing, now, chunk_target_bytes)
    previous_chunk_count = max(0, int((existing or {}).get("full_text_chunk_count") or 0))

    if existing is None:
        fields = {
            "id": article_id,
            **_feed_fields(source, article, fingerprint),
            "full_text_status": "none",
            "full_text_error": None,
            "full_text_fingerprint": None,
            "full_text_length": 0,
            "full_text_chunk_count": 0,
            "full_text_updated_at": None,
            "first_seen_at": now,
            "created_at": now,
            "last_seen_at": now,
            "updated_at": now,
        }
        fields.update(full_text_fields)
        return ArticleWritePlan(
            article_id=article_id,
            outcome="inserted",
            fields=fields,
            chunks=chunks,
            full_text_changed=bool(full_text_fields),
        )

    feed_changed = existing.get("feed_fingerprint") != fingerprint
    if feed_changed or full_text_fields:
        fields = {
            **_feed_fields(source, article, fingerprint),
            **full_text_fields,
            "last_seen_at": now,
            "updated_at": now,
        }
        return ArticleWritePlan(
            article_id=article_id,
            outcome="updated",
            fields=fields,
            chunks=chunks,
            full_text_changed=bool(full_text_fields),
            previous_chunk_count=previous_chunk_count,
            notes=[reason for reason, flag in (("feed", feed_changed), ("full_text", bool(full_text_fields))) if flag],
        )

    return ArticleWritePlan(
        article_id=article_id,
        outcome="unchanged",
        fields={"last_seen_at": now},
        previous_chunk_count=previous_chunk_count,
    )


def dedupe_by_canonical_url(articles: List[CandidateArticle]) -> List[CandidateArticle]:
    """First occurrence wins; items with an empty URL are dropped."""
    seen: set[str] = set()
    deduped: List[CandidateArticle] = []
    for article in articles:
        key = article.canonical_url.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        deduped.append(article)
    return deduped


def source_state_fields(state: SourceSyncStateInput, now: datetime) -> Dict[str, Any]:
    """Fields to merge into a source's sync-state record.

    ``last_success_at`` only advances on success, which also clears
    ``last_error``. An error records its message; a skip leaves both alone.
    """
    source = state.source
    fields: Dict[str, Any] = {
        "source_id": source.id,
        "source_name": source.name,
        "feed_url": source.feed_url,
        "homepage_url": source.homepage_url,
        "language": source.language,
        "country_code": source.country_code,
        "last_status": state.status,
        "last_run_id": state.run_id,
        "last_run_at": now,
        "fetched_count": state.fetched_count,
        "inserted_count": state.inserted_count,
        "updated_count": state.updated_count,
        "unchanged_count": state.unchanged_count,
        "duration_ms": state.duration_ms,
        "last_http_status": state.http_status,
        "updated_at": now,
    }
    if state.status == "success":
        fields["last_success_at"] = now
        fields["last_error"] = None
    elif state.status == "error":
        fields["last_error"] = state.error_message or "Unknown feed sync error."
    return fields


def candidate_from_document(document: Mapping[str, Any]) -> CandidateArticle:
    """Rebuild the feed-derived candidate from a stored article document.

    Produces the same feed fingerprint as the candidate that was stored, so
    re-upserting it with new full text leaves the feed fields untouched.
    """
    published_at = document.get("published_at")
    canonical_url = document.get("canonical_url") or ""
    return CandidateArticle(
        external_id=document.get("external_id") or canonical_url or document.get("id", ""),
        canonical_url=canonical_url,
        title=document.get("title") or "",
        summary=document.get("summary") or "",
        categories=[str(value) for value in document.get("categories") or [] if value],
        author=document.get("author") or None,
        published_at_ms=round(published_at.timestamp() * 1000) if published_at is not None else None,
    )


def source_from_document(document: Mapping[str, Any]) -> SourceConfig:
    """Source settings as they were snapshotted onto a stored article."""
    snapshot = document.get("source") or {}
    return SourceConfig(
        id=document["source_id"],
        name=document.get("source_name") or document["source_id"],
        homepage_url=snapshot.get("homepage_url") or document.get("canonical_url") or "",
        feed_url=snapshot.get("feed_url") or "",
        language=snapshot.get("language") or "en",
        country_code=snapshot.get("country_code") or None,
    )
