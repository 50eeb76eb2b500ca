"""Read-side views over the article store, cached per source."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from news_ingest.core.cache import TTLCache
from news_ingest.core.logging import get_logger
from news_ingest.repositories.base import NewsSyncRepository

logger = get_logger(__name__)

SOURCES_NAMESPACE = "__sources__"
MAX_LIST_LIMIT = 100


def invalidate_source_cache(cache: TTLCache, source_id: str) -> None:
    """Drop cached views derived from one source, plus the source listing."""
    cache.invalidate_namespace(source_id)
    cache.invalidate_namespace(SOURCES_NAMESPACE)


def _to_ms(value: Any) -> Optional[int]:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return None


@dataclass
class NewsSourceSummary:
    id: str
    name: str
    homepage_url: str
    language: str
    country_code: Optional[str]
    article_count: int
    last_status: Optional[str] = None
    last_run_at_ms: Optional[int] = None
    last_success_at_ms: Optional[int] = None


@dataclass
class NewsArticleListItem:
    id: str
    source_id: str
    source_name: str
    title: str
    summary: str
    canonical_url: str
    published_at_ms: Optional[int] = None
    full_text_status: Optional[str] = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "NewsArticleListItem":
        return cls(
            id=str(document.get("id") or ""),
            source_id=str(document.get("source_id") or ""),
            source_name=str(document.get("source_name") or ""),
            title=str(document.get("title") or ""),
            summary=str(document.get("summary") or ""),
            canonical_url=str(document.get("canonical_url") or ""),
            published_at_ms=_to_ms(document.get("published_at")),
            full_text_status=document.get("full_text_status") or None,
        )


@dataclass
class NewsArticleDetail(NewsArticleListItem):
    full_text: Optional[str] = None
    full_text_error: Optional[str] = None
    full_text_length: Optional[int] = None
    full_text_chunk_count: Optional[int] = None


class NewsReadService:
    """Assemble what downstream readers see from stored documents.

    Results are cached in the supplied ``TTLCache`` under the owning source's
    namespace; the ingestion service invalidates that namespace after it
    writes to a source.
    """

    def __init__(self, repository: NewsSyncRepository, cache: TTLCache) -> None:
        self.repository = repository
        self.cache = cache
        self.log = logger.bind(component="NewsReadService")

    async def list_sources(self) -> List[NewsSourceSummary]:
        key = (SOURCES_NAMESPACE, "list")
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        summaries: List[NewsSourceSummary] = []
        for state in await self.repository.list_source_states():
            source_id = str(state["source_id"])
            summaries.append(
                NewsSourceSummary(
                    id=source_id,
                    name=str(state.get("source_name") or source_id),
                    homepage_url=str(state.get("homepage_url") or ""),
                    language=str(state.get("language") or ""),
                    country_code=state.get("country_code") or None,
                    article_count=await self.repository.count_articles_by_source(source_id),
                    last_status=state.get("last_status"),
                    last_run_at_ms=_to_ms(state.get("last_run_at")),
                    last_success_at_ms=_to_ms(state.get("last_success_at")),
                )
            )
        summaries.sort(key=lambda summary: summary.name)
        self.cache.set(key, summaries)
        return summaries

    async def list_articles_by_source(self, source_id: str, limit: int = 20) -> List[NewsArticleListItem]:
        bounded_limit = max(1, min(MAX_LIST_LIMIT, int(limit)))
        key = (source_id, "articles", bounded_limit)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        documents = await self.repository.list_articles_by_source(source_id, bounded_limit)
        items = [NewsArticleListItem.from_document(document) for document in documents]
        self.cache.set(key, items)
        return items

    async def get_article_detail(self, article_id: str) -> Optional[NewsArticleDetail]:
        """Article fields plus the full text reassembled from its chunks in index order."""
        document = await self.repository.get_article(article_id)
        if document is None:
            return None

        chunks = await self.repository.get_text_chunks(article_id)
        full_text = "".join(str(chunk.get("text") or "") for chunk in chunks)
        expected = int(document.get("full_text_chunk_count") or 0)
        if expected != len(chunks):
            self.log.warning(
                "article_chunk_count_mismatch",
                article_id=article_id,
                expected=expected,
                stored=len(chunks),
            )

        base = NewsArticleListItem.from_document(document)
        return NewsArticleDetail(
            **vars(base),
            full_text=full_text or None,
            full_text_error=document.get("full_text_error") or None,
            full_text_length=document.get("full_text_length"),
            full_text_chunk_count=document.get("full_text_chunk_count"),
        )

    async def get_sync_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return await self.repository.get_sync_run(run_id)
