"""In-memory store used by tests and local dry runs."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from news_ingest.core.logging import get_logger
from news_ingest.models import (
    CandidateArticle,
    SourceConfig,
    SourceSyncStateInput,
    SyncRunInput,
    UpsertResult,
)
from news_ingest.repositories.base import NewsSyncRepository, StoreWriteError
from news_ingest.repositories.fingerprints import (
    DEFAULT_CHUNK_TARGET_BYTES,
    article_id_from_url,
    chunk_id,
)
from news_ingest.repositories.planning import (
    ArticleWritePlan,
    dedupe_by_canonical_url,
    plan_article_write,
    source_state_fields,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryNewsRepository(NewsSyncRepository):
    """Dict-backed implementation of the store contract.

    Each upsert call is planned completely before anything is applied, so a
    failure while planning leaves the store untouched, like a failed batch
    commit.
    """

    def __init__(
        self,
        *,
        chunk_target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.chunk_target_bytes = chunk_target_bytes
        self._clock = clock
        self.articles: Dict[str, Dict[str, Any]] = {}
        self.chunks: Dict[str, Dict[str, Any]] = {}
        self.source_states: Dict[str, Dict[str, Any]] = {}
        self.sync_runs: Dict[str, Dict[str, Any]] = {}
        self.log = logger.bind(component="InMemoryNewsRepository")

    async def upsert_articles(self, source: SourceConfig, articles: List[CandidateArticle]) -> UpsertResult:
        deduped = dedupe_by_canonical_url(articles)
        if not deduped:
            return UpsertResult()

        now = self._clock()
        plans = [
            plan_article_write(
                self.articles.get(article_id_from_url(article.canonical_url)),
                source,
                article,
                now,
                self.chunk_target_bytes,
            )
            for article in deduped
        ]

        result = UpsertResult(fetched_count=len(deduped))
        for plan in plans:
            self._apply(plan)
            if plan.outcome == "inserted":
                result.inserted_count += 1
            elif plan.outcome == "updated":
                result.updated_count += 1
            else:
                result.unchanged_count += 1

        self.log.debug(
            "articles_upserted",
            source_id=source.id,
            fetched=result.fetched_count,
            inserted=result.inserted_count,
            updated=result.updated_count,
            unchanged=result.unchanged_count,
        )
        return result

    def _apply(self, plan: ArticleWritePlan) -> None:
        document = self.articles.setdefault(plan.article_id, {})
        document.update(copy.deepcopy(plan.fields))
        if plan.outcome != "unchanged":
            self.log.debug("article_written", **plan.log_fields())

        if plan.chunks is None:
            return
        new_count = len(plan.chunks)
        stale = [
            key for key, chunk in self.chunks.items()
            if chunk["article_id"] == plan.article_id and chunk["chunk_index"] >= new_count
        ]
        for key in stale:
            del self.chunks[key]
        now = plan.fields.get("full_text_updated_at") or self._clock()
        for index, text in enumerate(plan.chunks):
            self.chunks[chunk_id(plan.article_id, index)] = {
                "id": chunk_id(plan.article_id, index),
                "article_id": plan.article_id,
                "chunk_index": index,
                "text": text,
                "created_at": now,
                "updated_at": now,
            }

    async def record_source_sync_state(self, state: SourceSyncStateInput) -> None:
        record = self.source_states.setdefault(
            state.source.id, {"last_success_at": None, "last_error": None}
        )
        record.update(source_state_fields(state, self._clock()))

    async def record_sync_run(self, run: SyncRunInput) -> None:
        if run.run_id in self.sync_runs:
            raise StoreWriteError(f"Sync run {run.run_id} already recorded")
        self.sync_runs[run.run_id] = run.summary()

    async def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        document = self.articles.get(article_id)
        return copy.deepcopy(document) if document is not None else None

    async def get_text_chunks(self, article_id: str) -> List[Dict[str, Any]]:
        chunks = [dict(chunk) for chunk in self.chunks.values() if chunk["article_id"] == article_id]
        return sorted(chunks, key=lambda chunk: chunk["chunk_index"])

    async def get_source_state(self, source_id: str) -> Optional[Dict[str, Any]]:
        state = self.source_states.get(source_id)
        return dict(state) if state is not None else None

    async def list_source_states(self) -> List[Dict[str, Any]]:
        return sorted((dict(state) for state in self.source_states.values()), key=lambda s: s["source_name"])

    async def get_sync_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        run = self.sync_runs.get(run_id)
        return copy.deepcopy(run) if run is not None else None

    async def count_articles_by_source(self, source_id: str) -> int:
        return sum(1 for document in self.articles.values() if document.get("source_id") == source_id)

    async def list_articles_by_source(self, source_id: str, limit: int) -> List[Dict[str, Any]]:
        matches = [copy.deepcopy(d) for d in self.articles.values() if d.get("source_id") == source_id]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        matches.sort(key=lambda d: d.get("published_at") or epoch, reverse=True)
        return matches[: max(1, limit)]

    async def list_articles_missing_full_text(
        self,
        source_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        matches = [
            copy.deepcopy(d)
            for d in self.articles.values()
            if d.get("full_text_status") != "ready" and (source_id is None or d.get("source_id") == source_id)
        ]
        matches.sort(key=lambda d: (d["first_seen_at"], d["id"]))
        return matches[:limit] if limit else matches
