"""
Ingestion orchestrator: one sync run across the configured news sources.

Each source goes fetch -> parse -> normalize -> (optional) full-text
hydration -> store upsert. Sources run in a bounded worker pool, and so do
the article pages inside one source. A failing source becomes an ``error``
result and never aborts the run; only a failure to write the final run
record reaches the caller.

The same service backfills full text for stored articles that never got
it, reusing the article-page fetcher and the store upsert.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from news_ingest.core.cache import TTLCache
from news_ingest.core.config import Settings
from news_ingest.core.concurrency import bounded_map
from news_ingest.core.logging import get_logger
from news_ingest.db.session import get_sessionmaker
from news_ingest.feeds.fetcher import FeedFetchResult, fetch_feed
from news_ingest.feeds.parser import parse_feed
from news_ingest.ingestion.extractor import fetch_full_text
from news_ingest.ingestion.normalizer import normalize_items
from news_ingest.models import (
    BackfillResult,
    CandidateArticle,
    SourceConfig,
    SourceSyncResult,
    SourceSyncStateInput,
    SyncOptions,
    SyncRunInput,
    SyncRunResult,
)
from news_ingest.repositories.base import NewsSyncRepository, StoreWriteError
from news_ingest.repositories.planning import candidate_from_document, source_from_document
from news_ingest.repositories.sql_repo import SqlAlchemyNewsRepository
from news_ingest.services.read_service import invalidate_source_cache
from news_ingest.sources import resolve_sources

logger = get_logger(__name__)

DEADLINE_GUARD_MS = 1_500
MIN_TIMEOUT_MS = 1_000
MAX_ARTICLE_CONCURRENCY = 6
SKIPPED_MESSAGE = "Skipped to stay within function deadline."
UNKNOWN_ERROR_MESSAGE = "Unknown feed sync error."
FULL_TEXT_ERROR_MESSAGE = "Unable to fetch article text."


class FeedFetcher(Protocol):
    def __call__(self, feed_url: str, *, timeout_ms: int, user_agent: str) -> Awaitable[FeedFetchResult]:
        ...


class FeedParser(Protocol):
    def __call__(self, document: Union[str, bytes]) -> List[CandidateArticle]:
        ...


class TextFetcher(Protocol):
    def __call__(self, url: str, *, timeout_ms: int, user_agent: str) -> Awaitable[str]:
        ...


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class NewsIngestionService:
    """Run the sync pipeline for a fixed list of sources against one store."""

    def __init__(
        self,
        repository: NewsSyncRepository,
        sources: Sequence[SourceConfig],
        *,
        feed_fetcher: FeedFetcher = fetch_feed,
        feed_parser: FeedParser = parse_feed,
        text_fetcher: TextFetcher = fetch_full_text,
        cache: Optional[TTLCache] = None,
        clock_ms: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        self.repository = repository
        self.sources = tuple(sources)
        self.feed_fetcher = feed_fetcher
        self.feed_parser = feed_parser
        self.text_fetcher = text_fetcher
        self.cache = cache
        self._now_ms = clock_ms

    def select_sources(self, max_sources_per_run: Optional[int]) -> List[SourceConfig]:
        """First ``max_sources_per_run`` sources in configured order; all when unset or <= 0."""
        if max_sources_per_run is not None and max_sources_per_run > 0:
            return list(self.sources[:max_sources_per_run])
        return list(self.sources)

    async def sync_all_sources(self, options: SyncOptions) -> SyncRunResult:
        """Sync every selected source once and write the run audit record.

        Raises:
            StoreWriteError: the final run record could not be written.
        """
        started_at_ms = self._now_ms()
        run_id = f"news-sync-{started_at_ms}"
        sources = self.select_sources(options.max_sources_per_run)

        with structlog.contextvars.bound_contextvars(correlation_id=run_id):
            log = logger.bind(run_id=run_id)
            log.info(
                "news_sync_run_start",
                source_count=len(sources),
                schedule=options.schedule,
                deadline_ms=options.deadline_ms,
                fetch_full_text=options.fetch_full_text,
            )

            async def _worker(source: SourceConfig) -> SourceSyncResult:
                return await self._sync_single_source(run_id, source, options)

            source_results = await bounded_map(sources, options.source_concurrency, _worker)

            completed_at_ms = self._now_ms()
            await self.repository.record_sync_run(
                SyncRunInput(
                    run_id=run_id,
                    started_at_ms=started_at_ms,
                    completed_at_ms=completed_at_ms,
                    schedule=options.schedule,
                    source_results=source_results,
                )
            )

            result = SyncRunResult.from_results(run_id, started_at_ms, completed_at_ms, source_results)
            log.info(
                "news_sync_run_complete",
                duration_ms=result.duration_ms,
                source_count=len(source_results),
                fetched_count=result.total_fetched_count,
                inserted_count=result.total_inserted_count,
                updated_count=result.total_updated_count,
                unchanged_count=result.total_unchanged_count,
            )
            return result

    async def _sync_single_source(
        self,
        run_id: str,
        source: SourceConfig,
        options: SyncOptions,
    ) -> SourceSyncResult:
        log = logger.bind(run_id=run_id, source_id=source.id)
        started_at_ms = self._now_ms()

        if options.deadline_ms is not None and options.deadline_ms - started_at_ms <= DEADLINE_GUARD_MS:
            result = SourceSyncResult(
                source_id=source.id,
                source_name=source.name,
                status="skipped",
                error_message=SKIPPED_MESSAGE,
            )
            log.info("news_sync_source_skipped", remaining_ms=options.deadline_ms - started_at_ms)
            await self._record_state(source, run_id, result)
            return result

        try:
            feed = await self.feed_fetcher(
                source.feed_url,
                timeout_ms=max(MIN_TIMEOUT_MS, options.feed_timeout_ms),
                user_agent=options.user_agent,
            )
            parsed = self.feed_parser(feed.document)
            items = normalize_items(parsed, options.max_articles_per_source)
            if options.fetch_full_text:
                items = await self._hydrate_full_text(items, options, log)
            upsert = await self.repository.upsert_articles(source, items)
        except Exception as exc:
            http_status = getattr(exc, "status_code", None)
            result = SourceSyncResult(
                source_id=source.id,
                source_name=source.name,
                status="error",
                duration_ms=self._now_ms() - started_at_ms,
                error_message=str(exc) or UNKNOWN_ERROR_MESSAGE,
                http_status=http_status if isinstance(http_status, int) else None,
            )
            log.warning(
                "news_sync_source_failed",
                source_name=source.name,
                http_status=result.http_status,
                error=result.error_message,
                error_type=type(exc).__name__,
            )
            await self._record_state(source, run_id, result)
            return result

        if self.cache is not None:
            invalidate_source_cache(self.cache, source.id)

        result = SourceSyncResult(
            source_id=source.id,
            source_name=source.name,
            status="success",
            fetched_count=upsert.fetched_count,
            inserted_count=upsert.inserted_count,
            updated_count=upsert.updated_count,
            unchanged_count=upsert.unchanged_count,
            duration_ms=self._now_ms() - started_at_ms,
            http_status=feed.http_status,
        )
        log.info(
            "news_sync_source_complete",
            fetched_count=result.fetched_count,
            inserted_count=result.inserted_count,
            updated_count=result.updated_count,
            unchanged_count=result.unchanged_count,
            duration_ms=result.duration_ms,
        )
        await self._record_state(source, run_id, result)
        return result

    async def _hydrate_full_text(
        self,
        items: List[CandidateArticle],
        options: SyncOptions,
        log: structlog.stdlib.BoundLogger,
    ) -> List[CandidateArticle]:
        if not items:
            return items

        concurrency = max(1, min(options.article_concurrency, MAX_ARTICLE_CONCURRENCY))
        timeout_ms = max(MIN_TIMEOUT_MS, options.article_timeout_ms)

        async def _hydrate(item: CandidateArticle) -> CandidateArticle:
            try:
                text = await self.text_fetcher(
                    item.canonical_url,
                    timeout_ms=timeout_ms,
                    user_agent=options.user_agent,
                )
            except Exception as exc:
                message = str(exc) or FULL_TEXT_ERROR_MESSAGE
                log.debug("article_full_text_failed", url=item.canonical_url, error=message)
                return item.with_full_text_error(message)
            return item.with_full_text(text)

        hydrated = await bounded_map(items, concurrency, _hydrate)
        log.debug(
            "article_full_text_hydrated",
            items=len(hydrated),
            ready=sum(1 for item in hydrated if item.full_text),
            failed=sum(1 for item in hydrated if item.full_text_error),
        )
        return hydrated

    async def backfill_full_text(
        self,
        options: SyncOptions,
        *,
        source_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> BackfillResult:
        """Fetch full text for stored articles whose status is not ``ready``.

        Each article is rebuilt from its stored feed fields and upserted on
        its own with either the extracted text or the fetch error, so one
        failure never discards another article's progress. The configured
        source is used when it still exists, otherwise the snapshot stored
        with the article. Documents without a URL or source id are skipped.
        """
        documents = await self.repository.list_articles_missing_full_text(source_id=source_id, limit=limit)
        configured = {source.id: source for source in self.sources}
        concurrency = max(1, min(options.article_concurrency, MAX_ARTICLE_CONCURRENCY))
        timeout_ms = max(MIN_TIMEOUT_MS, options.article_timeout_ms)
        touched: set[str] = set()
        log = logger.bind(source_id=source_id)
        log.info("news_backfill_start", candidate_count=len(documents), limit=limit)

        async def _backfill(document: dict) -> str:
            if not document.get("canonical_url") or not document.get("source_id"):
                return "skipped"
            source = configured.get(document["source_id"]) or source_from_document(document)
            article = candidate_from_document(document)
            try:
                text = await self.text_fetcher(
                    article.canonical_url,
                    timeout_ms=timeout_ms,
                    user_agent=options.user_agent,
                )
            except Exception as exc:
                article = article.with_full_text_error(str(exc) or FULL_TEXT_ERROR_MESSAGE)
                log.debug("article_full_text_failed", url=article.canonical_url, error=article.full_text_error)
            else:
                article = article.with_full_text(text)

            try:
                await self.repository.upsert_articles(source, [article])
            except StoreWriteError as exc:
                log.warning("news_backfill_write_failed", article_id=document.get("id"), error=str(exc))
                return "failed"
            touched.add(source.id)
            return "ready" if article.full_text else "failed"

        outcomes = await bounded_map(documents, concurrency, _backfill)
        if self.cache is not None:
            for touched_id in touched:
                invalidate_source_cache(self.cache, touched_id)

        result = BackfillResult(
            candidate_count=len(documents),
            ready_count=outcomes.count("ready"),
            failed_count=outcomes.count("failed"),
            skipped_count=outcomes.count("skipped"),
        )
        log.info(
            "news_backfill_complete",
            candidate_count=result.candidate_count,
            ready_count=result.ready_count,
            failed_count=result.failed_count,
            skipped_count=result.skipped_count,
        )
        return result

    async def _record_state(self, source: SourceConfig, run_id: str, result: SourceSyncResult) -> None:
        try:
            await self.repository.record_source_sync_state(
                SourceSyncStateInput.from_result(source, run_id, result)
            )
        except Exception as exc:
            logger.error(
                "news_sync_source_state_failed",
                run_id=run_id,
                source_id=source.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )


def build_ingestion_service(
    settings: Settings,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    cache: Optional[TTLCache] = None,
    source_id: Optional[str] = None,
) -> NewsIngestionService:
    """Wire the production service: configured sources and the SQL store."""
    repository = SqlAlchemyNewsRepository(
        session_factory or get_sessionmaker(),
        chunk_target_bytes=settings.news_chunk_target_bytes,
    )
    sources = resolve_sources(settings.news_sources_file, source_id=source_id)
    return NewsIngestionService(repository, sources, cache=cache)
