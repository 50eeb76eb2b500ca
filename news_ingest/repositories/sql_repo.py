"""SQLAlchemy-backed article store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from news_ingest.core.logging import get_logger
from news_ingest.db.models import NewsArticle, NewsArticleTextChunk, NewsSourceState, NewsSyncRun
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

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)

# A unique-key clash means a concurrent writer inserted the same article or
# chunk first; rerunning the batch re-plans it against the committed row.
_article_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    retry=retry_if_exception_type((OperationalError, IntegrityError)),
    reraise=True,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_error(exc: SQLAlchemyError) -> str:
    """Error class and driver message, without the statement or its parameters."""
    orig = getattr(exc, "orig", None)
    return f"{type(exc).__name__}: {orig}" if orig is not None else type(exc).__name__


class SqlAlchemyNewsRepository(NewsSyncRepository):
    """Store writes run in one transaction per call.

    Transient ``OperationalError`` failures (locked SQLite file, dropped
    connection) are retried, and article batches are also retried on
    ``IntegrityError`` so a row inserted concurrently is re-planned as an
    update. Anything else from SQLAlchemy surfaces as ``StoreWriteError``
    whose message omits the SQL statement.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        chunk_target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.chunk_target_bytes = chunk_target_bytes
        self._clock = clock
        self.log = logger.bind(component="SqlAlchemyNewsRepository")

    # Writes -----------------------------------------------------------------

    async def upsert_articles(self, source: SourceConfig, articles: List[CandidateArticle]) -> UpsertResult:
        deduped = dedupe_by_canonical_url(articles)
        if not deduped:
            return UpsertResult()
        try:
            result = await self._upsert_articles(source, deduped)
        except SQLAlchemyError as exc:
            self.log.error("articles_upsert_failed", source_id=source.id, error=str(exc))
            raise StoreWriteError(f"Failed to upsert articles for {source.id}: {_short_error(exc)}") from exc

        self.log.debug(
            "articles_upserted",
            source_id=source.id,
            fetched=result.fetched_count,
            inserted=result.inserted_count,
            updated=result.updated_count,
            unchanged=result.unchanged_count,
        )
        return result

    @_article_write_retry
    async def _upsert_articles(self, source: SourceConfig, articles: List[CandidateArticle]) -> UpsertResult:
        now = self._clock()
        ids = [article_id_from_url(article.canonical_url) for article in articles]
        result = UpsertResult(fetched_count=len(articles))

        async with self.session_factory() as session:
            async with session.begin():
                rows = await session.execute(select(NewsArticle).where(NewsArticle.id.in_(ids)))
                existing = {row.id: row for row in rows.scalars()}

                for article_id, article in zip(ids, articles):
                    record = existing.get(article_id)
                    plan = plan_article_write(
                        record.to_dict() if record is not None else None,
                        source,
                        article,
                        now,
                        self.chunk_target_bytes,
                    )
                    await self._apply(session, record, plan, now)
                    if plan.outcome == "inserted":
                        result.inserted_count += 1
                    elif plan.outcome == "updated":
                        result.updated_count += 1
                    else:
                        result.unchanged_count += 1
        return result

    async def _apply(
        self,
        session: AsyncSession,
        record: Optional[NewsArticle],
        plan: ArticleWritePlan,
        now: datetime,
    ) -> None:
        if record is None:
            session.add(NewsArticle(**plan.fields))
            await session.flush()
        else:
            for key, value in plan.fields.items():
                setattr(record, key, value)
        if plan.outcome != "unchanged":
            self.log.debug("article_written", **plan.log_fields())

        if plan.chunks is None:
            return

        await session.execute(
            delete(NewsArticleTextChunk).where(
                NewsArticleTextChunk.article_id == plan.article_id,
                NewsArticleTextChunk.chunk_index >= len(plan.chunks),
            )
        )
        for index, text in enumerate(plan.chunks):
            identifier = chunk_id(plan.article_id, index)
            chunk = await session.get(NewsArticleTextChunk, identifier)
            if chunk is None:
                session.add(
                    NewsArticleTextChunk(
                        id=identifier,
                        article_id=plan.article_id,
                        chunk_index=index,
                        text=text,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                chunk.text = text
                chunk.updated_at = now

    async def record_source_sync_state(self, state: SourceSyncStateInput) -> None:
        try:
            await self._record_source_sync_state(state)
        except SQLAlchemyError as exc:
            self.log.error("source_state_write_failed", source_id=state.source.id, error=str(exc))
            raise StoreWriteError(f"Failed to record sync state for {state.source.id}: {_short_error(exc)}") from exc

    @_write_retry
    async def _record_source_sync_state(self, state: SourceSyncStateInput) -> None:
        fields = source_state_fields(state, self._clock())
        async with self.session_factory() as session:
            async with session.begin():
                record = await session.get(NewsSourceState, state.source.id)
                if record is None:
                    session.add(NewsSourceState(**fields))
                else:
                    for key, value in fields.items():
                        setattr(record, key, value)

    async def record_sync_run(self, run: SyncRunInput) -> None:
        try:
            await self._record_sync_run(run)
        except SQLAlchemyError as exc:
            self.log.error("sync_run_write_failed", run_id=run.run_id, error=str(exc))
            raise StoreWriteError(f"Failed to record sync run {run.run_id}: {_short_error(exc)}") from exc

    @_write_retry
    async def _record_sync_run(self, run: SyncRunInput) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(NewsSyncRun(**run.summary(), created_at=self._clock()))

    # Reads ------------------------------------------------------------------

    async def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            record = await session.get(NewsArticle, article_id)
            return record.to_dict() if record is not None else None

    async def get_text_chunks(self, article_id: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(NewsArticleTextChunk)
                .where(NewsArticleTextChunk.article_id == article_id)
                .order_by(NewsArticleTextChunk.chunk_index)
            )
            return [chunk.to_dict() for chunk in rows.scalars()]

    async def get_source_state(self, source_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            record = await session.get(NewsSourceState, source_id)
            return record.to_dict() if record is not None else None

    async def list_source_states(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            rows = await session.execute(select(NewsSourceState).order_by(NewsSourceState.source_name))
            return [state.to_dict() for state in rows.scalars()]

    async def get_sync_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            record = await session.get(NewsSyncRun, run_id)
            return record.to_dict() if record is not None else None

    async def count_articles_by_source(self, source_id: str) -> int:
        async with self.session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(NewsArticle).where(NewsArticle.source_id == source_id)
            )
            return int(count or 0)

    async def list_articles_by_source(self, source_id: str, limit: int) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(NewsArticle)
                .where(NewsArticle.source_id == source_id)
                .order_by(NewsArticle.published_at.desc().nulls_last())
                .limit(max(1, limit))
            )
            return [article.to_dict() for article in rows.scalars()]

    async def list_articles_missing_full_text(
        self,
        source_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(NewsArticle).where(NewsArticle.full_text_status != "ready")
        if source_id is not None:
            stmt = stmt.where(NewsArticle.source_id == source_id)
        stmt = stmt.order_by(NewsArticle.first_seen_at, NewsArticle.id)
        if limit:
            stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            rows = await session.execute(stmt)
            return [article.to_dict() for article in rows.scalars()]
