"""SQLAlchemy models for persistent storage."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base declarative class."""


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp for default values."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NewsArticle(Base):
    """One article per canonical URL; the id is the sha256 of the lowercased URL."""

    __tablename__ = "news_articles"
    __table_args__ = (Index("ix_news_articles_source_published", "source_id", "published_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    canonical_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    categories: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    external_id: Mapped[str] = mapped_column(String(2048), nullable=False)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    feed_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    full_text_status: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    full_text_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_text_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    full_text_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    full_text_chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    full_text_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = {column.name: getattr(self, column.name) for column in self.__table__.columns}
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = _as_utc(value)
        return data

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<NewsArticle id={self.id[:12]} url={self.canonical_url!r}>"


class NewsArticleTextChunk(Base):
    """Ordered slice of an article's full text."""

    __tablename__ = "news_article_text_chunks"
    __table_args__ = (UniqueConstraint("article_id", "chunk_index", name="uq_news_chunks_article_index"),)

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    article_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("news_articles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "article_id": self.article_id,
            "chunk_index": self.chunk_index,
            "text": self.text,
            "created_at": _as_utc(self.created_at),
            "updated_at": _as_utc(self.updated_at),
        }


class NewsSourceState(Base):
    """Latest sync status for one configured source."""

    __tablename__ = "news_source_states"

    source_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    feed_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    homepage_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    country_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    last_status: Mapped[str] = mapped_column(String(16), nullable=False)
    last_run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    last_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fetched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inserted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unchanged_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = {column.name: getattr(self, column.name) for column in self.__table__.columns}
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = _as_utc(value)
        return data


class NewsSyncRun(Base):
    """Immutable audit record of one sync invocation."""

    __tablename__ = "news_sync_runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    schedule: Mapped[str] = mapped_column(String(128), nullable=False)
    started_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    completed_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_fetched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_inserted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_updated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_unchanged_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_results: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = {column.name: getattr(self, column.name) for column in self.__table__.columns}
        data.pop("created_at")
        return data
