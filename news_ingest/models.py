"""Data model shared by the fetch, parse, normalize, and store stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from news_ingest.core.config import Settings

SyncStatus = Literal["success", "error", "skipped"]
FullTextStatus = Literal["none", "ready", "error"]


class SourceConfig(BaseModel):
    """One configured feed. Owned by configuration and immutable during a run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    homepage_url: str
    feed_url: str
    language: str = "en"
    country_code: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        """Denormalized copy stored alongside every article from this source."""
        return {
            "id": self.id,
            "name": self.name,
            "homepage_url": self.homepage_url,
            "feed_url": self.feed_url,
            "language": self.language,
            "country_code": self.country_code,
        }


@dataclass
class CandidateArticle:
    """Normalized representation of one feed entry, produced fresh every sync."""

    external_id: str  # guid / atom id, falls back to the canonical URL
    canonical_url: str
    title: str
    summary: str = ""
    categories: List[str] = field(default_factory=list)
    author: Optional[str] = None
    published_at_ms: Optional[int] = None
    full_text: Optional[str] = None
    full_text_error: Optional[str] = None

    def with_full_text(self, text: str) -> "CandidateArticle":
        return replace(self, full_text=text, full_text_error=None)

    def with_full_text_error(self, message: str) -> "CandidateArticle":
        return replace(self, full_text=None, full_text_error=message)


@dataclass
class UpsertResult:
    """Counters returned by one store upsert call."""

    fetched_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0


@dataclass
class BackfillResult:
    """Counters for one full-text backfill pass."""

    candidate_count: int = 0
    ready_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0


@dataclass
class SourceSyncResult:
    """Outcome of one source within a run."""

    source_id: str
    source_name: str
    status: SyncStatus
    fetched_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    duration_ms: int = 0
    error_message: Optional[str] = None
    http_status: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SourceSyncStateInput:
    """Everything the store needs to upsert one SourceSyncState record."""

    source: SourceConfig
    run_id: str
    status: SyncStatus
    fetched_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    duration_ms: int = 0
    error_message: Optional[str] = None
    http_status: Optional[int] = None

    @classmethod
    def from_result(cls, source: SourceConfig, run_id: str, result: SourceSyncResult) -> "SourceSyncStateInput":
        return cls(
            source=source,
            run_id=run_id,
            status=result.status,
            fetched_count=result.fetched_count,
            inserted_count=result.inserted_count,
            updated_count=result.updated_count,
            unchanged_count=result.unchanged_count,
            duration_ms=result.duration_ms,
            error_message=result.error_message,
            http_status=result.http_status,
        )


@dataclass
class SyncRunInput:
    """Audit payload for one orchestrator invocation."""

    run_id: str
    started_at_ms: int
    completed_at_ms: int
    schedule: str
    source_results: List[SourceSyncResult]

    def summary(self) -> Dict[str, Any]:
        """Aggregated totals and status counts written with the run record."""
        results = self.source_results
        return {
            "run_id": self.run_id,
            "schedule": self.schedule,
            "started_at_ms": self.started_at_ms,
            "completed_at_ms": self.completed_at_ms,
            "duration_ms": max(0, self.completed_at_ms - self.started_at_ms),
            "source_count": len(results),
            "success_count": sum(1 for r in results if r.status == "success"),
            "error_count": sum(1 for r in results if r.status == "error"),
            "skipped_count": sum(1 for r in results if r.status == "skipped"),
            "total_fetched_count": sum(r.fetched_count for r in results),
            "total_inserted_count": sum(r.inserted_count for r in results),
            "total_updated_count": sum(r.updated_count for r in results),
            "total_unchanged_count": sum(r.unchanged_count for r in results),
            "source_results": [r.to_dict() for r in results],
        }


@dataclass
class SyncRunResult:
    """Value returned to the caller of sync_all_sources."""

    run_id: str
    started_at_ms: int
    completed_at_ms: int
    source_results: List[SourceSyncResult]
    total_fetched_count: int = 0
    total_inserted_count: int = 0
    total_updated_count: int = 0
    total_unchanged_count: int = 0

    @classmethod
    def from_results(
        cls,
        run_id: str,
        started_at_ms: int,
        completed_at_ms: int,
        source_results: List[SourceSyncResult],
    ) -> "SyncRunResult":
        return cls(
            run_id=run_id,
            started_at_ms=started_at_ms,
            completed_at_ms=completed_at_ms,
            source_results=source_results,
            total_fetched_count=sum(r.fetched_count for r in source_results),
            total_inserted_count=sum(r.inserted_count for r in source_results),
            total_updated_count=sum(r.updated_count for r in source_results),
            total_unchanged_count=sum(r.unchanged_count for r in source_results),
        )

    @property
    def duration_ms(self) -> int:
        return self.completed_at_ms - self.started_at_ms


@dataclass
class SyncOptions:
    """Knobs for one sync run, normally built from Settings by the caller."""

    max_articles_per_source: int = 40
    source_concurrency: int = 4
    feed_timeout_ms: int = 10_000
    article_timeout_ms: int = 12_000
    article_concurrency: int = 2
    fetch_full_text: bool = True
    user_agent: str = "NewsIngest/1.0"
    schedule: str = "manual"
    deadline_ms: Optional[int] = None
    max_sources_per_run: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "SyncOptions":
        options = cls(
            max_articles_per_source=settings.news_max_articles_per_source,
            source_concurrency=settings.news_source_concurrency,
            feed_timeout_ms=settings.news_feed_timeout_ms,
            article_timeout_ms=settings.news_article_timeout_ms,
            article_concurrency=settings.news_article_concurrency,
            fetch_full_text=settings.news_fetch_full_text,
            user_agent=settings.news_crawler_user_agent,
            max_sources_per_run=settings.news_max_sources_per_run or None,
        )
        return replace(options, **overrides)
