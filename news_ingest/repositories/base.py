"""Store contract for the ingestion pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from news_ingest.models import (
    CandidateArticle,
    SourceConfig,
    SourceSyncStateInput,
    SyncRunInput,
    UpsertResult,
)
from news_ingest.repositories.fingerprints import DEFAULT_CHUNK_TARGET_BYTES


class StoreWriteError(Exception):
    """Raised when the backing store rejects or fails a write."""


class NewsSyncRepository(ABC):
    """Fingerprinted, chunked article store.

    Write operations are the ones the orchestrator depends on. The read
    helpers return plain dicts so callers do not depend on a backend's
    record types.
    """

    chunk_target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES

    @abstractmethod
    async def upsert_articles(self, source: SourceConfig, articles: List[CandidateArticle]) -> UpsertResult:
        """Insert or update every article of one source batch in a single commit."""

    @abstractmethod
    async def record_source_sync_state(self, state: SourceSyncStateInput) -> None:
        """Upsert the per-source status record for this run."""

    @abstractmethod
    async def record_sync_run(self, run: SyncRunInput) -> None:
        """Write the immutable audit record for one run."""

    @abstractmethod
    async def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_text_chunks(self, article_id: str) -> List[Dict[str, Any]]:
        """Stored chunks for an article ordered by chunk index."""

    @abstractmethod
    async def get_source_state(self, source_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_source_states(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_sync_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def count_articles_by_source(self, source_id: str) -> int:
        ...

    @abstractmethod
    async def list_articles_by_source(self, source_id: str, limit: int) -> List[Dict[str, Any]]:
        """Most recently published articles first."""

    @abstractmethod
    async def list_articles_missing_full_text(
        self,
        source_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Articles whose full text is not ``ready``, first seen first."""
