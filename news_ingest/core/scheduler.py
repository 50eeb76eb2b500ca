"""
Scheduler module for periodic news sync runs.

The scheduler owns only the trigger: it decides when a run starts and hands
the orchestrator a wall-clock deadline and a schedule label for the audit
record.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from news_ingest.core.cache import TTLCache
from news_ingest.core.config import Settings, get_settings
from news_ingest.core.logging import get_logger, log_exception
from news_ingest.db.session import ensure_healthy_connection
from news_ingest.models import SyncOptions
from news_ingest.services.ingest_service import NewsIngestionService, build_ingestion_service

logger = get_logger(__name__)

SYNC_JOB_ID = "news_sync"


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class NewsSyncScheduler:
    """Run ``sync_all_sources`` on a fixed interval, one run at a time."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        service_factory: Optional[Callable[[], NewsIngestionService]] = None,
        cache: Optional[TTLCache] = None,
        clock_ms: Callable[[], int] = _wall_clock_ms,
        check_connection: Callable[[], Any] = ensure_healthy_connection,
    ) -> None:
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler()
        self.cache = cache
        self._service_factory = service_factory or (
            lambda: build_ingestion_service(self.settings, cache=self.cache)
        )
        self._service: Optional[NewsIngestionService] = None
        self._now_ms = clock_ms
        self._check_connection = check_connection
        self._is_running = False

    def _get_service(self) -> NewsIngestionService:
        if self._service is None:
            self._service = self._service_factory()
        return self._service

    def build_options(self) -> SyncOptions:
        """Options for one scheduled run; the deadline is now plus the run budget."""
        deadline_ms = self._now_ms() + self.settings.scheduler_run_budget_seconds * 1000
        return SyncOptions.from_settings(
            self.settings,
            schedule=self.settings.scheduler_schedule_label,
            deadline_ms=deadline_ms,
        )

    def setup_jobs(self) -> None:
        """Set up the sync job."""
        self.scheduler.add_job(
            func=self._sync_job,
            trigger=IntervalTrigger(minutes=self.settings.scheduler_interval_minutes),
            id=SYNC_JOB_ID,
            name="News Sync",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping executions
        )
        logger.info(
            "scheduled_jobs_configured",
            interval_minutes=self.settings.scheduler_interval_minutes,
            run_budget_seconds=self.settings.scheduler_run_budget_seconds,
        )

    async def _sync_job(self) -> None:
        """Job body; failures are logged so the scheduler keeps its next execution."""
        if not self.settings.news_sync_enabled:
            logger.info("news_sync_disabled")
            return

        try:
            if not await self._check_connection():
                logger.error("database_connection_unhealthy_skipping_sync")
                self._service = None
                return

            result = await self._get_service().sync_all_sources(self.build_options())
            logger.info(
                "news_sync_job_complete",
                run_id=result.run_id,
                duration_ms=result.duration_ms,
                inserted_count=result.total_inserted_count,
                updated_count=result.total_updated_count,
            )
        except Exception as e:
            log_exception(logger, e, {"job": SYNC_JOB_ID})
            # Rebuild the service on the next run so it gets a fresh session factory
            self._service = None

    def start(self) -> None:
        """Start the scheduler."""
        if not self._is_running:
            self.setup_jobs()
            self.scheduler.start()
            self._is_running = True
            logger.info("scheduler_started")

    def shutdown(self) -> None:
        """Shutdown the scheduler gracefully."""
        if self._is_running:
            self.scheduler.shutdown()
            self._is_running = False
            logger.info("scheduler_stopped")

    def get_job_status(self) -> Dict[str, Any]:
        """Get status of scheduled jobs."""
        if not self._is_running:
            return {"status": "stopped", "jobs": []}

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            })

        return {"status": "running", "jobs": jobs}

    async def run_sync_now(self) -> None:
        """Trigger one run immediately with the same deadline handling as the scheduled job."""
        await self._sync_job()
