"""
Unit tests for the interval scheduler wrapper.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from news_ingest.core.scheduler import SYNC_JOB_ID, NewsSyncScheduler
from news_ingest.models import SyncRunResult

NOW_MS = 1_750_000_000_000


def _result() -> SyncRunResult:
    return SyncRunResult.from_results("news-sync-1", NOW_MS, NOW_MS + 10, [])


def _scheduler(settings, service, *, healthy=True):
    factory = MagicMock(return_value=service)
    scheduler = NewsSyncScheduler(
        settings,
        service_factory=factory,
        clock_ms=lambda: NOW_MS,
        check_connection=AsyncMock(return_value=healthy),
    )
    return scheduler, factory


class TestNewsSyncScheduler:
    """Test cases for the scheduled sync job."""

    def test_build_options_sets_deadline_and_label(self, make_settings):
        settings = make_settings(scheduler_run_budget_seconds=42, scheduler_schedule_label="every 12 hours")
        scheduler, _ = _scheduler(settings, MagicMock())

        options = scheduler.build_options()

        assert options.deadline_ms == NOW_MS + 42_000
        assert options.schedule == "every 12 hours"
        assert options.max_articles_per_source == settings.news_max_articles_per_source

    @pytest.mark.asyncio
    async def test_job_runs_sync_with_options(self, make_settings):
        service = MagicMock()
        service.sync_all_sources = AsyncMock(return_value=_result())
        scheduler, factory = _scheduler(make_settings(), service)

        await scheduler.run_sync_now()

        factory.assert_called_once()
        [options] = service.sync_all_sources.await_args.args
        assert options.deadline_ms == NOW_MS + 42_000

    @pytest.mark.asyncio
    async def test_disabled_flag_skips_run(self, make_settings):
        scheduler, factory = _scheduler(make_settings(news_sync_enabled=False), MagicMock())

        await scheduler.run_sync_now()

        factory.assert_not_called()
        scheduler._check_connection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unhealthy_database_skips_run(self, make_settings):
        scheduler, factory = _scheduler(make_settings(), MagicMock(), healthy=False)

        await scheduler.run_sync_now()

        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_job_failure_is_logged_and_service_rebuilt(self, make_settings):
        service = MagicMock()
        service.sync_all_sources = AsyncMock(side_effect=RuntimeError("run record write failed"))
        scheduler, factory = _scheduler(make_settings(), service)

        await scheduler.run_sync_now()
        await scheduler.run_sync_now()

        assert factory.call_count == 2
        assert scheduler._service is None

    def test_setup_jobs_registers_single_interval_job(self, make_settings):
        scheduler, _ = _scheduler(make_settings(scheduler_interval_minutes=30), MagicMock())

        scheduler.setup_jobs()

        [job] = scheduler.scheduler.get_jobs()
        assert job.id == SYNC_JOB_ID
        assert job.max_instances == 1
        assert scheduler.get_job_status() == {"status": "stopped", "jobs": []}
