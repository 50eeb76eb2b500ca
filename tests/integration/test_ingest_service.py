"""
Integration tests for the ingestion orchestrator against the in-memory store.

Feed and article HTTP calls are replaced with fakes keyed by URL; parsing,
normalization, planning and chunking run for real.
"""

from typing import Dict, List, Optional, Union

import pytest

from news_ingest.core.cache import TTLCache
from news_ingest.feeds.base import FeedHttpError, FeedTimeoutError
from news_ingest.feeds.fetcher import FeedFetchResult
from news_ingest.models import SourceConfig, SyncOptions
from news_ingest.repositories.base import StoreWriteError
from news_ingest.repositories.fingerprints import article_id_from_url
from news_ingest.repositories.memory_repo import InMemoryNewsRepository
from news_ingest.services.ingest_service import (
    MIN_TIMEOUT_MS,
    SKIPPED_MESSAGE,
    NewsIngestionService,
)
from news_ingest.services.read_service import NewsReadService

FEED_URLS = [
    "https://news.example.com/first",
    "https://news.example.com/second?id=2",
    "https://news.example.com/guid-only",
]


class MsClock:
    """Millisecond clock that advances 1 s per call so run ids stay unique."""

    def __init__(self, start: int = 1_750_000_000_000) -> None:
        self.current = start

    def __call__(self) -> int:
        value = self.current
        self.current += 1_000
        return value


class FakeFeeds:
    """Feed fetcher double: URL -> document or exception."""

    def __init__(self, responses: Dict[str, Union[str, Exception]]) -> None:
        self.responses = responses
        self.calls: List[dict] = []

    async def __call__(self, feed_url: str, *, timeout_ms: int, user_agent: str) -> FeedFetchResult:
        self.calls.append({"url": feed_url, "timeout_ms": timeout_ms, "user_agent": user_agent})
        response = self.responses[feed_url]
        if isinstance(response, Exception):
            raise response
        return FeedFetchResult(http_status=200, body=response, content=response.encode("utf-8"))


class FakePages:
    """Article text fetcher double; unknown URLs fail."""

    def __init__(self, texts: Optional[Dict[str, str]] = None, failures: Optional[Dict[str, Exception]] = None):
        self.texts = texts or {}
        self.failures = failures or {}
        self.calls: List[str] = []

    async def __call__(self, url: str, *, timeout_ms: int, user_agent: str) -> str:
        self.calls.append(url)
        if url in self.failures:
            raise self.failures[url]
        return self.texts.get(url, f"Full story for {url}. " * 5)


@pytest.fixture
def feed_xml(read_fixture) -> str:
    return read_fixture("rss/multi_item_rss.xml")


@pytest.fixture
def repository(clock) -> InMemoryNewsRepository:
    return InMemoryNewsRepository(chunk_target_bytes=64, clock=clock)


def _service(repository, sources, feeds, pages=None, cache=None, clock_ms=None) -> NewsIngestionService:
    return NewsIngestionService(
        repository,
        sources,
        feed_fetcher=feeds,
        text_fetcher=pages or FakePages(),
        cache=cache,
        clock_ms=clock_ms or MsClock(),
    )


def _options(**overrides) -> SyncOptions:
    values = dict(source_concurrency=2, article_concurrency=2, user_agent="TestAgent/1.0")
    values.update(overrides)
    return SyncOptions(**values)


class TestSyncRun:
    """End-to-end runs over fake feeds."""

    @pytest.mark.asyncio
    async def test_first_run_inserts_and_records_everything(self, repository, sources, feed_xml):
        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        service = _service(repository, sources, feeds)

        result = await service.sync_all_sources(_options())

        assert result.run_id.startswith("news-sync-")
        assert [r.source_id for r in result.source_results] == ["source-0", "source-1", "source-2"]
        assert all(r.status == "success" for r in result.source_results)
        assert all(r.http_status == 200 for r in result.source_results)
        assert result.total_fetched_count == 9
        assert result.total_inserted_count == 3

        # Same URLs across sources map to the same article ids
        assert len(repository.articles) == 3
        assert result.total_unchanged_count + result.total_updated_count == 6

        run = await repository.get_sync_run(result.run_id)
        assert run["source_count"] == 3
        assert run["success_count"] == 3
        assert run["total_fetched_count"] == 9
        assert len(run["source_results"]) == 3

        state = await repository.get_source_state("source-1")
        assert state["last_status"] == "success"
        assert state["last_run_id"] == result.run_id
        assert state["fetched_count"] == 3
        assert state["last_error"] is None

    @pytest.mark.asyncio
    async def test_second_identical_run_is_unchanged(self, repository, source, feed_xml):
        service = _service(repository, [source], FakeFeeds({source.feed_url: feed_xml}))

        first = await service.sync_all_sources(_options())
        second = await service.sync_all_sources(_options())

        assert first.total_inserted_count == 3
        [outcome] = second.source_results
        assert outcome.inserted_count == 0
        assert outcome.updated_count == 0
        assert outcome.unchanged_count == outcome.fetched_count == 3
        assert first.run_id != second.run_id

    @pytest.mark.asyncio
    async def test_summary_edit_updates_one_article(self, repository, source, feed_xml):
        feeds = FakeFeeds({source.feed_url: feed_xml})
        service = _service(repository, [source], feeds)
        await service.sync_all_sources(_options())

        feeds.responses[source.feed_url] = feed_xml.replace("Second summary", "Second summary, corrected")
        result = await service.sync_all_sources(_options())

        [outcome] = result.source_results
        assert (outcome.inserted_count, outcome.updated_count, outcome.unchanged_count) == (0, 1, 2)
        stored = await repository.get_article(article_id_from_url(FEED_URLS[1]))
        assert stored["summary"] == "Second summary, corrected"

    @pytest.mark.asyncio
    async def test_failing_source_is_isolated(self, repository, sources, feed_xml):
        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        feeds.responses[sources[1].feed_url] = FeedHttpError(
            "Request failed with status 503.", url=sources[1].feed_url, status_code=503
        )
        feeds.responses[sources[2].feed_url] = FeedTimeoutError("Request timed out.", url=sources[2].feed_url)
        service = _service(repository, sources, feeds)

        result = await service.sync_all_sources(_options())

        ok, http_failure, timeout = result.source_results
        assert ok.status == "success"
        assert http_failure.status == "error"
        assert http_failure.http_status == 503
        assert http_failure.error_message == "Request failed with status 503."
        assert timeout.status == "error"
        assert timeout.http_status is None

        state = await repository.get_source_state(sources[1].id)
        assert state["last_status"] == "error"
        assert state["last_error"] == "Request failed with status 503."
        assert state["last_http_status"] == 503
        assert state["last_success_at"] is None

        run = await repository.get_sync_run(result.run_id)
        assert (run["success_count"], run["error_count"]) == (1, 2)

    @pytest.mark.asyncio
    async def test_empty_exception_message_falls_back(self, repository, source):
        feeds = FakeFeeds({source.feed_url: RuntimeError()})
        result = await _service(repository, [source], feeds).sync_all_sources(_options())

        assert result.source_results[0].error_message == "Unknown feed sync error."

    @pytest.mark.asyncio
    async def test_expired_deadline_skips_without_fetching(self, repository, sources, feed_xml):
        clock_ms = MsClock()
        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        pages = FakePages()
        service = _service(repository, sources, feeds, pages, clock_ms=clock_ms)

        result = await service.sync_all_sources(_options(deadline_ms=clock_ms.current))

        assert [r.status for r in result.source_results] == ["skipped"] * 3
        assert all(r.error_message == SKIPPED_MESSAGE for r in result.source_results)
        assert feeds.calls == []
        assert pages.calls == []
        assert repository.articles == {}

        state = await repository.get_source_state(sources[0].id)
        assert state["last_status"] == "skipped"
        run = await repository.get_sync_run(result.run_id)
        assert run["skipped_count"] == 3

    @pytest.mark.asyncio
    async def test_deadline_guard_stops_late_sources(self, repository, sources, feed_xml):
        clock_ms = MsClock()
        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        service = _service(repository, sources, feeds, clock_ms=clock_ms)

        # Every clock read advances one second, so only the first source starts
        # with more than the 1.5 s guard left.
        options = _options(source_concurrency=1, fetch_full_text=False, deadline_ms=clock_ms.current + 3_500)
        result = await service.sync_all_sources(options)

        assert [r.status for r in result.source_results] == ["success", "skipped", "skipped"]
        assert len(feeds.calls) == 1

    @pytest.mark.asyncio
    async def test_max_sources_keeps_configured_order(self, repository, sources, feed_xml):
        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        result = await _service(repository, sources, feeds).sync_all_sources(
            _options(max_sources_per_run=2, fetch_full_text=False)
        )

        assert [r.source_id for r in result.source_results] == ["source-0", "source-1"]
        assert await repository.get_source_state("source-2") is None

    @pytest.mark.asyncio
    async def test_timeouts_are_floored(self, repository, source, feed_xml):
        feeds = FakeFeeds({source.feed_url: feed_xml})
        await _service(repository, [source], feeds).sync_all_sources(
            _options(feed_timeout_ms=10, fetch_full_text=False)
        )

        assert feeds.calls[0]["timeout_ms"] == MIN_TIMEOUT_MS
        assert feeds.calls[0]["user_agent"] == "TestAgent/1.0"


class TestFullTextHydration:
    """Article page fetches inside one source."""

    @pytest.mark.asyncio
    async def test_full_text_is_chunked_and_errors_recorded(self, repository, source, feed_xml):
        long_text = "Council approves new transit plan after a long debate. " * 6
        pages = FakePages(
            texts={FEED_URLS[0]: long_text},
            failures={FEED_URLS[1]: FeedHttpError("Request failed with status 403.", status_code=403)},
        )
        service = _service(repository, [source], FakeFeeds({source.feed_url: feed_xml}), pages)

        result = await service.sync_all_sources(_options())

        assert result.source_results[0].status == "success"
        assert sorted(pages.calls) == sorted(FEED_URLS)

        first = await repository.get_article(article_id_from_url(FEED_URLS[0]))
        assert first["full_text_status"] == "ready"
        assert first["full_text_chunk_count"] > 1
        detail = await NewsReadService(repository, TTLCache(60)).get_article_detail(first["id"])
        assert detail.full_text == long_text.strip()

        failed = await repository.get_article(article_id_from_url(FEED_URLS[1]))
        assert failed["full_text_status"] == "error"
        assert failed["full_text_error"] == "Request failed with status 403."
        assert failed["full_text_chunk_count"] == 0

    @pytest.mark.asyncio
    async def test_shorter_text_leaves_no_orphan_chunks(self, repository, source, feed_xml):
        pages = FakePages(texts={FEED_URLS[0]: "Long body sentence number one. " * 10})
        service = _service(repository, [source], FakeFeeds({source.feed_url: feed_xml}), pages)
        await service.sync_all_sources(_options())
        article_id = article_id_from_url(FEED_URLS[0])
        assert len(await repository.get_text_chunks(article_id)) > 1

        pages.texts[FEED_URLS[0]] = "Short correction."
        result = await service.sync_all_sources(_options())

        assert result.source_results[0].updated_count == 1
        chunks = await repository.get_text_chunks(article_id)
        assert [chunk["chunk_index"] for chunk in chunks] == [0]
        assert chunks[0]["text"] == "Short correction."

    @pytest.mark.asyncio
    async def test_no_full_text_skips_page_fetches(self, repository, source, feed_xml):
        pages = FakePages()
        service = _service(repository, [source], FakeFeeds({source.feed_url: feed_xml}), pages)

        await service.sync_all_sources(_options(fetch_full_text=False))

        assert pages.calls == []
        stored = await repository.get_article(article_id_from_url(FEED_URLS[0]))
        assert stored["full_text_status"] == "none"


class TestStoreFailures:
    """Store errors at the two write points outside the source batch."""

    @pytest.mark.asyncio
    async def test_state_write_failure_does_not_abort_run(self, clock, source, feed_xml):
        class FlakyStateRepository(InMemoryNewsRepository):
            async def record_source_sync_state(self, state):
                raise StoreWriteError("state table locked")

        repository = FlakyStateRepository(clock=clock)
        result = await _service(repository, [source], FakeFeeds({source.feed_url: feed_xml})).sync_all_sources(
            _options(fetch_full_text=False)
        )

        assert result.source_results[0].status == "success"
        assert result.run_id in repository.sync_runs

    @pytest.mark.asyncio
    async def test_run_record_failure_propagates(self, clock, source, feed_xml):
        class BrokenRunRepository(InMemoryNewsRepository):
            async def record_sync_run(self, run):
                raise StoreWriteError("run table unavailable")

        repository = BrokenRunRepository(clock=clock)
        service = _service(repository, [source], FakeFeeds({source.feed_url: feed_xml}))

        with pytest.raises(StoreWriteError, match="run table unavailable"):
            await service.sync_all_sources(_options(fetch_full_text=False))

    @pytest.mark.asyncio
    async def test_upsert_failure_is_a_source_error(self, clock, sources, feed_xml):
        class RejectingRepository(InMemoryNewsRepository):
            async def upsert_articles(self, source, articles):
                if source.id == "source-0":
                    raise StoreWriteError("batch rejected")
                return await super().upsert_articles(source, articles)

        repository = RejectingRepository(clock=clock)
        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        result = await _service(repository, sources, feeds).sync_all_sources(_options(fetch_full_text=False))

        assert [r.status for r in result.source_results] == ["error", "success", "success"]
        assert result.source_results[0].error_message == "batch rejected"


class TestFullTextBackfill:
    """Re-hydrating stored articles that never got their full text."""

    @pytest.mark.asyncio
    async def test_backfill_fills_missing_text_and_records_failures(self, repository, source, feed_xml):
        await _service(repository, [source], FakeFeeds({source.feed_url: feed_xml})).sync_all_sources(
            _options(fetch_full_text=False)
        )
        before = {url: await repository.get_article(article_id_from_url(url)) for url in FEED_URLS}
        assert {doc["full_text_status"] for doc in before.values()} == {"none"}

        pages = FakePages(failures={FEED_URLS[1]: FeedHttpError("Request failed with status 404.", status_code=404)})
        service = _service(repository, [source], FakeFeeds({}), pages)

        result = await service.backfill_full_text(_options())

        assert (result.candidate_count, result.ready_count, result.failed_count, result.skipped_count) == (3, 2, 1, 0)
        assert sorted(pages.calls) == sorted(FEED_URLS)

        ready = await repository.get_article(article_id_from_url(FEED_URLS[0]))
        assert ready["full_text_status"] == "ready"
        assert ready["feed_fingerprint"] == before[FEED_URLS[0]]["feed_fingerprint"]
        assert ready["title"] == before[FEED_URLS[0]]["title"]
        assert ready["first_seen_at"] == before[FEED_URLS[0]]["first_seen_at"]

        failed = await repository.get_article(article_id_from_url(FEED_URLS[1]))
        assert failed["full_text_status"] == "error"
        assert failed["full_text_error"] == "Request failed with status 404."

        pages.calls.clear()
        pages.failures.clear()
        retry = await service.backfill_full_text(_options())

        assert pages.calls == [FEED_URLS[1]]
        assert (retry.candidate_count, retry.ready_count) == (1, 1)

    @pytest.mark.asyncio
    async def test_backfill_filters_by_source_and_uses_stored_snapshot(self, repository, source, feed_xml):
        await _service(repository, [source], FakeFeeds({source.feed_url: feed_xml})).sync_all_sources(
            _options(fetch_full_text=False)
        )
        # source no longer configured
        service = _service(repository, [], FakeFeeds({}), FakePages())

        assert (await service.backfill_full_text(_options(), source_id="other-wire")).candidate_count == 0

        result = await service.backfill_full_text(_options(), source_id=source.id, limit=1)

        assert (result.candidate_count, result.ready_count) == (1, 1)
        ready = [doc for doc in repository.articles.values() if doc["full_text_status"] == "ready"]
        assert len(ready) == 1
        assert ready[0]["source"] == source.snapshot()
        assert len(await repository.list_articles_missing_full_text(source_id=source.id)) == 2


class TestCacheInvalidation:
    """Successful source writes drop that source's cached views."""

    @pytest.mark.asyncio
    async def test_success_invalidates_only_synced_source(self, repository, sources, feed_xml):
        cache = TTLCache(300)
        cache.set(("source-0", "articles", 20), ["stale"])
        cache.set(("source-1", "articles", 20), ["stale"])
        cache.set(("unrelated", "articles", 20), ["kept"])

        feeds = FakeFeeds({source.feed_url: feed_xml for source in sources})
        feeds.responses[sources[1].feed_url] = FeedHttpError("down", status_code=500)
        await _service(repository, sources, feeds, cache=cache).sync_all_sources(_options(fetch_full_text=False))

        assert cache.get(("source-0", "articles", 20)) is None
        assert cache.get(("source-1", "articles", 20)) == ["stale"]
        assert cache.get(("unrelated", "articles", 20)) == ["kept"]


def test_select_sources_caps_in_order(repository):
    configured = [
        SourceConfig(id=f"s{index}", name=f"S{index}", homepage_url="https://s", feed_url="https://s/rss")
        for index in range(4)
    ]
    service = NewsIngestionService(repository, configured)

    assert [s.id for s in service.select_sources(2)] == ["s0", "s1"]
    assert len(service.select_sources(None)) == 4
    assert len(service.select_sources(0)) == 4
