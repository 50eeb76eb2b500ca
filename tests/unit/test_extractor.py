"""
Unit tests for article text extraction and the full-text fetch helper.
"""

import httpx
import pytest

from news_ingest.feeds.base import FeedHttpError
from news_ingest.ingestion.extractor import (
    ArticleFetchError,
    ExtractionError,
    extract_article_text,
    extract_json_ld_body,
    fetch_full_text,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestExtractArticleText:
    """Three-step extraction strategy."""

    def test_prefers_json_ld_article_body(self, read_fixture):
        text = extract_article_text(read_fixture("html/article_json_ld.html"))
        assert text == (
            "The council approved the transit plan on Tuesday.\n\n"
            "Construction starts next spring & runs two years."
        )

    def test_falls_back_to_article_container(self, read_fixture):
        text = extract_article_text(read_fixture("html/article_simple.html"))

        assert text.startswith("Researchers publish climate dataset")
        assert "four decades of ocean temperature readings" in text
        assert "seasonal forecasts" in text
        assert "Site header" not in text
        assert "analytics" not in text
        assert "Copyright" not in text

    def test_short_json_ld_body_is_ignored(self):
        page = (
            '<script type="application/ld+json">{"articleBody": "Too short"}</script>'
            "<body><p>Fallback body text.</p></body>"
        )
        assert extract_article_text(page) == "Fallback body text."

    def test_whole_document_fallback(self):
        page = "<div>Only <em>inline</em> text</div><p>Second block</p>"
        assert extract_article_text(page) == "Only inline text\nSecond block"

    def test_nested_and_invalid_json_ld(self):
        page = (
            '<script type="application/ld+json">{not json}</script>'
            '<script type="application/ld+json">'
            '[{"@type": "Thing"}, {"mainEntity": {"articleBody": "Nested body that is long enough."}}]'
            "</script>"
        )
        assert extract_json_ld_body(page) == "Nested body that is long enough."

    def test_script_markup_does_not_leak_into_text(self):
        body = "Harbour officials confirmed the new ferry timetable after a month of consultation. " * 3
        page = (
            "<html><head><script>var card = '<article class=\"card\">'; var token = 'SESSION-TOKEN-123';</script>"
            "</head><body><article><p>" + body + "</p></article></body></html>"
        )

        text = extract_article_text(page)

        assert text == body.strip()
        assert "SESSION-TOKEN-123" not in text
        assert "card" not in text

    def test_unquoted_json_ld_type_attribute(self):
        article_body = "Unquoted attribute values are valid HTML and still carry the body."
        page = (
            '<script type=application/ld+json>{"articleBody": "' + article_body + '"}</script>'
            "<body><p>Teaser only.</p></body>"
        )

        assert extract_article_text(page) == article_body

    def test_empty_page(self):
        assert extract_article_text("") == ""
        assert extract_article_text("   ") == ""


class TestFetchFullText:
    """HTTP wrapper around extraction."""

    @pytest.mark.asyncio
    async def test_returns_extracted_text(self, read_fixture):
        html = read_fixture("html/article_json_ld.html")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["User-Agent"] == "TestAgent/1.0"
            assert "text/html" in request.headers["Accept"]
            return httpx.Response(200, text=html)

        async with _client(handler) as client:
            text = await fetch_full_text(
                "https://x.com/a", timeout_ms=2_000, user_agent="TestAgent/1.0", client=client
            )
        assert text.startswith("The council approved")

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self):
        async with _client(lambda request: httpx.Response(403, text="Forbidden")) as client:
            with pytest.raises(ArticleFetchError) as exc_info:
                await fetch_full_text("https://x.com/a", client=client)

        assert exc_info.value.status_code == 403
        assert isinstance(exc_info.value.__cause__, FeedHttpError)

    @pytest.mark.asyncio
    async def test_empty_body_raises_fetch_error(self):
        async with _client(lambda request: httpx.Response(200, text="  ")) as client:
            with pytest.raises(ArticleFetchError, match="empty"):
                await fetch_full_text("https://x.com/a", client=client)

    @pytest.mark.asyncio
    async def test_no_text_raises_extraction_error(self):
        page = "<html><body><script>only()</script></body></html>"
        async with _client(lambda request: httpx.Response(200, text=page)) as client:
            with pytest.raises(ExtractionError):
                await fetch_full_text("https://x.com/a", client=client)
