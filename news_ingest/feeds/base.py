"""
Shared HTTP plumbing and error types for feed and article requests.

Fetch errors are typed so the orchestrator can report an HTTP status code
without parsing exception messages.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_USER_AGENT = "NewsIngest/1.0 (+https://github.com/news-ingest/news-ingest)"
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.1"
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class FeedFetchError(Exception):
    """Raised when a remote document cannot be retrieved."""

    def __init__(self, message: str, *, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FeedTimeoutError(FeedFetchError):
    """Raised when a request exceeds its timeout."""


class FeedHttpError(FeedFetchError):
    """Raised for a non-2xx response; carries the HTTP status code."""

    def __init__(self, message: str, *, url: Optional[str] = None, status_code: int) -> None:
        super().__init__(message, url=url, status_code=status_code)


def timeout_seconds(timeout_ms: int, *, floor_ms: int = 1_000) -> float:
    """Convert a millisecond timeout to httpx seconds, never below ``floor_ms``."""
    return max(floor_ms, int(timeout_ms)) / 1000.0


@asynccontextmanager
async def http_client(
    client: Optional[httpx.AsyncClient] = None,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    user_agent: str = DEFAULT_USER_AGENT,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yield the caller's client, or an owned one that is closed on exit.

    This ensures an owned client is always closed after use, preventing
    connection leaks.
    """
    if client is not None:
        yield client
        return

    owned = httpx.AsyncClient(
        timeout=timeout_seconds(timeout_ms),
        headers={"User-Agent": user_agent},
        follow_redirects=True,
    )
    try:
        yield owned
    finally:
        await owned.aclose()


async def get_text(
    url: str,
    *,
    timeout_ms: int,
    user_agent: str,
    accept: str,
    client: Optional[httpx.AsyncClient] = None,
) -> httpx.Response:
    """GET ``url`` once and translate httpx failures into FeedFetchError types."""

    headers = {"User-Agent": user_agent, "Accept": accept}
    async with http_client(client, timeout_ms=timeout_ms, user_agent=user_agent) as active:
        try:
            response = await active.get(
                url,
                headers=headers,
                timeout=timeout_seconds(timeout_ms),
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            raise FeedTimeoutError(f"Request to {url} timed out after {timeout_ms} ms.", url=url) from exc
        except httpx.RequestError as exc:
            raise FeedFetchError(f"Network error requesting {url}: {exc}", url=url) from exc

    if not response.is_success:
        raise FeedHttpError(
            f"Request failed with status {response.status_code}.",
            url=url,
            status_code=response.status_code,
        )
    return response
