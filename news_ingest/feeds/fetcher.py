"""Feed fetcher: retrieve raw RSS/Atom bytes for one source."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from news_ingest.core.logging import get_logger
from news_ingest.feeds.base import (
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    FEED_ACCEPT,
    FeedFetchError,
    get_text,
)

logger = get_logger(__name__)


@dataclass
class FeedFetchResult:
    """Raw feed response."""

    http_status: int
    body: str
    content: bytes = b""

    @property
    def document(self) -> str | bytes:
        """Raw bytes when available so the XML declaration decides the encoding."""
        return self.content or self.body


async def fetch_feed(
    feed_url: str,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    user_agent: str = DEFAULT_USER_AGENT,
    client: Optional[httpx.AsyncClient] = None,
) -> FeedFetchResult:
    """Fetch a feed document.

    No retries happen here; a failed source is picked up again by the next
    scheduled run.

    Raises:
        FeedTimeoutError: the request exceeded ``timeout_ms``.
        FeedHttpError: the server answered with a non-2xx status.
        FeedFetchError: any other transport failure.
    """

    log = logger.bind(feed_url=feed_url)
    log.debug("fetching_feed", timeout_ms=timeout_ms)
    try:
        response = await get_text(
            feed_url,
            timeout_ms=timeout_ms,
            user_agent=user_agent,
            accept=FEED_ACCEPT,
            client=client,
        )
    except FeedFetchError as exc:
        log.warning(
            "feed_fetch_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )
        raise

    log.debug("feed_fetched", status_code=response.status_code, bytes=len(response.content))
    return FeedFetchResult(http_status=response.status_code, body=response.text, content=response.content)
