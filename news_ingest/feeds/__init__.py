"""RSS/Atom feed fetching and parsing."""

from .base import FeedFetchError, FeedHttpError, FeedTimeoutError
from .fetcher import FeedFetchResult, fetch_feed
from .parser import normalize_url, parse_feed

__all__ = [
    "FeedFetchError",
    "FeedHttpError",
    "FeedTimeoutError",
    "FeedFetchResult",
    "fetch_feed",
    "normalize_url",
    "parse_feed",
]
