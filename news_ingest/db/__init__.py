"""Database utilities for the news ingestion pipeline."""

from .session import (
    create_engine_for_url,
    create_sessionmaker,
    dispose_engine,
    ensure_healthy_connection,
    get_engine,
    get_sessionmaker,
    init_db,
)
from .models import Base, NewsArticle, NewsArticleTextChunk, NewsSourceState, NewsSyncRun

__all__ = [
    "create_engine_for_url",
    "create_sessionmaker",
    "dispose_engine",
    "ensure_healthy_connection",
    "get_engine",
    "get_sessionmaker",
    "init_db",
    "Base",
    "NewsArticle",
    "NewsArticleTextChunk",
    "NewsSourceState",
    "NewsSyncRun",
]
