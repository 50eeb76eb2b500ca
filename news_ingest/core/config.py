"""
Configuration module for the news ingestion pipeline.

This module provides the Settings class that loads and validates environment
variables. It uses Pydantic BaseSettings for type validation and default value
handling.
"""

from __future__ import annotations

import sys
from typing import Optional

from pydantic import ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings

DEFAULT_USER_AGENT = "NewsIngest/1.0 (+https://github.com/news-ingest/news-ingest)"


class Settings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    Every sync option has a default here; callers (scheduler, CLI) build a
    SyncOptions from these values and only override what they need.
    """

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/news.sqlite",
        description="SQLAlchemy database URL for the article store"
    )

    # Source Configuration
    news_sources_file: Optional[str] = Field(
        default=None,
        description="Optional YAML file with the source list (defaults to the built-in list)"
    )

    # Sync Configuration
    news_max_articles_per_source: int = Field(
        default=40,
        ge=1,
        le=500,
        description="Maximum normalized items kept per source per run"
    )
    news_source_concurrency: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Number of sources synced in parallel"
    )
    news_article_concurrency: int = Field(
        default=2,
        ge=1,
        le=6,
        description="Number of article pages fetched in parallel within one source"
    )
    news_feed_timeout_ms: int = Field(
        default=10_000,
        ge=1_000,
        le=120_000,
        description="Timeout for one feed request in milliseconds"
    )
    news_article_timeout_ms: int = Field(
        default=12_000,
        ge=1_000,
        le=120_000,
        description="Timeout for one article page request in milliseconds"
    )
    news_fetch_full_text: bool = Field(
        default=True,
        description="Hydrate every normalized item with extracted full article text"
    )
    news_max_sources_per_run: int = Field(
        default=0,
        ge=0,
        le=1000,
        description="Cap on sources processed per run (0 processes every source)"
    )
    news_crawler_user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent sent with feed and article requests"
    )

    # Store Configuration
    news_chunk_target_bytes: int = Field(
        default=350 * 1024,
        ge=1024,
        le=1024 * 1024,
        description="Target UTF-8 size of one stored full-text chunk"
    )
    news_cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0.0,
        le=86_400.0,
        description="Time-to-live for cached read-side lookups"
    )

    # Scheduler Configuration
    scheduler_interval_minutes: int = Field(
        default=720,
        ge=1,
        le=1440,
        description="Interval in minutes between sync runs"
    )
    scheduler_run_budget_seconds: int = Field(
        default=42,
        ge=5,
        le=3600,
        description="Wall-clock budget handed to each scheduled run as its deadline"
    )
    scheduler_schedule_label: str = Field(
        default="every 12 hours",
        description="Schedule label written to the run audit record"
    )
    news_sync_enabled: bool = Field(
        default=True,
        description="Master switch for scheduled sync runs"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (False for human-readable console output)"
    )

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured store is a SQLite database."""
        return self.database_url.startswith("sqlite")


def get_settings() -> Settings:
    """
    Get settings instance.

    Returns:
        Settings: Validated settings

    Raises:
        ValidationError: If environment variables are invalid
    """
    try:
        return Settings()
    except ValidationError as e:
        print(f"Configuration validation error: {e}", file=sys.stderr)
        raise


def validate_env_cli() -> None:
    """
    CLI command to validate environment configuration.

    This function can be called via: python -m news_ingest.core.config --check
    """
    try:
        settings = get_settings()
        print("✅ Environment configuration is valid")
        print(f"Database URL: {settings.database_url}")
        print(f"Sources file: {settings.news_sources_file or 'built-in list'}")
        print(f"Max articles per source: {settings.news_max_articles_per_source}")
        print(f"Source / article concurrency: {settings.news_source_concurrency} / {settings.news_article_concurrency}")
        print(f"Full text hydration: {'✅ On' if settings.news_fetch_full_text else '❌ Off'}")
        print(f"Sync interval: {settings.scheduler_interval_minutes} minutes")
        print(f"Log level: {settings.log_level}")
    except ValidationError as e:
        print("❌ Environment configuration is invalid:")
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  - {field}: {error['msg']}")
        sys.exit(1)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Configuration validation utility")
    parser.add_argument("--check", action="store_true", help="Validate environment configuration")

    args = parser.parse_args()

    if args.check:
        validate_env_cli()
    else:
        parser.print_help()
