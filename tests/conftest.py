from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from news_ingest.core.config import Settings
from news_ingest.db.models import Base
from news_ingest.models import SourceConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _read_fixture(relative: str) -> str:
    return (FIXTURES_DIR / relative).read_text(encoding="utf-8")


@pytest.fixture
def read_fixture():
    """Return a loader for files under tests/fixtures."""
    return _read_fixture


class StepClock:
    """Deterministic UTC clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 6, 10, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def source() -> SourceConfig:
    return SourceConfig(
        id="example-wire",
        name="Example Wire",
        homepage_url="https://x.com/",
        feed_url="https://x.com/feed.xml",
        language="en",
        country_code="US",
    )


@pytest.fixture
def sources() -> List[SourceConfig]:
    return [
        SourceConfig(
            id=f"source-{index}",
            name=f"Source {index}",
            homepage_url=f"https://source{index}.example.com/",
            feed_url=f"https://source{index}.example.com/rss",
        )
        for index in range(3)
    ]


@pytest.fixture
def make_settings():
    """Build Settings from keyword overrides with .env loading disabled."""

    def _make(**overrides) -> Settings:
        test_config = Settings.model_config.copy()
        test_config["env_file"] = None
        with patch.object(Settings, "model_config", test_config):
            return Settings(**overrides)

    return _make


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path/'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()
