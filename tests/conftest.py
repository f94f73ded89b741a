"""
Shared pytest fixtures for unit and integration tests.

Uses FakeListChatModel for deterministic LLM replies (no API keys needed)
and a fresh in-memory SQLite database per test.
"""

from __future__ import annotations

import os

# Must be set before harvester.core.config is first imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "development")

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from harvester.models.database import init_db
from harvester.models.models import AnalysisStatus, CandidateArticle, NewsSource
from harvester.services.error_tracker import ErrorTracker
from tests.helpers import RecordingSleep


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def tracker(sessions, fake_sleep) -> ErrorTracker:
    return ErrorTracker(sessions, sleep=fake_sleep)


@pytest.fixture
def add_source(sessions):
    async def _add(name: str = "TechCrunch AI", *, is_active: bool = True) -> str:
        slug = name.lower().replace(" ", "-")
        async with sessions() as session:
            source = NewsSource(
                name=name,
                url=f"https://{slug}.example.com",
                feed_url=f"https://{slug}.example.com/feed",
                is_active=is_active,
            )
            session.add(source)
            await session.commit()
            return source.id

    return _add


@pytest.fixture
def add_article(sessions):
    counter = {"n": 0}
    base = datetime.now(UTC) - timedelta(hours=6)

    async def _add(
        title: str = "OpenAI Releases GPT-5 with Reasoning Capabilities",
        *,
        source_id: str | None = None,
        content: str = (
            "OpenAI has announced GPT-5, its latest large language model featuring "
            "advanced reasoning capabilities."
        ),
        published_at: datetime | None = None,
        ingested_at: datetime | None = None,
        status: AnalysisStatus = AnalysisStatus.PENDING,
        is_duplicate: bool = False,
    ) -> str:
        counter["n"] += 1
        n = counter["n"]
        async with sessions() as session:
            article = CandidateArticle(
                source_id=source_id,
                external_url=f"https://news.example.com/articles/{n}",
                title=title,
                content=content,
                published_at=published_at or base + timedelta(minutes=n),
                ingested_at=ingested_at or base + timedelta(minutes=n),
                analysis_status=status,
                is_duplicate=is_duplicate,
            )
            session.add(article)
            await session.commit()
            return article.id

    return _add


@pytest.fixture
def get_article(sessions):
    async def _get(article_id: str) -> CandidateArticle:
        async with sessions() as session:
            return await session.get(CandidateArticle, article_id)

    return _get
