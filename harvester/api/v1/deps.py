"""
Shared FastAPI dependencies for v1 API routes.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from harvester.agents.graph import ArticleAnalyzer
from harvester.core.config import Settings, get_settings
from harvester.core.security import verify_api_key
from harvester.models.database import async_session
from harvester.services.error_tracker import ErrorTracker
from harvester.services.ingestion_job import IngestionJob
from harvester.services.run_registry import RunRegistry


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


def get_error_tracker(
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> ErrorTracker:
    return ErrorTracker(sessions)


def get_analyzer(
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    tracker: Annotated[ErrorTracker, Depends(get_error_tracker)],
) -> ArticleAnalyzer:
    return ArticleAnalyzer(sessions, tracker)


def get_ingestion_job(
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    tracker: Annotated[ErrorTracker, Depends(get_error_tracker)],
    analyzer: Annotated[ArticleAnalyzer, Depends(get_analyzer)],
) -> IngestionJob:
    return IngestionJob(sessions, tracker=tracker, analyzer=analyzer)


def get_run_registry(request: Request) -> RunRegistry:
    return request.app.state.runs


# Re-export for convenience in route files
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
AppSettings = Annotated[Settings, Depends(get_settings)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
Tracker = Annotated[ErrorTracker, Depends(get_error_tracker)]
Analyzer = Annotated[ArticleAnalyzer, Depends(get_analyzer)]
Job = Annotated[IngestionJob, Depends(get_ingestion_job)]
Runs = Annotated[RunRegistry, Depends(get_run_registry)]
