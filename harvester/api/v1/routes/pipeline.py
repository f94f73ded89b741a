"""
Operator endpoints for the ingestion and analysis pipeline.

POST   /api/v1/pipeline/feeds/validate          — check a feed URL (no retries)
POST   /api/v1/pipeline/duplicates/detect       — standalone duplicate pass
POST   /api/v1/pipeline/analyze                 — analyse a batch of pending articles
POST   /api/v1/pipeline/articles/{id}/reset     — return a failed article to pending
GET    /api/v1/pipeline/errors                  — error record stats
POST   /api/v1/pipeline/errors/resolve          — resolve every open error record
DELETE /api/v1/pipeline/errors/resolved         — purge old resolved records
GET    /api/v1/pipeline/settings                — pause flags and last-run stamps
PUT    /api/v1/pipeline/settings                — update pause flags
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from harvester.api.v1.deps import Analyzer, AuthenticatedUser, Job, SessionFactory, Tracker
from harvester.core.errors import ArticleNotFoundError, ArticleStateError, FeedFetchError
from harvester.core.logging import get_logger
from harvester.schemas.schemas import (
    AnalysisBatchResult,
    ArticleResetResponse,
    CountResponse,
    DuplicatePassResponse,
    ErrorStats,
    FeedInfo,
    FeedValidationRequest,
    PipelineSettingsResponse,
    PipelineSettingsUpdate,
)
from harvester.services import articles as repo
from harvester.services.feed_fetcher import FeedFetcher

router = APIRouter(prefix="/pipeline", tags=["pipeline"])
logger = get_logger(__name__)


# ── Feeds ───────────────────────────────────────────────────
@router.post("/feeds/validate", response_model=FeedInfo)
async def validate_feed(body: FeedValidationRequest, _api_key: AuthenticatedUser) -> FeedInfo:
    try:
        return await FeedFetcher().validate(str(body.feed_url))
    except FeedFetchError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


# ── Duplicates ──────────────────────────────────────────────
@router.post("/duplicates/detect", response_model=DuplicatePassResponse)
async def detect_duplicates(
    job: Job,
    _api_key: AuthenticatedUser,
    lookback_hours: int | None = Query(default=None, ge=1, le=24 * 30),
) -> DuplicatePassResponse:
    matches = await job.run_duplicate_pass(lookback_hours)
    return DuplicatePassResponse(duplicates_found=len(matches), matches=matches)


# ── Analysis ────────────────────────────────────────────────
@router.post("/analyze", response_model=AnalysisBatchResult)
async def analyze_pending(
    analyzer: Analyzer,
    _api_key: AuthenticatedUser,
    limit: int | None = Query(default=None, ge=1, le=100),
) -> AnalysisBatchResult:
    return await analyzer.analyze_pending(limit)


@router.post("/articles/{article_id}/reset", response_model=ArticleResetResponse)
async def reset_article(
    article_id: str, analyzer: Analyzer, _api_key: AuthenticatedUser
) -> ArticleResetResponse:
    try:
        return await analyzer.reset_article(article_id)
    except ArticleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ArticleStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


# ── Errors ──────────────────────────────────────────────────
@router.get("/errors", response_model=ErrorStats)
async def error_stats(
    tracker: Tracker,
    _api_key: AuthenticatedUser,
    recent: int | None = Query(default=None, ge=1, le=100),
) -> ErrorStats:
    return await tracker.get_stats(recent)


@router.post("/errors/resolve", response_model=CountResponse)
async def resolve_all_errors(tracker: Tracker, _api_key: AuthenticatedUser) -> CountResponse:
    count = await tracker.resolve_all()
    return CountResponse(count=count, message=f"Resolved {count} error records")


@router.delete("/errors/resolved", response_model=CountResponse)
async def delete_resolved_errors(
    tracker: Tracker,
    _api_key: AuthenticatedUser,
    days: int | None = Query(default=None, ge=0),
) -> CountResponse:
    count = await tracker.delete_resolved_older_than(days)
    return CountResponse(count=count, message=f"Deleted {count} resolved error records")


# ── Settings ────────────────────────────────────────────────
def _settings_response(row) -> PipelineSettingsResponse:
    return PipelineSettingsResponse(
        ingestion_paused=row.ingestion_paused,
        analysis_paused=row.analysis_paused,
        last_ingestion_run=row.last_ingestion_run,
        last_analysis_run=row.last_analysis_run,
    )


@router.get("/settings", response_model=PipelineSettingsResponse)
async def get_settings_row(
    sessions: SessionFactory, _api_key: AuthenticatedUser
) -> PipelineSettingsResponse:
    async with sessions() as session:
        row = await repo.get_pipeline_settings(session)
        await session.commit()
        return _settings_response(row)


@router.put("/settings", response_model=PipelineSettingsResponse)
async def update_settings_row(
    body: PipelineSettingsUpdate, sessions: SessionFactory, _api_key: AuthenticatedUser
) -> PipelineSettingsResponse:
    async with sessions() as session:
        row = await repo.update_pipeline_settings(
            session,
            ingestion_paused=body.ingestion_paused,
            analysis_paused=body.analysis_paused,
        )
        await session.commit()
        return _settings_response(row)
