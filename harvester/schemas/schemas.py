"""
Pydantic v2 schemas for pipeline results and API request/response validation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl

from harvester.models.models import AnalysisStatus, DuplicateReason, ErrorType


# ── Feed fetching ───────────────────────────────────────────
class FetchedArticle(BaseModel):
    external_url: str
    title: str
    content: str
    published_at: datetime


class FeedInfo(BaseModel):
    title: str
    item_count: int


# ── Articles as the analysis stages see them ────────────────
class ArticleSnapshot(BaseModel):
    id: str
    source_id: str | None = None
    source_name: str = "Manual Submission"
    external_url: str
    title: str
    content: str
    published_at: datetime


# ── Duplicate detection ─────────────────────────────────────
class DuplicateMatch(BaseModel):
    article_id: str  # the later, redundant article
    duplicate_of_id: str  # the earlier primary
    score: float
    reason: DuplicateReason


class SimilarityDecision(BaseModel):
    is_duplicate: bool
    score: float
    reason: DuplicateReason = DuplicateReason.TITLE_MATCH


# ── Error tracking ──────────────────────────────────────────
class ErrorTrackResult(BaseModel):
    error_id: str
    retry_count: int
    should_retry: bool
    max_retries: int


class ErrorSummary(BaseModel):
    id: str
    error_type: ErrorType
    message: str
    retry_count: int
    created_at: datetime


class ErrorStats(BaseModel):
    total: int
    unresolved: int
    by_type: dict[str, int]
    recent_errors: list[ErrorSummary]


# ── Analysis ────────────────────────────────────────────────
class AnalysisResult(BaseModel):
    article_id: str
    relevance_score: float
    is_milestone_worthy: bool
    drafts_created: int = 0
    terms_extracted: int = 0


class AnalysisOutcome(BaseModel):
    article_id: str
    success: bool
    error: str | None = None


class AnalysisBatchResult(BaseModel):
    analyzed: int = 0
    errors: int = 0
    results: list[AnalysisOutcome] = Field(default_factory=list)


# ── Ingestion job summary ───────────────────────────────────
class SourceFetchResult(BaseModel):
    source_id: str
    source_name: str
    fetched: int = 0
    created: int = 0
    skipped: int = 0
    stale: int = 0
    error: str | None = None


class AnalysisCounts(BaseModel):
    analyzed: int = 0
    errors: int = 0


class IngestionSummary(BaseModel):
    run_id: str
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    ingestion_paused: bool = False
    analysis_paused: bool = False
    sources_processed: int = 0
    total_fetched: int = 0
    total_created: int = 0
    total_skipped: int = 0
    total_stale: int = 0
    duplicates_found: int = 0
    source_results: list[SourceFetchResult] = Field(default_factory=list)
    analysis: AnalysisCounts = Field(default_factory=AnalysisCounts)
    errors: list[str] = Field(default_factory=list)


# ── Pipeline settings ───────────────────────────────────────
class PipelineSettingsResponse(BaseModel):
    ingestion_paused: bool
    analysis_paused: bool
    last_ingestion_run: datetime | None = None
    last_analysis_run: datetime | None = None


class PipelineSettingsUpdate(BaseModel):
    ingestion_paused: bool | None = None
    analysis_paused: bool | None = None


# ── Run trigger ─────────────────────────────────────────────
class TriggerResponse(BaseModel):
    run_id: str
    status: str = "started"
    message: str = "Ingestion run started in background"


class RunStatusResponse(BaseModel):
    run_id: str
    status: Literal["running", "completed", "failed"]
    summary: IngestionSummary | None = None
    error: str | None = None


# ── Operator actions ────────────────────────────────────────
class FeedValidationRequest(BaseModel):
    feed_url: HttpUrl


class DuplicatePassResponse(BaseModel):
    duplicates_found: int
    matches: list[DuplicateMatch]


class CountResponse(BaseModel):
    count: int
    message: str


class ArticleResetResponse(BaseModel):
    article_id: str
    analysis_status: AnalysisStatus
    errors_resolved: int = 0


# ── Health check ────────────────────────────────────────────
class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    environment: str
    database: str = "connected"
