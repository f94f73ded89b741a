"""
SQLAlchemy 2.0 ORM models.

Five core entities: NewsSource, CandidateArticle, ContentDraft, ErrorRecord,
PipelineSettingsRow. Structured fields use JSON columns so callers always see
dicts and lists, and timestamps always come back timezone-aware (UTC).
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """DateTime that stores UTC and never hands back a naive value (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    pass


# ── Enums ───────────────────────────────────────────────────
class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    SCREENING = "screening"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class DuplicateReason(str, enum.Enum):
    TITLE_MATCH = "title_match"
    URL_MATCH = "url_match"
    CONTENT_MATCH = "content_match"


class ContentType(str, enum.Enum):
    MILESTONE = "milestone"
    NEWS_EVENT = "news_event"
    GLOSSARY_TERM = "glossary_term"


class DraftStatus(str, enum.Enum):
    PENDING = "pending"
    PUBLISHED = "published"
    REJECTED = "rejected"


class ErrorType(str, enum.Enum):
    FETCH = "fetch"
    ANALYSIS = "analysis"
    DUPLICATE_DETECTION = "duplicate_detection"


# ── Models ──────────────────────────────────────────────────
class NewsSource(Base):
    __tablename__ = "news_sources"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200))
    url: Mapped[str] = mapped_column(String(2000), unique=True)
    feed_url: Mapped[str] = mapped_column(String(2000))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    articles: Mapped[list[CandidateArticle]] = relationship(back_populates="source")


class CandidateArticle(Base):
    __tablename__ = "candidate_articles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    # NULL source = manual submission
    source_id: Mapped[str | None] = mapped_column(
        ForeignKey("news_sources.id", ondelete="CASCADE"), nullable=True, index=True
    )
    external_url: Mapped[str] = mapped_column(String(2000), unique=True)
    title: Mapped[str] = mapped_column(String(1000))
    content: Mapped[str] = mapped_column(Text)
    published_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    ingested_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)

    # Analysis lifecycle
    analysis_status: Mapped[AnalysisStatus] = mapped_column(
        Enum(AnalysisStatus), default=AnalysisStatus.PENDING, index=True
    )
    analyzed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    analysis_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    relevance_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_milestone_worthy: Mapped[bool] = mapped_column(Boolean, default=False)
    milestone_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Cross-source duplicate bookkeeping
    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    duplicate_of_id: Mapped[str | None] = mapped_column(
        ForeignKey("candidate_articles.id", ondelete="SET NULL"), nullable=True
    )
    duplicate_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    duplicate_reason: Mapped[DuplicateReason | None] = mapped_column(
        Enum(DuplicateReason), nullable=True
    )

    # Optimistic concurrency token; the ORM bumps it on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    source: Mapped[NewsSource | None] = relationship(back_populates="articles")
    drafts: Mapped[list[ContentDraft]] = relationship(
        back_populates="article", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}


class ContentDraft(Base):
    __tablename__ = "content_drafts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    article_id: Mapped[str] = mapped_column(
        ForeignKey("candidate_articles.id", ondelete="CASCADE"), index=True
    )
    content_type: Mapped[ContentType] = mapped_column(Enum(ContentType), index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=False)
    validation_errors: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[DraftStatus] = mapped_column(
        Enum(DraftStatus), default=DraftStatus.PENDING, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    article: Mapped[CandidateArticle] = relationship(back_populates="drafts")


class ErrorRecord(Base):
    __tablename__ = "error_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    error_type: Mapped[ErrorType] = mapped_column(Enum(ErrorType), index=True)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    article_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    message: Mapped[str] = mapped_column(Text)
    stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class PipelineSettingsRow(Base):
    """Singleton row holding operator pause switches and last-run stamps."""

    __tablename__ = "pipeline_settings"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="default")
    ingestion_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    analysis_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    last_ingestion_run: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_analysis_run: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)
