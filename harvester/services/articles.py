"""
Persistence helpers for sources, candidate articles, drafts and pipeline settings.

Every function takes an open AsyncSession and leaves committing to the caller,
so a pipeline stage can group its writes into one transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from harvester.core.errors import ArticleNotFoundError, ArticleStateError
from harvester.core.logging import get_logger
from harvester.models.models import (
    AnalysisStatus,
    CandidateArticle,
    ContentDraft,
    ContentType,
    DraftStatus,
    NewsSource,
    PipelineSettingsRow,
    utcnow,
)
from harvester.schemas.schemas import ArticleSnapshot, DuplicateMatch, FetchedArticle

logger = get_logger(__name__)


# ── Sources ─────────────────────────────────────────────────
async def list_active_sources(session: AsyncSession) -> Sequence[NewsSource]:
    result = await session.scalars(
        select(NewsSource).where(NewsSource.is_active.is_(True)).order_by(NewsSource.name)
    )
    return result.all()


async def mark_source_checked(session: AsyncSession, source_id: str) -> None:
    source = await session.get(NewsSource, source_id)
    if source is not None:
        source.last_checked_at = utcnow()


# ── Ingestion ───────────────────────────────────────────────
async def create_articles_bulk(
    session: AsyncSession, source_id: str | None, items: Iterable[FetchedArticle]
) -> tuple[int, int]:
    """
    Insert fetched items, skipping any external URL that is already stored.

    Returns (created, skipped). Inserts use ON CONFLICT DO NOTHING, so a row that
    loses a unique-URL race with another writer is counted as skipped too.
    """
    items = list(items)
    urls = {item.external_url for item in items}
    existing: set[str] = set()
    if urls:
        existing = set(
            await session.scalars(
                select(CandidateArticle.external_url).where(
                    CandidateArticle.external_url.in_(urls)
                )
            )
        )

    insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
    created = skipped = 0
    for item in items:
        if item.external_url in existing:
            skipped += 1
            continue
        existing.add(item.external_url)
        result = await session.execute(
            insert(CandidateArticle)
            .values(
                source_id=source_id,
                external_url=item.external_url,
                title=item.title,
                content=item.content,
                published_at=item.published_at,
            )
            .on_conflict_do_nothing(index_elements=["external_url"])
        )
        if result.rowcount:
            created += 1
        else:
            skipped += 1
    return created, skipped


# ── Article lookups ─────────────────────────────────────────
async def get_article(session: AsyncSession, article_id: str) -> CandidateArticle:
    article = await session.get(
        CandidateArticle, article_id, options=[selectinload(CandidateArticle.source)]
    )
    if article is None:
        raise ArticleNotFoundError(article_id)
    return article


def to_snapshot(article: CandidateArticle) -> ArticleSnapshot:
    return ArticleSnapshot(
        id=article.id,
        source_id=article.source_id,
        source_name=article.source.name if article.source is not None else "Manual Submission",
        external_url=article.external_url,
        title=article.title,
        content=article.content,
        published_at=article.published_at,
    )


async def select_pending_ids(session: AsyncSession, limit: int) -> list[str]:
    """The ``limit`` oldest-ingested pending, non-duplicate articles."""
    result = await session.scalars(
        select(CandidateArticle.id)
        .where(
            CandidateArticle.analysis_status == AnalysisStatus.PENDING,
            CandidateArticle.is_duplicate.is_(False),
        )
        .order_by(CandidateArticle.ingested_at.asc(), CandidateArticle.id.asc())
        .limit(limit)
    )
    return list(result)


async def count_pending(session: AsyncSession) -> int:
    count = await session.scalar(
        select(func.count())
        .select_from(CandidateArticle)
        .where(
            CandidateArticle.analysis_status == AnalysisStatus.PENDING,
            CandidateArticle.is_duplicate.is_(False),
        )
    )
    return count or 0


async def list_detection_candidates(
    session: AsyncSession, since: datetime
) -> list[ArticleSnapshot]:
    """Articles ingested since ``since`` that are not yet flagged duplicate."""
    result = await session.scalars(
        select(CandidateArticle)
        .options(selectinload(CandidateArticle.source))
        .where(
            CandidateArticle.ingested_at >= since,
            CandidateArticle.is_duplicate.is_(False),
        )
        .order_by(CandidateArticle.published_at.asc(), CandidateArticle.id.asc())
    )
    return [to_snapshot(article) for article in result]


# ── Status transitions ──────────────────────────────────────
async def set_status(
    session: AsyncSession,
    article_id: str,
    status: AnalysisStatus,
    *,
    expected_version: int | None = None,
    **fields: Any,
) -> int:
    """
    Move an article to ``status`` and apply extra column updates.

    With ``expected_version`` the write is refused if someone else has updated
    the article since that version was read. Returns the new version.
    """
    article = await get_article(session, article_id)
    if expected_version is not None and article.version != expected_version:
        raise ArticleStateError(
            f"Article {article_id} was modified concurrently "
            f"(expected version {expected_version}, found {article.version})"
        )
    article.analysis_status = status
    for name, value in fields.items():
        setattr(article, name, value)
    await session.flush()
    return article.version


async def mark_duplicates(session: AsyncSession, matches: Iterable[DuplicateMatch]) -> None:
    for match in matches:
        article = await get_article(session, match.article_id)
        article.is_duplicate = True
        article.duplicate_of_id = match.duplicate_of_id
        article.duplicate_score = match.score
        article.duplicate_reason = match.reason


async def reset_article(session: AsyncSession, article_id: str) -> CandidateArticle:
    """Return a failed article to pending with its screening outcome cleared."""
    article = await get_article(session, article_id)
    if article.analysis_status != AnalysisStatus.ERROR:
        raise ArticleStateError(
            f"Only failed articles can be reset; {article_id} is {article.analysis_status.value}"
        )
    article.analysis_status = AnalysisStatus.PENDING
    article.analyzed_at = None
    article.analysis_error = None
    article.relevance_score = None
    article.is_milestone_worthy = False
    article.milestone_rationale = None
    article.suggested_category = None
    await session.flush()
    return article


# ── Drafts ──────────────────────────────────────────────────
async def create_draft(
    session: AsyncSession,
    article_id: str,
    content_type: ContentType,
    payload: dict[str, Any],
    *,
    is_valid: bool,
    validation_errors: list[dict[str, Any]] | None = None,
) -> ContentDraft:
    draft = ContentDraft(
        article_id=article_id,
        content_type=content_type,
        payload=payload,
        is_valid=is_valid,
        validation_errors=validation_errors,
        status=DraftStatus.PENDING,
    )
    session.add(draft)
    await session.flush()
    return draft


async def list_known_terms(session: AsyncSession) -> list[str]:
    """Terms already in the glossary pipeline: pending or published glossary drafts."""
    payloads = await session.scalars(
        select(ContentDraft.payload).where(
            ContentDraft.content_type == ContentType.GLOSSARY_TERM,
            ContentDraft.status.in_([DraftStatus.PENDING, DraftStatus.PUBLISHED]),
        )
    )
    terms: list[str] = []
    for payload in payloads:
        term = payload.get("term") if isinstance(payload, dict) else None
        if isinstance(term, str) and term.strip():
            terms.append(term.strip())
    return terms


async def list_recent_milestones(session: AsyncSession, limit: int) -> list[dict[str, str]]:
    """Published milestones offered to generation as prerequisite candidates."""
    drafts = await session.scalars(
        select(ContentDraft)
        .where(
            ContentDraft.content_type == ContentType.MILESTONE,
            ContentDraft.status == DraftStatus.PUBLISHED,
        )
        .order_by(ContentDraft.created_at.desc())
        .limit(limit)
    )
    return [
        {
            "id": draft.id,
            "title": str(draft.payload.get("title", "")),
            "date": str(draft.payload.get("date", "")),
        }
        for draft in drafts
    ]


# ── Pipeline settings ───────────────────────────────────────
async def get_pipeline_settings(session: AsyncSession) -> PipelineSettingsRow:
    row = await session.get(PipelineSettingsRow, "default")
    if row is None:
        row = PipelineSettingsRow(id="default", ingestion_paused=False, analysis_paused=False)
        session.add(row)
        await session.flush()
    return row


async def update_pipeline_settings(session: AsyncSession, **changes: Any) -> PipelineSettingsRow:
    row = await get_pipeline_settings(session)
    for name, value in changes.items():
        if value is not None:
            setattr(row, name, value)
    await session.flush()
    logger.info("pipeline_settings_updated", **{k: v for k, v in changes.items() if v is not None})
    return row
