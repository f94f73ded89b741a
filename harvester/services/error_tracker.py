"""
Bounded retry with persisted failure bookkeeping.

There is at most one unresolved ErrorRecord per (error_type, source_id, article_id).
Each failure bumps that record's retry_count instead of adding a new row, so the
retry budget survives across runs until the key next succeeds or an operator
resolves it.
"""

from __future__ import annotations

import asyncio
import traceback
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from harvester.core.config import get_settings
from harvester.core.logging import get_logger
from harvester.models.models import ErrorRecord, ErrorType, utcnow
from harvester.schemas.schemas import ErrorStats, ErrorSummary, ErrorTrackResult

logger = get_logger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


def _matches(column, value: str | None):
    return column.is_(None) if value is None else column == value


class ErrorTracker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._sessions = session_factory
        self._sleep = sleep

    # ── Track ───────────────────────────────────────────────
    async def record_failure(
        self,
        error_type: ErrorType,
        exc: BaseException,
        *,
        source_id: str | None = None,
        article_id: str | None = None,
        max_retries: int = 3,
    ) -> ErrorTrackResult:
        """Create or bump the unresolved record for this key."""
        message = str(exc) or type(exc).__name__
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

        async with self._sessions() as session:
            stmt = (
                select(ErrorRecord)
                .where(
                    ErrorRecord.error_type == error_type,
                    ErrorRecord.resolved.is_(False),
                    _matches(ErrorRecord.source_id, source_id),
                    _matches(ErrorRecord.article_id, article_id),
                )
                .order_by(ErrorRecord.created_at.desc())
                .limit(1)
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is not None:
                record.retry_count += 1
                record.message = message
                record.stack_trace = stack
            else:
                record = ErrorRecord(
                    error_type=error_type,
                    source_id=source_id,
                    article_id=article_id,
                    message=message,
                    stack_trace=stack,
                    retry_count=0,
                    max_retries=max_retries,
                )
                session.add(record)
            await session.commit()

        return ErrorTrackResult(
            error_id=record.id,
            retry_count=record.retry_count,
            should_retry=record.retry_count < max_retries,
            max_retries=max_retries,
        )

    # ── Retry wrapper ───────────────────────────────────────
    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        error_type: ErrorType,
        source_id: str | None = None,
        article_id: str | None = None,
        max_retries: int = 3,
        initial_delay: float = 1.0,
    ) -> T:
        """
        Run ``operation`` until it succeeds or the key's retry budget is spent.

        Sleeps ``initial_delay * 2**attempt`` between attempts. The last error is
        re-raised once retries run out; marking the owning entity as failed is the
        caller's job. Any success resolves every open record for its source and
        article, including ones left by earlier runs.
        """
        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as exc:
                tracked = await self.record_failure(
                    error_type,
                    exc,
                    source_id=source_id,
                    article_id=article_id,
                    max_retries=max_retries,
                )
                if not tracked.should_retry or attempt >= max_retries:
                    logger.error(
                        "retries_exhausted",
                        error_type=error_type.value,
                        source_id=source_id,
                        article_id=article_id,
                        attempts=attempt + 1,
                        error=str(exc),
                    )
                    raise

                delay = initial_delay * 2**attempt
                logger.warning(
                    "retry_scheduled",
                    error_type=error_type.value,
                    source_id=source_id,
                    article_id=article_id,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
                attempt += 1
                continue

            resolved = 0
            if source_id is not None:
                resolved += await self.resolve_source_errors(source_id)
            if article_id is not None:
                resolved += await self.resolve_article_errors(article_id)
            if attempt > 0 or resolved:
                logger.info(
                    "retry_succeeded",
                    error_type=error_type.value,
                    source_id=source_id,
                    article_id=article_id,
                    attempts=attempt + 1,
                )
            return result

    # ── Resolution ──────────────────────────────────────────
    async def _resolve_where(self, *criteria) -> int:
        async with self._sessions() as session:
            result = await session.execute(
                update(ErrorRecord)
                .where(ErrorRecord.resolved.is_(False), *criteria)
                .values(resolved=True, resolved_at=utcnow())
            )
            await session.commit()
        return result.rowcount or 0

    async def resolve_source_errors(self, source_id: str) -> int:
        return await self._resolve_where(ErrorRecord.source_id == source_id)

    async def resolve_article_errors(self, article_id: str) -> int:
        return await self._resolve_where(ErrorRecord.article_id == article_id)

    async def resolve_all(self) -> int:
        """Bulk-resolve every open record (operator action)."""
        count = await self._resolve_where()
        logger.info("errors_bulk_resolved", count=count)
        return count

    async def delete_resolved_older_than(self, days: int | None = None) -> int:
        days = get_settings().error_retention_days if days is None else days
        cutoff = utcnow() - timedelta(days=days)
        async with self._sessions() as session:
            result = await session.execute(
                delete(ErrorRecord).where(
                    ErrorRecord.resolved.is_(True),
                    ErrorRecord.resolved_at < cutoff,
                )
            )
            await session.commit()
        count = result.rowcount or 0
        logger.info("resolved_errors_deleted", count=count, older_than_days=days)
        return count

    # ── Stats ───────────────────────────────────────────────
    async def get_stats(self, recent_limit: int | None = None) -> ErrorStats:
        limit = get_settings().recent_errors_limit if recent_limit is None else recent_limit
        async with self._sessions() as session:
            total = await session.scalar(select(func.count()).select_from(ErrorRecord))
            unresolved = await session.scalar(
                select(func.count())
                .select_from(ErrorRecord)
                .where(ErrorRecord.resolved.is_(False))
            )
            grouped = await session.execute(
                select(ErrorRecord.error_type, func.count())
                .where(ErrorRecord.resolved.is_(False))
                .group_by(ErrorRecord.error_type)
            )
            recent = await session.scalars(
                select(ErrorRecord)
                .where(ErrorRecord.resolved.is_(False))
                .order_by(ErrorRecord.created_at.desc())
                .limit(limit)
            )
            recent_errors = [
                ErrorSummary(
                    id=r.id,
                    error_type=r.error_type,
                    message=r.message,
                    retry_count=r.retry_count,
                    created_at=r.created_at,
                )
                for r in recent
            ]

        return ErrorStats(
            total=total or 0,
            unresolved=unresolved or 0,
            by_type={error_type.value: count for error_type, count in grouped},
            recent_errors=recent_errors,
        )
