"""
Scheduled ingestion job.

One run, strictly in order:
  1. fetch every active source (sequentially, one source failing never stops the rest)
  2. one duplicate-detection pass over everything ingested since the run started
  3. one bounded analysis batch over pending, non-duplicate articles

Each phase is isolated: its failure is recorded in the summary and the next
phase still runs. run() never raises for partial failure.
"""

from __future__ import annotations

import time
import uuid
from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from harvester.agents.graph import ArticleAnalyzer
from harvester.core.config import get_settings
from harvester.core.logging import get_logger
from harvester.models.models import NewsSource, utcnow
from harvester.schemas.schemas import (
    AnalysisCounts,
    DuplicateMatch,
    IngestionSummary,
    SourceFetchResult,
)
from harvester.services import articles as repo
from harvester.services.duplicate_detector import DuplicateDetector
from harvester.services.error_tracker import ErrorTracker
from harvester.services.feed_fetcher import FeedFetcher

logger = get_logger(__name__)


class IngestionJob:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        tracker: ErrorTracker | None = None,
        fetcher: FeedFetcher | None = None,
        detector: DuplicateDetector | None = None,
        analyzer: ArticleAnalyzer | None = None,
        freshness_hours: int | None = None,
        analysis_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self._sessions = session_factory
        self._tracker = tracker or ErrorTracker(session_factory)
        self._fetcher = fetcher or FeedFetcher(tracker=self._tracker)
        self._detector = detector or DuplicateDetector(session_factory, tracker=self._tracker)
        self._analyzer = analyzer or ArticleAnalyzer(session_factory, self._tracker)
        self._freshness = timedelta(
            hours=settings.freshness_window_hours if freshness_hours is None else freshness_hours
        )
        self._analysis_limit = (
            settings.analysis_batch_limit if analysis_limit is None else analysis_limit
        )

    # ── Phase 1: fetch ──────────────────────────────────────
    async def _ingest_source(self, source: NewsSource) -> SourceFetchResult:
        result = SourceFetchResult(source_id=source.id, source_name=source.name)
        try:
            items = await self._fetcher.fetch_source(source.id, source.feed_url)
        except Exception as e:
            logger.error("source_fetch_failed", source=source.name, error=str(e))
            result.error = str(e) or type(e).__name__
            return result

        cutoff = utcnow() - self._freshness
        fresh = [item for item in items if item.published_at >= cutoff]
        result.fetched = len(items)
        result.stale = len(items) - len(fresh)

        async with self._sessions() as session:
            result.created, result.skipped = await repo.create_articles_bulk(
                session, source.id, fresh
            )
            await repo.mark_source_checked(session, source.id)
            await session.commit()

        logger.info(
            "source_ingested",
            source=source.name,
            fetched=result.fetched,
            stale=result.stale,
            created=result.created,
            skipped=result.skipped,
        )
        return result

    async def _fetch_phase(self, summary: IngestionSummary) -> None:
        async with self._sessions() as session:
            sources = await repo.list_active_sources(session)
        logger.info("active_sources_loaded", count=len(sources))

        for source in sources:
            try:
                result = await self._ingest_source(source)
            except Exception as e:
                # bookkeeping failure after a successful fetch (DB write, etc.)
                logger.error("source_ingest_failed", source=source.name, error=str(e))
                result = SourceFetchResult(
                    source_id=source.id, source_name=source.name, error=str(e)
                )
            summary.source_results.append(result)
            if result.error:
                summary.errors.append(f"Source {source.name}: {result.error}")

    # ── Entry points ────────────────────────────────────────
    async def run(self, run_id: str | None = None) -> IngestionSummary:
        run_id = run_id or str(uuid.uuid4())
        started_at = utcnow()
        clock = time.perf_counter()
        summary = IngestionSummary(
            run_id=run_id, started_at=started_at, finished_at=started_at, duration_ms=0
        )

        with structlog.contextvars.bound_contextvars(run_id=run_id):
            logger.info("ingestion_job_started")

            try:
                async with self._sessions() as session:
                    flags = await repo.get_pipeline_settings(session)
                    summary.ingestion_paused = flags.ingestion_paused
                    summary.analysis_paused = flags.analysis_paused
                    await session.commit()
            except Exception as e:
                logger.error("pipeline_settings_unavailable", error=str(e))
                summary.errors.append(f"Pipeline settings unavailable: {e}")

            if summary.ingestion_paused:
                logger.info("ingestion_phase_paused")
            else:
                try:
                    await self._fetch_phase(summary)
                except Exception as e:
                    logger.error("fetch_phase_failed", error=str(e))
                    summary.errors.append(f"Failed to fetch sources: {e}")

                try:
                    matches = await self._detector.detect(started_at)
                    summary.duplicates_found = len(matches)
                except Exception as e:
                    logger.error("duplicate_phase_failed", error=str(e))
                    summary.errors.append(f"Duplicate detection failed: {e}")

                await self._stamp(last_ingestion_run=utcnow())

            if summary.analysis_paused:
                logger.info("analysis_phase_paused")
            else:
                try:
                    async with self._sessions() as session:
                        pending = await repo.count_pending(session)
                    logger.info("pending_articles_counted", pending=pending)
                    if pending > 0:
                        batch = await self._analyzer.analyze_pending(self._analysis_limit)
                        summary.analysis = AnalysisCounts(
                            analyzed=batch.analyzed, errors=batch.errors
                        )
                except Exception as e:
                    logger.error("analysis_phase_failed", error=str(e))
                    summary.errors.append(f"Analysis failed: {e}")

                await self._stamp(last_analysis_run=utcnow())

            results = summary.source_results
            summary.sources_processed = len(results)
            summary.total_fetched = sum(r.fetched for r in results)
            summary.total_created = sum(r.created for r in results)
            summary.total_skipped = sum(r.skipped for r in results)
            summary.total_stale = sum(r.stale for r in results)
            summary.finished_at = utcnow()
            summary.duration_ms = int((time.perf_counter() - clock) * 1000)

            log = logger.warning if summary.errors else logger.info
            log(
                "ingestion_job_complete",
                duration_ms=summary.duration_ms,
                sources=summary.sources_processed,
                created=summary.total_created,
                skipped=summary.total_skipped,
                stale=summary.total_stale,
                duplicates=summary.duplicates_found,
                analyzed=summary.analysis.analyzed,
                analysis_errors=summary.analysis.errors,
                errors=len(summary.errors),
            )
        return summary

    async def _stamp(self, **stamps) -> None:
        try:
            async with self._sessions() as session:
                await repo.update_pipeline_settings(session, **stamps)
                await session.commit()
        except Exception as e:
            logger.error("pipeline_stamp_failed", error=str(e))

    async def run_duplicate_pass(self, lookback_hours: int | None = None) -> list[DuplicateMatch]:
        """Standalone detector pass over the last ``lookback_hours`` of ingestion."""
        hours = get_settings().duplicate_lookback_hours if lookback_hours is None else lookback_hours
        return await self._detector.detect(utcnow() - timedelta(hours=hours))
