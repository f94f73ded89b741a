"""
Per-article analysis graph.

Flow:
  START → screen ─┬─ (milestone-worthy) → generate ─┬─ (new terms) → extract_terms → finish → END
                  │                                  └────────────────────────────→ finish
                  ├─ (new terms only) → extract_terms → finish
                  └─ (neither) → END  [status already complete]

Status is persisted as the article moves: screening on entry, generating or
complete after screening, complete in finish. Every classification call goes
through the ErrorTracker retry wrapper keyed on the article id; when retries
run out the article is marked ``error`` and the exception propagates.
"""

from __future__ import annotations

from typing import Literal

from langchain_core.language_models.chat_models import BaseChatModel
from langgraph.graph import END, START, StateGraph
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from harvester.agents.nodes.generation import generate_content
from harvester.agents.nodes.screening import screen_article
from harvester.agents.nodes.terminology import extract_terms
from harvester.agents.state import AnalysisState
from harvester.core.config import get_settings
from harvester.core.errors import ArticleStateError
from harvester.core.logging import get_logger
from harvester.models.models import AnalysisStatus, ContentType, ErrorType, utcnow
from harvester.schemas.drafts import (
    GlossaryTermDraft,
    MilestoneDraft,
    NewsEventDraft,
    validate_payload,
)
from harvester.schemas.schemas import (
    AnalysisBatchResult,
    AnalysisOutcome,
    AnalysisResult,
    ArticleResetResponse,
)
from harvester.services import articles as repo
from harvester.services.error_tracker import ErrorTracker
from harvester.services.llm import get_chat_model

logger = get_logger(__name__)


def _route_after_screening(state: AnalysisState) -> Literal["generate", "extract_terms", "__end__"]:
    screening = state["screening"]
    if screening.is_milestone_worthy:
        return "generate"
    if screening.has_new_terminology:
        return "extract_terms"
    return END


def _route_after_generation(state: AnalysisState) -> Literal["extract_terms", "finish"]:
    if state["screening"].has_new_terminology:
        return "extract_terms"
    return "finish"


def build_analysis_graph(analyzer: ArticleAnalyzer):
    """Compile the analysis state machine with the analyzer's stage methods as nodes."""
    workflow = StateGraph(AnalysisState)

    workflow.add_node("screen", analyzer.screen_node)
    workflow.add_node("generate", analyzer.generate_node)
    workflow.add_node("extract_terms", analyzer.extract_terms_node)
    workflow.add_node("finish", analyzer.finish_node)

    workflow.add_edge(START, "screen")
    workflow.add_conditional_edges("screen", _route_after_screening)
    workflow.add_conditional_edges("generate", _route_after_generation)
    workflow.add_edge("extract_terms", "finish")
    workflow.add_edge("finish", END)

    graph = workflow.compile()
    logger.debug("analysis_graph_compiled", node_count=len(workflow.nodes))
    return graph


class ArticleAnalyzer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tracker: ErrorTracker,
        *,
        classifier: BaseChatModel | None = None,
        generator: BaseChatModel | None = None,
        max_retries: int | None = None,
        initial_delay: float | None = None,
        milestone_context: int | None = None,
    ) -> None:
        settings = get_settings()
        self._sessions = session_factory
        self._tracker = tracker
        self._classifier = classifier
        self._generator = generator
        self._max_retries = settings.analysis_max_retries if max_retries is None else max_retries
        self._initial_delay = (
            settings.analysis_initial_delay if initial_delay is None else initial_delay
        )
        self._milestone_context = (
            settings.recent_milestones_context if milestone_context is None else milestone_context
        )
        self._graph = build_analysis_graph(self)

    # Models are built lazily so a missing API key only matters once a call is made
    @property
    def classifier(self) -> BaseChatModel:
        if self._classifier is None:
            self._classifier = get_chat_model("classifier")
        return self._classifier

    @property
    def generator(self) -> BaseChatModel:
        if self._generator is None:
            self._generator = get_chat_model("generator", temperature=0.3)
        return self._generator

    async def _with_retry(self, article_id: str, operation):
        return await self._tracker.with_retry(
            operation,
            error_type=ErrorType.ANALYSIS,
            article_id=article_id,
            max_retries=self._max_retries,
            initial_delay=self._initial_delay,
        )

    # ═══════════════════════════════════════════════════════════
    # Graph nodes
    # ═══════════════════════════════════════════════════════════
    async def screen_node(self, state: AnalysisState) -> dict:
        article = state["article"]
        result = await self._with_retry(
            article.id, lambda: screen_article(self.classifier, article)
        )

        fields = {
            "relevance_score": result.relevance_score,
            "is_milestone_worthy": result.is_milestone_worthy,
            "milestone_rationale": result.milestone_rationale,
            "suggested_category": result.suggested_category,
        }
        if result.is_milestone_worthy:
            status = AnalysisStatus.GENERATING
        else:
            status = AnalysisStatus.COMPLETE
            fields["analyzed_at"] = utcnow()

        async with self._sessions() as session:
            version = await repo.set_status(
                session, article.id, status, expected_version=state["version"], **fields
            )
            await session.commit()
        return {"screening": result, "version": version}

    async def generate_node(self, state: AnalysisState) -> dict:
        article = state["article"]
        screening = state["screening"]
        async with self._sessions() as session:
            recent = await repo.list_recent_milestones(session, self._milestone_context)

        content = await self._with_retry(
            article.id,
            lambda: generate_content(
                self.generator, article, screening.suggested_category, recent
            ),
        )

        drafts = []
        if content.milestone is not None:
            drafts.append((ContentType.MILESTONE, MilestoneDraft, content.milestone))
        drafts.append((ContentType.NEWS_EVENT, NewsEventDraft, content.news_event))

        async with self._sessions() as session:
            for content_type, model, payload in drafts:
                is_valid, errors = validate_payload(model, payload)
                await repo.create_draft(
                    session,
                    article.id,
                    content_type,
                    payload,
                    is_valid=is_valid,
                    validation_errors=errors,
                )
                if not is_valid:
                    logger.warning(
                        "draft_invalid",
                        article_id=article.id,
                        content_type=content_type.value,
                        error_count=len(errors or []),
                    )
            await session.commit()
        return {"drafts_created": state["drafts_created"] + len(drafts)}

    async def extract_terms_node(self, state: AnalysisState) -> dict:
        article = state["article"]
        async with self._sessions() as session:
            existing = await repo.list_known_terms(session)

        terms = await self._with_retry(
            article.id, lambda: extract_terms(self.classifier, article, existing)
        )

        async with self._sessions() as session:
            for term in terms:
                is_valid, errors = validate_payload(GlossaryTermDraft, term)
                await repo.create_draft(
                    session,
                    article.id,
                    ContentType.GLOSSARY_TERM,
                    term,
                    is_valid=is_valid,
                    validation_errors=errors,
                )
            await session.commit()
        return {
            "terms_extracted": len(terms),
            "drafts_created": state["drafts_created"] + len(terms),
        }

    async def finish_node(self, state: AnalysisState) -> dict:
        async with self._sessions() as session:
            version = await repo.set_status(
                session,
                state["article"].id,
                AnalysisStatus.COMPLETE,
                expected_version=state["version"],
                analyzed_at=utcnow(),
            )
            await session.commit()
        return {"version": version}

    # ═══════════════════════════════════════════════════════════
    # Entry points
    # ═══════════════════════════════════════════════════════════
    async def analyze_article(self, article_id: str) -> AnalysisResult:
        """Run one pending article through the graph."""
        async with self._sessions() as session:
            article = await repo.get_article(session, article_id)
            if article.is_duplicate:
                raise ArticleStateError(f"Article {article_id} is a duplicate and is not analysed")
            if article.analysis_status != AnalysisStatus.PENDING:
                raise ArticleStateError(
                    f"Article {article_id} is {article.analysis_status.value}, not pending"
                )
            snapshot = repo.to_snapshot(article)
            version = await repo.set_status(
                session, article_id, AnalysisStatus.SCREENING, expected_version=article.version
            )
            await session.commit()

        logger.info("analysis_started", article_id=article_id, title=snapshot.title[:80])
        try:
            final = await self._graph.ainvoke(
                {
                    "article": snapshot,
                    "version": version,
                    "drafts_created": 0,
                    "terms_extracted": 0,
                }
            )
        except Exception as exc:
            await self._mark_failed(article_id, exc)
            raise

        screening = final["screening"]
        logger.info(
            "analysis_complete",
            article_id=article_id,
            milestone_worthy=screening.is_milestone_worthy,
            drafts=final["drafts_created"],
            terms=final["terms_extracted"],
        )
        return AnalysisResult(
            article_id=article_id,
            relevance_score=screening.relevance_score,
            is_milestone_worthy=screening.is_milestone_worthy,
            drafts_created=final["drafts_created"],
            terms_extracted=final["terms_extracted"],
        )

    async def _mark_failed(self, article_id: str, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        logger.error("analysis_failed", article_id=article_id, error=message)
        try:
            async with self._sessions() as session:
                await repo.set_status(
                    session, article_id, AnalysisStatus.ERROR, analysis_error=message
                )
                await session.commit()
        except SQLAlchemyError as db_error:
            logger.error("analysis_failure_not_recorded", article_id=article_id, error=str(db_error))

    async def analyze_pending(self, limit: int | None = None) -> AnalysisBatchResult:
        """
        Analyse the ``limit`` oldest pending, non-duplicate articles one at a time.

        A failing article is counted and skipped; it never stops the batch.
        """
        limit = get_settings().analysis_batch_limit if limit is None else limit
        async with self._sessions() as session:
            article_ids = await repo.select_pending_ids(session, limit)

        batch = AnalysisBatchResult()
        for article_id in article_ids:
            try:
                await self.analyze_article(article_id)
            except Exception as e:
                batch.errors += 1
                batch.results.append(
                    AnalysisOutcome(article_id=article_id, success=False, error=str(e))
                )
                continue
            batch.analyzed += 1
            batch.results.append(AnalysisOutcome(article_id=article_id, success=True))

        logger.info(
            "analysis_batch_complete",
            selected=len(article_ids),
            analyzed=batch.analyzed,
            errors=batch.errors,
        )
        return batch

    async def reset_article(self, article_id: str) -> ArticleResetResponse:
        """error → pending, with a fresh retry budget for the next attempt."""
        async with self._sessions() as session:
            article = await repo.reset_article(session, article_id)
            status = article.analysis_status
            await session.commit()

        resolved = await self._tracker.resolve_article_errors(article_id)
        logger.info("article_reset", article_id=article_id, errors_resolved=resolved)
        return ArticleResetResponse(
            article_id=article_id, analysis_status=status, errors_resolved=resolved
        )
