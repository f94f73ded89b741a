"""
Cross-source duplicate detection.

Articles from the same source are assumed distinct. For every pair from
different sources the decision ladder is:

  1. normalised title similarity >= 0.8               → title_match
  2. a URL cited in both bodies                       → url_match (0.9)
  3. similarity in [0.5, 0.8) and the classifier says
     "same event" with confidence >= 0.7              → content_match
  4. otherwise not a duplicate

The earlier-published article is always the primary. Matching is greedy: once
an article is marked it takes no further part in the pass, so results depend
on iteration order. Sources are visited in id order (manual submissions last)
and articles by publish time, which keeps a pass reproducible.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import datetime

from langchain_core.language_models.chat_models import BaseChatModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from harvester.core.config import get_settings
from harvester.core.logging import get_logger
from harvester.models.models import DuplicateReason, ErrorType
from harvester.schemas.drafts import SameEventVerdict
from harvester.schemas.schemas import ArticleSnapshot, DuplicateMatch, SimilarityDecision
from harvester.services import articles as repo
from harvester.services.error_tracker import ErrorTracker
from harvester.services.llm import complete, get_chat_model, parse_json_output

logger = get_logger(__name__)

_URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")


# ═══════════════════════════════════════════════════════════════
# String similarity
# ═══════════════════════════════════════════════════════════════
def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit costs (two-row DP)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,  # delete
                    current[j - 1] + 1,  # insert
                    previous[j - 1] + (ca != cb),  # substitute
                )
            )
        previous = current
    return previous[-1]


def normalize_title(title: str) -> str:
    return " ".join(title.lower().split())


def title_similarity(a: str, b: str) -> float:
    a, b = normalize_title(a), normalize_title(b)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - edit_distance(a, b) / max(len(a), len(b))


def extract_urls(text: str) -> set[str]:
    return set(_URL_RE.findall(text))


# ═══════════════════════════════════════════════════════════════
# Semantic same-event check
# ═══════════════════════════════════════════════════════════════
SAME_EVENT_PROMPT = """Compare these two news articles and determine if they describe the SAME news event.

Article A:
Title: {title_a}
Published: {date_a}
Content: {content_a}

Article B:
Title: {title_b}
Published: {date_b}
Content: {content_b}

Return JSON only:
{{
  "isSameEvent": <true if both articles describe the same news event>,
  "confidence": <0.0-1.0>,
  "reason": "<brief explanation>"
}}

Note: Different sources may use different headlines for the same story.
Focus on: Is this the SAME news event being reported?"""

_SAME_EVENT_CONTENT_CHARS = 1500


class SameEventJudge:
    """Asks the classifier whether two articles report the same event."""

    def __init__(self, llm: BaseChatModel | None = None) -> None:
        self._llm = llm

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_chat_model("classifier")
        return self._llm

    async def compare(self, a: ArticleSnapshot, b: ArticleSnapshot) -> SameEventVerdict:
        prompt = SAME_EVENT_PROMPT.format(
            title_a=a.title,
            date_a=a.published_at.date().isoformat(),
            content_a=a.content[:_SAME_EVENT_CONTENT_CHARS],
            title_b=b.title,
            date_b=b.published_at.date().isoformat(),
            content_b=b.content[:_SAME_EVENT_CONTENT_CHARS],
        )
        text = await complete(self.llm, prompt)
        return SameEventVerdict.model_validate(parse_json_output(text, "object"))


# ═══════════════════════════════════════════════════════════════
# Detector
# ═══════════════════════════════════════════════════════════════
class DuplicateDetector:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        judge: SameEventJudge | None = None,
        tracker: ErrorTracker | None = None,
        title_threshold: float | None = None,
        ambiguous_threshold: float | None = None,
        url_score: float | None = None,
        min_confidence: float | None = None,
    ) -> None:
        settings = get_settings()
        self._sessions = session_factory
        self._judge = judge or SameEventJudge()
        self._tracker = tracker
        self._title_threshold = (
            settings.title_match_threshold if title_threshold is None else title_threshold
        )
        self._ambiguous_threshold = (
            settings.ambiguous_title_threshold
            if ambiguous_threshold is None
            else ambiguous_threshold
        )
        self._url_score = settings.url_match_score if url_score is None else url_score
        self._min_confidence = (
            settings.same_event_confidence if min_confidence is None else min_confidence
        )

    async def compare(
        self, primary: ArticleSnapshot, candidate: ArticleSnapshot
    ) -> SimilarityDecision:
        """Decide whether ``candidate`` duplicates ``primary``."""
        similarity = title_similarity(primary.title, candidate.title)
        if similarity >= self._title_threshold:
            return SimilarityDecision(
                is_duplicate=True, score=similarity, reason=DuplicateReason.TITLE_MATCH
            )

        if extract_urls(primary.content) & extract_urls(candidate.content):
            return SimilarityDecision(
                is_duplicate=True, score=self._url_score, reason=DuplicateReason.URL_MATCH
            )

        if similarity >= self._ambiguous_threshold:
            try:
                verdict = await self._judge.compare(primary, candidate)
            except Exception as e:
                # a failed check counts as "not a duplicate"
                logger.warning(
                    "same_event_check_failed",
                    article_id=candidate.id,
                    other_id=primary.id,
                    error=str(e),
                )
                if self._tracker is not None:
                    await self._tracker.record_failure(
                        ErrorType.DUPLICATE_DETECTION, e, article_id=candidate.id
                    )
                return SimilarityDecision(is_duplicate=False, score=similarity)

            if verdict.is_same_event and verdict.confidence >= self._min_confidence:
                return SimilarityDecision(
                    is_duplicate=True,
                    score=verdict.confidence,
                    reason=DuplicateReason.CONTENT_MATCH,
                )

        return SimilarityDecision(is_duplicate=False, score=similarity)

    async def detect(self, since: datetime) -> list[DuplicateMatch]:
        """Run one pass over articles ingested since ``since`` and persist the matches."""
        async with self._sessions() as session:
            candidates = await repo.list_detection_candidates(session, since)

        if len(candidates) < 2:
            logger.info("duplicate_pass_skipped", articles=len(candidates))
            return []

        by_source: dict[str | None, list[ArticleSnapshot]] = defaultdict(list)
        for article in candidates:
            by_source[article.source_id].append(article)
        groups = [
            by_source[key]
            for key in sorted(by_source, key=lambda k: (k is None, k or ""))
        ]

        marked: set[str] = set()
        matches: list[DuplicateMatch] = []
        comparisons = 0

        for i, group_a in enumerate(groups):
            for group_b in groups[i + 1 :]:
                for a in group_a:
                    if a.id in marked:
                        continue
                    for b in group_b:
                        if a.id in marked:
                            break
                        if b.id in marked:
                            continue
                        primary, candidate = (a, b) if a.published_at <= b.published_at else (b, a)
                        decision = await self.compare(primary, candidate)
                        comparisons += 1
                        if not decision.is_duplicate:
                            continue
                        matches.append(
                            DuplicateMatch(
                                article_id=candidate.id,
                                duplicate_of_id=primary.id,
                                score=decision.score,
                                reason=decision.reason,
                            )
                        )
                        marked.add(candidate.id)
                        logger.info(
                            "duplicate_found",
                            article_id=candidate.id,
                            duplicate_of=primary.id,
                            reason=decision.reason.value,
                            score=round(decision.score, 3),
                        )

        if matches:
            async with self._sessions() as session:
                await repo.mark_duplicates(session, matches)
                await session.commit()

        logger.info(
            "duplicate_pass_complete",
            articles=len(candidates),
            sources=len(groups),
            comparisons=comparisons,
            duplicates=len(matches),
        )
        return matches
