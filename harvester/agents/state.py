"""
LangGraph state for the per-article analysis graph.

The article is loaded once into an immutable snapshot; each node reads it and
returns only the keys it changes. ``version`` carries the article's optimistic
concurrency token from one status write to the next.
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

from harvester.schemas.drafts import ScreeningResult
from harvester.schemas.schemas import ArticleSnapshot


class AnalysisState(TypedDict):
    article: ArticleSnapshot
    version: int

    # ── Stage outputs ───────────────────────────────────────
    screening: NotRequired[ScreeningResult]
    drafts_created: int
    terms_extracted: int
