"""
Contracts for classification-service output.

The service returns free text, so screening results are coerced field by field
into safe defaults, while draft payloads are validated strictly and their
errors kept for the human reviewer.
"""

from __future__ import annotations

import datetime as dt
import json
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

MilestoneCategory = Literal[
    "research", "model_release", "breakthrough", "product", "regulation", "industry"
]
GlossaryCategory = Literal[
    "core_concept", "technical_term", "business_term", "model_architecture", "company_product"
]

RATIONALE_PLACEHOLDER = "Unable to determine rationale"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════
# Screening is lenient: malformed fields fall back to defaults
# ═══════════════════════════════════════════════════════════════
class ScreeningResult(_CamelModel):
    relevance_score: float = 0.5
    is_milestone_worthy: bool = False
    milestone_rationale: str = RATIONALE_PLACEHOLDER
    suggested_category: str | None = None
    has_new_terminology: bool = Field(default=False, alias="hasNewGlossaryTerms")

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> float:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0.5
        return max(0.0, min(1.0, float(v)))

    @field_validator("is_milestone_worthy", "has_new_terminology", mode="before")
    @classmethod
    def _strict_bool(cls, v: Any) -> bool:
        # "yes", 1 and friends are not booleans; only a real true counts
        return v if isinstance(v, bool) else False

    @field_validator("milestone_rationale", mode="before")
    @classmethod
    def _rationale(cls, v: Any) -> str:
        return v if isinstance(v, str) and v.strip() else RATIONALE_PLACEHOLDER

    @field_validator("suggested_category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str | None:
        if isinstance(v, str) and v.strip() and v.strip().lower() != "null":
            return v.strip()
        return None


class SameEventVerdict(_CamelModel):
    is_same_event: bool = False
    confidence: float = 0.0
    reason: str = "AI analysis"

    @field_validator("is_same_event", mode="before")
    @classmethod
    def _strict_bool(cls, v: Any) -> bool:
        return v is True

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0.0
        return float(v)


# ═══════════════════════════════════════════════════════════════
# Draft payloads are strict: failures are stored, never raised
# ═══════════════════════════════════════════════════════════════
class SourceRef(_CamelModel):
    label: str = Field(min_length=1)
    kind: str
    url: HttpUrl


class MilestoneDraft(_CamelModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1, max_length=5000)
    date: str
    category: MilestoneCategory
    significance: Literal[1, 2, 3, 4]
    era: str | None = None
    organization: str | None = None
    contributors: list[str] = Field(default_factory=list)
    source_url: HttpUrl | Literal[""] | None = None
    tags: list[str] = Field(default_factory=list)
    sources: list[SourceRef] = Field(default_factory=list)
    tldr: str = ""
    simple_explanation: str = ""
    business_impact: str = ""
    technical_depth: str | None = None
    historical_context: str | None = None
    why_it_matters_today: str | None = None
    common_misconceptions: str | None = None

    @field_validator("date")
    @classmethod
    def _parseable_date(cls, v: str) -> str:
        try:
            dt.date.fromisoformat(v[:10])
        except ValueError as e:
            raise ValueError("Invalid date format") from e
        return v


class NewsEventDraft(_CamelModel):
    headline: str = Field(min_length=10, max_length=200)
    summary: str = Field(min_length=50, max_length=500)
    source_url: HttpUrl | None = None
    source_publisher: str | None = None
    published_date: str = Field(min_length=1)
    prerequisite_milestone_ids: list[str] = Field(min_length=2, max_length=6)
    connection_explanation: str = Field(min_length=1)
    featured: bool = False


class GlossaryTermDraft(_CamelModel):
    id: str = Field(min_length=1)
    term: str = Field(min_length=1, max_length=100)
    short_definition: str = Field(max_length=200)
    full_definition: str = Field(min_length=1)
    business_context: str = Field(min_length=1)
    category: GlossaryCategory
    related_term_ids: list[str] = Field(default_factory=list)
    related_milestone_ids: list[str] = Field(default_factory=list)


def validate_payload(
    model: type[BaseModel], payload: dict[str, Any]
) -> tuple[bool, list[dict[str, Any]] | None]:
    """Validate a draft payload; returns (is_valid, JSON-safe error list or None)."""
    try:
        model.model_validate(payload)
    except ValidationError as e:
        # round-trip through JSON so ctx objects (exceptions, URLs) become plain values
        return False, json.loads(e.json(include_url=False))
    return True, None
