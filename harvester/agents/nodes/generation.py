"""
Content generation: turns a milestone-worthy article into a milestone draft
and a news-event draft.

Uses the generator tier. The raw payloads are normalised here (significance
coerced and clamped, list fields defaulted, era filled from the publish year);
structural validation happens when the drafts are stored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from harvester.core.errors import MalformedOutputError
from harvester.core.logging import get_logger
from harvester.schemas.schemas import ArticleSnapshot
from harvester.services.llm import complete, parse_json_output

logger = get_logger(__name__)

GENERATION_CONTENT_CHARS = 6000

# (name, first year, last year)
ERA_DEFINITIONS: list[tuple[str, int, int]] = [
    ("Foundations", 1940, 1955),
    ("Birth of AI", 1956, 1969),
    ("Symbolic & Expert Systems", 1970, 1987),
    ("Winters & Statistical ML", 1988, 2011),
    ("Deep Learning Resurgence", 2012, 2016),
    ("Transformers & Modern NLP", 2017, 2019),
    ("Scaling & LLMs", 2020, 2021),
    ("Alignment & Productization", 2022, 2023),
    ("Multimodal & Deployment", 2024, 2099),
]
DEFAULT_ERA = "Multimodal & Deployment"


def era_for_year(year: int) -> str:
    for name, start, end in ERA_DEFINITIONS:
        if start <= year <= end:
            return name
    return DEFAULT_ERA


GENERATION_PROMPT = """You are creating educational content for a platform that helps non-technical professionals understand AI.

## Your Task:
Generate structured content from this article that matches our EXACT schemas. Pay special attention to extracting contributor names and providing layered content for different audience levels.

## Article:
Title: {title}
Source: {source}
URL: {source_url}
Published: {published}
Content: {content}

## Category Determined: {category}
## Era: {era}

## Existing Milestones for Context (use these IDs for prerequisites):
{milestones}

## Generate This EXACT JSON Structure:
{{
  "milestone": {{
    "title": "<clear, specific title of what happened, max 500 chars>",
    "description": "<educational description explaining significance for non-experts, 200-1000 chars>",
    "date": "<YYYY-MM-DD when this occurred>",
    "category": "<exactly one of: research, model_release, breakthrough, product, regulation, industry>",
    "significance": <1-4 integer: 1=minor first, 2=moderate advance, 3=major breakthrough, 4=historic>,
    "era": "<one of: {era_names}>",
    "organization": "<primary organization responsible, or null>",
    "contributors": ["<people named in the article: researchers, founders, key figures>"],
    "sourceUrl": "<URL to original article>",
    "tags": ["<3-8 lowercase tags>"],
    "sources": [{{"label": "<source name>", "kind": "article", "url": "<url>"}}],
    "tldr": "<1-2 sentence plain-English summary>",
    "simpleExplanation": "<3-4 sentences for someone with no technical background>",
    "businessImpact": "<2-3 sentences on how this affects businesses and professionals>",
    "technicalDepth": "<optional: 2-3 sentences of technical detail>",
    "historicalContext": "<optional: what came before that made this possible>",
    "whyItMattersToday": "<optional: ongoing implications>",
    "commonMisconceptions": "<optional: what people often get wrong>"
  }},
  "newsEvent": {{
    "headline": "<educational headline, 10-200 chars, what it means not just what happened>",
    "summary": "<plain-English summary for business professionals, 50-500 chars>",
    "sourceUrl": "<URL to original article>",
    "sourcePublisher": "<publisher name>",
    "publishedDate": "<YYYY-MM-DD>",
    "prerequisiteMilestoneIds": ["<2-6 milestone IDs from the list above>"],
    "connectionExplanation": "<how this news builds on the prerequisite milestones>",
    "featured": <true if groundbreaking, false otherwise>
  }}
}}

## Rules:
- Return ONLY valid JSON (no markdown code blocks, no explanation text)
- Use EXACT field names as shown
- significance must be an integer 1-4, not a string
- All dates in YYYY-MM-DD format
- If no suitable prerequisite milestones exist, use an empty array []"""


@dataclass
class GeneratedContent:
    milestone: dict[str, Any] | None
    news_event: dict[str, Any]


def _format_milestones(milestones: list[dict[str, str]]) -> str:
    if not milestones:
        return "(No existing milestones yet)"
    return "\n".join(f'- {m["id"]}: "{m["title"]}" ({m["date"]})' for m in milestones)


def _coerce_significance(value: Any) -> Any:
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return value  # left for validation to flag
    if isinstance(value, float):
        if not math.isfinite(value):
            return None  # NaN and infinities are not valid JSON to store
        value = int(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return max(1, min(4, value))
    return value


def normalize_milestone(raw: dict[str, Any], era: str) -> dict[str, Any]:
    milestone = dict(raw)
    if "significance" in milestone:
        milestone["significance"] = _coerce_significance(milestone["significance"])
    for key in ("tags", "contributors", "sources"):
        if not milestone.get(key):
            milestone[key] = []
    if not milestone.get("era"):
        milestone["era"] = era
    for key in ("tldr", "simpleExplanation", "businessImpact"):
        if not milestone.get(key):
            milestone[key] = ""
    return milestone


def normalize_news_event(raw: dict[str, Any]) -> dict[str, Any]:
    news_event = dict(raw)
    if not news_event.get("prerequisiteMilestoneIds"):
        news_event["prerequisiteMilestoneIds"] = []
    return news_event


async def generate_content(
    llm: BaseChatModel,
    article: ArticleSnapshot,
    category: str | None,
    recent_milestones: list[dict[str, str]],
) -> GeneratedContent:
    """One generation call. Raises MalformedOutputError when no news event comes back."""
    era = era_for_year(article.published_at.year)
    prompt = GENERATION_PROMPT.format(
        title=article.title,
        source=article.source_name,
        source_url=article.external_url,
        published=article.published_at.date().isoformat(),
        content=article.content[:GENERATION_CONTENT_CHARS],
        category=category or "(to be determined)",
        era=era,
        era_names=", ".join(name for name, _, _ in ERA_DEFINITIONS),
        milestones=_format_milestones(recent_milestones),
    )
    text = await complete(llm, prompt)
    data = parse_json_output(text, "object")

    news_event = data.get("newsEvent")
    if not isinstance(news_event, dict):
        raise MalformedOutputError("Generation output has no newsEvent object", text)
    milestone = data.get("milestone")

    content = GeneratedContent(
        milestone=normalize_milestone(milestone, era) if isinstance(milestone, dict) else None,
        news_event=normalize_news_event(news_event),
    )
    logger.info(
        "content_generated",
        article_id=article.id,
        has_milestone=content.milestone is not None,
        era=era,
    )
    return content
