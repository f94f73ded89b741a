"""
Terminology extraction: proposes new glossary terms found in an article.

Uses the classifier tier. The model is asked for a JSON array, which is often
truncated or has trailing commas; anything unrecoverable yields no terms.
"""

from __future__ import annotations

from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from harvester.core.errors import MalformedOutputError
from harvester.core.logging import get_logger
from harvester.schemas.schemas import ArticleSnapshot
from harvester.services.llm import complete, parse_json_output

logger = get_logger(__name__)

TERMINOLOGY_CONTENT_CHARS = 4000

TERMINOLOGY_PROMPT = """You are a glossary curator helping non-technical professionals understand AI terminology.

## Your Task:
Identify NEW AI-specific terms from this article that should be added to our glossary.

## Article:
Title: {title}
Content: {content}

## EXISTING Glossary Terms (DO NOT duplicate these):
{existing}

## Rules for New Terms:
1. Must be AI-specific (not general tech terms like "API", "cloud", "database")
2. Must NOT already exist in our glossary (check the list above carefully)
3. Must be terminology a business professional would encounter and need defined
4. Skip company names unless they have become common nouns
5. Skip version numbers
6. Quality over quantity: only genuinely useful new terms

## Return ONLY a valid JSON array (no markdown, no explanation):
[
  {{
    "id": "<lowercase-kebab-case>",
    "term": "<Display Name>",
    "shortDefinition": "<max 200 chars, no jargon, for tooltips>",
    "fullDefinition": "<2-3 sentences explaining the concept>",
    "businessContext": "<1-2 sentences: why should a business professional care?>",
    "category": "<exactly one of: core_concept, technical_term, business_term, model_architecture, company_product>",
    "relatedTermIds": ["<existing term IDs this relates to>"],
    "relatedMilestoneIds": []
  }}
]

Return an empty array [] if no genuinely new AI-specific terms are found.
Most articles will have 0-2 new terms at most."""


def build_terminology_prompt(article: ArticleSnapshot, existing_terms: list[str]) -> str:
    return TERMINOLOGY_PROMPT.format(
        title=article.title,
        content=article.content[:TERMINOLOGY_CONTENT_CHARS],
        existing=", ".join(existing_terms) if existing_terms else "(none yet)",
    )


def filter_new_terms(
    candidates: list[Any], existing_terms: list[str]
) -> list[dict[str, Any]]:
    """Drop entries without a term and any term already known (case-insensitive)."""
    seen = {t.strip().lower() for t in existing_terms}
    kept: list[dict[str, Any]] = []
    for item in candidates:
        if not isinstance(item, dict):
            continue
        term = item.get("term")
        if not isinstance(term, str) or not term.strip():
            continue
        key = term.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept


async def extract_terms(
    llm: BaseChatModel, article: ArticleSnapshot, existing_terms: list[str]
) -> list[dict[str, Any]]:
    """
    One extraction call. Transport errors propagate so the caller can retry;
    malformed output degrades to an empty list.
    """
    text = await complete(llm, build_terminology_prompt(article, existing_terms))
    try:
        candidates = parse_json_output(text, "array")
    except MalformedOutputError as e:
        logger.warning("terminology_unparseable", article_id=article.id, error=str(e))
        return []

    terms = filter_new_terms(candidates, existing_terms)
    logger.info(
        "terminology_extracted",
        article_id=article.id,
        proposed=len(candidates),
        kept=len(terms),
    )
    return terms
