"""
Screening: the cheap first pass that decides whether an article is
milestone-worthy and whether it introduces terminology worth defining.

Uses the classifier tier. Missing or malformed fields are defaulted by
ScreeningResult; only output with no JSON object at all is an error.
"""

from __future__ import annotations

from langchain_core.language_models.chat_models import BaseChatModel

from harvester.core.logging import get_logger
from harvester.schemas.drafts import ScreeningResult
from harvester.schemas.schemas import ArticleSnapshot
from harvester.services.llm import complete, parse_json_output

logger = get_logger(__name__)

SCREENING_CONTENT_CHARS = 4000

SCREENING_PROMPT = """You are a curator for an educational platform tracking significant AI developments from the 1940s to the present.

Your task: Evaluate if this article describes a MILESTONE-WORTHY event in AI history.

## What Makes a Milestone (ALL must apply):
1. First or Major Breakthrough: first of its kind, or a significant leap over previous capabilities
2. Historical Significance: will likely be remembered and referenced 5+ years from now
3. Verifiable Achievement: concrete, measurable advancement (not just announcements or speculation)
4. Category Fit: fits one of our tracked categories

## Our Milestone Categories:
- research: published papers, new techniques, theoretical breakthroughs
- model_release: new AI models publicly released
- breakthrough: capability milestones (beating humans at games, passing exams, etc.)
- product: AI products launched that changed how people work or live
- regulation: government policies, laws, or major industry standards
- industry: major company events (funding >$1B, acquisitions >$500M, major pivots)

## NOT Milestone-Worthy:
- Incremental updates or minor version releases
- Rumors, speculation, or "coming soon" announcements
- Opinion pieces or analysis without new developments
- Funding rounds under $500M (unless first-of-kind)
- Product features (vs. entirely new products)
- Internal company changes (leadership, layoffs) unless industry-shaping

## Article to Evaluate:
Title: {title}
Source: {source}
Published: {published}
Content: {content}

## Return ONLY valid JSON (no markdown, no explanation):
{{
  "relevanceScore": <0.0-1.0 how relevant to AI developments>,
  "isMilestoneWorthy": <true or false>,
  "milestoneRationale": "<2-3 sentences explaining your decision>",
  "suggestedCategory": "<category if milestone-worthy, null otherwise>",
  "hasNewGlossaryTerms": <true if the article introduces AI terminology worth defining>
}}"""


def build_screening_prompt(article: ArticleSnapshot) -> str:
    return SCREENING_PROMPT.format(
        title=article.title,
        source=article.source_name,
        published=article.published_at.date().isoformat(),
        content=article.content[:SCREENING_CONTENT_CHARS],
    )


async def screen_article(llm: BaseChatModel, article: ArticleSnapshot) -> ScreeningResult:
    """One screening call. Raises MalformedOutputError if no JSON object comes back."""
    text = await complete(llm, build_screening_prompt(article))
    result = ScreeningResult.model_validate(parse_json_output(text, "object"))
    logger.info(
        "screening_complete",
        article_id=article.id,
        relevance=result.relevance_score,
        milestone_worthy=result.is_milestone_worthy,
        category=result.suggested_category,
        new_terms=result.has_new_terminology,
    )
    return result
