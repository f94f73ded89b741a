"""
Syndication feed fetcher.

Downloads a feed over httpx, parses it with feedparser and normalises each
entry into a FetchedArticle. Source fetches go through the ErrorTracker retry
wrapper; validate() is a single unretried fetch for configuration checks.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import feedparser
import httpx

from harvester.core.config import get_settings
from harvester.core.errors import FeedFetchError
from harvester.core.logging import get_logger
from harvester.models.models import ErrorType, utcnow
from harvester.schemas.schemas import FeedInfo, FetchedArticle
from harvester.services.error_tracker import ErrorTracker

logger = get_logger(__name__)

# Emoji, pictographs, dingbats and the joiners/selectors that glue them together
_LEADING_GLYPHS_RE = re.compile(
    "^[\U0001f000-\U0001faff\u2190-\u21ff\u2300-\u27bf\u2b00-\u2bff\ufe0f\u200d\\s]+"
)
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def clean_title(title: str) -> str:
    return collapse_whitespace(_LEADING_GLYPHS_RE.sub("", title))


def strip_markup(html: str) -> str:
    return collapse_whitespace(_TAG_RE.sub(" ", html))


def _entry_body(entry: feedparser.FeedParserDict) -> str:
    """Full content (content / content:encoded) first, then the summary."""
    for block in entry.get("content") or []:
        value = block.get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description") or ""


def _entry_published(entry: feedparser.FeedParserDict) -> datetime:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        try:
            return datetime(*parsed[:6], tzinfo=UTC)
        except (TypeError, ValueError):
            pass
    return utcnow()


def normalize_entries(parsed: feedparser.FeedParserDict) -> list[FetchedArticle]:
    articles: list[FetchedArticle] = []
    for entry in parsed.entries:
        link = (entry.get("link") or "").strip()
        title = clean_title(entry.get("title") or "")
        if not link or not title:
            continue
        articles.append(
            FetchedArticle(
                external_url=link,
                title=title,
                content=strip_markup(_entry_body(entry)),
                published_at=_entry_published(entry),
            )
        )
    return articles


class FeedFetcher:
    def __init__(
        self,
        *,
        tracker: ErrorTracker | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        max_retries: int | None = None,
        initial_delay: float | None = None,
    ) -> None:
        settings = get_settings()
        self._tracker = tracker
        self._client = client
        self._timeout = settings.feed_timeout if timeout is None else timeout
        self._user_agent = user_agent or settings.feed_user_agent
        self._max_retries = settings.fetch_max_retries if max_retries is None else max_retries
        self._initial_delay = (
            settings.fetch_initial_delay if initial_delay is None else initial_delay
        )

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self._timeout,
            headers={"User-Agent": self._user_agent},
            follow_redirects=True,
        ) as client:
            yield client

    async def _download(self, feed_url: str) -> feedparser.FeedParserDict:
        try:
            async with self._http() as client:
                resp = await client.get(feed_url)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise FeedFetchError(feed_url, str(e) or type(e).__name__) from e

        parsed = feedparser.parse(resp.content)
        if parsed.bozo and not parsed.entries:
            reason = parsed.get("bozo_exception") or "not a feed"
            raise FeedFetchError(feed_url, f"unparseable feed: {reason}")
        return parsed

    async def fetch(self, feed_url: str) -> list[FetchedArticle]:
        """One fetch attempt: download, parse and normalise."""
        parsed = await self._download(feed_url)
        articles = normalize_entries(parsed)
        logger.info(
            "feed_fetched",
            feed_url=feed_url,
            entries=len(parsed.entries),
            kept=len(articles),
        )
        return articles

    async def fetch_source(self, source_id: str, feed_url: str) -> list[FetchedArticle]:
        """Fetch a configured source under the retry wrapper, keyed by source id."""
        if self._tracker is None:
            return await self.fetch(feed_url)
        return await self._tracker.with_retry(
            lambda: self.fetch(feed_url),
            error_type=ErrorType.FETCH,
            source_id=source_id,
            max_retries=self._max_retries,
            initial_delay=self._initial_delay,
        )

    async def validate(self, feed_url: str) -> FeedInfo:
        """Single unretried fetch used to check a feed URL before it is saved."""
        parsed = await self._download(feed_url)
        title = collapse_whitespace(parsed.feed.get("title") or "") or "Unknown Feed"
        return FeedInfo(title=title, item_count=len(parsed.entries))
