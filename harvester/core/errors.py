"""Exception hierarchy shared by the ingestion and analysis pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors raised by pipeline components."""


class FeedFetchError(PipelineError):
    """Raised when a feed cannot be downloaded or parsed."""

    def __init__(self, feed_url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch feed {feed_url}: {reason}")
        self.feed_url = feed_url
        self.reason = reason


class MalformedOutputError(PipelineError):
    """Raised when classification output holds no recoverable JSON."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text[:500]


class ArticleNotFoundError(PipelineError):
    def __init__(self, article_id: str) -> None:
        super().__init__(f"Article not found: {article_id}")
        self.article_id = article_id


class ArticleStateError(PipelineError):
    """Raised when an operation is not allowed in the article's current state."""
