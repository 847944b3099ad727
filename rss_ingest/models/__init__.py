"""Data models for rss_ingest."""

from .schemas import (
    Article,
    ArticleCandidate,
    FeedCategory,
    FeedOutcome,
    FeedSource,
    ParsedFeed,
    ParsedItem,
    PollResult,
)

__all__ = [
    "Article",
    "ArticleCandidate",
    "FeedCategory",
    "FeedOutcome",
    "FeedSource",
    "ParsedFeed",
    "ParsedItem",
    "PollResult",
]
