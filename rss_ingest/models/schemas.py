"""Data models for rss_ingest.

This module defines the core data structures for feed sources, articles,
parsed feed documents and poll runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class FeedCategory(str, Enum):
    """Kind of organization publishing a feed."""

    GOVERNMENT = "政府・官公庁"
    CORPORATE = "企業"
    MEDIA = "メディア"
    INTERNATIONAL = "国際機関"

    @classmethod
    def parse(cls, value: str) -> "FeedCategory":
        """Accept either a category value or a member name (case-insensitive).

        Raises:
            ValueError: If the value names no known category
        """
        value = (value or "").strip()
        for member in cls:
            if value == member.value or value.upper() == member.name:
                return member
        allowed = ", ".join(f"{m.name.lower()} ({m.value})" for m in cls)
        raise ValueError(f"Unknown category '{value}'. Expected one of: {allowed}")


@dataclass
class FeedSource:
    """Represents a registered RSS/Atom feed."""

    id: int
    title: str
    url: str
    category: FeedCategory
    source: str
    description: Optional[str] = None
    organization: Optional[str] = None
    country: str = "JP"
    language: str = "ja"
    is_active: bool = True
    last_polled: Optional[datetime] = None
    last_error: Optional[str] = None
    error_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "category": self.category.value,
            "source": self.source,
            "description": self.description,
            "organization": self.organization,
            "country": self.country,
            "language": self.language,
            "is_active": self.is_active,
            "last_polled": _iso(self.last_polled),
            "last_error": self.last_error,
            "error_count": self.error_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Article:
    """Represents one stored article."""

    id: int
    feed_id: int
    title: str
    link: str
    published_at: datetime
    guid: str
    description: Optional[str] = None
    content: Optional[str] = None
    content_snippet: Optional[str] = None
    author: Optional[str] = None
    creator: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    is_read: bool = False
    is_favorite: bool = False
    summary: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feed_id": self.feed_id,
            "title": self.title,
            "link": self.link,
            "description": self.description,
            "content": self.content,
            "content_snippet": self.content_snippet,
            "published_at": _iso(self.published_at),
            "guid": self.guid,
            "author": self.author,
            "creator": self.creator,
            "categories": list(self.categories),
            "is_read": self.is_read,
            "is_favorite": self.is_favorite,
            "summary": self.summary,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class ParsedItem:
    """One entry of a fetched feed, before normalization."""

    title: Optional[str] = None
    link: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    content_snippet: Optional[str] = None
    pub_date: Optional[str] = None
    iso_date: Optional[str] = None
    guid: Optional[str] = None
    author: Optional[str] = None
    creator: Optional[str] = None
    categories: List[str] = field(default_factory=list)


@dataclass
class ParsedFeed:
    """A fetched and parsed feed document."""

    title: str
    link: str
    description: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "link": self.link,
            "description": self.description,
            "items": [item.__dict__.copy() for item in self.items],
        }


@dataclass
class ArticleCandidate:
    """Canonical article shape ready to be inserted."""

    feed_id: int
    title: str
    link: str
    guid: str
    published_at: datetime
    description: Optional[str] = None
    content: Optional[str] = None
    content_snippet: Optional[str] = None
    author: Optional[str] = None
    creator: Optional[str] = None
    categories: List[str] = field(default_factory=list)


@dataclass
class FeedOutcome:
    """Result of one feed poll, as recorded in feed health."""

    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "FeedOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, message: str) -> "FeedOutcome":
        return cls(success=False, error=message or "Unknown error")


@dataclass
class PollResult:
    """Aggregate counts for one poll run."""

    feeds_attempted: int = 0
    feeds_succeeded: int = 0
    feeds_failed: int = 0
    errors: List[str] = field(default_factory=list)
    new_articles: int = 0
    finished_at: Optional[datetime] = None

    def to_summary(self) -> Dict[str, Any]:
        """Render the JSON body returned to the poll trigger."""
        timestamp = self.finished_at or datetime.now(timezone.utc)
        return {
            "message": "RSS feeds fetched",
            "successful": self.feeds_succeeded,
            "failed": self.feeds_failed,
            "total": self.feeds_attempted,
            "errors": list(self.errors),
            "timestamp": timestamp.isoformat(),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
