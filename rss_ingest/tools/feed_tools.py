"""Feed and article MCP tools.

This module provides MCP tools for managing feed sources, running polls and
reading the stored articles.

NOTE: Never use Optional parameters in MCP tools - they break MCP clients.
Use empty string "" for optional strings and 0 for optional integers.
"""

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict

from mcp.server.fastmcp import Context

from rss_ingest.config import get_config
from rss_ingest.errors import FetchError, IngestError
from rss_ingest.models.schemas import FeedCategory
from rss_ingest.services.feed_parser import fetch_feed, validate_feed_url
from rss_ingest.services.poller import FeedPoller
from rss_ingest.storage.database import Database, open_database


logger = logging.getLogger(__name__)


@asynccontextmanager
async def _store() -> AsyncIterator[Database]:
    async with open_database(get_config().database_path) as db:
        yield db


def _not_found(kind: str, item_id: int) -> Dict[str, Any]:
    return {"success": False, "error": f"{kind} with id {item_id} not found"}


async def add_feed(
    title: str,
    url: str,
    category: str,
    source: str,
    description: str = "",
    organization: str = "",
    country: str = "JP",
    language: str = "ja",
    ctx: Context = None,
) -> Dict[str, Any]:
    """Register a new RSS/Atom feed source to poll.

    Args:
        title: Display title of the feed
        url: Absolute http(s) URL of the RSS/Atom document (must be unique)
        category: One of 政府・官公庁 (government), 企業 (corporate),
            メディア (media), 国際機関 (international); English names accepted
        source: Free-text label of the publishing source
        description: Optional description (empty string for none)
        organization: Optional organization name (empty string for none)
        country: Country code (default "JP")
        language: Language code (default "ja")
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: the created feed
        - error: string if success is False
    """
    if not title.strip() or not url.strip() or not category.strip() or not source.strip():
        return {
            "success": False,
            "error": "Required fields: title, url, category, source",
        }

    try:
        url = validate_feed_url(url)
        async with _store() as db:
            feed = await db.add_feed(
                title=title.strip(),
                url=url,
                category=category,
                source=source.strip(),
                description=description or None,
                organization=organization or None,
                country=country or "JP",
                language=language or "ja",
            )
    except (FetchError, ValueError) as e:
        return {"success": False, "error": str(e)}

    return {"success": True, "feed": feed.to_dict()}


async def update_feed(
    feed_id: int,
    title: str = "",
    url: str = "",
    category: str = "",
    source: str = "",
    description: str = "",
    organization: str = "",
    country: str = "",
    language: str = "",
    is_active: str = "",
    ctx: Context = None,
) -> Dict[str, Any]:
    """Update fields of a feed source. Empty values leave a field unchanged.

    Args:
        feed_id: ID of the feed (from list_feeds)
        title: New title
        url: New feed URL (must not belong to another feed)
        category: New category
        source: New source label
        description: New description
        organization: New organization
        country: New country code
        language: New language code
        is_active: "true" to resume polling, "false" to pause it
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: the updated feed
        - error: string if success is False
    """
    fields: Dict[str, Any] = {}
    for name, value in (
        ("title", title),
        ("url", url),
        ("category", category),
        ("source", source),
        ("description", description),
        ("organization", organization),
        ("country", country),
        ("language", language),
    ):
        if value:
            fields[name] = value

    if is_active:
        flag = is_active.strip().lower()
        if flag not in ("true", "false"):
            return {"success": False, "error": "is_active must be 'true' or 'false'"}
        fields["is_active"] = flag == "true"

    try:
        if "url" in fields:
            fields["url"] = validate_feed_url(fields["url"])
        async with _store() as db:
            feed = await db.update_feed(feed_id, **fields)
    except (FetchError, ValueError) as e:
        return {"success": False, "error": str(e)}

    if feed is None:
        return _not_found("Feed", feed_id)
    return {"success": True, "feed": feed.to_dict()}


async def remove_feed(feed_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Remove a feed source and all of its articles.

    This permanently deletes the feed and its articles. Use update_feed with
    is_active="false" to stop polling without deleting anything.

    Args:
        feed_id: ID of the feed to remove
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - message: confirmation string if successful
        - articles_deleted: count of articles removed
        - error: string if feed not found
    """
    async with _store() as db:
        found, article_count = await db.remove_feed(feed_id)

    if not found:
        return _not_found("Feed", feed_id)
    return {
        "success": True,
        "message": f"Removed feed {feed_id} and {article_count} articles",
        "articles_deleted": article_count,
    }


async def list_feeds(active_only: bool = False, ctx: Context = None) -> Dict[str, Any]:
    """List registered feed sources with their health.

    Args:
        active_only: Only list feeds that are polled
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of feeds
        - feeds: list of feeds including last_polled, last_error, error_count
    """
    async with _store() as db:
        feeds = await db.list_feeds(active_only=active_only)

    return {
        "success": True,
        "count": len(feeds),
        "feeds": [feed.to_dict() for feed in feeds],
    }


async def get_feed(feed_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Get one feed with its article count and five most recent articles.

    Args:
        feed_id: ID of the feed
        ctx: MCP Context object (injected automatically)
    """
    async with _store() as db:
        feed = await db.get_feed(feed_id)
        if feed is None:
            return _not_found("Feed", feed_id)
        article_count = await db.count_articles(feed_id)
        recent = await db.recent_articles(feed_id, limit=5)

    return {
        "success": True,
        "feed": feed.to_dict(),
        "article_count": article_count,
        "recent_articles": [
            {
                "id": a.id,
                "title": a.title,
                "link": a.link,
                "published_at": a.published_at.isoformat(),
                "created_at": a.created_at.isoformat() if a.created_at else None,
            }
            for a in recent
        ],
    }


async def preview_feed(url: str, ctx: Context = None) -> Dict[str, Any]:
    """Fetch and parse a feed without storing anything.

    Useful to check a URL before registering it with add_feed.

    Args:
        url: Absolute http(s) URL of the RSS/Atom document
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: title, link, description and parsed items
        - error: string if the feed could not be fetched or parsed
    """
    config = get_config()
    try:
        parsed = await fetch_feed(
            url, timeout=config.fetch_timeout, user_agent=config.user_agent
        )
    except IngestError as e:
        return {"success": False, "error": str(e)}

    return {"success": True, "item_count": len(parsed.items), "feed": parsed.to_dict()}


async def poll_feeds(ctx: Context = None) -> Dict[str, Any]:
    """Poll all active feeds now and store new articles.

    Every active feed is fetched; new items (by guid or link) are stored and
    each feed's health is updated. A failing feed does not stop the others.

    Args:
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - successful / failed / total: feed counts
        - errors: one message per failed feed
        - new_articles: number of articles stored by this run
        - timestamp: completion time
    """
    config = get_config()
    async with _store() as db:
        result = await FeedPoller.from_config(db, config).poll_all()

    return {
        "success": True,
        **result.to_summary(),
        "new_articles": result.new_articles,
    }


async def list_articles(
    category: str = "",
    feed_id: int = 0,
    search: str = "",
    since: str = "",
    unread_only: bool = False,
    favorites_only: bool = False,
    page: int = 1,
    limit: int = 20,
    ctx: Context = None,
) -> Dict[str, Any]:
    """List stored articles, newest first, with filters and pagination.

    Args:
        category: Only articles from feeds of this category (empty string for all)
        feed_id: Only articles from this feed (0 for all)
        search: Only articles whose title contains this text
        since: Only articles published on/after this date (ISO format like
            "2025-01-01", empty string for no filter)
        unread_only: Skip articles marked as read
        favorites_only: Only articles marked as favorite
        page: Page number starting at 1
        limit: Page size (max 100)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - articles: article objects with feed_title, feed_source, feed_category
        - pagination: page, limit, total_count, total_pages, has_next, has_prev
        - filters: the filters applied
    """
    since_dt = None
    if since:
        try:
            since_dt = datetime.fromisoformat(since)
        except ValueError:
            return {
                "success": False,
                "error": f"Invalid 'since' date format: {since}. Use ISO format like '2025-01-01'",
            }

    if category:
        try:
            FeedCategory.parse(category)
        except ValueError as e:
            return {"success": False, "error": str(e)}

    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    async with _store() as db:
        articles, total = await db.list_articles(
            category=category or None,
            feed_id=feed_id or None,
            search=search or None,
            since=since_dt,
            unread_only=unread_only,
            favorites_only=favorites_only,
            page=page,
            limit=limit,
        )

    offset = (page - 1) * limit
    return {
        "success": True,
        "articles": articles,
        "pagination": {
            "page": page,
            "limit": limit,
            "total_count": total,
            "total_pages": math.ceil(total / limit),
            "has_next": offset + limit < total,
            "has_prev": page > 1,
        },
        "filters": {
            "category": category or None,
            "feed_id": feed_id or None,
            "search": search or None,
            "since": since or None,
        },
    }


async def mark_article_read(article_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Mark a specific article as read.

    Args:
        article_id: Database ID of the article (from list_articles response)
        ctx: MCP Context object (injected automatically)
    """
    async with _store() as db:
        article = await db.set_article_read(article_id, True)

    if article is None:
        return _not_found("Article", article_id)
    return {
        "success": True,
        "article": {"id": article.id, "title": article.title, "is_read": article.is_read},
    }


async def mark_article_unread(article_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Mark a specific article as unread.

    Args:
        article_id: Database ID of the article (from list_articles response)
        ctx: MCP Context object (injected automatically)
    """
    async with _store() as db:
        article = await db.set_article_read(article_id, False)

    if article is None:
        return _not_found("Article", article_id)
    return {
        "success": True,
        "article": {"id": article.id, "title": article.title, "is_read": article.is_read},
    }


async def set_article_favorite(
    article_id: int, is_favorite: bool = True, ctx: Context = None
) -> Dict[str, Any]:
    """Add an article to, or remove it from, the favorites.

    Args:
        article_id: Database ID of the article
        is_favorite: True to mark as favorite, False to clear
        ctx: MCP Context object (injected automatically)
    """
    async with _store() as db:
        article = await db.set_article_favorite(article_id, is_favorite)

    if article is None:
        return _not_found("Article", article_id)
    return {
        "success": True,
        "article": {
            "id": article.id,
            "title": article.title,
            "is_favorite": article.is_favorite,
        },
    }


async def save_article_summary(
    article_id: int, summary: str, ctx: Context = None
) -> Dict[str, Any]:
    """Store a summary for an article.

    The summary is written by the caller (for example after reading the
    article's content); this tool only persists it.

    Args:
        article_id: Database ID of the article
        summary: Summary text (must not be empty)
        ctx: MCP Context object (injected automatically)
    """
    if not summary.strip():
        return {"success": False, "error": "summary must not be empty"}

    async with _store() as db:
        article = await db.set_article_summary(article_id, summary.strip())

    if article is None:
        return _not_found("Article", article_id)
    return {
        "success": True,
        "article": {"id": article.id, "title": article.title, "summary": article.summary},
    }


async def delete_article(article_id: int, ctx: Context = None) -> Dict[str, Any]:
    """Delete a single article.

    Note the next poll stores it again if the feed still lists it.

    Args:
        article_id: Database ID of the article
        ctx: MCP Context object (injected automatically)
    """
    async with _store() as db:
        deleted = await db.delete_article(article_id)

    if not deleted:
        return _not_found("Article", article_id)
    return {"success": True, "message": f"Article {article_id} deleted"}


# List of feed tools for registration
feed_tools = [
    add_feed,
    update_feed,
    remove_feed,
    list_feeds,
    get_feed,
    preview_feed,
    poll_feeds,
    list_articles,
    mark_article_read,
    mark_article_unread,
    set_article_favorite,
    save_article_summary,
    delete_article,
]
