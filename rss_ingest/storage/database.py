"""Database storage for rss_ingest.

This module provides async SQLite operations for feed sources and articles.
A Database wraps one aiosqlite connection and is handed to whatever needs
storage; nothing in the package holds a global connection.

Timestamps are stored as ISO-8601 strings in UTC.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import aiosqlite

from rss_ingest.models.schemas import Article, ArticleCandidate, FeedCategory, FeedSource


FEED_UPDATABLE_FIELDS = (
    "title",
    "url",
    "description",
    "category",
    "source",
    "organization",
    "country",
    "language",
    "is_active",
)

MAX_PAGE_SIZE = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    """Async storage for feeds and articles backed by SQLite."""

    def __init__(self, connection: aiosqlite.Connection):
        self.connection = connection

    @classmethod
    async def connect(cls, path: Union[str, Path]) -> "Database":
        """Open a connection and make sure the schema exists.

        Args:
            path: SQLite file path, or ":memory:"

        Returns:
            Ready-to-use Database
        """
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        connection = await aiosqlite.connect(str(path))
        connection.row_factory = aiosqlite.Row
        await connection.execute("PRAGMA foreign_keys = ON")

        db = cls(connection)
        await db.init_schema()
        return db

    async def close(self) -> None:
        await self.connection.close()

    async def init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        db = self.connection

        await db.execute("""
            CREATE TABLE IF NOT EXISTS feeds (
                id INTEGER PRIMARY KEY,
                title TEXT NOT NULL,
                url TEXT NOT NULL UNIQUE,
                description TEXT,
                category TEXT NOT NULL,
                source TEXT NOT NULL,
                organization TEXT,
                country TEXT NOT NULL DEFAULT 'JP',
                language TEXT NOT NULL DEFAULT 'ja',
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                last_polled TIMESTAMP,
                last_error TEXT,
                error_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        # Empty links are stored as NULL so link-less items don't collide
        await db.execute("""
            CREATE TABLE IF NOT EXISTS articles (
                id INTEGER PRIMARY KEY,
                feed_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                link TEXT UNIQUE,
                description TEXT,
                content TEXT,
                content_snippet TEXT,
                published_at TIMESTAMP NOT NULL,
                guid TEXT NOT NULL UNIQUE,
                author TEXT,
                creator TEXT,
                categories TEXT NOT NULL DEFAULT '[]',
                is_read BOOLEAN NOT NULL DEFAULT FALSE,
                is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
                summary TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
            )
        """)

        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_articles_feed_id ON articles(feed_id)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_articles_published_at ON articles(published_at)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_articles_is_read ON articles(is_read)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_feeds_is_active ON feeds(is_active)"
        )

        await db.commit()

    # Feeds

    async def add_feed(
        self,
        title: str,
        url: str,
        category: Union[str, FeedCategory],
        source: str,
        description: Optional[str] = None,
        organization: Optional[str] = None,
        country: str = "JP",
        language: str = "ja",
        is_active: bool = True,
    ) -> FeedSource:
        """Register a new feed source.

        Raises:
            ValueError: If the URL is already registered or the category is unknown
        """
        category = FeedCategory.parse(category) if isinstance(category, str) else category
        now = _now()

        try:
            cursor = await self.connection.execute(
                """
                INSERT INTO feeds (title, url, description, category, source,
                                   organization, country, language, is_active,
                                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title,
                    url,
                    description,
                    category.value,
                    source,
                    organization,
                    country,
                    language,
                    is_active,
                    _ts(now),
                    _ts(now),
                ),
            )
            await self.connection.commit()
        except aiosqlite.IntegrityError as e:
            raise ValueError(f"Feed URL '{url}' already exists") from e

        return FeedSource(
            id=cursor.lastrowid,
            title=title,
            url=url,
            category=category,
            source=source,
            description=description,
            organization=organization,
            country=country,
            language=language,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )

    async def get_feed(self, feed_id: int) -> Optional[FeedSource]:
        cursor = await self.connection.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,))
        row = await cursor.fetchone()
        return _row_to_feed(row) if row else None

    async def get_feed_by_url(self, url: str) -> Optional[FeedSource]:
        cursor = await self.connection.execute("SELECT * FROM feeds WHERE url = ?", (url,))
        row = await cursor.fetchone()
        return _row_to_feed(row) if row else None

    async def list_feeds(self, active_only: bool = False) -> List[FeedSource]:
        """List feeds, newest first.

        Args:
            active_only: Only return feeds whose active flag is set
        """
        query = "SELECT * FROM feeds"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC, id DESC"

        cursor = await self.connection.execute(query)
        return [_row_to_feed(row) async for row in cursor]

    async def list_active_feeds(self) -> List[FeedSource]:
        return await self.list_feeds(active_only=True)

    async def update_feed(self, feed_id: int, **fields: Any) -> Optional[FeedSource]:
        """Partially update a feed's descriptive fields or active flag.

        Args:
            feed_id: ID of the feed
            **fields: Any of FEED_UPDATABLE_FIELDS

        Returns:
            Updated FeedSource, or None if the feed doesn't exist

        Raises:
            ValueError: On unknown fields, unknown category, or a URL already
                used by another feed
        """
        unknown = set(fields) - set(FEED_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        existing = await self.get_feed(feed_id)
        if existing is None:
            return None

        if "category" in fields:
            fields["category"] = FeedCategory.parse(str(fields["category"])).value

        new_url = fields.get("url")
        if new_url and new_url != existing.url:
            other = await self.get_feed_by_url(new_url)
            if other is not None and other.id != feed_id:
                raise ValueError(f"Feed URL '{new_url}' already exists")

        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            params = list(fields.values()) + [_ts(_now()), feed_id]
            await self.connection.execute(
                f"UPDATE feeds SET {assignments}, updated_at = ? WHERE id = ?",
                params,
            )
            await self.connection.commit()

        return await self.get_feed(feed_id)

    async def remove_feed(self, feed_id: int) -> Tuple[bool, int]:
        """Delete a feed together with its articles.

        Returns:
            Tuple of (found, article_count_deleted)
        """
        if await self.get_feed(feed_id) is None:
            return (False, 0)

        article_count = await self.count_articles(feed_id)

        # articles go with it via ON DELETE CASCADE
        await self.connection.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
        await self.connection.commit()

        return (True, article_count)

    async def clear_feeds(self) -> int:
        """Delete every feed (and, by cascade, every article).

        Returns:
            Number of feeds deleted
        """
        cursor = await self.connection.execute("DELETE FROM feeds")
        await self.connection.commit()
        return cursor.rowcount

    async def count_articles(self, feed_id: Optional[int] = None) -> int:
        if feed_id is None:
            cursor = await self.connection.execute("SELECT COUNT(*) AS count FROM articles")
        else:
            cursor = await self.connection.execute(
                "SELECT COUNT(*) AS count FROM articles WHERE feed_id = ?", (feed_id,)
            )
        row = await cursor.fetchone()
        return row["count"]

    async def recent_articles(self, feed_id: int, limit: int = 5) -> List[Article]:
        cursor = await self.connection.execute(
            """
            SELECT * FROM articles WHERE feed_id = ?
            ORDER BY published_at DESC, id DESC LIMIT ?
            """,
            (feed_id, limit),
        )
        return [_row_to_article(row) async for row in cursor]

    # Feed health

    async def mark_feed_polled(self, feed_id: int, when: Optional[datetime] = None) -> bool:
        """Record a successful poll: stamp last_polled and clear the error state.

        Returns:
            True if the feed exists
        """
        when = when or _now()
        cursor = await self.connection.execute(
            """
            UPDATE feeds
            SET last_polled = ?, last_error = NULL, error_count = 0, updated_at = ?
            WHERE id = ?
            """,
            (_ts(when), _ts(when), feed_id),
        )
        await self.connection.commit()
        return cursor.rowcount > 0

    async def record_feed_error(
        self, feed_id: int, message: str, when: Optional[datetime] = None
    ) -> bool:
        """Record a failed poll. last_polled is left as it was.

        Returns:
            True if the feed exists
        """
        when = when or _now()
        cursor = await self.connection.execute(
            """
            UPDATE feeds
            SET last_error = ?, error_count = error_count + 1, updated_at = ?
            WHERE id = ?
            """,
            (message, _ts(when), feed_id),
        )
        await self.connection.commit()
        return cursor.rowcount > 0

    # Articles

    async def find_article(self, guid: str, link: str = "") -> Optional[Article]:
        """Find an article by guid, or by link when one is given."""
        if link:
            cursor = await self.connection.execute(
                "SELECT * FROM articles WHERE guid = ? OR link = ? LIMIT 1",
                (guid, link),
            )
        else:
            cursor = await self.connection.execute(
                "SELECT * FROM articles WHERE guid = ? LIMIT 1", (guid,)
            )
        row = await cursor.fetchone()
        return _row_to_article(row) if row else None

    async def insert_article(self, candidate: ArticleCandidate) -> Article:
        """Insert one article.

        Raises:
            aiosqlite.IntegrityError: If the guid or link is already stored,
                or the feed doesn't exist
        """
        now = _now()
        cursor = await self.connection.execute(
            """
            INSERT INTO articles (feed_id, title, link, description, content,
                                  content_snippet, published_at, guid, author,
                                  creator, categories, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                candidate.feed_id,
                candidate.title,
                candidate.link or None,
                candidate.description,
                candidate.content,
                candidate.content_snippet,
                _ts(candidate.published_at),
                candidate.guid,
                candidate.author,
                candidate.creator,
                json.dumps(candidate.categories, ensure_ascii=False),
                _ts(now),
                _ts(now),
            ),
        )
        await self.connection.commit()

        return Article(
            id=cursor.lastrowid,
            feed_id=candidate.feed_id,
            title=candidate.title,
            link=candidate.link,
            published_at=candidate.published_at,
            guid=candidate.guid,
            description=candidate.description,
            content=candidate.content,
            content_snippet=candidate.content_snippet,
            author=candidate.author,
            creator=candidate.creator,
            categories=list(candidate.categories),
            created_at=now,
            updated_at=now,
        )

    async def get_article(self, article_id: int) -> Optional[Article]:
        cursor = await self.connection.execute(
            "SELECT * FROM articles WHERE id = ?", (article_id,)
        )
        row = await cursor.fetchone()
        return _row_to_article(row) if row else None

    async def list_articles(
        self,
        category: Optional[Union[str, FeedCategory]] = None,
        feed_id: Optional[int] = None,
        search: Optional[str] = None,
        since: Optional[datetime] = None,
        unread_only: bool = False,
        favorites_only: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """List articles joined with their feed, newest first.

        Args:
            category: Only articles from feeds in this category
            feed_id: Only articles from this feed
            search: Substring the title must contain
            since: Only articles published at or after this time
            unread_only: Skip articles marked read
            favorites_only: Only articles marked favorite
            page: 1-based page number
            limit: Page size, capped at MAX_PAGE_SIZE

        Returns:
            Tuple of (article dicts with feed_title/feed_source/feed_category,
            total number of matching articles)
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        where = " WHERE 1=1"
        params: List[Any] = []

        if category:
            if isinstance(category, str):
                category = FeedCategory.parse(category)
            where += " AND f.category = ?"
            params.append(category.value)

        if feed_id:
            where += " AND a.feed_id = ?"
            params.append(feed_id)

        if search:
            where += " AND a.title LIKE ?"
            params.append(f"%{search}%")

        if since:
            where += " AND a.published_at >= ?"
            params.append(_ts(since))

        if unread_only:
            where += " AND a.is_read = 0"

        if favorites_only:
            where += " AND a.is_favorite = 1"

        base = " FROM articles a JOIN feeds f ON a.feed_id = f.id" + where

        cursor = await self.connection.execute("SELECT COUNT(*) AS count" + base, params)
        total = (await cursor.fetchone())["count"]

        cursor = await self.connection.execute(
            "SELECT a.*, f.title AS feed_title, f.source AS feed_source,"
            " f.category AS feed_category, f.language AS feed_language"
            + base
            + " ORDER BY a.published_at DESC, a.id DESC LIMIT ? OFFSET ?",
            params + [limit, (page - 1) * limit],
        )

        articles = []
        async for row in cursor:
            item = _row_to_article(row).to_dict()
            item["feed_title"] = row["feed_title"]
            item["feed_source"] = row["feed_source"]
            item["feed_category"] = row["feed_category"]
            item["feed_language"] = row["feed_language"]
            articles.append(item)

        return articles, total

    async def set_article_read(self, article_id: int, is_read: bool) -> Optional[Article]:
        return await self._update_article(article_id, is_read=is_read)

    async def set_article_favorite(self, article_id: int, is_favorite: bool) -> Optional[Article]:
        return await self._update_article(article_id, is_favorite=is_favorite)

    async def set_article_summary(self, article_id: int, summary: str) -> Optional[Article]:
        return await self._update_article(article_id, summary=summary)

    async def delete_article(self, article_id: int) -> bool:
        cursor = await self.connection.execute(
            "DELETE FROM articles WHERE id = ?", (article_id,)
        )
        await self.connection.commit()
        return cursor.rowcount > 0

    async def _update_article(self, article_id: int, **fields: Any) -> Optional[Article]:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        await self.connection.execute(
            f"UPDATE articles SET {assignments}, updated_at = ? WHERE id = ?",
            list(fields.values()) + [_ts(_now()), article_id],
        )
        await self.connection.commit()
        return await self.get_article(article_id)


@asynccontextmanager
async def open_database(path: Union[str, Path]) -> AsyncIterator[Database]:
    """Open a Database for the duration of a block."""
    db = await Database.connect(path)
    try:
        yield db
    finally:
        await db.close()


def _row_to_feed(row: aiosqlite.Row) -> FeedSource:
    return FeedSource(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        category=FeedCategory(row["category"]),
        source=row["source"],
        description=row["description"],
        organization=row["organization"],
        country=row["country"],
        language=row["language"],
        is_active=bool(row["is_active"]),
        last_polled=_parse_ts(row["last_polled"]),
        last_error=row["last_error"],
        error_count=row["error_count"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_article(row: aiosqlite.Row) -> Article:
    return Article(
        id=row["id"],
        feed_id=row["feed_id"],
        title=row["title"],
        link=row["link"] or "",
        published_at=_parse_ts(row["published_at"]),
        guid=row["guid"],
        description=row["description"],
        content=row["content"],
        content_snippet=row["content_snippet"],
        author=row["author"],
        creator=row["creator"],
        categories=json.loads(row["categories"] or "[]"),
        is_read=bool(row["is_read"]),
        is_favorite=bool(row["is_favorite"]),
        summary=row["summary"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )
