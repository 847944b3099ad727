"""Persistence writer.

Inserts new articles and records feed health after each poll attempt.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from rss_ingest.errors import FeedHealthUpdateError, ItemWriteError
from rss_ingest.models.schemas import Article, ArticleCandidate, FeedOutcome
from rss_ingest.storage.database import Database


logger = logging.getLogger(__name__)


class PersistenceWriter:
    """Writes articles and feed health through a Database."""

    def __init__(self, store: Database):
        self.store = store

    async def insert_article(self, candidate: ArticleCandidate) -> Optional[Article]:
        """Insert one article.

        A uniqueness violation means a concurrent poll stored the same item
        first; that is reported as skipped, not as an error.

        Returns:
            The stored Article, or None when the insert was skipped

        Raises:
            ItemWriteError: On any other storage failure
        """
        try:
            return await self.store.insert_article(candidate)
        except aiosqlite.IntegrityError as e:
            if e.sqlite_errorname != "SQLITE_CONSTRAINT_UNIQUE":
                raise ItemWriteError(
                    f"Failed to save article '{candidate.title}': {e}", guid=candidate.guid
                ) from e
            logger.info(f"Article {candidate.guid} already stored, skipped")
            return None
        except aiosqlite.Error as e:
            raise ItemWriteError(
                f"Failed to save article '{candidate.title}': {e}", guid=candidate.guid
            ) from e

    async def update_feed_health(
        self, feed_id: int, outcome: FeedOutcome, when: Optional[datetime] = None
    ) -> None:
        """Record the outcome of a poll attempt.

        Success stamps last_polled and resets the error state; failure stores
        the message and increments error_count, leaving last_polled alone.

        Raises:
            FeedHealthUpdateError: If the feed is unknown or storage fails
        """
        when = when or datetime.now(timezone.utc)
        try:
            if outcome.success:
                found = await self.store.mark_feed_polled(feed_id, when)
            else:
                found = await self.store.record_feed_error(
                    feed_id, outcome.error or "Unknown error", when
                )
        except aiosqlite.Error as e:
            raise FeedHealthUpdateError(
                f"Failed to update health for feed {feed_id}: {e}", feed_id=feed_id
            ) from e

        if not found:
            raise FeedHealthUpdateError(f"Feed {feed_id} not found", feed_id=feed_id)
