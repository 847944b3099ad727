"""Duplicate detection for normalized items."""

import logging

from rss_ingest.models.schemas import ArticleCandidate
from rss_ingest.storage.database import Database


logger = logging.getLogger(__name__)


class DuplicateFilter:
    """Point check of one candidate against stored articles.

    Issues a single lookup per item, matching on guid and, when the candidate
    has one, on link. The uniqueness constraints in storage remain the
    authoritative guard; this only avoids pointless insert attempts.
    """

    def __init__(self, store: Database):
        self.store = store

    async def is_duplicate(self, candidate: ArticleCandidate, feed_id: int) -> bool:
        existing = await self.store.find_article(candidate.guid, candidate.link)
        if existing is not None:
            logger.debug(
                f"Feed {feed_id}: skipping known article {candidate.guid} (id={existing.id})"
            )
            return True
        return False
