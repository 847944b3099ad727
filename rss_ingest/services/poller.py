"""Feed poll orchestrator.

One poll run attempts every active feed concurrently (bounded by a
semaphore). Each feed goes fetch -> normalize -> filter -> write per item,
then records its health. A failing feed never stops the others, and a
failing item never fails its feed.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx

from rss_ingest.config import DEFAULT_USER_AGENT, ServerConfig
from rss_ingest.errors import FeedHealthUpdateError
from rss_ingest.models.schemas import FeedOutcome, FeedSource, ParsedFeed, PollResult
from rss_ingest.services.dedup import DuplicateFilter
from rss_ingest.services.feed_parser import DEFAULT_TIMEOUT, fetch_feed
from rss_ingest.services.normalizer import normalize_item
from rss_ingest.services.writer import PersistenceWriter
from rss_ingest.storage.database import Database


logger = logging.getLogger(__name__)

Fetcher = Callable[..., Awaitable[ParsedFeed]]

DEFAULT_MAX_CONCURRENCY = 8


class FeedPoller:
    """Runs poll passes over the active feeds of a Database."""

    def __init__(
        self,
        store: Database,
        fetcher: Fetcher = fetch_feed,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.fetcher = fetcher
        self.max_concurrency = max_concurrency
        self.fetch_timeout = fetch_timeout
        self.user_agent = user_agent
        self.duplicate_filter = DuplicateFilter(store)
        self.writer = PersistenceWriter(store)

    @classmethod
    def from_config(cls, store: Database, config: ServerConfig) -> "FeedPoller":
        return cls(
            store,
            max_concurrency=config.max_concurrent_fetches,
            fetch_timeout=config.fetch_timeout,
            user_agent=config.user_agent,
        )

    async def poll_all(self) -> PollResult:
        """Poll every active feed once.

        Returns:
            PollResult with per-run counts and one error message per failed feed
        """
        run_id = uuid.uuid4().hex[:8]
        result = PollResult()

        feeds = await self.store.list_active_feeds()
        logger.info(f"[poll {run_id}] Starting run over {len(feeds)} active feeds")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(feed: FeedSource, client: httpx.AsyncClient) -> None:
            async with semaphore:
                await self.poll_feed(feed, result, client=client, run_id=run_id)

        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.fetch_timeout,
            headers={"User-Agent": self.user_agent},
        ) as client:
            outcomes = await asyncio.gather(
                *(guarded(feed, client) for feed in feeds), return_exceptions=True
            )

        for feed, outcome in zip(feeds, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"[poll {run_id}] Unexpected error polling feed {feed.url}: {outcome!r}"
                )

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"[poll {run_id}] Finished: {result.feeds_succeeded} succeeded, "
            f"{result.feeds_failed} failed, {result.new_articles} new articles"
        )
        return result

    async def poll_feed(
        self,
        feed: FeedSource,
        result: PollResult,
        client: Optional[httpx.AsyncClient] = None,
        run_id: str = "-",
    ) -> bool:
        """Poll one feed and record its outcome in result and in storage.

        Returns:
            True if the feed was fetched and parsed
        """
        result.feeds_attempted += 1

        try:
            parsed = await self.fetcher(feed.url, client=client, timeout=self.fetch_timeout)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"[poll {run_id}] Failed to fetch feed {feed.url}: {message}")
            result.feeds_failed += 1
            result.errors.append(f"{feed.title}: {message}")
            await self._record_health(feed, FeedOutcome.failed(message), run_id)
            return False

        inserted = await self._ingest_items(feed, parsed, run_id)

        result.feeds_succeeded += 1
        result.new_articles += inserted
        logger.info(
            f"[poll {run_id}] Feed '{feed.title}': {inserted} new of {len(parsed.items)} items"
        )

        await self._record_health(feed, FeedOutcome.ok(), run_id)
        return True

    async def _ingest_items(self, feed: FeedSource, parsed: ParsedFeed, run_id: str) -> int:
        now = datetime.now(timezone.utc)
        inserted = 0

        for item in parsed.items:
            try:
                candidate = normalize_item(item, feed.id, now=now)
                if await self.duplicate_filter.is_duplicate(candidate, feed.id):
                    continue
                if await self.writer.insert_article(candidate) is not None:
                    inserted += 1
            except Exception as e:
                logger.warning(
                    f"[poll {run_id}] Failed to save article '{item.title}' "
                    f"from feed {feed.id}: {e}"
                )

        return inserted

    async def _record_health(self, feed: FeedSource, outcome: FeedOutcome, run_id: str) -> None:
        try:
            await self.writer.update_feed_health(feed.id, outcome)
        except FeedHealthUpdateError as e:
            logger.error(f"[poll {run_id}] {e}")
        except Exception as e:
            logger.error(
                f"[poll {run_id}] Failed to update health for feed {feed.id}: {e!r}"
            )
