"""Item normalizer.

Maps a ParsedItem onto the canonical ArticleCandidate shape. Partial feed
data is common, so missing fields fall back to defaults instead of raising.
"""

import time
import uuid
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

from rss_ingest.models.schemas import ArticleCandidate, ParsedItem


def normalize_item(
    item: ParsedItem, feed_id: int, now: Optional[datetime] = None
) -> ArticleCandidate:
    """Build the insert candidate for one parsed feed item.

    Args:
        item: Item as produced by the fetcher
        feed_id: Owning feed
        now: Ingestion time, used when the item carries no usable date

    Returns:
        ArticleCandidate with title, link, guid and published_at always set
    """
    now = now or datetime.now(timezone.utc)

    title = (item.title or "").strip()
    link = (item.link or "").strip()
    guid = (item.guid or "").strip() or link or synthesize_guid()

    return ArticleCandidate(
        feed_id=feed_id,
        title=title,
        link=link,
        guid=guid,
        published_at=parse_published(item.iso_date, item.pub_date) or now,
        description=item.content_snippet or item.description,
        content=item.content,
        content_snippet=item.content_snippet,
        author=item.author,
        creator=item.creator,
        categories=_clean_categories(item.categories),
    )


def synthesize_guid() -> str:
    """Identifier for items that declare neither a guid nor a link.

    Unique with high probability, not guaranteed.
    """
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex}"


def parse_published(iso_date: Optional[str], pub_date: Optional[str]) -> Optional[datetime]:
    """Parse the item's ISO date, else its informal pubDate string.

    Returns:
        Timezone-aware UTC datetime, or None if neither value parses
    """
    if iso_date:
        parsed = _parse_iso(iso_date)
        if parsed:
            return parsed

    if pub_date:
        # RFC 2822 (common in RSS)
        try:
            return _as_utc(parsedate_to_datetime(pub_date))
        except (ValueError, TypeError, IndexError):
            pass
        return _parse_iso(pub_date)

    return None


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        return _as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except (ValueError, AttributeError):
        return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clean_categories(categories: Optional[List[str]]) -> List[str]:
    if not categories:
        return []
    return [c.strip() for c in categories if c and c.strip()]
