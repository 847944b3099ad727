"""Services for rss_ingest."""

from .dedup import DuplicateFilter
from .feed_parser import fetch_feed, parse_feed_document
from .normalizer import normalize_item
from .poller import FeedPoller
from .writer import PersistenceWriter

__all__ = [
    "DuplicateFilter",
    "FeedPoller",
    "PersistenceWriter",
    "fetch_feed",
    "normalize_item",
    "parse_feed_document",
]
