"""Storage layer for rss_ingest."""

from .database import Database, open_database

__all__ = [
    "Database",
    "open_database",
]
