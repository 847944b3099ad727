"""Exceptions raised by the ingestion pipeline."""

from typing import Optional


class IngestError(Exception):
    """Base class for ingestion failures."""


class FetchError(IngestError):
    """The feed document could not be retrieved."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class FeedTimeoutError(FetchError, TimeoutError):
    """The feed request exceeded its time budget."""


class ParseError(IngestError):
    """The retrieved document is not a usable RSS/Atom feed."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class ItemWriteError(IngestError):
    """Storing a single article failed."""

    def __init__(self, message: str, guid: Optional[str] = None):
        super().__init__(message)
        self.guid = guid


class FeedHealthUpdateError(IngestError):
    """Recording poll bookkeeping for a feed failed."""

    def __init__(self, message: str, feed_id: Optional[int] = None):
        super().__init__(message)
        self.feed_id = feed_id
