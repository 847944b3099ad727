"""Shared fixtures for rss_ingest tests."""

from typing import Dict, List, Union
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from rss_ingest.config import reset_config
from rss_ingest.models.schemas import ParsedFeed, ParsedItem
from rss_ingest.storage.database import Database


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db():
    """In-memory database with the schema created."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the process configuration at a temporary database file."""
    path = tmp_path / "rss_ingest.db"
    monkeypatch.setenv("RSS_INGEST_DB_PATH", str(path))
    monkeypatch.setenv("RSS_INGEST_CONFIG", str(tmp_path / "missing.yaml"))
    reset_config()
    yield path
    reset_config()


def make_feed(*items: ParsedItem, title: str = "Test Feed") -> ParsedFeed:
    return ParsedFeed(title=title, link="https://example.com/", items=list(items))


def make_item(guid: str, **fields) -> ParsedItem:
    fields.setdefault("title", f"Article {guid}")
    fields.setdefault("link", f"https://example.com/{guid}")
    fields.setdefault("iso_date", "2024-01-15T09:00:00+00:00")
    return ParsedItem(guid=guid, **fields)


class FakeFetcher:
    """Stands in for fetch_feed: returns a ParsedFeed or raises, per URL."""

    def __init__(self, responses: Dict[str, Union[ParsedFeed, Exception]]):
        self.responses = responses
        self.calls: List[str] = []

    async def __call__(self, url: str, client=None, timeout: float = 30.0) -> ParsedFeed:
        self.calls.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


def mock_http_client(text: str = "", side_effect=None, status_code: int = 200) -> MagicMock:
    """Build a stand-in for httpx.AsyncClient(...) returning one response."""
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.text = text
    mock_response.content = text.encode("utf-8")
    mock_response.headers = {"content-type": "application/rss+xml"}
    mock_response.raise_for_status = MagicMock()
    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"{status_code} error", request=MagicMock(), response=mock_response
        )

    mock_instance = AsyncMock()
    if side_effect is not None:
        mock_instance.get = AsyncMock(side_effect=side_effect)
    else:
        mock_instance.get = AsyncMock(return_value=mock_response)
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    return mock_instance
