"""End-to-end poll runs: HTTP (mocked) through parsing into SQLite."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from rss_ingest.models.schemas import FeedCategory
from rss_ingest.services.poller import FeedPoller


# Mark all tests as async
pytestmark = pytest.mark.anyio


def rss(*guids: str, title: str = "Feed") -> str:
    items = "".join(
        f"""
        <item>
            <title>Item {guid}</title>
            <link>https://news.example.com/{guid}</link>
            <guid>{guid}</guid>
            <pubDate>Mon, 15 Jan 2024 09:00:00 GMT</pubDate>
        </item>"""
        for guid in guids
    )
    return f"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>{title}</title><link>https://news.example.com/</link>{items}
</channel></rss>"""


def routed_client(routes):
    """Mock AsyncClient whose responses are chosen by URL.

    A route value is either a body string, an int status code, or an
    exception to raise.
    """
    async def get(url):
        route = routes[url]
        if isinstance(route, Exception):
            raise route

        response = MagicMock()
        response.raise_for_status = MagicMock()
        if isinstance(route, int):
            response.status_code = route
            response.content = b""
            response.raise_for_status.side_effect = httpx.HTTPStatusError(
                f"{route} error", request=MagicMock(), response=response
            )
        else:
            response.status_code = 200
            response.content = route.encode("utf-8")
        response.headers = {"content-type": "application/rss+xml"}
        return response

    client = AsyncMock()
    client.get = AsyncMock(side_effect=get)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


async def _add(db, name: str):
    return await db.add_feed(
        title=name,
        url=f"https://{name.lower()}.example.com/rss",
        category=FeedCategory.GOVERNMENT,
        source=name,
    )


async def _poll(db, routes, **kwargs):
    with patch("rss_ingest.services.poller.httpx.AsyncClient") as mock_client:
        mock_client.return_value = routed_client(routes)
        return await FeedPoller(db, **kwargs).poll_all()


async def test_repeat_poll_inserts_nothing_new(db):
    feed = await _add(db, "METI")
    routes = {feed.url: rss("g1", "g2")}

    first = await _poll(db, routes)
    assert first.new_articles == 2
    assert first.to_summary()["successful"] == 1
    assert (await db.get_feed(feed.id)).error_count == 0

    second = await _poll(db, routes)
    assert second.new_articles == 0
    assert second.feeds_succeeded == 1
    assert await db.count_articles(feed.id) == 2
    assert (await db.get_feed(feed.id)).error_count == 0


async def test_timeout_feed_fails_others_succeed(db):
    feeds = [await _add(db, name) for name in ("A", "Slow", "C")]
    routes = {
        feeds[0].url: rss("a1"),
        feeds[1].url: httpx.ReadTimeout("timed out"),
        feeds[2].url: rss("c1", "c2"),
    }

    result = await _poll(db, routes)
    summary = result.to_summary()

    assert summary["total"] == 3
    assert summary["successful"] == 2
    assert summary["failed"] == 1
    assert len(summary["errors"]) == 1
    assert summary["errors"][0].startswith("Slow: Timed out")
    assert result.new_articles == 3

    slow = await db.get_feed(feeds[1].id)
    assert slow.error_count == 1
    assert "Timed out" in slow.last_error


async def test_middle_failure_does_not_stop_later_feeds(db):
    a, b, c = [await _add(db, name) for name in ("A", "B", "C")]
    routes = {
        a.url: rss("a1"),
        b.url: httpx.ConnectError("connection refused"),
        c.url: rss("c1", "c2"),
    }

    result = await _poll(db, routes, max_concurrency=1)

    assert result.feeds_succeeded == 2
    assert result.feeds_failed == 1
    assert await db.count_articles(c.id) == 2
    assert (await db.get_feed(c.id)).last_polled is not None


async def test_failed_poll_keeps_last_polled(db):
    feed = await _add(db, "Flaky")

    await _poll(db, {feed.url: rss("g1")})
    polled = (await db.get_feed(feed.id)).last_polled
    assert polled is not None

    result = await _poll(db, {feed.url: 503})

    stored = await db.get_feed(feed.id)
    assert result.errors == [f"Flaky: HTTP 503 fetching {feed.url}"]
    assert stored.error_count == 1
    assert stored.last_polled == polled
    assert stored.last_error == f"HTTP 503 fetching {feed.url}"


async def test_recovery_resets_error_count(db):
    feed = await _add(db, "Flaky")

    await _poll(db, {feed.url: 500})
    await _poll(db, {feed.url: 500})
    assert (await db.get_feed(feed.id)).error_count == 2

    await _poll(db, {feed.url: rss("g1")})

    stored = await db.get_feed(feed.id)
    assert stored.error_count == 0
    assert stored.last_error is None


async def test_same_item_in_two_feeds_stored_once(db):
    a = await _add(db, "A")
    b = await _add(db, "B")
    routes = {a.url: rss("shared"), b.url: rss("shared")}

    result = await _poll(db, routes)

    assert result.feeds_succeeded == 2
    assert result.new_articles == 1
    assert await db.count_articles() == 1


async def test_malformed_feed_is_a_feed_failure(db):
    feed = await _add(db, "Broken")

    result = await _poll(db, {feed.url: "<html>not a feed</html>"})

    assert result.feeds_failed == 1
    assert (await db.get_feed(feed.id)).error_count == 1
