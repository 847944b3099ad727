"""Unit tests for the feed fetcher.

Tests URL validation, HTTP failure mapping and RSS/Atom parsing.
"""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from rss_ingest.errors import FeedTimeoutError, FetchError, ParseError
from rss_ingest.services.feed_parser import (
    fetch_feed,
    make_snippet,
    parse_feed_document,
    validate_feed_url,
)
from ..conftest import mock_http_client


# Mark all tests as async
pytestmark = pytest.mark.anyio


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
    <channel>
        <title>経済産業省 ニュースリリース</title>
        <link>https://www.meti.go.jp/</link>
        <description>METI Press Releases</description>
        <item>
            <title>新エネルギー政策について</title>
            <link>https://www.meti.go.jp/press/2024/01/article1.html</link>
            <description>新エネルギー政策に関する発表</description>
            <content:encoded><![CDATA[<p>詳細な<b>内容</b></p>]]></content:encoded>
            <pubDate>Mon, 15 Jan 2024 09:00:00 GMT</pubDate>
            <guid>meti-article-1</guid>
            <dc:creator>経済産業省</dc:creator>
            <category>エネルギー</category>
            <category>政策</category>
        </item>
        <item>
            <title>DX推進支援事業の開始</title>
            <link>https://www.meti.go.jp/press/2024/01/article2.html</link>
        </item>
    </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <title>Test Blog</title>
    <entry>
        <title>Atom Post</title>
        <id>urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a</id>
        <link href="https://example.com/atom-post"/>
        <updated>2024-01-15T10:30:00Z</updated>
        <summary>Short summary</summary>
    </entry>
</feed>
"""


class TestValidateFeedUrl:
    """Tests for feed URL validation."""

    def test_accepts_absolute_https_url(self):
        assert validate_feed_url("  https://example.com/feed.xml ") == "https://example.com/feed.xml"

    @pytest.mark.parametrize(
        "url", ["", "example.com/feed", "/feed.xml", "ftp://example.com/feed", "https://"]
    )
    def test_rejects_invalid_urls(self, url):
        with pytest.raises(FetchError, match="Invalid feed URL"):
            validate_feed_url(url)


class TestFetchFeed:
    """Tests for fetching feeds over HTTP."""

    async def test_fetch_rss_feed(self):
        """Test fetching and parsing a standard RSS 2.0 feed."""
        with patch("rss_ingest.services.feed_parser.httpx.AsyncClient") as mock_client:
            mock_client.return_value = mock_http_client(RSS_FEED)

            feed = await fetch_feed("https://www.meti.go.jp/rss.xml")

        assert feed.title == "経済産業省 ニュースリリース"
        assert feed.link == "https://www.meti.go.jp/"
        assert len(feed.items) == 2

        first = feed.items[0]
        assert first.title == "新エネルギー政策について"
        assert first.link == "https://www.meti.go.jp/press/2024/01/article1.html"
        assert first.guid == "meti-article-1"
        assert first.description == "新エネルギー政策に関する発表"
        assert "内容" in first.content
        assert first.content_snippet == "詳細な 内容"
        assert first.iso_date == "2024-01-15T09:00:00+00:00"
        assert first.pub_date == "Mon, 15 Jan 2024 09:00:00 GMT"
        assert first.author == "経済産業省"
        assert first.categories == ["エネルギー", "政策"]

        second = feed.items[1]
        assert second.guid is None
        assert second.iso_date is None
        assert second.categories == []

    async def test_fetch_uses_shared_client(self):
        """A passed-in client is used and not replaced by a private one."""
        client = mock_http_client(ATOM_FEED)

        with patch("rss_ingest.services.feed_parser.httpx.AsyncClient") as mock_client:
            feed = await fetch_feed("https://example.com/atom.xml", client=client)

            mock_client.assert_not_called()

        client.get.assert_awaited_once_with("https://example.com/atom.xml")
        assert feed.items[0].title == "Atom Post"

    async def test_fetch_atom_feed(self):
        """Test parsing an Atom feed."""
        feed = await fetch_feed(
            "https://example.com/atom.xml", client=mock_http_client(ATOM_FEED)
        )

        item = feed.items[0]
        assert item.link == "https://example.com/atom-post"
        assert item.guid == "urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a"
        assert item.iso_date == "2024-01-15T10:30:00+00:00"
        assert item.content_snippet == "Short summary"

    async def test_shift_jis_feed_is_decoded(self):
        """The XML declaration decides the charset when Content-Type has none."""
        body = RSS_FEED.replace('encoding="UTF-8"', 'encoding="Shift_JIS"').encode("shift_jis")

        def handler(request):
            return httpx.Response(
                200, content=body, headers={"Content-Type": "application/rss+xml"}
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            feed = await fetch_feed("https://www.meti.go.jp/rss.xml", client=client)

        assert feed.title == "経済産業省 ニュースリリース"
        assert feed.items[0].title == "新エネルギー政策について"
        assert feed.items[0].categories == ["エネルギー", "政策"]

    async def test_invalid_url_fails_before_network(self):
        client = mock_http_client(RSS_FEED)

        with pytest.raises(FetchError):
            await fetch_feed("not-a-url", client=client)

        client.get.assert_not_called()

    async def test_http_error_raises_fetch_error(self):
        """Network failures surface as FetchError chained to the cause."""
        client = mock_http_client(side_effect=httpx.ConnectError("Connection failed"))

        with pytest.raises(FetchError, match="Connection failed") as exc_info:
            await fetch_feed("https://example.com/feed.xml", client=client)

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.url == "https://example.com/feed.xml"

    async def test_non_2xx_status_raises_fetch_error(self):
        client = mock_http_client("Not Found", status_code=404)

        with pytest.raises(FetchError, match="HTTP 404"):
            await fetch_feed("https://example.com/feed.xml", client=client)

    async def test_httpx_timeout_raises_timeout_error(self):
        client = mock_http_client(side_effect=httpx.ReadTimeout("read timed out"))

        with pytest.raises(FeedTimeoutError) as exc_info:
            await fetch_feed("https://example.com/feed.xml", client=client)

        assert isinstance(exc_info.value, TimeoutError)
        assert isinstance(exc_info.value, FetchError)

    async def test_overall_timeout_ceiling(self):
        """A response slower than the timeout is abandoned."""
        async def slow_get(url):
            await asyncio.sleep(5)

        client = AsyncMock()
        client.get = slow_get

        with pytest.raises(FeedTimeoutError, match="Timed out"):
            await fetch_feed("https://example.com/slow.xml", client=client, timeout=0.05)

    async def test_malformed_document_raises_parse_error(self):
        client = mock_http_client("this is definitely not a feed <<<")

        with pytest.raises(ParseError):
            await fetch_feed("https://example.com/feed.xml", client=client)


class TestParseFeedDocument:
    """Tests for parsing feed bodies directly."""

    def test_empty_channel_has_no_items(self):
        feed = parse_feed_document(
            '<?xml version="1.0"?><rss version="2.0"><channel><title>Empty</title></channel></rss>'
        )
        assert feed.title == "Empty"
        assert feed.items == []

    def test_html_page_is_not_a_feed(self):
        with pytest.raises(ParseError):
            parse_feed_document("<html><head><title>Home</title></head><body></body></html>")


class TestMakeSnippet:
    """Tests for markup-free snippets."""

    def test_strips_markup(self):
        assert make_snippet("<p>Hello <a href='/x'>world</a></p>") == "Hello world"

    def test_collapses_whitespace_in_plain_text(self):
        assert make_snippet("  several\n\n  lines ") == "several lines"

    def test_empty_values(self):
        assert make_snippet(None) is None
        assert make_snippet("") is None
        assert make_snippet("<p> </p>") is None
