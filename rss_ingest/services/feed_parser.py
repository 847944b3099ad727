"""Feed fetcher service.

This module downloads an RSS/Atom document and parses it into a ParsedFeed.
It performs no retries and has no side effects; failures surface as
FetchError (including FeedTimeoutError) or ParseError.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

import feedparser
import httpx
from bs4 import BeautifulSoup

from rss_ingest.config import DEFAULT_USER_AGENT
from rss_ingest.errors import FeedTimeoutError, FetchError, ParseError
from rss_ingest.models.schemas import ParsedFeed, ParsedItem


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_WHITESPACE = re.compile(r"\s+")


def validate_feed_url(url: str) -> str:
    """Check that url is an absolute http(s) URL.

    Returns:
        The URL with surrounding whitespace removed

    Raises:
        FetchError: If the URL is not absolute or uses another scheme
    """
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise FetchError(f"Invalid feed URL: '{url}'", url=url)
    return url


async def fetch_feed(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> ParsedFeed:
    """Fetch and parse an RSS/Atom feed.

    Args:
        url: Absolute URL of the feed
        client: Shared HTTP client; a private one is opened when omitted
        timeout: Ceiling in seconds for the whole request
        user_agent: User-Agent header for a private client

    Returns:
        ParsedFeed with one ParsedItem per entry

    Raises:
        FeedTimeoutError: If the request takes longer than timeout
        FetchError: On an invalid URL, network error or non-2xx status
        ParseError: If the body is not a usable feed
    """
    url = validate_feed_url(url)
    logger.info(f"Fetching feed: {url}")

    if client is None:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": user_agent},
        ) as own_client:
            response = await _download(own_client, url, timeout)
    else:
        response = await _download(client, url, timeout)

    # raw bytes so feedparser can honor the XML prolog encoding (e.g. Shift_JIS)
    return parse_feed_document(response.content, url, headers=dict(response.headers))


async def _download(client: httpx.AsyncClient, url: str, timeout: float) -> httpx.Response:
    try:
        response = await asyncio.wait_for(client.get(url), timeout=timeout)
        response.raise_for_status()
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise FeedTimeoutError(f"Timed out after {timeout:g}s fetching {url}", url=url) from e
    except httpx.HTTPStatusError as e:
        raise FetchError(
            f"HTTP {e.response.status_code} fetching {url}", url=url
        ) from e
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch {url}: {e}", url=url) from e

    return response


def parse_feed_document(
    document: Union[str, bytes], url: str = "", headers: Optional[Dict[str, str]] = None
) -> ParsedFeed:
    """Parse a feed body into a ParsedFeed.

    Pass the undecoded bytes together with the HTTP response headers so the
    charset is taken from Content-Type or the XML declaration.

    Raises:
        ParseError: If the document is malformed and has no entries, or is
            not recognized as RSS/Atom
    """
    feed = feedparser.parse(document, response_headers=headers or {})

    if feed.bozo and not feed.entries:
        raise ParseError(f"Malformed feed document: {feed.bozo_exception}", url=url)

    if not feed.version and not feed.entries:
        raise ParseError("Document is not an RSS or Atom feed", url=url)

    items = [_parse_entry(entry) for entry in feed.entries]

    logger.info(f"Parsed {len(items)} items from {url or 'feed document'}")
    return ParsedFeed(
        title=feed.feed.get("title", ""),
        link=feed.feed.get("link", ""),
        description=feed.feed.get("subtitle") or None,
        items=items,
    )


def _parse_entry(entry: Any) -> ParsedItem:
    link = entry.get("link", "")
    if not link:
        for alt in entry.get("links", []):
            if alt.get("rel") == "alternate" and alt.get("href"):
                link = alt["href"]
                break

    description = entry.get("summary") or None

    content = None
    for part in entry.get("content", []):
        if part.get("value"):
            content = part["value"]
            break

    author_detail = entry.get("author_detail") or {}

    return ParsedItem(
        title=entry.get("title") or None,
        link=link or None,
        description=description,
        content=content,
        content_snippet=make_snippet(content or description),
        pub_date=entry.get("published") or entry.get("updated") or None,
        iso_date=_iso_date(entry),
        guid=entry.get("id") or None,
        author=entry.get("author") or None,
        creator=author_detail.get("name") or None,
        categories=_categories(entry),
    )


def make_snippet(html: Optional[str]) -> Optional[str]:
    """Return the markup-free text of an HTML fragment, whitespace collapsed."""
    if not html:
        return None
    if "<" in html:
        text = BeautifulSoup(html, "lxml").get_text(" ", strip=True)
    else:
        text = html
    text = _WHITESPACE.sub(" ", text).strip()
    return text or None


def _iso_date(entry: Any) -> Optional[str]:
    # feedparser's *_parsed values are UTC struct_time tuples
    for field in ["published_parsed", "updated_parsed", "created_parsed"]:
        value = entry.get(field)
        if not value:
            continue
        try:
            return datetime(*value[:6], tzinfo=timezone.utc).isoformat()
        except (ValueError, TypeError):
            continue
    return None


def _categories(entry: Any) -> List[str]:
    terms = []
    for tag in entry.get("tags", []) or []:
        term = (tag.get("term") or "").strip()
        if term:
            terms.append(term)
    return terms
