"""MCP tools for rss_ingest."""

from .feed_tools import feed_tools

__all__ = ["feed_tools"]
