"""rss_ingest - RSS/Atom feed ingestion with an MCP tool surface."""

__version__ = "0.1.0"
