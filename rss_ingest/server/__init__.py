"""MCP server package initialization"""

from rss_ingest.server.app import create_mcp_server, server

__all__ = ["server", "create_mcp_server"]
