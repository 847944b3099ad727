"""rss_ingest MCP server.

Builds the FastMCP server: every feed/article tool is wrapped in the
exception_handler and tool_logger decorators, and the poll trigger route is
attached for the HTTP transports. The click entry point runs it over STDIO,
SSE or Streamable HTTP.
"""

import asyncio
import os
import sys
from typing import List, Optional

import click
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from rss_ingest.config import ServerConfig, get_config
from rss_ingest.decorators import exception_handler, tool_logger
from rss_ingest.logging_config import logger, setup_logging
from rss_ingest.server.cron import CRON_PATH, register_cron_route
from rss_ingest.tools.feed_tools import feed_tools


def _transport_security() -> TransportSecuritySettings:
    # Off unless MCP_DNS_REBINDING_PROTECTION=true
    enabled = os.getenv("MCP_DNS_REBINDING_PROTECTION", "false").lower() == "true"
    hosts: List[str] = [
        h.strip() for h in os.getenv("MCP_ALLOWED_HOSTS", "").split(",") if h.strip()
    ]

    logger.info(f"DNS rebinding protection: {'enabled' if enabled else 'disabled'}")
    if enabled and hosts:
        logger.info(f"Allowed hosts: {hosts}")

    return TransportSecuritySettings(
        enable_dns_rebinding_protection=enabled,
        allowed_hosts=hosts,
    )


def create_mcp_server(config: Optional[ServerConfig] = None) -> FastMCP:
    """Build the MCP server for the given (or process) configuration.

    Args:
        config: Settings to use; loaded from file/env when omitted

    Returns:
        FastMCP instance with tools and the poll trigger route registered
    """
    config = config or get_config()

    setup_logging(config)
    logger.info(f"Configuring {config.name} (log level {config.log_level})")

    mcp_server = FastMCP(
        config.name or "rss_ingest",
        transport_security=_transport_security(),
    )

    register_tools(mcp_server, config)

    register_cron_route(mcp_server, config)
    if config.cron_secret:
        logger.info(f"Poll trigger available at {CRON_PATH}")
    else:
        logger.warning("CRON_SECRET is not set; the poll trigger route rejects every call")

    return mcp_server


def register_tools(mcp_server: FastMCP, config: ServerConfig) -> None:
    """Wrap each feed tool in the decorator chain and register it.

    The wrappers keep the original signature, which FastMCP inspects to
    build each tool's input schema.
    """
    for func in feed_tools:
        # exception_handler(tool_logger(func))
        wrapped = exception_handler(tool_logger(func, config.__dict__))
        mcp_server.tool(name=func.__name__)(wrapped)
        logger.debug(f"Registered tool: {func.__name__}")

    logger.info(f"Server '{mcp_server.name}' registered {len(feed_tools)} tools")


# Module-level instance for `mcp` tooling and the entry point below
server = create_mcp_server()


async def _serve(transport: str, host: str, port: int) -> None:
    if transport == "stdio":
        logger.info("Serving over STDIO")
        await server.run_stdio_async()
        return

    server.settings.host = host
    server.settings.port = port
    logger.info(f"Serving over {transport} on {host}:{port}")

    if transport == "sse":
        await server.run_sse_async()
    elif transport == "streamable-http":
        server.settings.streamable_http_path = "/mcp"
        await server.run_streamable_http_async()
    else:
        raise ValueError(f"Unknown transport: {transport}")


@click.command()
@click.option("--port", default=3001, help="Port for the SSE and Streamable HTTP transports")
@click.option("--host", default="127.0.0.1", help="Interface to bind (0.0.0.0 inside containers)")
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse", "streamable-http"]),
    default="stdio",
    help="MCP transport; the poll trigger route is only served over HTTP transports",
)
def main(port: int, host: str, transport: str) -> int:
    """Run the rss_ingest MCP server."""
    try:
        asyncio.run(_serve(transport, host, port))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as e:
        logger.error(f"Server exited with an error: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
