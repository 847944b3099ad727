"""Poll trigger HTTP route.

Schedulers call /api/cron/fetch-feeds to start one poll run:
- POST with an X-Cron-Secret header (and, when sent, a matching X-API-Key)
- GET with "Authorization: Bearer <secret>"
Calls that fail authentication get 401 before any pipeline work starts.
"""

import hmac
import logging
from typing import Mapping, Optional

from mcp.server.fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from rss_ingest.config import ServerConfig
from rss_ingest.services.poller import FeedPoller
from rss_ingest.storage.database import open_database


logger = logging.getLogger(__name__)

CRON_PATH = "/api/cron/fetch-feeds"


def _matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def check_trigger_auth(
    method: str, headers: Mapping[str, str], config: ServerConfig
) -> Optional[str]:
    """Validate trigger credentials.

    Args:
        method: HTTP method of the request
        headers: Request headers (case-insensitive mapping)
        config: Server configuration holding the secrets

    Returns:
        None when authorized, otherwise the rejection message
    """
    if not config.cron_secret:
        return "Unauthorized"

    if method.upper() == "GET":
        auth = headers.get("authorization", "")
        if not _matches(auth, f"Bearer {config.cron_secret}"):
            return "Unauthorized"
        return None

    if not _matches(headers.get("x-cron-secret"), config.cron_secret):
        return "Unauthorized"

    api_key = headers.get("x-api-key")
    if api_key and not _matches(api_key, config.workers_api_key):
        return "Invalid API Key"

    return None


def register_cron_route(mcp_server: FastMCP, config: ServerConfig) -> None:
    """Attach the poll trigger route to the server's HTTP transports."""

    @mcp_server.custom_route(CRON_PATH, methods=["GET", "POST"])
    async def fetch_feeds(request: Request) -> Response:
        rejection = check_trigger_auth(request.method, request.headers, config)
        if rejection:
            logger.warning(f"Rejected poll trigger from {request.client.host if request.client else '?'}")
            return PlainTextResponse(rejection, status_code=401)

        try:
            async with open_database(config.database_path) as db:
                result = await FeedPoller.from_config(db, config).poll_all()
        except Exception:
            logger.exception("Poll run failed")
            return JSONResponse({"error": "Internal server error"}, status_code=500)

        return JSONResponse(result.to_summary())
