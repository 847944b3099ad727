"""Decorators applied to every MCP tool at registration.

exception_handler turns unexpected exceptions into error payloads;
tool_logger logs each call with a correlation id and its duration.
Both keep the wrapped signature so FastMCP can introspect parameters.
"""

import functools
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional


logger = logging.getLogger("rss_ingest.tools")

ToolFunc = Callable[..., Awaitable[Dict[str, Any]]]


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def exception_handler(func: ToolFunc) -> ToolFunc:
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Tool {func.__name__} failed: {e}", exc_info=True)
            return {
                "success": False,
                "error": f"{e.__class__.__name__}: {e}",
            }

    return wrapper


def tool_logger(func: ToolFunc, config: Optional[Dict[str, Any]] = None) -> ToolFunc:
    slow_threshold = float((config or {}).get("fetch_timeout", 30.0))

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Dict[str, Any]:
        correlation_id = generate_correlation_id()
        params = {k: v for k, v in kwargs.items() if k != "ctx"}
        logger.info(f"[{correlation_id}] {func.__name__} called with {params}")

        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            elapsed = time.perf_counter() - start
            logger.info(f"[{correlation_id}] {func.__name__} raised after {elapsed:.3f}s")
            raise

        elapsed = time.perf_counter() - start
        success = result.get("success") if isinstance(result, dict) else None
        log = logger.warning if elapsed > slow_threshold else logger.info
        log(f"[{correlation_id}] {func.__name__} finished in {elapsed:.3f}s (success={success})")
        return result

    return wrapper
