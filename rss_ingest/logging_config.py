"""Logging setup for rss_ingest.

Logs go to stderr so they never interleave with the STDIO transport on
stdout, plus an optional rotating log file.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rss_ingest.config import ServerConfig


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("rss_ingest")


def setup_logging(config: Optional[ServerConfig] = None) -> logging.Logger:
    """Configure the rss_ingest logger hierarchy.

    Calling this more than once replaces the previously installed handlers.

    Args:
        config: Server configuration supplying level and optional log file

    Returns:
        The package root logger
    """
    level_name = (config.log_level if config else "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config and config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False
    return logger
