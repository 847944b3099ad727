"""Configuration for rss_ingest.

Settings come from an optional YAML file and are then overridden by
environment variables. The YAML location defaults to
~/.rss_ingest/config.yaml (or RSS_INGEST_CONFIG env var).
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_USER_AGENT = "RSS News Summarizer/1.0"


def _default_home() -> Path:
    return Path.home() / ".rss_ingest"


@dataclass
class ServerConfig:
    """Server and ingestion settings."""

    name: str = "rss_ingest"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    database_path: str = field(default_factory=lambda: str(_default_home() / "rss_ingest.db"))
    cron_secret: Optional[str] = None
    workers_api_key: Optional[str] = None
    fetch_timeout: float = 30.0
    max_concurrent_fetches: int = 8
    user_agent: str = DEFAULT_USER_AGENT


# YAML may load numeric-looking secrets or paths as int/float
STRING_FIELDS = (
    "name",
    "log_level",
    "log_file",
    "database_path",
    "cron_secret",
    "workers_api_key",
    "user_agent",
)

# Environment variable -> (config attribute, converter)
ENV_OVERRIDES = {
    "RSS_INGEST_DB_PATH": ("database_path", str),
    "RSS_INGEST_LOG_LEVEL": ("log_level", str),
    "RSS_INGEST_LOG_FILE": ("log_file", str),
    "CRON_SECRET": ("cron_secret", str),
    "CLOUDFLARE_WORKERS_API_KEY": ("workers_api_key", str),
    "RSS_INGEST_FETCH_TIMEOUT": ("fetch_timeout", float),
    "RSS_INGEST_MAX_CONCURRENCY": ("max_concurrent_fetches", int),
}


def _config_path(path: Optional[str]) -> Path:
    if path:
        return Path(path)
    env_path = os.environ.get("RSS_INGEST_CONFIG")
    if env_path:
        return Path(env_path)
    return _default_home() / "config.yaml"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_config(path: Optional[str] = None) -> ServerConfig:
    """Load configuration from YAML and environment variables.

    Args:
        path: Optional explicit path to a YAML config file

    Returns:
        Populated ServerConfig

    Raises:
        ValueError: If a value cannot be converted to its expected type
    """
    known = {f.name for f in fields(ServerConfig)}
    values = {k: v for k, v in _load_yaml(_config_path(path)).items() if k in known}

    for env_var, (attr, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None or raw == "":
            continue
        try:
            values[attr] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_var}: {raw!r}") from e

    for attr in STRING_FIELDS:
        if values.get(attr) is not None:
            values[attr] = str(values[attr])

    config = ServerConfig(**values)
    config.fetch_timeout = float(config.fetch_timeout)
    config.max_concurrent_fetches = int(config.max_concurrent_fetches)
    if config.fetch_timeout <= 0:
        raise ValueError("fetch_timeout must be positive")
    if config.max_concurrent_fetches < 1:
        raise ValueError("max_concurrent_fetches must be at least 1")
    return config


_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Return the process configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
