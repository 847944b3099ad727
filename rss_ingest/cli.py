"""Command line entry points for one-off runs.

    rss-ingest poll            poll all active feeds once and print the summary
    rss-ingest seed FILE       import feed sources from a JSON list
"""

import asyncio
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from rss_ingest.config import ServerConfig, load_config
from rss_ingest.logging_config import logger, setup_logging
from rss_ingest.errors import FetchError
from rss_ingest.services.feed_parser import validate_feed_url
from rss_ingest.services.poller import FeedPoller
from rss_ingest.storage.database import open_database


@click.group()
@click.option("--config", "config_path", default=None, help="Path to a YAML config file")
@click.option("--db", "db_path", default=None, help="Override the SQLite database path")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db_path: Optional[str]) -> None:
    """RSS feed ingestion commands."""
    config = load_config(config_path)
    if db_path:
        config.database_path = db_path
    setup_logging(config)
    ctx.obj = config


@cli.command()
@click.pass_obj
def poll(config: ServerConfig) -> None:
    """Poll every active feed once and print the JSON summary."""
    async def run() -> Dict[str, Any]:
        async with open_database(config.database_path) as db:
            result = await FeedPoller.from_config(db, config).poll_all()
        return {**result.to_summary(), "new_articles": result.new_articles}

    summary = asyncio.run(run())
    click.echo(json.dumps(summary, ensure_ascii=False, indent=2))
    if summary["failed"]:
        sys.exit(1)


@cli.command()
@click.argument("feeds_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--replace", is_flag=True, help="Delete all existing feeds (and their articles) first")
@click.pass_obj
def seed(config: ServerConfig, feeds_file: Path, replace: bool) -> None:
    """Import feed sources from FEEDS_FILE, a JSON list of feed objects.

    Each object needs title, url, category and source; description,
    organization, country and language are optional. URLs that are already
    registered are skipped.
    """
    with open(feeds_file, encoding="utf-8") as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise click.BadParameter("expected a JSON list of feeds", param_hint="FEEDS_FILE")

    added, skipped, categories = asyncio.run(_seed(config, entries, replace))

    click.echo(f"Imported {added} feeds ({skipped} skipped)")
    for category, count in sorted(categories.items()):
        click.echo(f"  - {category}: {count}")


async def _seed(config: ServerConfig, entries: List[Dict[str, Any]], replace: bool):
    added = 0
    skipped = 0
    categories: Counter = Counter()

    async with open_database(config.database_path) as db:
        if replace:
            removed = await db.clear_feeds()
            logger.info(f"Removed {removed} existing feeds")

        for entry in entries:
            try:
                feed = await db.add_feed(
                    title=entry["title"],
                    url=validate_feed_url(entry["url"]),
                    category=entry["category"],
                    source=entry["source"],
                    description=entry.get("description") or None,
                    organization=entry.get("organization") or None,
                    country=entry.get("country") or "JP",
                    language=entry.get("language") or "ja",
                )
            except KeyError as e:
                logger.warning(f"Skipping feed entry missing {e}: {entry}")
                skipped += 1
                continue
            except (FetchError, ValueError) as e:
                logger.warning(f"Skipping feed {entry.get('url')}: {e}")
                skipped += 1
                continue

            added += 1
            categories[feed.category.value] += 1

    return added, skipped, categories
