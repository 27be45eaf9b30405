"""CLI interface for the forum harvester."""

import asyncio
import logging
import sys

import click

from .config import CrawlConfig
from .crawler import ForumCrawler
from .errors import HarvesterError
from .fetcher import RateLimitedFetcher
from .state import CrawlStateStore

logger = logging.getLogger("forum_harvester")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Keep per-request transport chatter out of debug output
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@click.group()
def main():
    """Forum Harvester - incremental crawler for paginated forums."""
    pass


@main.command()
@click.option('--base-url', default=None, help='Forum listing URL to crawl')
@click.option('--interval-ms', default=None, type=click.IntRange(min=0),
              help='Minimum milliseconds between requests')
@click.option('--max-pages', default=None, type=click.IntRange(min=1),
              help='Maximum forum listing pages per run')
@click.option('--state-file', default=None, type=click.Path(dir_okay=False),
              help='Path to the crawl state file')
@click.option('--attachments-dir', default=None, type=click.Path(file_okay=False),
              help='Directory for downloaded attachments')
@click.option('--flush-interval', default=None, type=click.FloatRange(min=0, min_open=True),
              help='Seconds between periodic state flushes')
@click.option('--no-progress', is_flag=True, help='Disable the progress bar')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def crawl(base_url, interval_ms, max_pages, state_file, attachments_dir,
          flush_interval, no_progress, verbose):
    """Crawl the forum, resuming from the saved state."""
    _setup_logging(verbose)
    config = CrawlConfig.from_env(
        base_url=base_url,
        request_interval=interval_ms / 1000.0 if interval_ms is not None else None,
        max_forum_pages=max_pages,
        state_file=state_file,
        attachments_dir=attachments_dir,
        flush_interval=flush_interval,
        show_progress=False if no_progress else None,
    )
    try:
        asyncio.run(_crawl(config))
    except HarvesterError as e:
        logger.error("Crawl aborted: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Crawl interrupted; progress up to the last flush is preserved")
        sys.exit(130)


async def _crawl(config: CrawlConfig) -> None:
    async with RateLimitedFetcher(config.request_interval, timeout=config.request_timeout) as fetcher:
        crawler = ForumCrawler(config, fetcher)
        await crawler.run()


@main.command()
@click.option('--state-file', default='db.json', type=click.Path(dir_okay=False),
              help='Path to the crawl state file')
def stats(state_file):
    """Show statistics about harvested data."""
    store = CrawlStateStore(state_file)
    if not store.path.exists():
        raise click.ClickException(f"State file not found: {state_file}")
    try:
        store.load()
    except HarvesterError as e:
        raise click.ClickException(str(e))
    totals = store.get_statistics()

    click.echo("=" * 60)
    click.echo("Forum Harvester Statistics")
    click.echo("=" * 60)
    click.echo(f"Threads tracked:        {totals['total_threads']}")
    click.echo(f"Thread pages processed: {totals['total_pages']}")
    click.echo(f"Posts:                  {totals['total_posts']}")
    click.echo(f"Attachments:            {totals['total_attachments']}")
    click.echo(f"Downloaded attachments: {totals['downloaded_attachments']}")
    click.echo("=" * 60)


if __name__ == '__main__':
    main()
