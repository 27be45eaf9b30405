"""
Forum Harvester - incremental crawler for paginated discussion forums.

Walks forum listing pages, then each thread's pages, extracts posts and
attachments, and keeps everything in a resumable state file so a re-run
only fetches what is new.

Main components:
- ForumCrawler: Drives a crawl run (listing pages -> threads -> posts)
- RateLimitedFetcher: One request per interval, shared by all callers
- PageExtractor: HTML -> pagination count, thread links, posts
- CrawlStateStore: Durable thread progress and post records
- AttachmentIngester: Downloads and hash-reconciles attachment files

Usage:
    import asyncio
    from forum_harvester import CrawlConfig, ForumCrawler, RateLimitedFetcher

    async def main():
        config = CrawlConfig()
        async with RateLimitedFetcher(config.request_interval) as fetcher:
            await ForumCrawler(config, fetcher).run()

    asyncio.run(main())
"""

from .config import CrawlConfig, Selectors
from .crawler import CrawlSummary, ForumCrawler
from .errors import (
    DownloadError,
    HarvesterError,
    MalformedPageError,
    PersistenceError,
    StateSchemaError,
    TransportError,
)
from .extractor import PageExtractor, parse_page
from .fetcher import FetchStats, RateLimitedFetcher, RawPage
from .ingest import AttachmentIngester, IngestResult
from .models import AttachmentRecord, PostRecord, ThreadRecord, ThreadRef
from .state import CrawlStateStore
from .utils import sha256_file, safe_filename

__all__ = [
    'ForumCrawler',
    'CrawlSummary',
    'CrawlConfig',
    'Selectors',
    'RateLimitedFetcher',
    'RawPage',
    'FetchStats',
    'PageExtractor',
    'parse_page',
    'CrawlStateStore',
    'AttachmentIngester',
    'IngestResult',
    'ThreadRecord',
    'PostRecord',
    'AttachmentRecord',
    'ThreadRef',
    'HarvesterError',
    'TransportError',
    'MalformedPageError',
    'DownloadError',
    'PersistenceError',
    'StateSchemaError',
    'sha256_file',
    'safe_filename',
]

__version__ = '1.0.0'
