"""
Incremental forum crawler.

ForumCrawler walks the forum listing pages, then every thread linked from
them, and commits each thread page to the CrawlStateStore once its posts
and attachments have been fully processed in memory. Re-running resumes
from each thread's ``pages_processed``, so only new or unfinished pages are
fetched again.

Everything happens in one task, one request at a time. The only other
activity is the store's periodic flush, which runs as a background task
and only serializes the state.

Usage:
    config = CrawlConfig(max_forum_pages=5)
    async with RateLimitedFetcher(config.request_interval) as fetcher:
        crawler = ForumCrawler(config, fetcher)
        await crawler.run()
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup
from tqdm import tqdm

from .config import RETRYABLE_STATUS_CODES, CrawlConfig
from .errors import DownloadError, PersistenceError, TransportError
from .extractor import PageExtractor, parse_page
from .fetcher import RateLimitedFetcher
from .ingest import AttachmentIngester
from .models import AttachmentRecord, PostRecord, ThreadRef
from .state import CrawlStateStore
from .utils import listing_url, with_page

logger = logging.getLogger(__name__)


@dataclass
class CrawlSummary:
    """Counters for one run, logged when the run ends."""
    forum_pages: int = 0
    threads: int = 0
    thread_pages: int = 0
    threads_up_to_date: int = 0
    attachments_ingested: int = 0
    attachments_failed: int = 0

    def __str__(self) -> str:
        return (
            f"forum_pages={self.forum_pages} threads={self.threads} "
            f"thread_pages={self.thread_pages} up_to_date={self.threads_up_to_date} "
            f"attachments={self.attachments_ingested} "
            f"attachment_failures={self.attachments_failed}"
        )


class ForumCrawler:
    """
    Drives one crawl run.

    Args:
        config: Crawl settings
        fetcher: Shared rate-limited fetcher (already entered)
        store: State store; created from ``config.state_file`` if omitted
        ingester: Attachment ingester; created if omitted
        extractor: Page extractor; created from the config if omitted
    """

    def __init__(
        self,
        config: CrawlConfig,
        fetcher: RateLimitedFetcher,
        store: Optional[CrawlStateStore] = None,
        ingester: Optional[AttachmentIngester] = None,
        extractor: Optional[PageExtractor] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.store = store or CrawlStateStore(config.state_file)
        self.ingester = ingester or AttachmentIngester(fetcher, config.attachments_dir)
        self.extractor = extractor or PageExtractor(config.base_url, config.selectors)
        self.summary = CrawlSummary()

    async def _fetch_page(self, url: str) -> BeautifulSoup:
        """
        Fetch and parse a page, retrying transient failures.

        Connection failures and 429/5xx responses are retried up to
        ``config.max_retries`` times with exponential backoff. Anything
        else, or the last failure, propagates as TransportError.
        """
        backoff = self.config.retry_backoff
        attempt = 0
        while True:
            try:
                page = await self.fetcher.fetch(url)
                return parse_page(page.text)
            except TransportError as e:
                retryable = e.status is None or e.status in RETRYABLE_STATUS_CODES
                if not retryable or attempt >= self.config.max_retries:
                    raise
                attempt += 1
                logger.warning("Fetch failed (%s), retry %d/%d in %.1fs",
                               e, attempt, self.config.max_retries, backoff)
                await asyncio.sleep(backoff)
                backoff *= 2

    async def run(self) -> CrawlSummary:
        """
        Crawl forum pages up to the configured ceiling, then flush.

        A fatal error (TransportError on a page, MalformedPageError)
        propagates without the final flush. Whatever the last periodic
        flush wrote is what the next run resumes from; the interrupted page
        is processed again from scratch.
        """
        logger.info("Starting crawl of %s (max %d forum pages)",
                    self.config.base_url, self.config.max_forum_pages)
        self.store.load()
        flusher = asyncio.ensure_future(self.store.autoflush(self.config.flush_interval))
        try:
            await self.crawl_forum()
        finally:
            flusher.cancel()
            try:
                await flusher
            except asyncio.CancelledError:
                pass

        try:
            self.store.flush()
        except PersistenceError as e:
            logger.warning("Final flush failed: %s", e)

        logger.info("Crawl complete: %s", self.summary)
        logger.info("Fetch stats: %s", self.fetcher.stats.get_summary())
        return self.summary

    async def crawl_forum(self) -> None:
        """Walk listing pages 1..min(observed pages, ceiling), in order."""
        page = 1
        last_page = 1
        with tqdm(total=last_page, desc="Forum pages", unit="page",
                  disable=not self.config.show_progress) as pbar:
            while page <= last_page:
                url = listing_url(self.config.base_url, page)
                logger.info("Processing forum page %d of %d", page, last_page)
                soup = await self._fetch_page(url)

                observed = self.extractor.extract_pagination_count(soup, url)
                last_page = max(last_page, min(observed, self.config.max_forum_pages))
                if pbar.total != last_page:
                    pbar.total = last_page
                    pbar.refresh()

                for ref in self.extractor.extract_thread_refs(soup, url):
                    await self.crawl_thread(ref)

                self.summary.forum_pages += 1
                pbar.update(1)
                page += 1

    async def crawl_thread(self, ref: ThreadRef) -> None:
        """
        Process a thread from its last processed page onwards.

        Each iteration re-reads the remote page count, so pages that show
        up while the thread is being walked are picked up too. The thread
        is left alone as soon as the store has at least as many pages as
        the remote reports.
        """
        self.summary.threads += 1
        existing = self.store.get(ref.thread_id)
        page = existing.pages_processed if existing else 1
        last_page = page
        logger.info("Processing thread %s - %s (from page %d)", ref.thread_id, ref.title, page)

        while page <= last_page:
            url = with_page(ref.url, page)
            soup = await self._fetch_page(url)
            remote_pages = self.extractor.extract_pagination_count(soup, url)

            current = self.store.get(ref.thread_id)
            processed = current.pages_processed if current else 0
            if processed >= remote_pages:
                logger.info("Thread %s is up to date (%d/%d pages)",
                            ref.thread_id, processed, remote_pages)
                self.summary.threads_up_to_date += 1
                return
            last_page = max(last_page, remote_pages)

            logger.info("Processing page %d of %d of thread %s", page, last_page, ref.thread_id)
            posts = self.extractor.extract_posts(soup, url)
            for post in posts:
                post.attachments = await self._ingest_attachments(ref.thread_id, post)

            self.store.upsert_page(ref.thread_id, ref.title, page, posts)
            self.summary.thread_pages += 1
            page += 1

    async def _ingest_attachments(self, thread_id: str, post: PostRecord) -> List[AttachmentRecord]:
        """
        Download a post's attachments in order; failures are logged and dropped.

        Two attachments of one post can share a file slot (same title). When
        a later download moves an earlier one aside, the earlier record is
        repointed at the set-aside file.
        """
        ingested = []
        for candidate in post.attachments:
            try:
                result = await self.ingester.ingest(candidate.url, candidate.title, thread_id, post.id)
            except DownloadError as e:
                self.summary.attachments_failed += 1
                logger.warning("Skipping attachment %r of post %s in thread %s: %s",
                               candidate.title, post.id, thread_id, e)
                continue
            record = result.record
            if result.previous is not None:
                for earlier in ingested:
                    if earlier.path == record.path:
                        earlier.path = str(result.previous)
            logger.debug("+ Attachment %s -> %s", candidate.url, record.path)
            self.summary.attachments_ingested += 1
            ingested.append(record)
        return ingested
