"""
Rate-limited HTTP fetching for the forum harvester.

Every request the harvester makes (listing pages, thread pages and
attachment downloads) goes through a single RateLimitedFetcher. It admits
one request per interval and holds a lock for the whole request,
including the body of a streamed download, so two requests are never in
flight at the same time.

The fetcher does not retry. Non-2xx responses and transport failures are
raised as TransportError and the caller decides what to do with them.
"""

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

import httpx

from .config import REQUEST_INTERVAL, REQUEST_TIMEOUT, USER_AGENT
from .errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class RawPage:
    """A fetched text page."""
    url: str
    status: int
    text: str


@dataclass
class FetchStats:
    """
    Counters for every request issued by the fetcher.

    ``request_count`` counts attempts, whether or not a response came back.
    """
    request_count: int = 0
    success_2xx: int = 0
    redirect_3xx: int = 0
    client_error_4xx: int = 0
    server_error_5xx: int = 0
    transport_failures: int = 0
    bytes_streamed: int = 0
    status_codes: Dict[int, int] = field(default_factory=lambda: defaultdict(int))

    def record_response(self, status_code: int) -> None:
        self.status_codes[status_code] += 1
        if 200 <= status_code < 300:
            self.success_2xx += 1
        elif 300 <= status_code < 400:
            self.redirect_3xx += 1
        elif 400 <= status_code < 500:
            self.client_error_4xx += 1
        elif 500 <= status_code < 600:
            self.server_error_5xx += 1

    def get_summary(self) -> str:
        """Human-readable one-line summary for the end-of-run log."""
        summary = (
            f"requests={self.request_count} 2xx={self.success_2xx} "
            f"3xx={self.redirect_3xx} 4xx={self.client_error_4xx} "
            f"5xx={self.server_error_5xx} transport_failures={self.transport_failures} "
            f"bytes_streamed={self.bytes_streamed}"
        )
        return summary


class RateLimitedFetcher:
    """
    Serialized, rate-limited access to the forum over HTTP.

    One instance is shared by everything that talks to the network.

    Usage:
        async with RateLimitedFetcher(interval=1.0) as fetcher:
            page = await fetcher.fetch(url)
            async with fetcher.stream(attachment_url) as chunks:
                async for chunk in chunks:
                    ...
    """

    def __init__(
        self,
        interval: float = REQUEST_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        """
        Args:
            interval: Minimum seconds between the starts of two requests
            client: Optional httpx client. If None, one is created on
                    ``__aenter__`` and closed on ``__aexit__``.
            timeout: Per-request timeout for an owned client
        """
        self.interval = interval
        self.timeout = timeout
        self.client = client
        self._own_client = client is None
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None
        self.stats = FetchStats()

    async def __aenter__(self) -> "RateLimitedFetcher":
        if self._own_client:
            self.client = httpx.AsyncClient(
                http2=True,
                timeout=self.timeout,
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._own_client and self.client is not None:
            await self.client.aclose()
            self.client = None

    async def _wait_turn(self) -> None:
        """Sleep until the interval since the previous request has elapsed.

        Must be called with ``self._lock`` held.
        """
        if self._last_request is not None:
            wait_for = self._last_request + self.interval - time.monotonic()
            if wait_for > 0:
                await asyncio.sleep(wait_for)
        self._last_request = time.monotonic()
        self.stats.request_count += 1

    def _check_status(self, response: httpx.Response, url: str) -> None:
        self.stats.record_response(response.status_code)
        if not response.is_success:
            raise TransportError(response.status_code, response.reason_phrase, url)

    async def fetch(self, url: str) -> RawPage:
        """
        GET a text page.

        Raises:
            TransportError: on a non-2xx response or a transport failure
        """
        if self.client is None:
            raise RuntimeError("RateLimitedFetcher used outside 'async with'")
        async with self._lock:
            await self._wait_turn()
            logger.debug("GET %s", url)
            try:
                response = await self.client.get(url)
            except httpx.RequestError as e:
                self.stats.transport_failures += 1
                raise TransportError(None, f"{type(e).__name__}: {e}", url) from e
            self._check_status(response, url)
            return RawPage(url=url, status=response.status_code, text=response.text)

    @asynccontextmanager
    async def stream(self, url: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        GET a binary resource and yield an async iterator over its chunks.

        The rate-limiter lock is held until the ``async with`` block exits,
        so the next request cannot start while the body is still being read.

        Raises:
            TransportError: on a non-2xx response or a transport failure,
                            including failures while reading the body
        """
        if self.client is None:
            raise RuntimeError("RateLimitedFetcher used outside 'async with'")
        async with self._lock:
            await self._wait_turn()
            logger.debug("GET (stream) %s", url)
            try:
                async with self.client.stream("GET", url) as response:
                    self._check_status(response, url)
                    yield self._count_bytes(response.aiter_bytes())
            except httpx.RequestError as e:
                self.stats.transport_failures += 1
                raise TransportError(None, f"{type(e).__name__}: {e}", url) from e

    async def _count_bytes(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            self.stats.bytes_streamed += len(chunk)
            yield chunk
