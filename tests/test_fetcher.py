"""Tests for the rate-limited fetcher (no network access required)."""

import asyncio
import time

import httpx
import pytest

from forum_harvester.errors import TransportError
from forum_harvester.fetcher import FetchStats, RateLimitedFetcher


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def ok_handler(request):
    if request.url.path == "/file":
        return httpx.Response(200, content=b"0123456789" * 1000)
    return httpx.Response(200, html="<html>ok</html>")


class TestFetch:
    def test_returns_page(self):
        async def go():
            async with make_client(ok_handler) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    return await fetcher.fetch("https://forum.test/page")

        page = asyncio.run(go())
        assert page.status == 200
        assert page.text == "<html>ok</html>"
        assert page.url == "https://forum.test/page"

    def test_non_2xx_raises_transport_error(self):
        async def go():
            async with make_client(lambda r: httpx.Response(404)) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    await fetcher.fetch("https://forum.test/missing")

        with pytest.raises(TransportError) as excinfo:
            asyncio.run(go())
        assert excinfo.value.status == 404
        assert excinfo.value.message == "Not Found"
        assert excinfo.value.url == "https://forum.test/missing"

    def test_connection_error_has_no_status(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        async def go():
            async with make_client(boom) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    try:
                        await fetcher.fetch("https://forum.test/")
                    finally:
                        assert fetcher.stats.transport_failures == 1

        with pytest.raises(TransportError) as excinfo:
            asyncio.run(go())
        assert excinfo.value.status is None

    def test_used_outside_context(self):
        fetcher = RateLimitedFetcher(0)
        with pytest.raises(RuntimeError):
            asyncio.run(fetcher.fetch("https://forum.test/"))


class TestRateLimit:
    def test_minimum_interval_between_requests(self):
        starts = []

        def handler(request):
            starts.append(time.monotonic())
            return httpx.Response(200, html="ok")

        async def go():
            async with make_client(handler) as client:
                async with RateLimitedFetcher(0.05, client=client) as fetcher:
                    for _ in range(3):
                        await fetcher.fetch("https://forum.test/")

        asyncio.run(go())
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.045 for gap in gaps)

    def test_concurrent_callers_are_serialized(self):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200, html="ok")

        async def go():
            async with make_client(handler) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    await asyncio.gather(*[fetcher.fetch("https://forum.test/") for _ in range(5)])
                    return fetcher.stats.request_count

        assert asyncio.run(go()) == 5
        assert peak == 1

    def test_stream_holds_the_limiter(self):
        order = []

        async def go():
            async with make_client(ok_handler) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    async def download():
                        async with fetcher.stream("https://forum.test/file") as chunks:
                            order.append("stream-start")
                            async for _ in chunks:
                                await asyncio.sleep(0)
                            order.append("stream-end")

                    async def page():
                        await asyncio.sleep(0)
                        await fetcher.fetch("https://forum.test/page")
                        order.append("page")

                    await asyncio.gather(download(), page())

        asyncio.run(go())
        assert order == ["stream-start", "stream-end", "page"]


class TestStream:
    def test_streams_body_and_counts_bytes(self):
        async def go():
            async with make_client(ok_handler) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    data = b""
                    async with fetcher.stream("https://forum.test/file") as chunks:
                        async for chunk in chunks:
                            data += chunk
                    return data, fetcher.stats

        data, stats = asyncio.run(go())
        assert data == b"0123456789" * 1000
        assert stats.bytes_streamed == 10000
        assert stats.success_2xx == 1

    def test_stream_error_status(self):
        async def go():
            async with make_client(lambda r: httpx.Response(503)) as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    async with fetcher.stream("https://forum.test/file"):
                        pass

        with pytest.raises(TransportError) as excinfo:
            asyncio.run(go())
        assert excinfo.value.status == 503


class TestFetchStats:
    def test_record_response(self):
        stats = FetchStats()
        for code in (200, 200, 301, 404, 503):
            stats.record_response(code)
        assert stats.success_2xx == 2
        assert stats.redirect_3xx == 1
        assert stats.client_error_4xx == 1
        assert stats.server_error_5xx == 1
        assert stats.status_codes[200] == 2

    def test_summary(self):
        stats = FetchStats(request_count=3)
        assert "requests=3" in stats.get_summary()
