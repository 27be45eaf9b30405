"""Configure test paths and a fake forum served over httpx.MockTransport."""
import asyncio
import sys
from pathlib import Path

import httpx
import pytest

# Add src/ to path so tests can import the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from forum_harvester.config import CrawlConfig  # noqa: E402
from forum_harvester.crawler import ForumCrawler  # noqa: E402
from forum_harvester.fetcher import RateLimitedFetcher  # noqa: E402

HOST = "https://forum.test"
BASE_URL = f"{HOST}/forum/4-wads-mods"
LISTING_PATH = "/forum/4-wads-mods/"


def pagination_html(page, pages):
    if pages <= 1:
        return ""
    return (
        '<ul class="ipsPagination">'
        f'<li class="ipsPagination_pageJump"><a href="#">Page {page} of {pages}</a></li>'
        '</ul>'
    )


def post_html(post_id, author, body):
    return f"""
    <article id="elComment_{post_id}" class="cPost ipsBox ipsComment">
      <aside class="ipsComment_author">
        <h3 class="cAuthorPane_author"><strong><a href="/profile/1-x/">{author}</a></strong></h3>
      </aside>
      <div class="cPost_contentWrap">
        <div class="ipsType_richText" data-role="commentContent">{body}</div>
      </div>
    </article>
    """


class FakeForum:
    """
    In-memory forum: listing pages, thread pages and attachment files.

    Every request is recorded in ``requests`` as the full URL string.
    """

    def __init__(self):
        self.pages = {}
        self.files = {}
        self.failures = {}
        self.requests = []

    def add_listing(self, page, pages, threads):
        """threads: iterable of (thread_id, slug, title)."""
        items = "".join(
            '<li class="ipsDataItem"><div class="ipsDataItem_main">'
            '<h4 class="ipsDataItem_title">'
            f'<a href="{HOST}/forum/topic/{tid}-{slug}/" data-ipshover-target="x">{title}</a>'
            '</h4></div></li>'
            for tid, slug, title in threads
        )
        self.pages[(LISTING_PATH, str(page))] = (
            f"<html><body>{pagination_html(page, pages)}<ol>{items}</ol></body></html>"
        )

    def add_thread_page(self, thread_id, slug, page, pages, posts):
        """posts: iterable of (post_id, author, body_html)."""
        body = "".join(post_html(*p) for p in posts)
        self.pages[(self.thread_path(thread_id, slug), str(page))] = (
            f"<html><body>{pagination_html(page, pages)}{body}</body></html>"
        )

    @staticmethod
    def thread_path(thread_id, slug):
        return f"/forum/topic/{thread_id}-{slug}/"

    def add_file(self, path, content):
        self.files[path] = content

    def fail(self, path, page=None, status=500, times=None):
        """Answer ``status`` for (path, page), forever or ``times`` times."""
        self.failures[(path, page)] = [status, times]

    def heal(self):
        self.failures.clear()

    def count(self, fragment):
        return sum(1 for url in self.requests if fragment in url)

    def handler(self, request):
        self.requests.append(str(request.url))
        path = request.url.path
        page = request.url.params.get("page")
        failure = self.failures.get((path, page))
        if failure is not None:
            status, times = failure
            if times is not None:
                failure[1] -= 1
                if failure[1] <= 0:
                    del self.failures[(path, page)]
            return httpx.Response(status)
        if path in self.files:
            return httpx.Response(200, content=self.files[path])
        html = self.pages.get((path, page))
        if html is None:
            return httpx.Response(404)
        return httpx.Response(200, html=html)

    def client(self):
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            follow_redirects=True,
        )


class Harness:
    """Runs the real crawler against a FakeForum inside ``tmp_path``."""

    def __init__(self, forum, tmp_path):
        self.forum = forum
        self.tmp_path = tmp_path
        self.crawler = None

    def config(self, **overrides):
        values = dict(
            base_url=BASE_URL,
            request_interval=0,
            state_file=self.tmp_path / "db.json",
            attachments_dir=self.tmp_path / "attachments",
            flush_interval=3600,
            retry_backoff=0,
            show_progress=False,
        )
        values.update(overrides)
        return CrawlConfig(**values)

    def run(self, **overrides):
        config = self.config(**overrides)

        async def go():
            async with self.forum.client() as client:
                async with RateLimitedFetcher(0, client=client) as fetcher:
                    self.crawler = ForumCrawler(config, fetcher)
                    return await self.crawler.run()

        return asyncio.run(go())

    @property
    def state_file(self):
        return self.tmp_path / "db.json"

    @property
    def attachments_dir(self):
        return self.tmp_path / "attachments"


@pytest.fixture
def forum():
    return FakeForum()


@pytest.fixture
def harness(forum, tmp_path):
    return Harness(forum, tmp_path)
