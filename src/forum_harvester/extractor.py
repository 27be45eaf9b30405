"""
HTML extraction for forum listing pages and thread pages.

PageExtractor turns a parsed page into records: the pagination count, the
thread links on a listing page, and the posts (with their attachment
candidates) on a thread page. It never touches the network.

Anything that looks like a post or a pagination control but cannot be
read raises MalformedPageError. An unexpected page shape has to stop the
run. It must not be recorded as processed.
"""

import logging
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .config import BASE_URL, Selectors
from .errors import MalformedPageError
from .models import AttachmentRecord, PostRecord, ThreadRef
from .utils import thread_id_from_url

logger = logging.getLogger(__name__)

# Marks links inserted in place of iframes/images so the attachment pass
# can tell them apart from real attachments
PLACEHOLDER_CLASS = "harvester-embed"

# Lazy-loaded embeds keep the real source in a data attribute
EMBED_SOURCE_ATTRS = ("data-src", "data-embed-src", "src")


def parse_page(html: str) -> BeautifulSoup:
    """Parse a fetched page body with the lxml parser."""
    return BeautifulSoup(html, "lxml")


class PageExtractor:
    """
    Extracts structured records from forum pages.

    Args:
        base_url: Used to resolve relative links when the page URL is unknown
        selectors: CSS selectors for the forum markup
    """

    def __init__(self, base_url: str = BASE_URL, selectors: Optional[Selectors] = None):
        self.base_url = base_url
        self.selectors = selectors or Selectors()

    def _resolve(self, href: str, page_url: Optional[str]) -> str:
        # urljoin also turns protocol-relative "//host/x" into "https://host/x"
        return urljoin(page_url or self.base_url, href.strip())

    def extract_pagination_count(self, soup: BeautifulSoup, url: Optional[str] = None) -> int:
        """
        Number of pages reported by the pagination control.

        The control reads like "Page 1 of 12"; its last token is the count.
        A page without the control has a single page.

        Raises:
            MalformedPageError: the control exists but its last token is not
                                a positive integer
        """
        paginator = soup.select_one(self.selectors.pagination)
        if paginator is None:
            return 1
        tokens = paginator.get_text().split()
        if not tokens:
            raise MalformedPageError("Pagination control has no text", url)
        try:
            count = int(tokens[-1])
        except ValueError:
            raise MalformedPageError(
                f"Pagination count is not a number: {tokens[-1]!r}", url
            ) from None
        if count < 1:
            raise MalformedPageError(f"Pagination count out of range: {count}", url)
        return count

    def extract_thread_refs(self, soup: BeautifulSoup, url: Optional[str] = None) -> List[ThreadRef]:
        """Thread links on a listing page, in document order."""
        refs = []
        for link in soup.select(self.selectors.thread_link):
            href = link.get("href")
            if not href:
                raise MalformedPageError("Thread link without href", url)
            thread_url = self._resolve(href, url)
            thread_id = thread_id_from_url(thread_url)
            if thread_id is None:
                raise MalformedPageError(f"No thread id in link {thread_url}", url)
            refs.append(ThreadRef(
                thread_id=thread_id,
                url=thread_url,
                title=link.get_text().strip(),
            ))
        return refs

    def extract_posts(self, soup: BeautifulSoup, url: Optional[str] = None) -> List[PostRecord]:
        """
        Posts on a thread page, in document order.

        Attachments are returned as candidates (no ``path`` yet). Iframes
        and images in the post body are replaced by plain links in ``soup``
        itself before the text is read.

        Raises:
            MalformedPageError: a post container lacks its id, author or text
        """
        posts = []
        for node in soup.select(self.selectors.post):
            post_id = (node.get("id") or "").strip().split("_")[-1]
            if not post_id.isdigit():
                raise MalformedPageError(
                    f"Post container without numeric id: {node.get('id')!r}", url
                )

            author_elem = node.select_one(self.selectors.post_author)
            author = author_elem.get_text().strip() if author_elem else ""
            if not author:
                raise MalformedPageError(f"Post {post_id} has no author", url)

            text_elem = node.select_one(self.selectors.post_text)
            if text_elem is None:
                raise MalformedPageError(f"Post {post_id} has no text element", url)
            self._rewrite_embeds(soup, text_elem, url)
            text = text_elem.get_text().strip()
            if not text:
                raise MalformedPageError(f"Post {post_id} has empty text", url)

            attachments = self._extract_attachments(node, url)
            logger.debug("Post %s by %s: %d chars, %d attachments",
                         post_id, author, len(text), len(attachments))
            posts.append(PostRecord(
                id=post_id,
                author=author,
                text=text,
                attachments=attachments,
            ))
        return posts

    def _rewrite_embeds(self, soup: BeautifulSoup, text_elem: Tag, url: Optional[str]) -> None:
        """Replace each iframe/image with ``<a href=SRC>SRC</a>``."""
        for embed in text_elem.select(self.selectors.embedded):
            source = next((embed.get(a) for a in EMBED_SOURCE_ATTRS if embed.get(a)), None)
            if not source:
                embed.decompose()
                continue
            absolute = self._resolve(source, url)
            link = soup.new_tag("a", href=absolute)
            link["class"] = [PLACEHOLDER_CLASS]
            link.string = absolute
            embed.replace_with(link)

    @staticmethod
    def _is_placeholder_wrapper(link: Tag) -> bool:
        """True when all of ``link``'s text comes from links inserted by _rewrite_embeds.

        The placeholders may sit at any depth (IPS wraps images in spans).
        """
        placeholders = link.select(f"a.{PLACEHOLDER_CLASS}")
        if not placeholders:
            return False
        own_text = "".join(link.get_text().split())
        placeholder_text = "".join("".join(p.get_text().split()) for p in placeholders)
        return own_text == placeholder_text

    def _extract_attachments(self, node: Tag, url: Optional[str]) -> List[AttachmentRecord]:
        attachments = []
        for link in node.select(self.selectors.attachment):
            title = link.get_text().strip()
            if not title or self._is_placeholder_wrapper(link):
                continue
            href = link.get("href")
            if not href:
                logger.debug("Skipping attachment %r without href", title)
                continue
            attachments.append(AttachmentRecord(url=self._resolve(href, url), title=title))
        return attachments
