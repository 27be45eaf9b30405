"""
Durable crawl state for the forum harvester.

CrawlStateStore owns the mapping thread id -> ThreadRecord. It is loaded
once at startup, changed only through ``upsert_page`` (one call per thread
page, so a page's posts and the page counter move together), and written
to disk by ``flush``. A background task flushes on a fixed interval and the
crawler flushes once more when a run finishes cleanly.

State file layout (JSON):
    {
      "12345": {
        "id": "12345",
        "title": "My first WAD",
        "pagesProcessed": 3,
        "posts": {
          "987": {"id": "987", "author": "doomguy", "text": "...",
                  "attachments": [{"url": "...", "title": "wad.zip",
                                   "path": "attachments/12345_987_wad.zip"}]}
        }
      }
    }
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import orjson

from .errors import PersistenceError, StateSchemaError
from .models import PostRecord, ThreadRecord

logger = logging.getLogger(__name__)


class CrawlStateStore:
    """
    The single source of truth for what has already been harvested.

    Usage:
        store = CrawlStateStore("db.json")
        store.load()
        record = store.get("12345")
        store.upsert_page("12345", "Title", 2, posts)
        store.flush()
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._threads: Dict[str, ThreadRecord] = {}

    def __len__(self) -> int:
        return len(self._threads)

    def __contains__(self, thread_id: str) -> bool:
        return thread_id in self._threads

    def load(self) -> None:
        """
        Read the state file once.

        A missing file is not an error: the store starts empty and an empty
        ``{}`` file is written. If that write fails it is logged and left to
        the next flush.

        Raises:
            StateSchemaError: the file is not valid JSON or a record does
                              not match the expected schema
            PersistenceError: the file exists but cannot be read
        """
        if not self.path.exists():
            logger.info("State file %s not found, creating empty state", self.path)
            self._threads = {}
            try:
                self.flush()
            except PersistenceError as e:
                logger.warning("Could not create state file, will retry: %s", e)
            return

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise PersistenceError(self.path, f"cannot read state: {e}") from e
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise StateSchemaError(self.path, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StateSchemaError(self.path, "top-level value must be an object")

        threads = {}
        for thread_id, raw_thread in data.items():
            record = ThreadRecord.from_dict(raw_thread, where=f"{self.path}:{thread_id}")
            if record.id != thread_id:
                raise StateSchemaError(
                    self.path, f"thread keyed '{thread_id}' carries id '{record.id}'"
                )
            threads[thread_id] = record
        self._threads = threads
        logger.info("Loaded state: %d threads tracked", len(threads))

    def get(self, thread_id: str) -> Optional[ThreadRecord]:
        """Return the record for ``thread_id``, or None if never processed."""
        return self._threads.get(thread_id)

    def upsert_page(
        self,
        thread_id: str,
        title: str,
        page_number: int,
        posts: Iterable[PostRecord],
    ) -> ThreadRecord:
        """
        Commit one fully processed thread page.

        Posts are merged into the thread by id (last write wins) and
        ``pages_processed`` becomes ``max(current, page_number)``. A thread
        seen for the first time is created with ``title``; the title of an
        existing thread is never changed.

        Returns:
            The updated ThreadRecord
        """
        if page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {page_number}")
        record = self._threads.get(thread_id)
        if record is None:
            record = ThreadRecord(id=thread_id, title=title, pages_processed=page_number)
        else:
            record.pages_processed = max(record.pages_processed, page_number)
        for post in posts:
            record.posts[post.id] = post
        self._threads[thread_id] = record
        return record

    def to_dict(self) -> dict:
        """Snapshot of the whole state as plain dicts."""
        return {k: v.to_dict() for k, v in self._threads.items()}

    def flush(self) -> None:
        """
        Write the current state to disk atomically.

        The state is serialized to ``<path>.tmp`` and renamed over the
        state file, so a crash mid-write leaves the previous file intact.

        Raises:
            PersistenceError: the file could not be written; the in-memory
                              state is unaffected
        """
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(orjson.dumps(self.to_dict(), option=orjson.OPT_INDENT_2))
            os.replace(tmp, self.path)
        except (OSError, TypeError) as e:
            raise PersistenceError(self.path, f"cannot write state: {e}") from e
        logger.debug("Flushed state: %d threads", len(self._threads))

    async def autoflush(self, interval: float) -> None:
        """
        Flush every ``interval`` seconds until cancelled.

        Meant to run as a background task next to the crawl. It only reads
        the state. Because commits are whole-page ``upsert_page`` calls and
        the event loop only switches tasks at an ``await``, every flush sees
        a consistent snapshot. A failed flush is logged and retried on the
        next tick.
        """
        while True:
            await asyncio.sleep(interval)
            try:
                self.flush()
            except PersistenceError as e:
                logger.warning("Periodic flush failed, will retry: %s", e)

    def get_statistics(self) -> Dict[str, int]:
        """
        Totals across all tracked threads.

        Returns:
            Dictionary with threads, posts, attachments, downloaded
            attachments and pages processed
        """
        posts = [p for t in self._threads.values() for p in t.posts.values()]
        attachments = [a for p in posts for a in p.attachments]
        return {
            "total_threads": len(self._threads),
            "total_posts": len(posts),
            "total_attachments": len(attachments),
            "downloaded_attachments": sum(1 for a in attachments if a.path),
            "total_pages": sum(t.pages_processed for t in self._threads.values()),
        }
