"""
Attachment download and reconciliation.

An attachment lives at ``<attachments_dir>/<threadId>_<postId>_<title>``.
Re-running the crawl can meet that slot again with the same bytes or with
new ones (the post was edited). Ingestion keeps both versions unless they
are byte-identical:

    1. stream the download into ``<dest>.tmp``
    2. if ``<dest>`` already exists, move it aside to
       ``<threadId>_<postId>_<timestampMillis>_<title>``
    3. hash the new and the set-aside file
    4. rename ``<dest>.tmp`` onto ``<dest>``
    5. same hash -> delete the set-aside copy; different -> keep it
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import aiofiles

from .errors import DownloadError, TransportError
from .fetcher import RateLimitedFetcher
from .models import AttachmentRecord
from .utils import attachment_filename, sha256_file, versioned_filename

logger = logging.getLogger(__name__)


def _millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class IngestResult:
    """
    Outcome of one ingest.

    ``previous`` is where a differing file that occupied the slot was moved
    to. Records that still point at the canonical path for those bytes
    must be repointed there.
    """
    record: AttachmentRecord
    previous: Optional[Path] = None


class AttachmentIngester:
    """
    Downloads attachments through the shared fetcher and commits them to
    the attachments directory.

    Args:
        fetcher: The crawl-wide RateLimitedFetcher
        attachments_dir: Directory holding ingested files (created if missing)
        clock: Returns the timestamp used in set-aside file names
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        attachments_dir: Union[str, Path],
        clock: Callable[[], int] = _millis,
    ):
        self.fetcher = fetcher
        self.attachments_dir = Path(attachments_dir)
        self.clock = clock

    def destination(self, thread_id: str, post_id: str, title: str) -> Path:
        """Canonical local path for an attachment slot."""
        return self.attachments_dir / attachment_filename(thread_id, post_id, title)

    async def ingest(self, url: str, title: str, thread_id: str, post_id: str) -> IngestResult:
        """
        Download ``url`` into its slot and reconcile it with any previous file.

        Returns:
            IngestResult whose record has ``path`` set to the canonical file.
            Failing to delete an identical set-aside copy is only logged.

        Raises:
            DownloadError: the download, hashing or renaming failed. A file
                           already at the canonical path is left in place
                           (or restored) and no ``.tmp`` file is left behind.
        """
        dest = self.destination(thread_id, post_id, title)
        tmp = dest.with_name(dest.name + ".tmp")

        try:
            self.attachments_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadError(url, f"cannot create {self.attachments_dir}: {e}") from e

        await self._download(url, tmp)

        aside = None
        try:
            if dest.exists():
                stamp = self.clock()
                aside = self.attachments_dir / versioned_filename(thread_id, post_id, stamp, title)
                # Several versions of one slot can be set aside within a millisecond
                while aside.exists():
                    stamp += 1
                    aside = self.attachments_dir / versioned_filename(thread_id, post_id, stamp, title)
                os.replace(dest, aside)
            identical = aside is not None and sha256_file(tmp) == sha256_file(aside)

            os.replace(tmp, dest)
        except OSError as e:
            # Put the previous version back if the new one never landed
            if aside is not None and aside.exists() and not dest.exists():
                os.replace(aside, dest)
            self._discard(tmp)
            raise DownloadError(url, f"cannot commit {dest.name}: {e}") from e

        record = AttachmentRecord(url=url, title=title, path=str(dest))
        if aside is None:
            return IngestResult(record)
        if not identical:
            logger.info("Attachment %s changed, previous version kept as %s",
                        dest.name, aside.name)
            return IngestResult(record, previous=aside)

        logger.debug("Attachment %s unchanged, dropping duplicate", dest.name)
        try:
            aside.unlink()
        except OSError as e:
            logger.warning("Could not remove duplicate %s: %s", aside.name, e)
        return IngestResult(record)

    async def _download(self, url: str, tmp: Path) -> None:
        """Stream ``url`` into ``tmp``, overwriting any stale staging file."""
        try:
            async with self.fetcher.stream(url) as chunks:
                async with aiofiles.open(tmp, "wb") as f:
                    async for chunk in chunks:
                        await f.write(chunk)
        except (TransportError, OSError) as e:
            self._discard(tmp)
            raise DownloadError(url, str(e)) from e

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove staging file %s: %s", path, e)
