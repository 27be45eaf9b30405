"""
Utility functions for the forum harvester.

Hashing, file naming and URL helpers shared by the extractor, the
attachment ingester and the crawler.
"""

import hashlib
import re
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

THREAD_ID_RE = re.compile(r"topic/(\d+)-")


def sha256_file(file_path: Union[str, Path]) -> str:
    """
    Calculate the SHA256 checksum of a file.

    The file is read in 8KB chunks so attachments of any size can be hashed
    without loading them into memory.

    Args:
        file_path: Path to the file to checksum

    Returns:
        Checksum string in the format "sha256:hexdigest"

    Example:
        checksum = sha256_file("attachments/5_9_wad.zip")
        # Returns: "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(8192), b""):
            sha256_hash.update(byte_block)
    return f"sha256:{sha256_hash.hexdigest()}"


def safe_filename(title: str) -> str:
    """
    Turn an attachment's declared name into a single safe path component.

    Directory parts are dropped (so "../../etc/passwd" becomes "passwd") and
    characters that are illegal on common filesystems are removed. Spaces
    are kept; the result is only ever used as the tail of a file name.

    Example:
        safe_filename('maps/My "Best" WAD?.zip')
        # Returns: "My Best WAD.zip"
    """
    name = PurePosixPath(title.replace("\\", "/")).name
    name = re.sub(r'[/\\:*?"<>|\x00-\x1f]', "", name)
    name = re.sub(r"\s+", " ", name).strip()
    if name in ("", ".", ".."):
        return "unnamed"
    return name


def attachment_filename(thread_id: str, post_id: str, title: str) -> str:
    """Canonical file name of an attachment: ``<threadId>_<postId>_<title>``."""
    return f"{thread_id}_{post_id}_{safe_filename(title)}"


def versioned_filename(thread_id: str, post_id: str, timestamp: int, title: str) -> str:
    """File name for a set-aside older version of an attachment."""
    return f"{thread_id}_{post_id}_{timestamp}_{safe_filename(title)}"


def thread_id_from_url(url: str) -> Optional[str]:
    """
    Extract the numeric thread id from an Invision thread URL.

    Example:
        thread_id_from_url("https://www.doomworld.com/forum/topic/12345-my-wad/")
        # Returns: "12345"
    """
    match = THREAD_ID_RE.search(url)
    return match.group(1) if match else None


def with_page(url: str, page: int) -> str:
    """
    Return ``url`` with its ``page`` query parameter set to ``page``.

    Any other query parameters and the fragment-free path are preserved;
    an existing ``page`` parameter is replaced rather than duplicated.
    """
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "page"]
    query.append(("page", str(page)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def listing_url(base_url: str, page: int) -> str:
    """URL of forum listing page ``page`` (``<base_url>/?page=<n>``)."""
    return with_page(base_url.rstrip("/") + "/", page)
