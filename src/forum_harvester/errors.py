"""
Exception hierarchy for the forum harvester.

Fatal errors (TransportError on a page fetch, MalformedPageError,
StateSchemaError) unwind to the CLI and end the run without a final flush.
DownloadError and PersistenceError are caught close to where they happen,
logged, and the crawl keeps going.
"""

from typing import Optional


class HarvesterError(Exception):
    """Base class for every error raised by the harvester."""


class TransportError(HarvesterError):
    """
    A request failed at the network or HTTP level.

    Attributes:
        status: HTTP status code, or None when no response was received
                (DNS failure, connection reset, timeout...)
        message: Reason phrase or transport error text
        url: The URL that was requested
    """

    def __init__(self, status: Optional[int], message: str, url: str = ""):
        self.status = status
        self.message = message
        self.url = url
        if status is None:
            super().__init__(f"{message} ({url})")
        else:
            super().__init__(f"HTTP {status} {message} ({url})")


class MalformedPageError(HarvesterError):
    """An expected structural element is missing or unparsable."""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(f"{message} ({url})" if url else message)


class DownloadError(HarvesterError):
    """Attachment ingestion failed; scoped to a single attachment."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"Could not ingest {url}: {message}")


class PersistenceError(HarvesterError):
    """The state file could not be read or written."""

    def __init__(self, path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class StateSchemaError(PersistenceError):
    """The state file exists but does not match the expected record schema."""
