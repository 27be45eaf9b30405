"""Configuration objects and defaults for the harvester."""

import os
from dataclasses import dataclass, field
from pathlib import Path

# Forum whose listing pages are walked by default
BASE_URL = "https://www.doomworld.com/forum/4-wads-mods"

# Durable crawl state and downloaded files
STATE_FILE = Path("db.json")
ATTACHMENTS_DIR = Path("attachments")

# One outbound request per interval, shared by pages and attachments
REQUEST_INTERVAL = 1.0
REQUEST_TIMEOUT = 30.0

# Ceiling on forum listing pages per run (a fresh state would otherwise
# walk the whole board)
MAX_FORUM_PAGES = 5

# Seconds between background flushes of the state file
FLUSH_INTERVAL = 20.0

# Page fetch retries for transient failures
MAX_RETRIES = 3
RETRY_BACKOFF = 2.0
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class Selectors:
    """CSS selectors for the Invision Community markup of the forum."""

    pagination: str = ".ipsPagination_pageJump"
    thread_link: str = ".ipsDataItem_title a[data-ipshover-target]"
    post: str = ".cPost"
    post_author: str = ".ipsComment_author .cAuthorPane_author a"
    post_text: str = ".cPost_contentWrap .ipsType_richText"
    embedded: str = "iframe, img"
    attachment: str = "a.ipsAttachLink"


@dataclass
class CrawlConfig:
    """Top-level settings that control a crawl run."""

    base_url: str = BASE_URL
    request_interval: float = REQUEST_INTERVAL
    max_forum_pages: int = MAX_FORUM_PAGES
    state_file: Path = STATE_FILE
    attachments_dir: Path = ATTACHMENTS_DIR
    flush_interval: float = FLUSH_INTERVAL
    request_timeout: float = REQUEST_TIMEOUT
    max_retries: int = MAX_RETRIES
    retry_backoff: float = RETRY_BACKOFF
    show_progress: bool = True
    selectors: Selectors = field(default_factory=Selectors)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.state_file = Path(self.state_file)
        self.attachments_dir = Path(self.attachments_dir)
        if self.max_forum_pages < 1:
            raise ValueError(f"max_forum_pages must be >= 1, got {self.max_forum_pages}")
        if self.request_interval < 0:
            raise ValueError(f"request_interval must be >= 0, got {self.request_interval}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0, got {self.flush_interval}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @classmethod
    def from_env(cls, **overrides) -> "CrawlConfig":
        """
        Build a config from HARVESTER_* environment variables.

        Keyword arguments that are not None take precedence over the
        environment, which is how the CLI layers its options on top.
        """
        values = {
            "base_url": os.getenv("HARVESTER_BASE_URL", BASE_URL),
            "request_interval": int(os.getenv("HARVESTER_INTERVAL_MS", "1000")) / 1000.0,
            "max_forum_pages": int(os.getenv("HARVESTER_MAX_PAGES", str(MAX_FORUM_PAGES))),
            "state_file": Path(os.getenv("HARVESTER_STATE_FILE", str(STATE_FILE))),
            "attachments_dir": Path(os.getenv("HARVESTER_ATTACHMENTS_DIR", str(ATTACHMENTS_DIR))),
            "flush_interval": float(os.getenv("HARVESTER_FLUSH_INTERVAL", str(FLUSH_INTERVAL))),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
