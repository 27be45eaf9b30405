"""
Data models for the forum harvester.

These dataclasses describe everything that ends up in the state file:
threads, the posts inside them and the attachments inside posts. Loading
goes through ``from_dict``, which validates the shape of every record and
raises StateSchemaError instead of letting half-formed records leak into
the crawl.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import StateSchemaError


def _require(data: Dict[str, Any], key: str, kind: type, where: str) -> Any:
    """Fetch ``data[key]`` and check its type, or raise StateSchemaError."""
    if not isinstance(data, dict):
        raise StateSchemaError(where, f"expected an object, got {type(data).__name__}")
    if key not in data:
        raise StateSchemaError(where, f"missing required field '{key}'")
    value = data[key]
    # bool is an int subclass; never accept it where a count is expected
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise StateSchemaError(
            where, f"field '{key}' should be {kind.__name__}, got {type(value).__name__}"
        )
    return value


@dataclass
class ThreadRef:
    """
    A thread link discovered on a forum listing page.

    Attributes:
        thread_id: Stable id taken from the thread URL (``topic/<id>-slug``)
        url: Absolute URL of the thread's first page
        title: Link text as shown on the listing page
    """
    thread_id: str
    url: str
    title: str


@dataclass
class AttachmentRecord:
    """
    A file attached to a post.

    Attributes:
        url: Absolute download URL
        title: The file name declared by the forum
        path: Local path of the downloaded file, None until ingested
    """
    url: str
    title: str
    path: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"url": self.url, "title": self.title}
        if self.path is not None:
            d["path"] = self.path
        return d

    @classmethod
    def from_dict(cls, data: dict, where: str = "attachment") -> "AttachmentRecord":
        path = data.get("path") if isinstance(data, dict) else None
        if path is not None and not isinstance(path, str):
            raise StateSchemaError(where, "field 'path' should be str")
        return cls(
            url=_require(data, "url", str, where),
            title=_require(data, "title", str, where),
            path=path,
        )


@dataclass
class PostRecord:
    """
    A single post inside a thread page.

    Attributes:
        id: Numeric post id from the post container's element id
        author: Display name of the author (never empty)
        text: Post text with embeds rewritten to plain links, trimmed
        attachments: Attachments in the order they appear in the post
    """
    id: str
    author: str
    text: str
    attachments: List[AttachmentRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "text": self.text,
            "attachments": [a.to_dict() for a in self.attachments],
        }

    @classmethod
    def from_dict(cls, data: dict, where: str = "post") -> "PostRecord":
        attachments = _require(data, "attachments", list, where)
        author = _require(data, "author", str, where)
        if not author:
            raise StateSchemaError(where, "field 'author' is empty")
        return cls(
            id=_require(data, "id", str, where),
            author=author,
            text=_require(data, "text", str, where),
            attachments=[
                AttachmentRecord.from_dict(a, f"{where}.attachments[{i}]")
                for i, a in enumerate(attachments)
            ],
        )


@dataclass
class ThreadRecord:
    """
    Progress and content of one thread.

    Attributes:
        id: Thread id, also the key of this record in the state file
        title: Title seen when the thread was first discovered
        pages_processed: Highest thread page fully ingested (>= 1);
                         never decreases
        posts: Post id -> PostRecord, last write wins
    """
    id: str
    title: str
    pages_processed: int = 1
    posts: Dict[str, PostRecord] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "pagesProcessed": self.pages_processed,
            "posts": {k: v.to_dict() for k, v in self.posts.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, where: str = "thread") -> "ThreadRecord":
        pages = _require(data, "pagesProcessed", int, where)
        if pages < 1:
            raise StateSchemaError(where, f"pagesProcessed must be >= 1, got {pages}")
        raw_posts = _require(data, "posts", dict, where)
        posts = {}
        for post_id, raw in raw_posts.items():
            post = PostRecord.from_dict(raw, f"{where}.posts.{post_id}")
            if post.id != post_id:
                raise StateSchemaError(
                    where, f"post keyed '{post_id}' carries id '{post.id}'"
                )
            posts[post_id] = post
        return cls(
            id=_require(data, "id", str, where),
            title=_require(data, "title", str, where),
            pages_processed=pages,
            posts=posts,
        )
