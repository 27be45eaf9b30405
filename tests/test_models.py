"""Tests for data models."""

import pytest

from forum_harvester.errors import StateSchemaError
from forum_harvester.models import AttachmentRecord, PostRecord, ThreadRecord


def thread_dict(**overrides):
    d = {
        "id": "5",
        "title": "Some WAD",
        "pagesProcessed": 2,
        "posts": {
            "9": {
                "id": "9",
                "author": "alice",
                "text": "hello",
                "attachments": [
                    {"url": "https://x.test/a", "title": "wad.zip", "path": "attachments/5_9_wad.zip"},
                    {"url": "https://x.test/b", "title": "readme.txt"},
                ],
            }
        },
    }
    d.update(overrides)
    return d


class TestAttachmentRecord:
    def test_defaults(self):
        record = AttachmentRecord(url="https://x.test/a", title="wad.zip")
        assert record.path is None

    def test_to_dict_omits_missing_path(self):
        assert AttachmentRecord(url="u", title="t").to_dict() == {"url": "u", "title": "t"}

    def test_to_dict_with_path(self):
        d = AttachmentRecord(url="u", title="t", path="p").to_dict()
        assert d["path"] == "p"

    def test_rejects_non_string_path(self):
        with pytest.raises(StateSchemaError):
            AttachmentRecord.from_dict({"url": "u", "title": "t", "path": 3})


class TestPostRecord:
    def test_to_dict(self):
        post = PostRecord(id="9", author="bob", text="hi",
                          attachments=[AttachmentRecord(url="u", title="t")])
        d = post.to_dict()
        assert d["id"] == "9"
        assert d["author"] == "bob"
        assert d["attachments"] == [{"url": "u", "title": "t"}]

    def test_empty_author_rejected(self):
        with pytest.raises(StateSchemaError):
            PostRecord.from_dict({"id": "1", "author": "", "text": "x", "attachments": []})

    def test_missing_text_rejected(self):
        with pytest.raises(StateSchemaError, match="text"):
            PostRecord.from_dict({"id": "1", "author": "a", "attachments": []})


class TestThreadRecord:
    def test_from_dict_round_trip(self):
        data = thread_dict()
        record = ThreadRecord.from_dict(data)
        assert record.pages_processed == 2
        assert record.posts["9"].attachments[0].path == "attachments/5_9_wad.zip"
        assert record.posts["9"].attachments[1].path is None
        assert record.to_dict() == data

    def test_pages_processed_must_be_positive(self):
        with pytest.raises(StateSchemaError, match="pagesProcessed"):
            ThreadRecord.from_dict(thread_dict(pagesProcessed=0))

    def test_pages_processed_must_be_int(self):
        with pytest.raises(StateSchemaError):
            ThreadRecord.from_dict(thread_dict(pagesProcessed="2"))
        with pytest.raises(StateSchemaError):
            ThreadRecord.from_dict(thread_dict(pagesProcessed=True))

    def test_post_key_must_match_id(self):
        data = thread_dict()
        data["posts"] = {"10": data["posts"]["9"]}
        with pytest.raises(StateSchemaError, match="carries id"):
            ThreadRecord.from_dict(data)

    def test_non_object_rejected(self):
        with pytest.raises(StateSchemaError):
            ThreadRecord.from_dict(["not", "a", "thread"])
