"""Unit tests for the item parser."""

import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from rssmix.core.parser import FeedParseError, ItemParser, struct_to_datetime

RSS_DOCUMENT = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
<channel>
  <title>Example</title>
  <link>https://example.com/</link>
  <description>Example feed</description>
  <item>
    <title>  First
      post  </title>
    <link>https://example.com/1</link>
    <guid isPermaLink="false">post-1</guid>
    <description>Short text</description>
    <content:encoded><![CDATA[<p>Long text</p>]]></content:encoded>
    <author>jane@example.com (Jane Doe)</author>
    <enclosure url="https://example.com/1.mp3" length="1234" type="audio/mpeg"/>
    <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Second post</title>
    <description>No date</description>
  </item>
</channel>
</rss>"""

ATOM_DOCUMENT = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom example</title>
  <id>urn:example</id>
  <updated>2024-02-01T00:00:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <id>urn:example:1</id>
    <link href="https://example.com/atom/1"/>
    <published>2024-01-01T00:00:00Z</published>
    <updated>2024-02-01T08:30:00Z</updated>
    <summary>Summary</summary>
  </entry>
</feed>"""


@pytest.fixture
def parser():
    """Create an item parser."""
    return ItemParser()


def write(tmp_path: Path, name: str, data: bytes) -> Path:
    path = tmp_path / name
    path.write_bytes(data)
    return path


class TestParseFile:
    """Tests for parsing cache files."""

    def test_parse_rss(self, parser: ItemParser, tmp_path: Path):
        """RSS items are normalized in document order."""
        items = parser.parse_file(write(tmp_path, "feed.rss", RSS_DOCUMENT))

        assert [item.title for item in items] == ["First post", "Second post"]

        first = items[0]
        assert first.link == "https://example.com/1"
        assert first.guid == "post-1"
        assert first.description == "Short text"
        assert first.content == "<p>Long text</p>"
        assert first.enclosure.url == "https://example.com/1.mp3"
        assert first.enclosure.length == "1234"
        assert first.enclosure.type == "audio/mpeg"
        assert first.author is not None
        assert first.timestamp == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_missing_dates_give_no_timestamp(self, parser: ItemParser, tmp_path: Path):
        """Items without dates have no timestamp."""
        items = parser.parse_file(write(tmp_path, "feed.rss", RSS_DOCUMENT))
        assert items[1].timestamp is None
        assert items[1].enclosure is None

    def test_parse_atom_prefers_updated(self, parser: ItemParser, tmp_path: Path):
        """The update time wins over the publish time."""
        items = parser.parse_file(write(tmp_path, "feed.atom", ATOM_DOCUMENT))

        assert len(items) == 1
        assert items[0].title == "Atom entry"
        assert items[0].guid == "urn:example:1"
        assert items[0].link == "https://example.com/atom/1"
        assert items[0].timestamp == datetime(2024, 2, 1, 8, 30, tzinfo=timezone.utc)

    def test_missing_file_raises(self, parser: ItemParser, tmp_path: Path):
        """Unreadable files raise OSError."""
        with pytest.raises(OSError):
            parser.parse_file(tmp_path / "missing.rss")

    def test_garbage_raises(self, parser: ItemParser, tmp_path: Path):
        """Files that are not feeds raise FeedParseError."""
        path = write(tmp_path, "garbage", b"\x00\x01 this is <<< not a feed")
        with pytest.raises(FeedParseError):
            parser.parse_file(path)


class TestParseEntry:
    """Tests for entry normalization."""

    def test_parse_entry_basic(self, parser: ItemParser):
        """Plain dict entries are normalized."""
        item = parser.parse_entry({
            "title": "Test Entry",
            "link": " https://example.com/article ",
            "id": "abc",
            "author": "John Doe",
            "summary": "Test summary",
        })

        assert item.title == "Test Entry"
        assert item.link == "https://example.com/article"
        assert item.guid == "abc"
        assert item.author.name == "John Doe"
        assert item.author.email is None
        assert item.description == "Test summary"
        assert item.content is None
        assert item.has_body is True

    def test_author_detail_preferred(self, parser: ItemParser):
        """Structured author details win over the display string."""
        item = parser.parse_entry({
            "title": "x",
            "author": "jane@example.com (Jane)",
            "author_detail": {"name": "Jane", "email": "jane@example.com"},
        })
        assert item.author.name == "Jane"
        assert item.author.email == "jane@example.com"

    def test_content_same_as_summary_not_duplicated(self, parser: ItemParser):
        """Content equal to the description is dropped."""
        item = parser.parse_entry({
            "title": "x",
            "summary": "Body",
            "content": [{"value": "Body"}],
        })
        assert item.description == "Body"
        assert item.content is None

    def test_published_when_no_update_time(self, parser: ItemParser):
        """The publish time is used when there is no update time."""
        item = parser.parse_entry({
            "title": "x",
            "published_parsed": time.strptime("2024-03-04 05:06:07", "%Y-%m-%d %H:%M:%S"),
        })
        assert item.timestamp == datetime(2024, 3, 4, 5, 6, 7, tzinfo=timezone.utc)

    def test_empty_entry(self, parser: ItemParser):
        """An entry with nothing readable has no body."""
        item = parser.parse_entry({})
        assert item.title == ""
        assert item.has_body is False


def test_struct_to_datetime_invalid():
    """Invalid time values give None."""
    assert struct_to_datetime(None) is None
    assert struct_to_datetime(("bad",)) is None
