"""
Feed parser for turning cached feed documents into FeedItem objects.

Handles field normalization and timestamp resolution. Markup in descriptions
and content is passed through untouched; the merged feed republishes it.
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import feedparser

from rssmix.logger import get_logger
from rssmix.models.item import Author, Enclosure, FeedItem

logger = get_logger(__name__)


class FeedParseError(ValueError):
    """Raised when a cache file is not a usable feed document."""


def struct_to_datetime(value: Any) -> Optional[datetime]:
    """Convert a feedparser time.struct_time (always UTC) to an aware datetime."""
    if not value:
        return None
    try:
        return datetime(*value[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


class ItemParser:
    """Parser for reading feed files and normalizing their entries."""

    def parse_file(self, path: str | Path) -> list[FeedItem]:
        """Parse a cached feed file.

        Args:
            path: Cache file

        Returns:
            List of FeedItem, in document order

        Raises:
            OSError: If the file cannot be read
            FeedParseError: If the file holds no recognizable feed
        """
        data = Path(path).read_bytes()
        parsed = feedparser.parse(data)

        entries = parsed.get("entries", [])
        if not entries and not parsed.get("version"):
            reason = parsed.get("bozo_exception") or "unknown format"
            raise FeedParseError(f"Not a feed document: {reason}")

        if parsed.get("bozo"):
            logger.debug(f"Feed {path} is not well-formed, using {len(entries)} entries anyway")

        return [self.parse_entry(entry) for entry in entries]

    def parse_entry(self, raw_entry: dict) -> FeedItem:
        """Normalize a raw feedparser entry.

        Args:
            raw_entry: Raw entry from feedparser

        Returns:
            FeedItem
        """
        description = raw_entry.get("summary") or None
        content = self._first_content(raw_entry)
        if content == description:
            content = None

        return FeedItem(
            title=self._normalize_title(raw_entry.get("title")),
            description=description,
            content=content,
            guid=raw_entry.get("id") or None,
            link=self._normalize_link(raw_entry.get("link")),
            author=self._extract_author(raw_entry),
            enclosure=self._extract_enclosure(raw_entry),
            timestamp=self._resolve_timestamp(raw_entry),
        )

    def _normalize_title(self, title: Optional[str]) -> str:
        """Strip a title and collapse internal whitespace."""
        if not title:
            return ""
        return re.sub(r"\s+", " ", title.strip())

    def _normalize_link(self, link: Optional[str]) -> Optional[str]:
        if not link:
            return None
        link = link.strip()
        return link or None

    def _first_content(self, raw_entry: dict) -> Optional[str]:
        contents = raw_entry.get("content") or []
        for item in contents:
            value = item.get("value") if isinstance(item, dict) else None
            if value:
                return value
        return None

    def _extract_author(self, raw_entry: dict) -> Optional[Author]:
        """Take the first author of an entry.

        Args:
            raw_entry: Raw entry

        Returns:
            Author or None
        """
        detail = raw_entry.get("author_detail")
        if isinstance(detail, dict) and (detail.get("name") or detail.get("email")):
            return Author(name=detail.get("name"), email=detail.get("email"))

        author = raw_entry.get("author")
        if author:
            return Author(name=str(author).strip())

        return None

    def _extract_enclosure(self, raw_entry: dict) -> Optional[Enclosure]:
        for enclosure in raw_entry.get("enclosures") or []:
            url = enclosure.get("href") or enclosure.get("url")
            if url:
                return Enclosure(
                    url=url,
                    length=str(enclosure.get("length") or "0"),
                    type=enclosure.get("type") or "application/octet-stream",
                )
        return None

    def _resolve_timestamp(self, raw_entry: dict) -> Optional[datetime]:
        """Resolve the update time, else the publish time, else None."""
        for key in ("updated_parsed", "published_parsed"):
            timestamp = struct_to_datetime(raw_entry.get(key))
            if timestamp is not None:
                return timestamp
        return None
