"""
In-memory feed item, rebuilt from the cache files on every merge pass.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Author:
    """Item author."""

    name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class Enclosure:
    """Item enclosure (podcast media and similar)."""

    url: str
    length: str = "0"
    type: str = "application/octet-stream"


@dataclass
class FeedItem:
    """Normalized projection of a parsed feed entry."""

    title: str = ""
    description: Optional[str] = None
    content: Optional[str] = None
    guid: Optional[str] = None
    link: Optional[str] = None
    author: Optional[Author] = None
    enclosure: Optional[Enclosure] = None

    # Update time, else publish time, else None (timezone aware UTC)
    timestamp: Optional[datetime] = None

    @property
    def has_body(self) -> bool:
        """Whether the item carries anything an RSS reader can show."""
        return bool(self.title or self.description or self.content)
