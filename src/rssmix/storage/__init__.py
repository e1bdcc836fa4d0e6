"""Storage layer modules for rssmix."""

from rssmix.storage.database import DatabaseManager

__all__ = [
    "DatabaseManager",
]
