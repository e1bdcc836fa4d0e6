"""Time helpers."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in watermark columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
