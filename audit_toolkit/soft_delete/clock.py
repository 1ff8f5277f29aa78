"""Time source for audit timestamps."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching how the columns store it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
