"""Datetime utilities for consistent timezone handling across the application."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC time - standardized across the application.

    Returns:
        Current datetime in UTC timezone.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return ``dt`` as an aware UTC datetime, treating naive values as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_timestamp(ts: Optional[int]) -> Optional[datetime]:
    """Convert a provider epoch timestamp (seconds) to an aware UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)
