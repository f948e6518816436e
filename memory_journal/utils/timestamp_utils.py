"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes returned by backends that drop tzinfo.

    Args:
        value: datetime to normalize (None passes through)

    Returns:
        Timezone-aware datetime in UTC, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, later: Optional[datetime] = None) -> int:
    """Whole days elapsed from ``earlier`` to ``later`` (defaults to now)."""
    later = ensure_utc(later) if later is not None else utc_now()
    return max(0, (later - ensure_utc(earlier)).days)
