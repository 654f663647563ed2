from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def has_passed(deadline: datetime, now: Optional[datetime] = None) -> bool:
    """True once ``deadline`` is reached; an expiry equal to now counts as passed."""
    return deadline <= (now or utcnow())


def idle_longer_than(last_seen: datetime, limit: timedelta, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) - last_seen > limit


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    ISO-8601 with trailing 'Z', second precision.
    Naive values are stored as UTC and read as such.
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
