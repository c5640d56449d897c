from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def expiry_from(start: datetime, minutes: int) -> datetime:
    """Deadline `minutes` after `start`."""
    return start + timedelta(minutes=minutes)


def is_expired(deadline: Optional[datetime], now: Optional[datetime] = None) -> bool:
    # Same boundary as the sweep query: expired strictly after the deadline.
    if deadline is None:
        return False
    return as_naive_utc(deadline) < (now or utcnow())


def date_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD in UTC, used in order numbers."""
    return as_naive_utc(dt or utcnow()).strftime("%Y%m%d")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z'; naive values are read as UTC."""
    if dt is None:
        return None
    return as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
