from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

_EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime (or date) string into a UTC-naive datetime.

    - None / "" -> None
    - naive values are interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return as_utc_naive(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 with a trailing 'Z' (naive == UTC)."""
    if dt is None:
        return None
    dt = as_utc_naive(dt).replace(microsecond=0)
    return dt.isoformat() + "Z"


def epoch_millis(dt: datetime) -> int:
    return int((as_utc_naive(dt) - _EPOCH) / timedelta(milliseconds=1))


def time_bucket(dt: datetime, window_seconds: int) -> int:
    """Index of the fixed window (aligned to the epoch) containing dt."""
    return epoch_millis(dt) // (window_seconds * 1000)


def is_within_days(dt: datetime, days: int, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return as_utc_naive(dt) >= now - timedelta(days=days)
