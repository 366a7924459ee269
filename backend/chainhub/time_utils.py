from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


# Every timestamp the hub stores or compares is UTC-naive; branch input is
# normalized on the way in and rendered with a trailing 'Z' on the way out.


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to UTC and drop tzinfo; naive values are taken as UTC."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a branch or operator timestamp into a UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC (business-day watermarks from the CLI)
    - naive "YYYY-MM-DDTHH:MM[:SS]" is interpreted as UTC
    - "...Z" or "...+/-HH:MM" (branch POS clocks) is converted to UTC

    Raises ValueError for anything else.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Branch POS firmware sends a trailing Z
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"

    return as_utc_naive(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def elapsed_ms(started: datetime, finished: Optional[datetime] = None) -> int:
    """Whole milliseconds between two UTC-naive datetimes."""
    finished = finished or utcnow()
    return int((finished - started).total_seconds() * 1000)


def seconds_remaining(started: datetime, window_seconds: int) -> int:
    """Whole seconds left in a window opened at `started`, never negative."""
    deadline = started + timedelta(seconds=window_seconds)
    return max(int((deadline - utcnow()).total_seconds()), 0)
