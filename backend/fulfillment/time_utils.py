from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

# All timestamps are stored UTC-naive; these helpers are the only conversion points.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def days_back(dt: datetime, days: int) -> datetime:
    """Midnight `days` days before dt's own day (days=0 is today at 00:00)."""
    return start_of_day(dt) - timedelta(days=days)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a query-string timestamp into UTC-naive form.

    Naive input is taken as UTC; "Z" and numeric offsets are converted.
    Raises ValueError on anything fromisoformat() cannot read.
    """
    if value is None or not value.strip():
        return None
    raw = value.strip()
    if raw[-1] in "zZ":
        raw = raw[:-1] + "+00:00"

    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize for JSON as second-precision ISO-8601 with a trailing Z."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
