from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime and normalize to UTC-naive datetime.

    - None / "" -> None
    - datetime instances pass through (normalized to UTC-naive)
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" (commerce platform timestamps) is converted to UTC
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None

        # Accept trailing Z
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"

        dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


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


def date_window(center: datetime, days: int) -> tuple[str, str]:
    """Inclusive YYYY-MM-DD window of +/- `days` around `center`."""
    start: date = (center - timedelta(days=days)).date()
    end: date = (center + timedelta(days=days)).date()
    return start.isoformat(), end.isoformat()
