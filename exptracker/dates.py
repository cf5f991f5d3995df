# exptracker/dates.py
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Optional

from dateutil import parser as dtparser

# Accepted besides ISO-8601 (legacy manual entries)
_LEGACY_FORMATS = ("%m/%d/%Y", "%m/%d/%y")


def parse_any_date(s: Any) -> Optional[datetime]:
    """Parse ISO dates/timestamps or MM/DD/YYYY; None if unparseable."""
    if isinstance(s, datetime):
        return s
    if isinstance(s, date):
        return datetime.combine(s, time.min)
    if not s:
        return None
    s = str(s).strip()
    try:
        return dtparser.isoparse(s)
    except (ValueError, OverflowError):
        pass
    for fmt in _LEGACY_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            pass
    return None


def to_day(s: Any) -> Optional[date]:
    """Calendar day of a stored date; aware timestamps are taken in UTC."""
    dt = parse_any_date(s)
    if dt is None:
        return None
    if dt.tzinfo is not None:
        try:
            dt = dt.astimezone(timezone.utc)
        except (OverflowError, ValueError):
            # offset pushes the instant outside datetime's range
            return None
    return dt.date()


def day_key(s: Any) -> Optional[str]:
    d = to_day(s)
    return d.isoformat() if d else None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def today_str() -> str:
    return date.today().isoformat()
