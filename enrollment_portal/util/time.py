from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(datetime.now(timezone.utc))


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def days_ago_iso(days: int) -> str:
    return to_iso(datetime.now(timezone.utc) - timedelta(days=days))


def today_start_iso() -> str:
    now = datetime.now(timezone.utc)
    return to_iso(now.replace(hour=0, minute=0, second=0, microsecond=0))


def parse_iso_bound(value: str, *, end_of_day: bool = False) -> str:
    """Normalize a date or datetime filter bound to the stored ISO-8601 'Z' form.

    A bare date (YYYY-MM-DD) expands to the start of that day, or to its last second
    when `end_of_day` is set, so `date_to=2024-01-31` includes the whole day.
    Raises ValueError on unparseable input.
    """
    s = (value or "").strip()
    if not s:
        raise ValueError("blank_date")
    if len(s) == 10:
        d = datetime.strptime(s, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        if end_of_day:
            d = d + timedelta(days=1, seconds=-1)
        return to_iso(d)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return to_iso(datetime.fromisoformat(s))
