"""Calendar-day helpers for daily progress and streaks.

Day keys are ``YYYY-MM-DD`` strings in the configured zone; they sort
lexicographically in date order.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cardquest.errors import InvalidError

DAY_FORMAT = "%Y-%m-%d"


def get_zone(name: str = "UTC") -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidError(f"Unknown timezone: {name!r}") from exc


def day_key(d: date | datetime, tz: str = "UTC") -> str:
    """Format a date (or an aware datetime converted to ``tz``) as a day key."""
    if isinstance(d, datetime):
        if d.tzinfo is None:
            d = d.replace(tzinfo=timezone.utc)
        d = d.astimezone(get_zone(tz)).date()
    return d.strftime(DAY_FORMAT)


def parse_day(key: str) -> date:
    """Parse a ``YYYY-MM-DD`` key, raising InvalidError when malformed."""
    if not isinstance(key, str) or len(key) != 10:
        raise InvalidError(f"Invalid day key: {key!r}")
    try:
        return datetime.strptime(key, DAY_FORMAT).date()
    except ValueError as exc:
        raise InvalidError(f"Invalid day key: {key!r}") from exc


def get_today(now: datetime | None = None, tz: str = "UTC") -> str:
    """Get today's day key in ``tz``."""
    if now is None:
        now = datetime.now(timezone.utc)
    return day_key(now, tz)


def shift_day(key: str, days: int) -> str:
    """Move a day key by ``days`` (negative goes back)."""
    return day_key(parse_day(key) + timedelta(days=days))


def previous_day(key: str) -> str:
    return shift_day(key, -1)


def local_hour(dt: datetime, tz: str = "UTC") -> int:
    """Hour of day of ``dt`` in ``tz``; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(get_zone(tz)).hour
