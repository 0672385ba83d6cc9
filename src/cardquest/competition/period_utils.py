"""Ranking period keys and boundaries.

Monthly keys are ``YYYY-MM``, yearly keys ``YYYY``. Boundaries are midnight
in the configured zone, returned as UTC datetimes; the end is exclusive.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from cardquest.competition.schemas import RankingPeriod
from cardquest.errors import InvalidError
from cardquest.gamification.day_utils import get_zone

_MONTHLY_KEY = re.compile(r"^(\d{4})-(\d{2})$")
_YEARLY_KEY = re.compile(r"^(\d{4})$")


def coerce_period(period: RankingPeriod | str) -> RankingPeriod:
    try:
        return RankingPeriod(period)
    except ValueError as exc:
        raise InvalidError(f"Unknown ranking period: {period!r}") from exc


def get_period_key(period: RankingPeriod | str, now: datetime | None = None, tz: str = "UTC") -> str:
    """Get the key of the period containing ``now``, e.g. '2025-01' or '2025'."""
    period = coerce_period(period)
    if now is None:
        now = datetime.now(timezone.utc)
    local = now.astimezone(get_zone(tz))
    if period == RankingPeriod.MONTHLY:
        return local.strftime("%Y-%m")
    return local.strftime("%Y")


def parse_period_key(period: RankingPeriod | str, key: str) -> tuple[int, int | None]:
    """Return ``(year, month)`` (month is None for yearly keys)."""
    period = coerce_period(period)
    if period == RankingPeriod.MONTHLY:
        match = _MONTHLY_KEY.match(key or "")
        if not match or not 1 <= int(match.group(2)) <= 12:
            raise InvalidError(f"Invalid monthly period key: {key!r} (expected YYYY-MM)")
        return int(match.group(1)), int(match.group(2))
    match = _YEARLY_KEY.match(key or "")
    if not match:
        raise InvalidError(f"Invalid yearly period key: {key!r} (expected YYYY)")
    return int(match.group(1)), None


def get_period_bounds(period: RankingPeriod | str, key: str, tz: str = "UTC") -> tuple[datetime, datetime]:
    """Get (start, end) of a period as UTC datetimes, end exclusive."""
    year, month = parse_period_key(period, key)
    zone = get_zone(tz)
    if month is None:
        start = datetime(year, 1, 1, tzinfo=zone)
        end = datetime(year + 1, 1, 1, tzinfo=zone)
    else:
        start = datetime(year, month, 1, tzinfo=zone)
        end = datetime(year + (month == 12), month % 12 + 1, 1, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
