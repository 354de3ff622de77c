"""Time-zone aware day arithmetic for the anchor engine.

Every helper works on zone-local calendar fields (year, month, day) and only
converts to an absolute instant at the end, so results stay on local midnight
across DST transitions. Instants are returned as aware UTC datetimes; naive
datetimes are read as UTC, which is what SQLite hands back for
``DateTime(timezone=True)`` columns.
"""

from __future__ import annotations

import re
from calendar import monthrange
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_DATE_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


@lru_cache(maxsize=64)
def get_zone(timezone: str) -> ZoneInfo:
    if not isinstance(timezone, str) or not timezone.strip():
        raise ValueError("Time zone is required")
    try:
        return ZoneInfo(timezone.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {timezone}") from exc


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _validate_day(anchor_day: int) -> int:
    if isinstance(anchor_day, bool) or not isinstance(anchor_day, int):
        raise ValueError(f"Anchor day must be an integer, got {anchor_day!r}")
    if anchor_day < 1 or anchor_day > 31:
        raise ValueError(f"Anchor day must be between 1 and 31, got {anchor_day}")
    return anchor_day


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def parse_date_key(date_key: str) -> date:
    match = _DATE_KEY_RE.match(str(date_key or "").strip())
    if not match:
        raise ValueError(f"Invalid date key: {date_key!r}")
    return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def local_date(value: datetime | date, timezone: str) -> date:
    """Calendar day of ``value`` as seen in ``timezone``.

    A plain ``date`` is already a calendar day and is returned unchanged.
    """
    if isinstance(value, datetime):
        return as_utc(value).astimezone(get_zone(timezone)).date()
    if isinstance(value, date):
        return value
    raise ValueError(f"Expected a date or datetime, got {type(value).__name__}")


def local_midnight(day: date, timezone: str) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=get_zone(timezone)).astimezone(UTC)


def start_of_local_day(date_key: str, timezone: str) -> datetime:
    return local_midnight(parse_date_key(date_key), timezone)


def date_key_in_timezone(value: datetime | date, timezone: str) -> str:
    return local_date(value, timezone).isoformat()


def _clipped_anchor(year: int, month: int, anchor_day: int) -> date:
    return date(year, month, min(anchor_day, days_in_month(year, month)))


def get_anchor_date_for_month(
    reference: datetime | date, anchor_day: int, timezone: str
) -> datetime:
    """Anchor instant for the zone-local month that contains ``reference``.

    The day is clipped to the month length, so anchor day 31 in April is
    April 30.
    """
    day = _validate_day(anchor_day)
    ref = local_date(reference, timezone)
    return local_midnight(_clipped_anchor(ref.year, ref.month, day), timezone)


def next_anchor_date(anchor_date: datetime | date, anchor_day: int, timezone: str) -> datetime:
    day = _validate_day(anchor_day)
    current = local_date(anchor_date, timezone)
    year, month = (current.year + 1, 1) if current.month == 12 else (current.year, current.month + 1)
    return local_midnight(_clipped_anchor(year, month, day), timezone)


def add_days_local(value: datetime, days: int, timezone: str) -> datetime:
    """Move ``value`` by whole zone-local calendar days, keeping its wall clock."""
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValueError(f"Day offset must be an integer, got {days!r}")
    zone = get_zone(timezone)
    local = as_utc(value).astimezone(zone)
    target = local.date() + timedelta(days=days)
    shifted = datetime.combine(target, local.time().replace(tzinfo=None), tzinfo=zone)
    return shifted.astimezone(UTC)
