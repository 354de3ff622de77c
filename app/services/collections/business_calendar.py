from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from app.config import BUENOS_AIRES_TIME_ZONE, settings
from app.services.collections.dates import local_date, local_midnight, parse_date_key

# Upper bound when searching for the next business day.
_MAX_SCAN_DAYS = 370


@dataclass(frozen=True)
class OperationalDate:
    target_date: str
    business_date: str
    business_day: bool
    deferred_to_next_business_day: bool


def _to_day(value: date | datetime | str, timezone: str) -> date:
    if isinstance(value, str):
        return parse_date_key(value)
    return local_date(value, timezone)


class BusinessCalendar:
    """Weekday + holiday calendar for one region.

    Weekends are never business days. Holidays are zone-local
    ``YYYY-MM-DD`` keys.
    """

    def __init__(
        self,
        timezone: str = BUENOS_AIRES_TIME_ZONE,
        holidays: Iterable[str | date] | None = None,
    ):
        self.timezone = timezone
        self._holidays: set[date] = set()
        for item in holidays or ():
            self._holidays.add(item if isinstance(item, date) else parse_date_key(item))

    @classmethod
    def from_settings(cls) -> BusinessCalendar:
        return cls(BUENOS_AIRES_TIME_ZONE, settings.ar_holiday_keys)

    def is_business_day(self, value: date | datetime | str) -> bool:
        day = _to_day(value, self.timezone)
        return day.weekday() < 5 and day not in self._holidays

    def next_business_day(self, value: date | datetime | str) -> date:
        day = _to_day(value, self.timezone)
        for _ in range(_MAX_SCAN_DAYS):
            if self.is_business_day(day):
                return day
            day += timedelta(days=1)
        raise ValueError("Could not resolve the next business day")

    def add_business_days(self, value: date | datetime | str, days: int) -> datetime:
        """Advance ``days`` business days and return local midnight of the result.

        Zero days returns local midnight of the starting day even when that
        day is not a business day.
        """
        day = _to_day(value, self.timezone)
        remaining = max(0, int(days))
        while remaining > 0:
            day += timedelta(days=1)
            if self.is_business_day(day):
                remaining -= 1
        return local_midnight(day, self.timezone)

    def resolve_operational_date(
        self,
        target: date | datetime | str,
        allow_non_business_day: bool = False,
    ) -> OperationalDate:
        day = _to_day(target, self.timezone)
        business_day = self.is_business_day(day)
        if business_day or allow_non_business_day:
            return OperationalDate(
                target_date=day.isoformat(),
                business_date=day.isoformat(),
                business_day=business_day,
                deferred_to_next_business_day=False,
            )
        return OperationalDate(
            target_date=day.isoformat(),
            business_date=self.next_business_day(day).isoformat(),
            business_day=False,
            deferred_to_next_business_day=True,
        )
