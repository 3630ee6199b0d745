"""
Reporting Calendar

Timezone-aware calendar arithmetic for the reporting timezone. All instants
handled here are timezone-aware UTC datetimes; local ("zoned") values are
only ever exchanged as ``ZonedParts``.

Month/year/day arithmetic goes through ``zoned_datetime_to_utc`` so every
boundary is a local midnight in the reporting zone, whatever its UTC offset.
"""

import calendar as _stdcal
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from salesdash.config.settings import resolve_reporting_timezone

UTC = timezone.utc
ONE_MS = timedelta(milliseconds=1)

_HOUR_KEY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})-(\d{2})$")


@dataclass(frozen=True)
class ZonedParts:
    """Wall-clock fields in the reporting timezone"""

    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0


def days_in_year_month(year: int, month: int) -> int:
    """Number of days in ``month`` (1-12) of ``year``."""
    return _stdcal.monthrange(year, month)[1]


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    try:
        return ensure_utc(date_parser.isoparse(str(value).strip()))
    except (ValueError, OverflowError):
        return None


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def hour_key_from_datetime(value: datetime) -> str:
    """UTC hour bucket key ``YYYY-MM-DD-HH``."""
    v = ensure_utc(value)
    return f"{v.year:04d}-{v.month:02d}-{v.day:02d}-{v.hour:02d}"


def utc_from_hour_key(hour_key: str) -> Optional[datetime]:
    match = _HOUR_KEY.match(str(hour_key))
    if not match:
        return None
    year, month, day, hour = (int(g) for g in match.groups())
    try:
        return datetime(year, month, day, hour, tzinfo=UTC)
    except ValueError:
        return None


class ReportingCalendar:
    """
    Calendar arithmetic pinned to one reporting timezone.

    Usage:
        cal = ReportingCalendar("Europe/London")
        month_start = cal.start_of_month(now)
        prev_end = cal.previous_mtd_comparable_end(now)
    """

    def __init__(self, tz_name: Optional[str] = "UTC"):
        self.tz_name = resolve_reporting_timezone(tz_name)
        self.tz = ZoneInfo(self.tz_name)

    def __repr__(self) -> str:
        return f"ReportingCalendar({self.tz_name!r})"

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def zoned_parts(self, instant: datetime) -> ZonedParts:
        local = ensure_utc(instant).astimezone(self.tz)
        return ZonedParts(local.year, local.month, local.day, local.hour, local.minute, local.second)

    def offset(self, instant: datetime) -> timedelta:
        """UTC offset of the reporting zone at ``instant``."""
        return ensure_utc(instant).astimezone(self.tz).utcoffset() or timedelta(0)

    def zoned_datetime_to_utc(self, parts: ZonedParts) -> datetime:
        """
        Convert local wall-clock fields to a UTC instant.

        Out-of-range months and days are normalized first (month 0 is December
        of the previous year, day 32 rolls into the next month). The offset
        correction is iterated to a fixed point, at most three passes.
        """
        year = parts.year + (parts.month - 1) // 12
        month = (parts.month - 1) % 12 + 1
        wall = datetime(year, month, 1, tzinfo=UTC) + timedelta(
            days=parts.day - 1,
            hours=parts.hour,
            minutes=parts.minute,
            seconds=parts.second,
        )

        guess = wall
        for _ in range(3):
            adjusted = wall - self.offset(guess)
            if adjusted == guess:
                break
            guess = adjusted
        return guess

    def to_ymd(self, instant: datetime) -> str:
        p = self.zoned_parts(instant)
        return f"{p.year:04d}-{p.month:02d}-{p.day:02d}"

    def to_ym(self, instant: datetime) -> str:
        p = self.zoned_parts(instant)
        return f"{p.year:04d}-{p.month:02d}"

    # ------------------------------------------------------------------
    # Boundaries
    # ------------------------------------------------------------------

    def start_of_day(self, instant: datetime) -> datetime:
        p = self.zoned_parts(instant)
        return self.zoned_datetime_to_utc(ZonedParts(p.year, p.month, p.day))

    def start_of_month(self, instant: datetime) -> datetime:
        p = self.zoned_parts(instant)
        return self.zoned_datetime_to_utc(ZonedParts(p.year, p.month, 1))

    def start_of_year(self, instant: datetime) -> datetime:
        p = self.zoned_parts(instant)
        return self.zoned_datetime_to_utc(ZonedParts(p.year, 1, 1))

    def add_days(self, instant: datetime, delta: int) -> datetime:
        """Start of the local day ``delta`` days away."""
        p = self.zoned_parts(instant)
        return self.zoned_datetime_to_utc(ZonedParts(p.year, p.month, p.day + delta))

    def add_months(self, instant: datetime, delta: int) -> datetime:
        """Day 1 (local midnight) of the month ``delta`` months away."""
        p = self.zoned_parts(instant)
        return self.zoned_datetime_to_utc(ZonedParts(p.year, p.month + delta, 1))

    def add_years(self, instant: datetime, delta: int) -> datetime:
        """January 1 (local midnight) of the year ``delta`` years away."""
        p = self.zoned_parts(instant)
        return self.zoned_datetime_to_utc(ZonedParts(p.year + delta, 1, 1))

    def days_in_month(self, instant: datetime) -> int:
        p = self.zoned_parts(instant)
        return days_in_year_month(p.year, p.month)

    def day_of_month(self, instant: datetime) -> int:
        return self.zoned_parts(instant).day

    def hour_of_day(self, instant: datetime) -> int:
        return self.zoned_parts(instant).hour

    # ------------------------------------------------------------------
    # Comparable ends
    # ------------------------------------------------------------------

    def previous_mtd_comparable_end(self, now: datetime, current_month_start: Optional[datetime] = None) -> datetime:
        """
        Last instant of the comparable day in the previous month.

        The comparable day is today's day-of-month clamped to the previous
        month's length, so March 31 compares against February 28 (or 29).
        """
        month_start = current_month_start or self.start_of_month(now)
        prev_month_start = self.add_months(month_start, -1)
        comparable_day = min(self.day_of_month(now), self.days_in_month(prev_month_start))
        prev = self.zoned_parts(prev_month_start)
        comparable_day_start = self.zoned_datetime_to_utc(ZonedParts(prev.year, prev.month, comparable_day))
        return self.add_days(comparable_day_start, 1) - ONE_MS

    def previous_ytd_comparable_end(self, now: datetime) -> datetime:
        """Same local month, clamped day and wall-clock time, one year earlier."""
        p = self.zoned_parts(now)
        previous_year = p.year - 1
        comparable_day = min(p.day, days_in_year_month(previous_year, p.month))
        return self.zoned_datetime_to_utc(
            ZonedParts(previous_year, p.month, comparable_day, p.hour, p.minute, p.second)
        )
