"""Business day calendar for cadence due dates.

Weekends and national holidays (fixed and Easter-relative) are skipped.
Day arithmetic happens on the local calendar date of the organization's
timezone; results are returned as UTC datetimes at a fixed local anchor
time, so DST changes never shift the wall clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from datetime import timezone as dt_timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import holidays

from ritmo.core.config import settings


class CalendarConfigError(ValueError):
    """Invalid calendar configuration (timezone, holiday country, time of day)."""


@dataclass(frozen=True)
class HolidayCalendar:
    """Holiday source: a country (and optional subdivision) plus extra fixed dates."""

    country: str = "PT"
    subdivision: str | None = None
    extra_fixed: tuple[tuple[int, int], ...] = ()

    @classmethod
    def from_settings(cls) -> "HolidayCalendar":
        return cls(
            country=settings.HOLIDAY_COUNTRY,
            subdivision=settings.HOLIDAY_SUBDIVISION or None,
            extra_fixed=tuple(parse_month_day(v) for v in settings.extra_holidays_list),
        )

    def holidays_for_year(self, year: int) -> frozenset[date]:
        fixed = set()
        for month, day in self.extra_fixed:
            try:
                fixed.add(date(year, month, day))
            except ValueError:
                continue  # 02-29 outside leap years
        return get_country_holidays(self.country, self.subdivision, year) | fixed

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays_for_year(day.year)


DEFAULT_CALENDAR = HolidayCalendar()


@lru_cache(maxsize=64)
def get_country_holidays(country: str, subdivision: str | None, year: int) -> frozenset[date]:
    """Cache holiday sets per (country, subdivision, year)."""
    try:
        calendar = holidays.country_holidays(country, subdiv=subdivision, years=year)
    except NotImplementedError as exc:
        raise CalendarConfigError(f"Unsupported holiday calendar: {country}/{subdivision}") from exc
    return frozenset(calendar.keys())


def parse_month_day(value: str) -> tuple[int, int]:
    """Parse an 'MM-DD' holiday entry."""
    try:
        month_str, day_str = value.strip().split("-")
        month, day = int(month_str), int(day_str)
        # 2000 is a leap year, so 02-29 validates
        date(2000, month, day)
    except ValueError as exc:
        raise CalendarConfigError(f"Invalid holiday entry (expected MM-DD): {value!r}") from exc
    return month, day


def parse_time_of_day(value: str) -> time:
    """Parse an 'HH:MM' local time."""
    try:
        hour_str, minute_str = value.strip().split(":")
        return time(int(hour_str), int(minute_str))
    except ValueError as exc:
        raise CalendarConfigError(f"Invalid time of day (expected HH:MM): {value!r}") from exc


def get_zone(timezone: str | None) -> ZoneInfo:
    name = timezone or settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise CalendarConfigError(f"Unknown timezone: {name!r}") from exc


def to_local_date(value: datetime | date, timezone: str | None = None) -> date:
    """Local calendar date of an instant (dates pass through unchanged)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt_timezone.utc)
        return value.astimezone(get_zone(timezone)).date()
    return value


def is_business_day(
    value: datetime | date,
    timezone: str | None = None,
    calendar: HolidayCalendar | None = None,
) -> bool:
    """Check if the local date is a business day (Mon-Fri, not a holiday)."""
    day = to_local_date(value, timezone)
    if day.weekday() >= 5:  # Weekend
        return False
    return not (calendar or DEFAULT_CALENDAR).is_holiday(day)


def add_business_days(
    start: datetime | date,
    days: int,
    timezone: str | None = None,
    calendar: HolidayCalendar | None = None,
    at: time | None = None,
) -> datetime:
    """
    Add business days to a start instant.

    Args:
        start: Start instant (naive values are treated as UTC) or local date
        days: Number of business days to add (0 = first business day on/after start)
        timezone: IANA timezone of the organization (default DEFAULT_TIMEZONE)
        calendar: Holiday calendar (default Portugal)
        at: Local time of day of the result (default CADENCE_ANCHOR_TIME)

    Returns:
        Due datetime in UTC
    """
    if days < 0:
        raise ValueError("days must be >= 0")
    tz = get_zone(timezone)
    calendar = calendar or DEFAULT_CALENDAR
    anchor = at or parse_time_of_day(settings.CADENCE_ANCHOR_TIME)

    current = to_local_date(start, timezone)
    if days == 0:
        while not is_business_day(current, timezone, calendar):
            current += timedelta(days=1)
    else:
        counted = 0
        while counted < days:
            current += timedelta(days=1)
            if is_business_day(current, timezone, calendar):
                counted += 1

    local = datetime.combine(current, anchor, tzinfo=tz)
    return local.astimezone(dt_timezone.utc)


def is_within_send_window(
    now: datetime,
    start: str,
    end: str,
    timezone: str | None = None,
    calendar: HolidayCalendar | None = None,
) -> bool:
    """Check if an instant is on a local business day within [start, end)."""
    local = now.astimezone(get_zone(timezone))
    if not is_business_day(local.date(), timezone, calendar):
        return False
    return parse_time_of_day(start) <= local.time() < parse_time_of_day(end)


def next_send_time(
    now: datetime,
    start: str,
    end: str,
    timezone: str | None = None,
    calendar: HolidayCalendar | None = None,
) -> datetime:
    """Next instant (UTC) at which an automatic email may go out."""
    if is_within_send_window(now, start, end, timezone, calendar):
        return now.astimezone(dt_timezone.utc)

    tz = get_zone(timezone)
    local = now.astimezone(tz)
    window_start = parse_time_of_day(start)
    day = local.date()
    # Later today if we're before the window on a business day
    if local.time() < window_start and is_business_day(day, timezone, calendar):
        return datetime.combine(day, window_start, tzinfo=tz).astimezone(dt_timezone.utc)

    day += timedelta(days=1)
    while not is_business_day(day, timezone, calendar):
        day += timedelta(days=1)
    return datetime.combine(day, window_start, tzinfo=tz).astimezone(dt_timezone.utc)


def validate_calendar_settings() -> HolidayCalendar:
    """
    Fail fast on a misconfigured calendar.

    Called on worker and API startup. Returns the configured calendar.
    """
    get_zone(settings.DEFAULT_TIMEZONE)
    start = parse_time_of_day(settings.SEND_WINDOW_START)
    end = parse_time_of_day(settings.SEND_WINDOW_END)
    if start >= end:
        raise CalendarConfigError("SEND_WINDOW_START must be before SEND_WINDOW_END")
    parse_time_of_day(settings.CADENCE_ANCHOR_TIME)
    calendar = HolidayCalendar.from_settings()
    calendar.holidays_for_year(datetime.now(dt_timezone.utc).year)
    return calendar
