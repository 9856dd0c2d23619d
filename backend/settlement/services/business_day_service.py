# Overview: Business-day (working date) calculation for the 3 PM order cutoff.
"""
Business Day Rules (authoritative)

- Orders, returns and deductions belong to a working date, computed in the
  business timezone (Asia/Seoul by default).
- Local time-of-day >= 15:00:00 moves the event to the next day. 15:00:00
  exactly is already "after cutoff".
- Friday after cutoff goes straight to Monday (+3).
- Saturday rolls +2, Sunday +1.
- Then, while the landed date is a holiday or weekend, advance one day.
- The listing window of working date D is
  [previous working day 15:00:00, D 14:59:59] local time.
- An order is editable only while its working date equals today's.

Holidays:
- Fixed-date national holidays are always known.
- Lunar holidays (Seollal, Buddha's Birthday, Chuseok) and their substitute
  days are a per-year table. Years missing from the table are treated as
  "no lunar holidays known"; strict lookups raise CalendarGap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Mapping
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

from ..errors import CalendarGap
from settlement.time_utils import business_timezone, to_local, to_utc_naive, utcnow


DEFAULT_CUTOFF_HOUR = 15

FRIDAY = 4
SATURDAY = 5
SUNDAY = 6

# (month, day)
FIXED_HOLIDAYS = (
    (1, 1),    # New Year's Day
    (3, 1),    # Independence Movement Day
    (5, 5),    # Children's Day
    (6, 6),    # Memorial Day
    (8, 15),   # Liberation Day
    (10, 3),   # National Foundation Day
    (10, 9),   # Hangul Day
    (12, 25),  # Christmas
)

LUNAR_HOLIDAYS = {
    2024: (
        "2024-02-09", "2024-02-10", "2024-02-11", "2024-02-12",  # Seollal + substitute
        "2024-05-15",                                            # Buddha's Birthday
        "2024-09-16", "2024-09-17", "2024-09-18",                # Chuseok
    ),
    2025: (
        "2025-01-28", "2025-01-29", "2025-01-30",
        "2025-05-05", "2025-05-06",
        "2025-10-05", "2025-10-06", "2025-10-07", "2025-10-08",
    ),
    2026: (
        "2026-02-16", "2026-02-17", "2026-02-18",
        "2026-05-24", "2026-05-25",
        "2026-09-24", "2026-09-25", "2026-09-26",
    ),
    2027: (
        "2027-02-06", "2027-02-07", "2027-02-08", "2027-02-09",
        "2027-05-13",
        "2027-09-14", "2027-09-15", "2027-09-16",
    ),
}


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class HolidayCalendar:
    def __init__(
        self,
        fixed: Iterable[tuple[int, int]] = FIXED_HOLIDAYS,
        lunar: Mapping[int, Iterable] | None = None,
    ):
        self._fixed = frozenset(fixed)
        self._lunar: dict[int, frozenset[date]] = {}
        for year, days in (lunar or {}).items():
            self.add_lunar_holidays(year, days)

    def add_lunar_holidays(self, year: int, days: Iterable) -> None:
        """Merge holidays for a year; safe to call repeatedly."""
        parsed = {_as_date(d) for d in days}
        wrong_year = sorted(d.isoformat() for d in parsed if d.year != int(year))
        if wrong_year:
            raise ValueError(f"holidays {wrong_year} do not belong to {year}")
        self._lunar[int(year)] = self._lunar.get(int(year), frozenset()) | frozenset(parsed)

    def has_year(self, year: int) -> bool:
        return year in self._lunar

    @property
    def known_years(self) -> list[int]:
        return sorted(self._lunar)

    def lunar_holidays(self, year: int) -> frozenset[date]:
        if year not in self._lunar:
            raise CalendarGap(f"no lunar holiday table for {year}", year=year)
        return self._lunar[year]

    def is_holiday(self, day: date) -> bool:
        if (day.month, day.day) in self._fixed:
            return True
        return day in self._lunar.get(day.year, frozenset())

    def is_working_day(self, day: date) -> bool:
        return day.weekday() < SATURDAY and not self.is_holiday(day)


def build_calendar(extra: Mapping | None = None) -> HolidayCalendar:
    calendar = HolidayCalendar(lunar=LUNAR_HOLIDAYS)
    for year, days in (extra or {}).items():
        calendar.add_lunar_holidays(int(year), days)
    return calendar


_default_calendar = build_calendar()


def get_calendar() -> HolidayCalendar:
    if has_app_context():
        calendar = current_app.extensions.get("holiday_calendar")
        if calendar is not None:
            return calendar
    return _default_calendar


def _cutoff_hour() -> int:
    if has_app_context():
        return int(current_app.config.get("BUSINESS_CUTOFF_HOUR", DEFAULT_CUTOFF_HOUR))
    return DEFAULT_CUTOFF_HOUR


def next_working_day(day: date, calendar: HolidayCalendar | None = None) -> date:
    """First working day on or after `day`."""
    calendar = calendar or get_calendar()
    while not calendar.is_working_day(day):
        day += timedelta(days=1)
    return day


def previous_working_day(day: date, calendar: HolidayCalendar | None = None) -> date:
    """Last working day strictly before `day`."""
    calendar = calendar or get_calendar()
    day -= timedelta(days=1)
    while not calendar.is_working_day(day):
        day -= timedelta(days=1)
    return day


def working_date(timestamp, tz=None, calendar: HolidayCalendar | None = None) -> date:
    """
    Map a timestamp to the working date it belongs to.

    timestamp may be an aware datetime, a naive datetime (UTC), or a date
    (local midnight, i.e. before cutoff).
    """
    calendar = calendar or get_calendar()

    if isinstance(timestamp, datetime):
        local = to_local(timestamp, tz)
        day = local.date()
        after_cutoff = local.time() >= time(_cutoff_hour())
    else:
        day = _as_date(timestamp)
        after_cutoff = False

    if after_cutoff:
        day += timedelta(days=3 if day.weekday() == FRIDAY else 1)

    if day.weekday() == SATURDAY:
        day += timedelta(days=2)
    elif day.weekday() == SUNDAY:
        day += timedelta(days=1)

    return next_working_day(day, calendar)


def today_working_date(tz=None, calendar: HolidayCalendar | None = None) -> date:
    return working_date(utcnow(), tz=tz, calendar=calendar)


@dataclass(frozen=True)
class BusinessDayWindow:
    working_date: date
    start: datetime  # aware, local, inclusive
    end: datetime    # aware, local, inclusive (14:59:59)

    @property
    def start_utc(self) -> datetime:
        return to_utc_naive(self.start)

    @property
    def end_utc(self) -> datetime:
        return to_utc_naive(self.end)

    @property
    def end_exclusive_utc(self) -> datetime:
        """Upper bound for range queries: covers sub-second timestamps up to 15:00."""
        return to_utc_naive(self.end + timedelta(seconds=1))

    def contains(self, timestamp: datetime) -> bool:
        ts = to_utc_naive(timestamp)
        return self.start_utc <= ts < self.end_exclusive_utc

    def to_dict(self) -> dict:
        return {
            "working_date": self.working_date.isoformat(),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def business_day_window(day, tz=None, calendar: HolidayCalendar | None = None) -> BusinessDayWindow:
    """
    Order listing window for a working date.

    A non-working `day` is first rolled forward to its working date, so the
    window for a Saturday is Monday's window.
    """
    calendar = calendar or get_calendar()
    if tz is None:
        zone = business_timezone()
    else:
        zone = ZoneInfo(tz) if isinstance(tz, str) else tz
    target = next_working_day(_as_date(day), calendar)
    previous = previous_working_day(target, calendar)
    cutoff = time(_cutoff_hour())

    start = datetime.combine(previous, cutoff, tzinfo=zone)
    end = datetime.combine(target, cutoff, tzinfo=zone) - timedelta(seconds=1)
    return BusinessDayWindow(working_date=target, start=start, end=end)


def is_same_business_day(timestamp: datetime, now: datetime | None = None, tz=None) -> bool:
    """
    True while `timestamp` still belongs to the current open business day.

    Used as the "order is still editable" predicate.
    """
    now = now or utcnow()
    return working_date(timestamp, tz=tz) == working_date(now, tz=tz)
