# Overview: Pytest coverage for working-date and business-day window calculation.

"""
Business Day Tests

Covers the 15:00 cutoff, weekend and holiday roll-forward, the listing
window, and the "still the same business day" predicate used for order
editability. All local times are Asia/Seoul (UTC+9, no DST).
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from settlement.errors import CalendarGap
from settlement.services.business_day_service import (
    build_calendar,
    business_day_window,
    is_same_business_day,
    next_working_day,
    previous_working_day,
    working_date,
)


KST = ZoneInfo("Asia/Seoul")


def kst(*args) -> datetime:
    return datetime(*args, tzinfo=KST)


class TestCutoff:
    """The 15:00 local cutoff."""

    def test_before_cutoff_stays_on_same_day(self, app):
        assert working_date(kst(2025, 3, 12, 14, 59, 59)) == date(2025, 3, 12)

    def test_exactly_cutoff_counts_as_after(self, app):
        assert working_date(kst(2025, 3, 12, 15, 0, 0)) == date(2025, 3, 13)

    def test_naive_datetimes_are_utc(self, app):
        # 06:00Z == 15:00 KST
        assert working_date(datetime(2025, 3, 12, 5, 59, 59)) == date(2025, 3, 12)
        assert working_date(datetime(2025, 3, 12, 6, 0, 0)) == date(2025, 3, 13)

    def test_friday_cutoff_rolls_to_monday(self, app):
        before = working_date(kst(2025, 3, 14, 14, 59, 59))
        after = working_date(kst(2025, 3, 14, 15, 0, 0))
        assert before == date(2025, 3, 14)
        assert after == date(2025, 3, 17)
        assert before != after

    def test_thursday_after_cutoff_goes_to_friday(self, app):
        assert working_date(kst(2025, 3, 13, 18, 0)) == date(2025, 3, 14)


class TestWeekendsAndHolidays:
    def test_saturday_and_sunday_roll_to_monday(self, app):
        assert working_date(kst(2025, 3, 15, 10, 0)) == date(2025, 3, 17)
        assert working_date(kst(2025, 3, 16, 10, 0)) == date(2025, 3, 17)
        assert working_date(kst(2025, 3, 16, 20, 0)) == date(2025, 3, 17)

    def test_holiday_after_weekend_extends_further(self, app):
        # Sat 2024-09-14 -> Mon 09-16 .. Wed 09-18 are Chuseok -> Thu 09-19
        assert working_date(kst(2024, 9, 14, 11, 0)) == date(2024, 9, 19)

    def test_cutoff_into_holiday_run(self, app):
        # Thu after cutoff -> Fri 10-03 Foundation Day, Mon 10-06..08 Chuseok, Thu 10-09 Hangul Day
        assert working_date(kst(2025, 10, 2, 16, 0)) == date(2025, 10, 10)

    def test_year_boundary(self, app):
        # Tue 2024-12-31 after cutoff -> New Year's Day -> Thu 2025-01-02
        assert working_date(kst(2024, 12, 31, 15, 0)) == date(2025, 1, 2)

    def test_date_input_is_local_midnight(self, app):
        assert working_date(date(2025, 3, 12)) == date(2025, 3, 12)
        assert working_date(date(2025, 3, 15)) == date(2025, 3, 17)

    def test_unknown_year_has_only_fixed_holidays(self, app):
        calendar = build_calendar()
        assert not calendar.has_year(2031)
        # 2031-01-01 is a Wednesday, still New Year's Day
        assert working_date(date(2031, 1, 1), calendar=calendar) == date(2031, 1, 2)
        with pytest.raises(CalendarGap):
            calendar.lunar_holidays(2031)

    def test_extra_holidays_extend_the_table(self, app):
        calendar = build_calendar({2031: ["2031-01-22", "2031-01-23", "2031-01-24"]})
        assert calendar.has_year(2031)
        assert calendar.is_holiday(date(2031, 1, 23))
        assert working_date(kst(2031, 1, 21, 15, 30), calendar=calendar) == date(2031, 1, 27)

    def test_extra_holidays_must_belong_to_their_year(self, app):
        with pytest.raises(ValueError):
            build_calendar({2031: ["2030-12-31"]})

    def test_previous_and_next_working_day(self, app):
        assert next_working_day(date(2025, 1, 28)) == date(2025, 1, 31)
        assert previous_working_day(date(2025, 1, 31)) == date(2025, 1, 27)
        assert previous_working_day(date(2025, 3, 17)) == date(2025, 3, 14)


class TestProperties:
    def _half_hourly(self, start: datetime, days: int):
        ts = start
        while ts < start + timedelta(days=days):
            yield ts
            ts += timedelta(minutes=30)

    def test_idempotent_on_own_midnight(self, app):
        for ts in self._half_hourly(kst(2024, 12, 20, 0, 0), 30):
            day = working_date(ts)
            assert working_date(day) == day
            assert working_date(datetime.combine(day, datetime.min.time(), tzinfo=KST)) == day

    def test_monotonic_non_decreasing(self, app):
        previous = None
        for ts in self._half_hourly(kst(2025, 9, 25, 0, 0), 25):
            day = working_date(ts)
            if previous is not None:
                assert day >= previous
            previous = day


class TestWindow:
    def test_monday_window_starts_friday_cutoff(self, app):
        window = business_day_window(date(2025, 3, 17))
        assert window.working_date == date(2025, 3, 17)
        assert window.start == kst(2025, 3, 14, 15, 0, 0)
        assert window.end == kst(2025, 3, 17, 14, 59, 59)
        assert window.start_utc == datetime(2025, 3, 14, 6, 0, 0)

    def test_window_after_holidays_starts_at_last_working_day(self, app):
        window = business_day_window(date(2025, 1, 31))
        assert window.start == kst(2025, 1, 27, 15, 0, 0)

    def test_window_across_year_boundary(self, app):
        window = business_day_window(date(2025, 1, 2))
        assert window.start == kst(2024, 12, 31, 15, 0, 0)
        assert window.end == kst(2025, 1, 2, 14, 59, 59)

    def test_non_working_day_uses_next_working_window(self, app):
        assert business_day_window(date(2025, 3, 15)) == business_day_window(date(2025, 3, 17))

    def test_window_contains_exactly_its_working_date(self, app):
        window = business_day_window(date(2025, 3, 17))
        assert window.contains(window.start_utc)
        assert window.contains(kst(2025, 3, 17, 14, 59, 59, 999000))
        assert not window.contains(window.end_exclusive_utc)
        assert not window.contains(window.start_utc - timedelta(microseconds=1))

        for ts in (window.start, kst(2025, 3, 15, 12, 0), window.end):
            assert working_date(ts) == window.working_date

    def test_to_dict(self, app):
        data = business_day_window(date(2025, 3, 17)).to_dict()
        assert data["working_date"] == "2025-03-17"
        assert data["start"] == "2025-03-14T15:00:00+09:00"


class TestSameBusinessDay:
    def test_same_day_until_cutoff(self, app):
        created = kst(2025, 3, 12, 9, 0)
        assert is_same_business_day(created, now=kst(2025, 3, 12, 14, 59, 59))
        assert not is_same_business_day(created, now=kst(2025, 3, 12, 15, 0))

    def test_friday_evening_order_editable_over_weekend(self, app):
        created = kst(2025, 3, 14, 17, 0)
        assert is_same_business_day(created, now=kst(2025, 3, 16, 22, 0))
        assert is_same_business_day(created, now=kst(2025, 3, 17, 14, 0))
        assert not is_same_business_day(created, now=kst(2025, 3, 17, 15, 0))
