"""Tests for medtrack.engine.recurrence — is a medicine due on a date?"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from medtrack.engine.errors import ConfigurationError, UnsupportedFrequencyError
from medtrack.engine.models import (
    CycleBased,
    Daily,
    DayOfWeek,
    EveryOtherDay,
    EveryXDays,
    EveryXMonths,
    EveryXWeeks,
    SpecificDaysOfWeek,
    UnrecognizedFrequency,
)
from medtrack.engine.recurrence import active_dates, is_active_on, schedule_end

pytestmark = pytest.mark.unit

START = date(2024, 1, 1)  # a Monday


def _days(n: int, start: date = START) -> list[date]:
    return [start + timedelta(days=i) for i in range(n)]


class TestBounds:
    def test_before_start_is_inactive(self):
        assert is_active_on(Daily(), START, START - timedelta(days=1)) is False

    def test_duration_end_is_exclusive(self):
        assert is_active_on(Daily(), START, date(2024, 1, 10), schedule_duration=10) is True
        assert is_active_on(Daily(), START, date(2024, 1, 11), schedule_duration=10) is False

    def test_zero_duration_is_never_active(self):
        assert is_active_on(Daily(), START, START, schedule_duration=0) is False

    def test_schedule_end(self):
        assert schedule_end(START, None) is None
        assert schedule_end(START, 7) == date(2024, 1, 8)


class TestDaily:
    def test_active_on_every_date_after_start(self):
        assert all(is_active_on(Daily(), START, d) for d in _days(400))

    def test_past_and_future_dates_evaluate_the_same(self):
        far_future = date(2031, 6, 17)
        assert is_active_on(Daily(), START, far_future) is True


class TestEveryOtherDay:
    def test_alternates_from_start(self):
        freq = EveryOtherDay()
        assert is_active_on(freq, START, START) is True
        assert is_active_on(freq, START, START + timedelta(days=1)) is False
        assert is_active_on(freq, START, START + timedelta(days=2)) is True

    def test_half_of_an_even_window(self):
        active = [d for d in _days(30) if is_active_on(EveryOtherDay(), START, d)]
        assert len(active) == 15


class TestSpecificDaysOfWeek:
    def test_monday_friday_gives_two_per_week(self):
        freq = SpecificDaysOfWeek(days=frozenset({DayOfWeek.MONDAY, DayOfWeek.FRIDAY}))
        for offset in range(7):
            window = _days(7, START + timedelta(days=offset))
            assert sum(is_active_on(freq, START, d) for d in window) == 2

    def test_only_listed_weekdays(self):
        freq = SpecificDaysOfWeek(days=frozenset({DayOfWeek.WEDNESDAY}))
        active = [d for d in _days(14) if is_active_on(freq, START, d)]
        assert active == [date(2024, 1, 3), date(2024, 1, 10)]

    def test_empty_day_set_is_never_active(self):
        freq = SpecificDaysOfWeek(days=frozenset())
        assert not any(is_active_on(freq, START, d) for d in _days(14))


class TestIntervals:
    def test_every_three_days(self):
        freq = EveryXDays(interval_days=3)
        assert is_active_on(freq, START, date(2024, 1, 1)) is True
        assert is_active_on(freq, START, date(2024, 1, 2)) is False
        assert is_active_on(freq, START, date(2024, 1, 4)) is True

    def test_every_two_weeks_uses_fourteen_days(self):
        freq = EveryXWeeks.of(2)
        assert freq.interval_days == 14
        assert is_active_on(freq, START, date(2024, 1, 15)) is True
        assert is_active_on(freq, START, date(2024, 1, 8)) is False

    def test_every_month_is_thirty_days(self):
        freq = EveryXMonths.of(1)
        assert is_active_on(freq, START, date(2024, 1, 31)) is True
        # Not the same calendar day of the next month.
        assert is_active_on(freq, START, date(2024, 2, 1)) is False

    @pytest.mark.parametrize("freq", [EveryXDays(0), EveryXWeeks(0), EveryXMonths(-30)])
    def test_non_positive_interval_raises(self, freq):
        with pytest.raises(ConfigurationError):
            is_active_on(freq, START, START)

    def test_interval_error_only_for_dates_inside_the_schedule(self):
        assert is_active_on(EveryXDays(0), START, START - timedelta(days=1)) is False


class TestCycleBased:
    def test_five_on_two_off(self):
        freq = CycleBased(active_days=5, rest_days=2)
        first = [is_active_on(freq, START, d) for d in _days(7)]
        second = [is_active_on(freq, START, d) for d in _days(7, START + timedelta(days=7))]
        assert first == [True] * 5 + [False] * 2
        assert second == first

    def test_zero_length_cycle_raises(self):
        with pytest.raises(ConfigurationError):
            is_active_on(CycleBased(active_days=0, rest_days=0), START, START)

    def test_negative_length_raises(self):
        with pytest.raises(ConfigurationError):
            is_active_on(CycleBased(active_days=3, rest_days=-1), START, START)

    def test_all_rest_is_never_active(self):
        freq = CycleBased(active_days=0, rest_days=3)
        assert not any(is_active_on(freq, START, d) for d in _days(9))


class TestUnsupported:
    def test_unrecognized_tag_raises(self):
        freq = UnrecognizedFrequency(raw_type="LUNAR")
        with pytest.raises(UnsupportedFrequencyError) as exc_info:
            is_active_on(freq, START, START)
        assert exc_info.value.frequency_type == "LUNAR"

    def test_arbitrary_object_raises(self):
        with pytest.raises(UnsupportedFrequencyError):
            is_active_on("DAILY", START, START)  # type: ignore[arg-type]


class TestActiveDates:
    def test_yields_due_dates_in_range(self, make_medicine):
        medicine = make_medicine(frequency=EveryXDays(interval_days=3))
        assert list(active_dates(medicine, date(2024, 1, 1), date(2024, 1, 10))) == [
            date(2024, 1, 1),
            date(2024, 1, 4),
            date(2024, 1, 7),
            date(2024, 1, 10),
        ]

    def test_respects_duration(self, make_medicine):
        medicine = make_medicine(schedule_duration=3)
        assert list(active_dates(medicine, date(2023, 12, 30), date(2024, 1, 9))) == [
            date(2024, 1, 1),
            date(2024, 1, 2),
            date(2024, 1, 3),
        ]
