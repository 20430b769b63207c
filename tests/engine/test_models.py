"""Tests for medtrack.engine.models — frequency parsing and serialisation."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from medtrack.engine.errors import ConfigurationError, UnsupportedFrequencyError
from medtrack.engine.models import (
    CycleBased,
    Daily,
    DailyMedicineSchedule,
    DayOfWeek,
    EveryOtherDay,
    EveryXDays,
    EveryXMonths,
    EveryXWeeks,
    FoodInstruction,
    IntakeEvent,
    IntakeSchedule,
    IntakeStatus,
    Medicine,
    SpecificDaysOfWeek,
    UnrecognizedFrequency,
    frequency_to_dict,
    parse_frequency,
)

pytestmark = pytest.mark.unit


class TestParseFrequency:
    def test_daily_ignores_irrelevant_fields(self):
        assert parse_frequency("DAILY", {"interval_days": 9, "cycle_active_days": 3}) == Daily()

    def test_every_other_day(self):
        assert parse_frequency("EVERY_OTHER_DAY") == EveryOtherDay()

    def test_specific_days_camel_case(self):
        freq = parse_frequency("SPECIFIC_DAYS_OF_WEEK", {"specificDays": ["monday", "FRIDAY"]})
        assert freq == SpecificDaysOfWeek(days=frozenset({DayOfWeek.MONDAY, DayOfWeek.FRIDAY}))

    def test_invalid_weekday_raises(self):
        with pytest.raises(ConfigurationError):
            parse_frequency("SPECIFIC_DAYS_OF_WEEK", {"specific_days": ["FUNDAY"]})

    def test_every_x_days(self):
        assert parse_frequency("EVERY_X_DAYS", {"intervalDays": 3}) == EveryXDays(interval_days=3)

    def test_weeks_are_normalised_to_days(self):
        assert parse_frequency("EVERY_X_WEEKS", {"weeks": 2}).interval_days == 14
        assert parse_frequency("EVERY_X_WEEKS", {"interval_days": 21}) == EveryXWeeks(21)

    def test_months_are_normalised_to_days(self):
        assert parse_frequency("EVERY_X_MONTHS", {"months": 2}) == EveryXMonths(60)

    def test_day_of_month_is_ignored(self):
        freq = parse_frequency("EVERY_X_MONTHS", {"interval_days": 30, "dayOfMonth": 15})
        assert freq == EveryXMonths(30)

    def test_cycle(self):
        freq = parse_frequency("CYCLE_BASED", {"cycleActiveDays": 21, "cycleRestDays": 7})
        assert freq == CycleBased(active_days=21, rest_days=7)

    def test_non_integer_interval_raises(self):
        with pytest.raises(ConfigurationError):
            parse_frequency("EVERY_X_DAYS", {"interval_days": "often"})

    def test_unknown_tag_strict_raises(self):
        with pytest.raises(UnsupportedFrequencyError):
            parse_frequency("HOURLY", {})

    def test_unknown_tag_lenient_preserves_payload(self):
        freq = parse_frequency("HOURLY", {"every": 4}, strict=False)
        assert freq == UnrecognizedFrequency(raw_type="HOURLY", raw_config={"every": 4})
        assert frequency_to_dict(freq) == {
            "frequency_type": "HOURLY",
            "frequency_config": {"every": 4},
        }

    def test_to_dict_lists_weekdays_in_week_order(self):
        freq = SpecificDaysOfWeek(days=frozenset({DayOfWeek.FRIDAY, DayOfWeek.MONDAY}))
        assert frequency_to_dict(freq)["frequency_config"] == {
            "specific_days": ["MONDAY", "FRIDAY"]
        }


class TestMedicine:
    def test_from_dict_defaults(self):
        medicine = Medicine.from_dict(
            {
                "id": "m1",
                "user_id": "u1",
                "name": "Metformin",
                "frequency_type": "DAILY",
                "intake_schedules": [{"time": "08:00", "amount": 1}],
                "schedule_start": "2024-01-01",
            }
        )
        assert medicine.frequency == Daily()
        assert medicine.current_inventory is None
        assert medicine.tracks_inventory is False
        assert medicine.refill_reminder_threshold == 5.0
        assert medicine.missed_dose_threshold_minutes == 60
        assert medicine.allow_late_intake is True
        assert medicine.late_intake_window_hours == 4

    def test_from_dict_keeps_zero_windows(self):
        medicine = Medicine.from_dict(
            {
                "id": "m1",
                "user_id": "u1",
                "name": "Metformin",
                "frequency_type": "DAILY",
                "schedule_start": "2024-01-01",
                "missed_dose_threshold_minutes": 0,
                "late_intake_window_hours": 0,
            }
        )
        assert medicine.missed_dose_threshold_minutes == 0
        assert medicine.late_intake_window_hours == 0

    def test_to_dict_is_reloadable(self):
        medicine = Medicine(
            id="m1",
            user_id="u1",
            name="Metformin",
            frequency=CycleBased(active_days=21, rest_days=7),
            intake_schedules=[IntakeSchedule("20:00", 0.5)],
            schedule_start=date(2024, 3, 1),
            current_inventory=30,
            total_inventory=60,
            food_instruction=FoodInstruction.WHILE_EATING,
            resume_at=datetime(2024, 4, 1, 9, 0),
        )
        data = medicine.to_dict()
        assert data["frequency_type"] == "CYCLE_BASED"
        assert data["frequency_config"] == {"cycle_active_days": 21, "cycle_rest_days": 7}
        assert Medicine.from_dict(data) == medicine

    def test_unknown_stored_frequency_does_not_fail_loading(self):
        medicine = Medicine.from_dict(
            {
                "id": "m1",
                "user_id": "u1",
                "name": "Mystery",
                "frequency_type": "LUNAR",
                "frequency_config": {"phase": "full"},
                "schedule_start": date(2024, 1, 1),
            }
        )
        assert isinstance(medicine.frequency, UnrecognizedFrequency)


class TestIntakeEvent:
    def _event(self, **overrides) -> IntakeEvent:
        fields = {
            "id": "m1:20240105T0800",
            "user_id": "u1",
            "medicine_id": "m1",
            "medicine_name": "Aspirin",
            "scheduled_datetime": datetime(2024, 1, 5, 8, 0),
            "scheduled_amount": 1.0,
        }
        fields.update(overrides)
        return IntakeEvent(**fields)

    def test_paused_is_display_only(self):
        event = self._event(paused=True)
        assert event.status is IntakeStatus.SCHEDULED
        assert event.display_status is IntakeStatus.PAUSED

    def test_recorded_status_wins_over_paused(self):
        event = self._event(paused=True, status=IntakeStatus.TAKEN)
        assert event.display_status is IntakeStatus.TAKEN

    def test_stored_paused_status_is_rejected(self):
        data = self._event().to_dict()
        data["status"] = "PAUSED"
        with pytest.raises(ValueError):
            IntakeEvent.from_dict(data)

    def test_key_is_medicine_and_time(self):
        assert self._event().key == ("m1", datetime(2024, 1, 5, 8, 0))


class TestDailyMedicineSchedule:
    def test_counts_are_derived(self):
        base = {
            "user_id": "u1",
            "medicine_id": "m1",
            "medicine_name": "Aspirin",
            "scheduled_amount": 1.0,
        }
        schedule = DailyMedicineSchedule(
            date=date(2024, 1, 5),
            intake_events=[
                IntakeEvent(id="a", scheduled_datetime=datetime(2024, 1, 5, 8), **base),
                IntakeEvent(
                    id="b",
                    scheduled_datetime=datetime(2024, 1, 5, 12),
                    status=IntakeStatus.TAKEN,
                    **base,
                ),
                IntakeEvent(
                    id="c",
                    scheduled_datetime=datetime(2024, 1, 5, 20),
                    status=IntakeStatus.MISSED,
                    **base,
                ),
            ],
        )
        assert schedule.total_scheduled == 3
        assert schedule.total_taken == 1
        assert schedule.total_missed == 1
        assert schedule.total_skipped == 0
        assert schedule.total_pending == 1

    def test_stored_counts_are_ignored_on_load(self):
        schedule = DailyMedicineSchedule.from_dict(
            {"date": "2024-01-05", "intake_events": [], "total_scheduled": 99}
        )
        assert schedule.total_scheduled == 0

    def test_unavailable_differs_from_empty(self):
        empty = DailyMedicineSchedule(date=date(2024, 1, 5))
        unavailable = DailyMedicineSchedule.unavailable(date(2024, 1, 5))
        assert empty.available is True
        assert unavailable.available is False
        assert unavailable.to_dict()["available"] is False
