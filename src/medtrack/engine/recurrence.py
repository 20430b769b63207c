"""Recurrence evaluation: is a medicine due on a given calendar date?

Pure functions of their inputs.  Nothing here reads the wall clock, so past
and future dates are evaluated identically.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, timedelta

from medtrack.engine.errors import ConfigurationError, UnsupportedFrequencyError
from medtrack.engine.models import (
    CycleBased,
    Daily,
    DayOfWeek,
    EveryOtherDay,
    EveryXDays,
    EveryXMonths,
    EveryXWeeks,
    Frequency,
    Medicine,
    SpecificDaysOfWeek,
    UnrecognizedFrequency,
)


def schedule_end(schedule_start: date, schedule_duration: int | None) -> date | None:
    """First date on which the schedule is no longer active, or None if indefinite."""
    if schedule_duration is None:
        return None
    return schedule_start + timedelta(days=schedule_duration)


def is_active_on(
    frequency: Frequency,
    schedule_start: date,
    candidate: date,
    schedule_duration: int | None = None,
) -> bool:
    """Return True if a medicine with *frequency* is due on *candidate*.

    Raises
    ------
    ConfigurationError
        If the variant's fields cannot produce a schedule (zero-length cycle,
        non-positive interval, negative cycle length).
    UnsupportedFrequencyError
        If *frequency* is not a known variant.
    """
    if candidate < schedule_start:
        return False

    end = schedule_end(schedule_start, schedule_duration)
    if end is not None and candidate >= end:
        return False

    elapsed = (candidate - schedule_start).days

    match frequency:
        case Daily():
            return True
        case EveryOtherDay():
            return elapsed % 2 == 0
        case SpecificDaysOfWeek(days=days):
            return DayOfWeek.of(candidate) in days
        case (
            EveryXDays(interval_days=interval)
            | EveryXWeeks(interval_days=interval)
            | EveryXMonths(interval_days=interval)
        ):
            if interval < 1:
                raise ConfigurationError(f"interval_days must be at least 1, got {interval}")
            return elapsed % interval == 0
        case CycleBased(active_days=active, rest_days=rest):
            if active < 0 or rest < 0:
                raise ConfigurationError(
                    f"Cycle lengths must not be negative (active={active}, rest={rest})"
                )
            period = active + rest
            if period == 0:
                raise ConfigurationError("Cycle has zero length (active_days + rest_days == 0)")
            return elapsed % period < active
        case UnrecognizedFrequency(raw_type=raw_type):
            raise UnsupportedFrequencyError(raw_type)
        case _:
            raise UnsupportedFrequencyError(frequency)


def is_medicine_active_on(medicine: Medicine, candidate: date) -> bool:
    """Evaluate *medicine*'s recurrence rule for *candidate*."""
    return is_active_on(
        medicine.frequency,
        medicine.schedule_start,
        candidate,
        medicine.schedule_duration,
    )


def active_dates(medicine: Medicine, start: date, end: date) -> Iterator[date]:
    """Yield the dates in ``[start, end]`` on which *medicine* is due."""
    day = start
    while day <= end:
        if is_medicine_active_on(medicine, day):
            yield day
        day += timedelta(days=1)
