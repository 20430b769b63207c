"""Dose expansion: turn configured intake times into concrete instants for a date."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time

from medtrack.engine.errors import ConfigurationError
from medtrack.engine.models import IntakeSchedule


@dataclass(frozen=True)
class DoseInstant:
    """A single dose due at ``datetime`` for ``amount`` units."""

    datetime: datetime
    amount: float


def parse_intake_time(value: str) -> time:
    """Parse an ``HH:MM`` wall-clock time."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid intake time {value!r}; expected HH:MM") from exc


def expand(intake_schedules: Iterable[IntakeSchedule], candidate: date) -> list[DoseInstant]:
    """Combine each intake time with *candidate*, sorted by time of day.

    An empty schedule list yields an empty list.
    """
    instants = [
        DoseInstant(datetime=datetime.combine(candidate, parse_intake_time(s.time)), amount=s.amount)
        for s in intake_schedules
    ]
    instants.sort(key=lambda d: d.datetime)
    return instants
