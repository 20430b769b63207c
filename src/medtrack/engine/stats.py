"""Adherence statistics over built schedules."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from medtrack.engine.models import DailyMedicineSchedule


def adherence_rate(taken: int, scheduled: int) -> int:
    """Percentage of scheduled doses taken, rounded; 0 when nothing was scheduled."""
    if scheduled == 0:
        return 0
    return round(taken / scheduled * 100)


def daily_adherence(schedule: DailyMedicineSchedule) -> int:
    return adherence_rate(schedule.total_taken, schedule.total_scheduled)


@dataclass
class WeeklyStats:
    week_start_date: str = ""
    week_end_date: str = ""
    daily_schedules: list[DailyMedicineSchedule] = field(default_factory=list)
    total_scheduled: int = 0
    total_taken: int = 0
    total_skipped: int = 0
    total_missed: int = 0
    adherence_rate: int = 0
    best_day: str = ""
    worst_day: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "week_start_date": self.week_start_date,
            "week_end_date": self.week_end_date,
            "daily_schedules": [s.to_dict() for s in self.daily_schedules],
            "total_scheduled": self.total_scheduled,
            "total_taken": self.total_taken,
            "total_skipped": self.total_skipped,
            "total_missed": self.total_missed,
            "adherence_rate": self.adherence_rate,
            "best_day": self.best_day,
            "worst_day": self.worst_day,
        }


def weekly_stats(schedules: Sequence[DailyMedicineSchedule]) -> WeeklyStats:
    """Aggregate a run of daily schedules.

    Unavailable days contribute nothing.  Ties for best/worst day go to the
    earliest date.
    """
    days = [s for s in schedules if s.available]
    if not days:
        return WeeklyStats()

    rated = [(daily_adherence(s), s.date.isoformat()) for s in days]
    best = max(rated, key=lambda r: r[0])
    worst = min(rated, key=lambda r: r[0])
    scheduled = sum(s.total_scheduled for s in days)
    taken = sum(s.total_taken for s in days)
    return WeeklyStats(
        week_start_date=days[0].date.isoformat(),
        week_end_date=days[-1].date.isoformat(),
        daily_schedules=list(days),
        total_scheduled=scheduled,
        total_taken=taken,
        total_skipped=sum(s.total_skipped for s in days),
        total_missed=sum(s.total_missed for s in days),
        adherence_rate=adherence_rate(taken, scheduled),
        best_day=best[1],
        worst_day=worst[1],
    )
