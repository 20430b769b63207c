"""Personal medicine tracking: recurrence schedules, intake events and inventory."""

__version__ = "0.1.0"
