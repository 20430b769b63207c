"""Error taxonomy for the scheduling engine.

Evaluation errors (``ConfigurationError``, ``UnsupportedFrequencyError``) are
contained per medicine by the schedule assembler.  Transition errors propagate
to the caller unmodified.  ``NetworkError`` is raised by repositories when the
backing store cannot be reached.
"""

from __future__ import annotations


class MedtrackError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(MedtrackError, ValueError):
    """Raised when a medicine's frequency or intake configuration is malformed."""


class UnsupportedFrequencyError(MedtrackError, ValueError):
    """Raised for a frequency tag the evaluator does not know."""

    def __init__(self, frequency_type: object) -> None:
        self.frequency_type = frequency_type
        super().__init__(f"Unsupported frequency type: {frequency_type!r}")


class InvalidTransitionError(MedtrackError):
    """Raised when an intake event status transition is not allowed."""


class IntakeValidationError(InvalidTransitionError):
    """Raised when a transition is legal but its arguments are not (amount, time, reason)."""


class NotFoundError(MedtrackError, LookupError):
    """Raised when a medicine or intake event does not exist for the user."""


class NetworkError(MedtrackError):
    """Raised by a repository when its data source is unreachable."""
