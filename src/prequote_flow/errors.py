"""Exceptions raised by the qualification flow."""

from typing import Optional


class FlowError(Exception):
    """Base class for qualification flow errors."""


class ValidationError(FlowError):
    """Contact fields failed the format checks."""

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


class LeadCreationError(FlowError):
    """The lead could not be created at step 1. Surfaced to the user."""


class QualificationPersistenceError(FlowError):
    """The qualification update for a lead failed. Reported, never surfaced."""

    def __init__(self, message: str, lead_id: Optional[str] = None):
        super().__init__(message)
        self.lead_id = lead_id


class SideEffectError(FlowError):
    """A marketing event or call enqueue failed. Reported, never surfaced."""


class InvalidTransitionError(FlowError):
    """A transition was requested from a step that does not allow it."""


class AnswerOrderError(FlowError):
    """Qualification answers were written out of order or more than once."""


class IncompleteAnswersError(FlowError, ValueError):
    """Scoring was requested before every answer was supplied."""

    def __init__(self, missing: list[str]):
        super().__init__(f"Cannot score incomplete answers; missing {', '.join(missing)}")
        self.missing = missing
