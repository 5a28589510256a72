"""Abstract repository interfaces."""

import hashlib
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

from ..models import CallRequest, EnqueueResult, LeadSubmission, QualificationUpdate


# A lead is called at most once per source tool within this window.
ENQUEUE_IDEMPOTENCY_WINDOW = timedelta(minutes=10)
CALL_DELAY = timedelta(minutes=2)
ACTIVE_CALL_STATUSES = ["pending", "processing", "called"]


def hash_phone(phone_e164: str) -> str:
    return hashlib.sha256(phone_e164.encode("utf-8")).hexdigest()


class LeadRepository(ABC):
    """Abstract interface for lead storage."""

    @abstractmethod
    async def create_lead(self, submission: LeadSubmission) -> str:
        """Create a lead from step-1 contact data and return its ID."""
        pass

    @abstractmethod
    async def update_qualification(self, update: QualificationUpdate) -> None:
        """Attach qualification answers and score to an existing lead."""
        pass


class CallQueueRepository(ABC):
    """Abstract interface for the outbound call queue."""

    @abstractmethod
    async def enqueue(self, request: CallRequest) -> EnqueueResult:
        """Schedule an outbound call for a lead."""
        pass


class EventRepository(ABC):
    """Abstract interface for analytics/marketing event transport."""

    @abstractmethod
    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        """Emit one named event."""
        pass
