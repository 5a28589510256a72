"""
Pytest configuration and fixtures
"""
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from prequote_flow.config.settings import FlowSettings
from prequote_flow.dispatcher import SideEffectDispatcher
from prequote_flow.models import AttributionContext, EnqueueResult, FlowStep
from prequote_flow.reporting import ErrorReporter
from prequote_flow.repository.base import CallQueueRepository, EventRepository, LeadRepository
from prequote_flow.scheduling import Scheduler
from prequote_flow.session_store import InMemorySessionStore
from prequote_flow.state_machine import QualificationStateMachine


class ManualHandle:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self):
        self.now = 0.0
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [h for h in self.handles if h.due <= self.now and not h.cancelled]
        self.handles = [h for h in self.handles if h not in due and not h.cancelled]
        for handle in due:
            handle.callback()

    @property
    def pending(self) -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled]


class RecordingErrorReporter(ErrorReporter):
    def __init__(self):
        self.reports: list[tuple[BaseException, Optional[dict[str, Any]]]] = []

    def report(self, error: BaseException, context: Optional[dict[str, Any]] = None) -> None:
        self.reports.append((error, context))


@pytest.fixture
def call_log():
    """Ordered record of collaborator calls across all mock repositories."""
    return []


@pytest.fixture
def lead_repo(call_log):
    repo = Mock(spec=LeadRepository)

    async def create_lead(submission):
        call_log.append(("create_lead", submission.email))
        return "lead-123"

    async def update_qualification(update):
        call_log.append(("update_qualification", update.lead_id))

    repo.create_lead = AsyncMock(side_effect=create_lead)
    repo.update_qualification = AsyncMock(side_effect=update_qualification)
    return repo


@pytest.fixture
def call_queue(call_log):
    queue = Mock(spec=CallQueueRepository)

    async def enqueue(request):
        call_log.append(("enqueue", request.lead_id))
        return EnqueueResult(enqueued=True, call_request_id="call-1", status="pending")

    queue.enqueue = AsyncMock(side_effect=enqueue)
    return queue


@pytest.fixture
def events(call_log):
    repo = Mock(spec=EventRepository)

    async def emit(event_name, payload):
        call_log.append(("emit", event_name))

    repo.emit = AsyncMock(side_effect=emit)
    return repo


@pytest.fixture
def error_reporter():
    return RecordingErrorReporter()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def flow_settings():
    return FlowSettings(reset_delay_seconds=0.3)


@pytest.fixture
def dispatcher(lead_repo, call_queue, events, error_reporter, flow_settings):
    return SideEffectDispatcher(
        lead_repository=lead_repo,
        call_queue=call_queue,
        events=events,
        error_reporter=error_reporter,
        settings=flow_settings,
    )


@pytest.fixture
def make_flow(dispatcher, session_store, scheduler, flow_settings):
    """Build a state machine wired to the shared mocks."""
    def _make(**overrides) -> QualificationStateMachine:
        kwargs = dict(
            dispatcher=dispatcher,
            session_store=session_store,
            scheduler=scheduler,
            settings=flow_settings,
            attribution=AttributionContext(cta_source="audit", source_page="/sample-report"),
        )
        kwargs.update(overrides)
        return QualificationStateMachine(**kwargs)
    return _make


VALID_CONTACT = {
    "first_name": "Dana",
    "last_name": "Reyes",
    "email": "dana@example.com",
    "phone": "(305) 555-0142",
}


async def answer_through_homeowner(
    flow: QualificationStateMachine,
    timeline: str = "30days",
    has_quote: str = "yes",
    homeowner: bool = True,
) -> None:
    """Drive an open flow from capture (or timeline) to windowCount."""
    if flow.step == FlowStep.CAPTURE:
        outcome = await flow.submit_contact(**VALID_CONTACT)
        assert outcome.accepted
    flow.select_timeline(timeline)
    flow.select_quote(has_quote)
    flow.select_homeowner(homeowner)
    assert flow.step == FlowStep.WINDOW_COUNT
