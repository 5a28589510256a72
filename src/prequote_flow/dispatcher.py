"""Ordered side effects of the qualification flow."""

import asyncio
import logging
from typing import Any, Awaitable, Optional

from .config.settings import FlowSettings
from .errors import LeadCreationError, QualificationPersistenceError, SideEffectError
from .models import (
    AttributionContext,
    CallRequest,
    ContactIdentity,
    CtaAction,
    LeadSegment,
    LeadSubmission,
    QualificationAnswers,
    QualificationUpdate,
    ResultCta,
    ScoringResult,
    Timeline,
)
from .reporting import ErrorReporter
from .repository.base import CallQueueRepository, EventRepository, LeadRepository
from .validation import normalize_to_e164


logger = logging.getLogger(__name__)

WM_TRACKING_VERSION = "1.0.0"
SEGMENT_EVENT_SOURCE = "prequote-v2"
URGENT_TIMELINES = {Timeline.DAYS_30, Timeline.DAYS_90}

# HOT/WARM go to retargeting with a value; NURTURE/LOW are internal signals.
RETARGETING_EVENTS: dict[LeadSegment, tuple[str, int]] = {
    LeadSegment.HOT: ("Lead_HighIntent", 150),
    LeadSegment.WARM: ("Lead_MidIntent", 50),
}

PHONE_SOURCE_TOOLS: dict[str, str] = {
    "audit_sample_audit": "prequote-v2:audit",
    "audit": "prequote-v2:audit",
    "scanner_download_sample": "prequote-v2:ai-scanner-sample",
    "ai-scanner": "prequote-v2:ai-scanner-sample",
}
DEFAULT_PHONE_SOURCE_TOOL = "prequote-v2:sample-report"

CTA_EVENTS: dict[CtaAction, str] = {
    CtaAction.UPLOAD: "SubmitApplication",
    CtaAction.CONSULTATION: "Schedule",
}
DEFAULT_CTA_EVENT = "cta_click"


def phone_source_tool(cta_source: str) -> str:
    """Map a CTA source to the call-queue source tool."""
    return PHONE_SOURCE_TOOLS.get(cta_source, DEFAULT_PHONE_SOURCE_TOOL)


def call_phone_if_eligible(
    segment: LeadSegment,
    answers: QualificationAnswers,
    contact: Optional[ContactIdentity],
) -> Optional[str]:
    """Return the E.164 number to call, or None if the lead doesn't qualify."""
    if segment != LeadSegment.HOT:
        return None
    if answers.homeowner is not True:
        return None
    if answers.timeline not in URGENT_TIMELINES:
        return None
    if contact is None or not contact.phone:
        return None
    return normalize_to_e164(contact.phone)


def segment_event(lead_id: str, result: ScoringResult) -> tuple[str, dict[str, Any]]:
    """Build the event name and payload for a lead's segment."""
    payload: dict[str, Any] = {
        "lead_id": lead_id,
        "lead_score": result.score,
        "lead_segment": result.segment.value,
        "source": SEGMENT_EVENT_SOURCE,
    }
    if result.segment in RETARGETING_EVENTS:
        event_name, value = RETARGETING_EVENTS[result.segment]
        payload.update({"value": value, "currency": "USD"})
        payload["meta"] = {"send": True, "category": "rt", "wm_tracking_version": WM_TRACKING_VERSION}
    else:
        event_name = f"Lead_{result.segment.value}"
        payload["meta"] = {"send": False, "category": "internal", "wm_tracking_version": WM_TRACKING_VERSION}
    return event_name, payload


def cta_event(
    lead_id: str,
    result: ScoringResult,
    cta: ResultCta,
    cta_source: Optional[str] = None,
) -> tuple[str, dict[str, Any]]:
    """Build the event fired when a result-screen CTA is chosen."""
    return CTA_EVENTS.get(cta.action, DEFAULT_CTA_EVENT), {
        "lead_id": lead_id,
        "lead_segment": result.segment.value,
        "lead_score": result.score,
        "cta_label": cta.label,
        "cta_action": cta.action.value,
        "source": cta_source or SEGMENT_EVENT_SOURCE,
    }


def cta_destination(action: CtaAction, lead_id: str, settings: FlowSettings) -> str:
    """Where the visitor goes after choosing a CTA."""
    match action:
        case CtaAction.UPLOAD:
            return f"{settings.quote_scanner_path}?lead={lead_id}#upload"
        case CtaAction.PDF | CtaAction.PDF_PHONE:
            return settings.guide_pdf_url
        case _:
            # No reminder flow yet; reminders land on the consultation page.
            return settings.consultation_path


class SideEffectDispatcher:
    """Runs the flow's external calls in the order the flow requires.

    Persistence is awaited. Events are awaited but their failures absorbed.
    Call enqueue and lead-capture tracking run as detached tasks; their
    failures go to the error reporter.
    """

    def __init__(
        self,
        lead_repository: LeadRepository,
        call_queue: CallQueueRepository,
        events: EventRepository,
        error_reporter: ErrorReporter,
        settings: FlowSettings,
    ):
        self.lead_repository = lead_repository
        self.call_queue = call_queue
        self.events = events
        self.error_reporter = error_reporter
        self.settings = settings
        self._detached: set[asyncio.Task] = set()

    async def create_lead(self, contact: ContactIdentity, attribution: AttributionContext) -> str:
        """Create the lead for step 1.

        Raises:
            LeadCreationError: If the collaborator fails or returns no ID
        """
        submission = LeadSubmission(
            first_name=contact.first_name,
            last_name=contact.last_name,
            email=contact.email,
            phone=contact.digits_only_phone,
            source_tool=self.settings.source_tool,
            flow_version=self.settings.flow_version,
            attribution=attribution,
        )
        try:
            lead_id = await self.lead_repository.create_lead(submission)
        except LeadCreationError:
            raise
        except Exception as e:
            raise LeadCreationError(str(e)) from e
        if not lead_id:
            raise LeadCreationError("Lead creation returned no lead ID")
        return lead_id

    def track_lead_capture(self, lead_id: str, contact: ContactIdentity) -> None:
        """Fire the lead-capture conversion events without waiting on them."""
        self._detach(self.events.emit("lead_capture", {
            "lead_id": lead_id,
            "source_tool": self.settings.tracking_source_tool,
            "conversion_action": self.settings.conversion_action,
            "has_name": True,
            "has_phone": bool(contact.phone),
        }), "lead_capture")
        self._detach(self.events.emit("lead_submission_success", {
            "lead_id": lead_id,
            "source_tool": self.settings.source_tool,
            "event_id": f"{self.settings.flow_version}_lead:{lead_id}",
            "value": self.settings.lead_value,
        }), "lead_submission_success")

    async def emit_internal(self, event_name: str, payload: dict[str, Any]) -> None:
        """Emit an internal analytics event; failures are reported, not raised."""
        payload = {
            **payload,
            "meta": {"send": False, "category": "internal", "wm_tracking_version": WM_TRACKING_VERSION},
        }
        await self._safely(self.events.emit(event_name, payload), event_name)

    async def complete_qualification(
        self,
        lead_id: str,
        contact: Optional[ContactIdentity],
        answers: QualificationAnswers,
        result: ScoringResult,
        attribution: AttributionContext,
    ) -> bool:
        """Persist, then emit the segment event, then maybe enqueue a call.

        Returns whether persistence succeeded. The later steps run either way.
        """
        persisted = await self._persist_qualification(lead_id, answers, result, attribution)

        event_name, payload = segment_event(lead_id, result)
        await self._safely(self.events.emit(event_name, payload), event_name)

        phone_e164 = call_phone_if_eligible(result.segment, answers, contact)
        if phone_e164:
            self._detach(
                self._enqueue_call(lead_id, phone_e164, contact, answers, result, attribution),
                "enqueue_call",
            )
        return persisted

    async def track_cta(
        self,
        lead_id: str,
        result: ScoringResult,
        cta: ResultCta,
        cta_source: Optional[str] = None,
    ) -> None:
        """Emit the CTA event; failures are reported, not raised."""
        event_name, payload = cta_event(lead_id, result, cta, cta_source)
        await self._safely(self.events.emit(event_name, payload), event_name)

    async def drain(self) -> None:
        """Wait for every detached task started so far."""
        while self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    async def _persist_qualification(
        self,
        lead_id: str,
        answers: QualificationAnswers,
        result: ScoringResult,
        attribution: AttributionContext,
    ) -> bool:
        update = QualificationUpdate(
            lead_id=lead_id,
            timeline=answers.timeline,
            has_quote=answers.has_quote,
            homeowner=answers.homeowner,
            window_scope=answers.window_scope,
            score=result.score,
            segment=result.segment,
            source_tool=self.settings.source_tool,
            session_id=attribution.session_id,
            client_id=attribution.client_id,
        )
        try:
            await self.lead_repository.update_qualification(update)
            return True
        except Exception as e:
            error = e
            if not isinstance(e, QualificationPersistenceError):
                error = QualificationPersistenceError(str(e), lead_id=lead_id)
                error.__cause__ = e
            logger.warning("[DISPATCH] Qualification update failed for %s", lead_id)
            self.error_reporter.report(error, {"lead_id": lead_id, "stage": "update_qualification"})
            return False

    async def _enqueue_call(
        self,
        lead_id: str,
        phone_e164: str,
        contact: ContactIdentity,
        answers: QualificationAnswers,
        result: ScoringResult,
        attribution: AttributionContext,
    ) -> None:
        request = CallRequest(
            lead_id=lead_id,
            phone_e164=phone_e164,
            source_tool=phone_source_tool(attribution.cta_source),
            payload={
                "email": contact.email,
                "first_name": contact.first_name,
                "timeline": answers.timeline.value,
                "has_quote": answers.has_quote.value,
                "window_scope": answers.window_scope.value,
                "lead_score": result.score,
                "lead_segment": result.segment.value,
                "source_page": attribution.source_page,
            },
        )
        outcome = await self.call_queue.enqueue(request)
        logger.info(
            "[DISPATCH] Call enqueue for %s: enqueued=%s reason=%s",
            lead_id, outcome.enqueued, outcome.reason,
        )

    async def _safely(self, call: Awaitable[Any], label: str) -> None:
        try:
            await call
        except Exception as e:
            logger.warning("[DISPATCH] %s failed (non-blocking)", label)
            error = e
            if not isinstance(e, SideEffectError):
                error = SideEffectError(f"{label}: {e}")
                error.__cause__ = e
            self.error_reporter.report(error, {"side_effect": label})

    def _detach(self, call: Awaitable[Any], label: str) -> None:
        task = asyncio.ensure_future(self._safely(call, label))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
