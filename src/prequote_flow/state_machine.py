"""Qualification step machine for the pre-quote lead flow."""

import dataclasses
import logging
import uuid
from typing import Any, Callable, Optional, Union

from .config.settings import FlowSettings
from .dispatcher import SideEffectDispatcher, cta_destination
from .errors import InvalidTransitionError, LeadCreationError, ValidationError
from .models import (
    QUALIFICATION_STEPS,
    SEGMENT_CTAS,
    STEP_ORDER,
    AttributionContext,
    ContactIdentity,
    CtaAction,
    FlowStep,
    HasQuote,
    QualificationAnswers,
    ResultCta,
    ScoringResult,
    StepOutcome,
    Timeline,
    WindowScope,
)
from .scheduling import Cancellable, Scheduler
from .scoring import score
from .session_store import COMPLETED_KEY, LEAD_ID_KEY, LeadSessionStore
from .validation import validate_contact


logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."
REENGAGED_EVENT = "prequote_v2_reengaged"

BACKABLE_STEPS = {FlowStep.QUOTE, FlowStep.HOMEOWNER, FlowStep.WINDOW_COUNT}


class QualificationStateMachine:
    """Moves one visitor through capture -> timeline -> quote -> homeowner -> windowCount -> result.

    All answer and result mutation happens here. Collaborators are injected so
    the machine can run under a websocket server, a CLI, or a test.
    """

    def __init__(
        self,
        dispatcher: SideEffectDispatcher,
        session_store: LeadSessionStore,
        scheduler: Scheduler,
        settings: FlowSettings,
        attribution: Optional[AttributionContext] = None,
        on_success: Optional[Callable[[str], None]] = None,
        flow_id: Optional[str] = None,
    ):
        self.dispatcher = dispatcher
        self.session_store = session_store
        self.scheduler = scheduler
        self.settings = settings
        self.attribution = attribution or AttributionContext()
        self.on_success = on_success
        self.flow_id = flow_id or str(uuid.uuid4())

        self._step = FlowStep.CAPTURE
        self._answers = QualificationAnswers()
        self._result: Optional[ScoringResult] = None
        self._contact: Optional[ContactIdentity] = None
        self._lead_id: Optional[str] = session_store.get(LEAD_ID_KEY)

        self._is_open = False
        self._reengaged = False
        self._pending_reset: Optional[Cancellable] = None
        # Bumped by every reset so in-flight handlers can tell their run is gone.
        self._run = 0

        self._submitting_contact = False
        self._completing = False

    @property
    def _tag(self) -> str:
        return f"[FLOW {self.flow_id[:8]}]"

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def step(self) -> FlowStep:
        return self._step

    @property
    def answers(self) -> QualificationAnswers:
        return self._answers

    @property
    def result(self) -> Optional[ScoringResult]:
        return self._result

    @property
    def lead_id(self) -> Optional[str]:
        return self._lead_id

    @property
    def contact(self) -> Optional[ContactIdentity]:
        return self._contact

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def can_go_back(self) -> bool:
        return self._step in BACKABLE_STEPS and not self._completing

    @property
    def progress(self) -> tuple[int, int]:
        """(current step number, total) for the progress bar; result counts as done."""
        total = len(QUALIFICATION_STEPS)
        if self._step == FlowStep.RESULT:
            return total, total
        return QUALIFICATION_STEPS.index(self._step) + 1, total

    @property
    def ctas(self) -> list[ResultCta]:
        """Calls to action for the result screen; empty before the result."""
        if self._step != FlowStep.RESULT or self._result is None:
            return []
        return list(SEGMENT_CTAS[self._result.segment])

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of the flow for the presentation layer."""
        current, total = self.progress
        return {
            "flow_id": self.flow_id,
            "step": self._step.value,
            "is_open": self._is_open,
            "lead_id": self._lead_id,
            "answers": self._answers.to_dict(),
            "result": self._result.to_dict() if self._result else None,
            "progress": {"current": current, "total": total},
            "can_go_back": self.can_go_back,
            "ctas": [cta.to_dict() for cta in self.ctas],
        }

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    async def open(self) -> bool:
        """Open the flow. Returns False if it stays hidden for this session."""
        if self._is_open:
            return True

        if self.settings.hide_after_completion and self.session_store.get(COMPLETED_KEY):
            logger.info("%s Flow already completed this session; not reopening", self._tag)
            return False

        self._cancel_pending_reset()
        self._is_open = True

        stored = self.session_store.get(LEAD_ID_KEY)
        if stored:
            self._lead_id = stored

        if self._step == FlowStep.CAPTURE and self._lead_id:
            self._step = FlowStep.TIMELINE
            if not self._reengaged:
                self._reengaged = True
                logger.info("%s Re-engaged lead %s; skipping capture", self._tag, self._lead_id)
                await self.dispatcher.emit_internal(REENGAGED_EVENT, {
                    "lead_id": self._lead_id,
                    "cta_source": self.attribution.cta_source,
                })
        return True

    def close(self) -> None:
        """Close the flow and schedule the deferred reset."""
        if not self._is_open:
            return
        self._is_open = False
        self._cancel_pending_reset()
        self._pending_reset = self.scheduler.call_later(
            self.settings.reset_delay_seconds, self._reset
        )

    def _cancel_pending_reset(self) -> None:
        if self._pending_reset is not None:
            self._pending_reset.cancel()
            self._pending_reset = None

    def _reset(self) -> None:
        self._pending_reset = None
        self._run += 1
        self._answers = QualificationAnswers()
        self._result = None
        self._step = FlowStep.CAPTURE
        self._reengaged = False
        logger.debug("%s Local state cleared", self._tag)

    # ------------------------------------------------------------------
    # Step 1: contact capture
    # ------------------------------------------------------------------

    async def submit_contact(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone: str,
    ) -> StepOutcome:
        """Validate contact details and create the lead."""
        if self._submitting_contact:
            return StepOutcome(step=self._step, accepted=False)
        self._require_step(FlowStep.CAPTURE)

        try:
            contact = validate_contact(first_name, last_name, email, phone)
        except ValidationError as e:
            return StepOutcome(step=self._step, accepted=False, errors=e.errors)

        self._submitting_contact = True
        try:
            if self.settings.ui_only:
                lead_id = str(uuid.uuid4())
                logger.info("%s UI-only mode; using fake lead %s", self._tag, lead_id)
            else:
                lead_id = await self.dispatcher.create_lead(contact, self.attribution)
        except LeadCreationError as e:
            logger.error("%s Step 1 submit error: %s", self._tag, e)
            return StepOutcome(step=self._step, accepted=False, message=GENERIC_FAILURE_MESSAGE)
        finally:
            self._submitting_contact = False

        self._lead_id = lead_id
        self.session_store.set(LEAD_ID_KEY, lead_id)
        self._contact = contact
        logger.info("%s Lead %s captured", self._tag, lead_id)

        if not self.settings.ui_only:
            self.dispatcher.track_lead_capture(lead_id, contact)
        if self.on_success:
            self.on_success(lead_id)

        # A closed flow stays at capture; the next open() routes it as a returning lead.
        if self._is_open and self._step == FlowStep.CAPTURE:
            self._step = FlowStep.TIMELINE
        return StepOutcome(step=self._step)

    # ------------------------------------------------------------------
    # Steps 2-4: qualification answers
    # ------------------------------------------------------------------

    def select_timeline(self, value: Union[Timeline, str]) -> StepOutcome:
        return self._answer(FlowStep.TIMELINE, "timeline", Timeline(value), FlowStep.QUOTE)

    def select_quote(self, value: Union[HasQuote, str]) -> StepOutcome:
        return self._answer(FlowStep.QUOTE, "has_quote", HasQuote(value), FlowStep.HOMEOWNER)

    def select_homeowner(self, value: bool) -> StepOutcome:
        if not isinstance(value, bool):
            raise ValueError(f"homeowner must be a bool, got {value!r}")
        return self._answer(FlowStep.HOMEOWNER, "homeowner", value, FlowStep.WINDOW_COUNT)

    def _answer(self, at: FlowStep, field: str, value: Any, next_step: FlowStep) -> StepOutcome:
        self._require_step(at)
        self._answers.set(field, value)
        self._step = next_step
        return StepOutcome(step=self._step)

    # ------------------------------------------------------------------
    # Step 5: window scope, scoring and side effects
    # ------------------------------------------------------------------

    async def select_window_scope(self, value: Union[WindowScope, str]) -> StepOutcome:
        """Record the last answer, score, persist and move to the result."""
        scope = WindowScope(value)
        if self._completing or self._step == FlowStep.RESULT:
            return StepOutcome(step=self._step, accepted=False)
        self._require_step(FlowStep.WINDOW_COUNT)

        self._completing = True
        run = self._run
        try:
            self._answers.set("window_scope", scope)
            self._answers.freeze()
            result = score(self._answers)
            self._result = result

            if self.settings.ui_only:
                logger.info(
                    "%s UI-only mode; skipping persistence, score=%s segment=%s",
                    self._tag, result.score, result.segment.value,
                )
            elif self._lead_id:
                # Dispatch works on a copy; a reset may replace the live answers.
                await self.dispatcher.complete_qualification(
                    self._lead_id,
                    self._contact,
                    dataclasses.replace(self._answers),
                    result,
                    self.attribution,
                )
            else:
                logger.warning("%s No lead ID at qualification; nothing persisted", self._tag)

            if run != self._run:
                logger.info("%s Flow reset while completing; result not shown", self._tag)
                return StepOutcome(step=self._step, accepted=False)

            self._step = FlowStep.RESULT
            if self.settings.hide_after_completion:
                self.session_store.set(COMPLETED_KEY, "1")
            logger.info(
                "%s Qualified: score=%s segment=%s",
                self._tag, result.score, result.segment.value,
            )
            return StepOutcome(step=self._step)
        finally:
            self._completing = False

    # ------------------------------------------------------------------
    # Result screen
    # ------------------------------------------------------------------

    async def select_cta(self, action: Union[CtaAction, str]) -> StepOutcome:
        """Act on a result-screen CTA: fire its event, close, and say where to go."""
        action = CtaAction(action)
        self._require_step(FlowStep.RESULT)
        cta = next((c for c in self.ctas if c.action == action), None)
        if cta is None:
            raise ValueError(
                f"{action.value} is not offered for segment {self._result.segment.value}"
            )

        if self._lead_id and not self.settings.ui_only:
            cta_source = self.attribution.cta_source
            await self.dispatcher.track_cta(
                self._lead_id,
                self._result,
                cta,
                None if cta_source == "unknown" else cta_source,
            )

        redirect = cta_destination(action, self._lead_id or "", self.settings)
        logger.info("%s CTA %s chosen", self._tag, action.value)
        self.close()
        return StepOutcome(step=self._step, redirect=redirect)

    # ------------------------------------------------------------------
    # Back navigation
    # ------------------------------------------------------------------

    def back(self) -> bool:
        """Go back one step. Never returns to capture; no-op where not allowed."""
        if not self.can_go_back:
            return False
        target = STEP_ORDER[STEP_ORDER.index(self._step) - 1]
        self._answers.unset_from(target)
        self._step = target
        return True

    def _require_step(self, expected: FlowStep) -> None:
        if not self._is_open:
            raise InvalidTransitionError("Flow is closed")
        if self._step != expected:
            raise InvalidTransitionError(
                f"Expected step {expected.value}, flow is at {self._step.value}"
            )
