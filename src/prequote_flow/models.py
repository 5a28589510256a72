"""Domain models for the pre-quote qualification flow."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .errors import AnswerOrderError


class FlowStep(str, Enum):
    """Screens of the qualification flow, in order."""
    CAPTURE = "capture"
    TIMELINE = "timeline"
    QUOTE = "quote"
    HOMEOWNER = "homeowner"
    WINDOW_COUNT = "windowCount"
    RESULT = "result"


STEP_ORDER: list[FlowStep] = list(FlowStep)

# Steps 1-5 (before result)
QUALIFICATION_STEPS: list[FlowStep] = STEP_ORDER[:-1]


class Timeline(str, Enum):
    DAYS_30 = "30days"
    DAYS_90 = "90days"
    MONTHS_6 = "6months"
    RESEARCH = "research"


class HasQuote(str, Enum):
    YES = "yes"
    GETTING = "getting"
    NO = "no"


class WindowScope(str, Enum):
    ONE_TO_FIVE = "1_5"
    SIX_TO_FIFTEEN = "6_15"
    SIXTEEN_PLUS = "16_plus"
    WHOLE_HOUSE = "whole_house"


class LeadSegment(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    NURTURE = "NURTURE"
    LOW = "LOW"


class CtaAction(str, Enum):
    """What a result-screen call to action does."""
    UPLOAD = "upload"
    CONSULTATION = "consultation"
    PDF = "pdf"
    PDF_PHONE = "pdf-phone"
    REMIND = "remind"


# Answer fields in the order the flow collects them, keyed to the step that asks.
ANSWER_FIELDS: list[tuple[str, FlowStep]] = [
    ("timeline", FlowStep.TIMELINE),
    ("has_quote", FlowStep.QUOTE),
    ("homeowner", FlowStep.HOMEOWNER),
    ("window_scope", FlowStep.WINDOW_COUNT),
]


@dataclass
class QualificationAnswers:
    """Answers to the four qualification questions.

    Fields are written once each, in collection order. Once frozen (the flow
    reached its result) nothing may change until ``clear()``.
    """
    timeline: Optional[Timeline] = None
    has_quote: Optional[HasQuote] = None
    homeowner: Optional[bool] = None
    window_scope: Optional[WindowScope] = None
    frozen: bool = field(default=False, repr=False)

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def missing_fields(self) -> list[str]:
        return [name for name, _ in ANSWER_FIELDS if getattr(self, name) is None]

    def set(self, name: str, value: Any) -> None:
        """Record one answer, enforcing write-once and collection order."""
        if self.frozen:
            raise AnswerOrderError(f"Answers are frozen; cannot set {name}")
        names = [n for n, _ in ANSWER_FIELDS]
        if name not in names:
            raise AnswerOrderError(f"Unknown answer field: {name}")
        if getattr(self, name) is not None:
            raise AnswerOrderError(f"{name} is already answered")
        for earlier in names[:names.index(name)]:
            if getattr(self, earlier) is None:
                raise AnswerOrderError(f"{earlier} must be answered before {name}")
        setattr(self, name, value)

    def unset_from(self, step: FlowStep) -> None:
        """Forget the answer for ``step`` and every later step."""
        if self.frozen:
            raise AnswerOrderError("Answers are frozen")
        clearing = False
        for name, asked_at in ANSWER_FIELDS:
            if asked_at == step:
                clearing = True
            if clearing:
                setattr(self, name, None)

    def freeze(self) -> None:
        self.frozen = True

    def clear(self) -> None:
        for name, _ in ANSWER_FIELDS:
            setattr(self, name, None)
        self.frozen = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeline": self.timeline.value if self.timeline else None,
            "hasQuote": self.has_quote.value if self.has_quote else None,
            "homeowner": self.homeowner,
            "windowScope": self.window_scope.value if self.window_scope else None,
        }


@dataclass(frozen=True)
class ContactIdentity:
    """Contact details captured at step 1."""
    first_name: str
    last_name: str
    email: str
    phone: str

    @property
    def digits_only_phone(self) -> str:
        return "".join(ch for ch in self.phone if ch.isdigit())


@dataclass(frozen=True)
class ScoringResult:
    score: int
    segment: LeadSegment

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "segment": self.segment.value}


@dataclass(frozen=True)
class AttributionContext:
    """Marketing-source metadata carried alongside lead creation."""
    cta_source: str = "unknown"
    source_page: str = ""
    session_id: Optional[str] = None
    client_id: Optional[str] = None
    utm: dict[str, str] = field(default_factory=dict)


@dataclass
class StepOutcome:
    """Result of a transition call, as seen by the presentation layer."""
    step: FlowStep
    accepted: bool = True
    errors: dict[str, str] = field(default_factory=dict)
    message: Optional[str] = None
    redirect: Optional[str] = None


@dataclass
class LeadSubmission:
    """Payload for the lead creation collaborator."""
    first_name: str
    last_name: str
    email: str
    phone: str
    source_tool: str
    flow_version: str
    attribution: AttributionContext


@dataclass
class QualificationUpdate:
    """Payload for the qualification persistence collaborator."""
    lead_id: str
    timeline: Timeline
    has_quote: HasQuote
    homeowner: bool
    window_scope: WindowScope
    score: int
    segment: LeadSegment
    source_tool: str
    session_id: Optional[str] = None
    client_id: Optional[str] = None


@dataclass
class CallRequest:
    """Payload for the call-queue collaborator."""
    lead_id: str
    phone_e164: str
    source_tool: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class EnqueueResult:
    enqueued: bool
    call_request_id: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None
    scheduled_for: Optional[datetime] = None


@dataclass(frozen=True)
class ResultCta:
    """A call to action offered on the result screen."""
    action: CtaAction
    label: str

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "label": self.label}


# Primary first, then the optional secondary.
SEGMENT_CTAS: dict[LeadSegment, list[ResultCta]] = {
    LeadSegment.HOT: [
        ResultCta(CtaAction.UPLOAD, "Upload My Quote for Personal Audit"),
        ResultCta(CtaAction.CONSULTATION, "Schedule a 10-Minute Strategy Call"),
    ],
    LeadSegment.WARM: [
        ResultCta(CtaAction.UPLOAD, "Get My Quote Audited (Free)"),
        ResultCta(CtaAction.PDF, "Download the 7 Red Flags Guide"),
    ],
    LeadSegment.NURTURE: [
        ResultCta(CtaAction.PDF, "Download the 7 Red Flags Guide"),
        ResultCta(CtaAction.REMIND, "Remind Me When I Have a Quote"),
    ],
    LeadSegment.LOW: [
        ResultCta(CtaAction.PDF_PHONE, "Keep the Guide on My Phone"),
    ],
}
