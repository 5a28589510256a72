"""Deterministic lead scoring from the four qualification answers."""

from .errors import IncompleteAnswersError
from .models import (
    HasQuote,
    LeadSegment,
    QualificationAnswers,
    ScoringResult,
    Timeline,
    WindowScope,
)


TIMELINE_POINTS: dict[Timeline, int] = {
    Timeline.DAYS_30: 40,
    Timeline.DAYS_90: 30,
    Timeline.MONTHS_6: 15,
    Timeline.RESEARCH: 5,
}

HAS_QUOTE_POINTS: dict[HasQuote, int] = {
    HasQuote.YES: 30,
    HasQuote.GETTING: 15,
    HasQuote.NO: 5,
}

HOMEOWNER_POINTS: dict[bool, int] = {
    True: 25,
    False: -50,
}

WINDOW_SCOPE_POINTS: dict[WindowScope, int] = {
    WindowScope.ONE_TO_FIVE: 10,
    WindowScope.SIX_TO_FIFTEEN: 20,
    WindowScope.SIXTEEN_PLUS: 35,
    WindowScope.WHOLE_HOUSE: 35,
}

# Inclusive lower bounds, highest first.
SEGMENT_THRESHOLDS: list[tuple[int, LeadSegment]] = [
    (100, LeadSegment.HOT),
    (70, LeadSegment.WARM),
    (40, LeadSegment.NURTURE),
]


def segment_for(total: int) -> LeadSegment:
    """Map a numeric score to its segment."""
    for threshold, segment in SEGMENT_THRESHOLDS:
        if total >= threshold:
            return segment
    return LeadSegment.LOW


def score(answers: QualificationAnswers) -> ScoringResult:
    """Score a completed set of qualification answers.

    Raises:
        IncompleteAnswersError: If any of the four answers is missing
    """
    missing = answers.missing_fields()
    if missing:
        raise IncompleteAnswersError(missing)

    total = (
        TIMELINE_POINTS[answers.timeline]
        + HAS_QUOTE_POINTS[answers.has_quote]
        + HOMEOWNER_POINTS[answers.homeowner]
        + WINDOW_SCOPE_POINTS[answers.window_scope]
    )
    return ScoringResult(score=total, segment=segment_for(total))
