"""
Test qualification answer ordering rules
"""
import pytest

from prequote_flow.errors import AnswerOrderError
from prequote_flow.models import (
    FlowStep,
    HasQuote,
    QualificationAnswers,
    Timeline,
    WindowScope,
)


class TestQualificationAnswers:

    def test_set_in_order(self):
        answers = QualificationAnswers()
        answers.set("timeline", Timeline.DAYS_90)
        answers.set("has_quote", HasQuote.NO)
        answers.set("homeowner", False)
        answers.set("window_scope", WindowScope.ONE_TO_FIVE)
        assert answers.is_complete

    def test_out_of_order_rejected(self):
        answers = QualificationAnswers()
        with pytest.raises(AnswerOrderError):
            answers.set("has_quote", HasQuote.YES)

    def test_write_once(self):
        answers = QualificationAnswers()
        answers.set("timeline", Timeline.DAYS_30)
        with pytest.raises(AnswerOrderError):
            answers.set("timeline", Timeline.RESEARCH)

    def test_frozen_rejects_writes(self):
        answers = QualificationAnswers()
        answers.set("timeline", Timeline.DAYS_30)
        answers.freeze()
        with pytest.raises(AnswerOrderError):
            answers.set("has_quote", HasQuote.YES)
        with pytest.raises(AnswerOrderError):
            answers.unset_from(FlowStep.TIMELINE)

    def test_unset_from_clears_later_answers(self):
        answers = QualificationAnswers()
        answers.set("timeline", Timeline.DAYS_30)
        answers.set("has_quote", HasQuote.YES)
        answers.set("homeowner", True)
        answers.unset_from(FlowStep.QUOTE)
        assert answers.timeline == Timeline.DAYS_30
        assert answers.has_quote is None
        assert answers.homeowner is None
        answers.set("has_quote", HasQuote.GETTING)
        assert answers.has_quote == HasQuote.GETTING

    def test_clear_unfreezes(self):
        answers = QualificationAnswers(timeline=Timeline.DAYS_30)
        answers.freeze()
        answers.clear()
        assert answers.missing_fields() == ["timeline", "has_quote", "homeowner", "window_scope"]
        answers.set("timeline", Timeline.RESEARCH)

    def test_to_dict_uses_wire_names(self):
        answers = QualificationAnswers(
            timeline=Timeline.DAYS_30,
            has_quote=HasQuote.YES,
            homeowner=True,
            window_scope=WindowScope.WHOLE_HOUSE,
        )
        assert answers.to_dict() == {
            "timeline": "30days",
            "hasQuote": "yes",
            "homeowner": True,
            "windowScope": "whole_house",
        }
