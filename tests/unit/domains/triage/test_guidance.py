"""Tests for next-step guidance and wellbeing banding."""

from __future__ import annotations

import pytest

from cardiowatch.domains.triage.domain_logic.guidance import recommend, wellbeing_level
from cardiowatch.domains.triage.domain_logic.models import TriageLevel


class TestRecommend:
    def test_red_is_urgent(self):
        guidance = recommend(TriageLevel.RED)
        assert guidance.recommendation.startswith("URGENT same-day evaluation.")
        assert "Contact cardiology on-call" in guidance.recommendation

    def test_amber_is_phone_review(self):
        assert recommend(TriageLevel.AMBER).actions[0] == "Same-day phone review."

    def test_green_is_routine(self):
        assert "Continue routine monitoring." in recommend(TriageLevel.GREEN).actions

    def test_accepts_string(self):
        assert recommend("amber") is recommend(TriageLevel.AMBER)

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            recommend("purple")


class TestWellbeingLevel:
    @pytest.mark.parametrize("score, expected", [
        (10, TriageLevel.GREEN),
        (7, TriageLevel.GREEN),
        (6, TriageLevel.AMBER),
        (4, TriageLevel.AMBER),
        (3, TriageLevel.RED),
        (0, TriageLevel.RED),
    ])
    def test_bands(self, score, expected):
        assert wellbeing_level(score) is expected
