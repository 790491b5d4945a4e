"""Clinician next-step guidance per triage level."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cardiowatch.domains.triage.domain_logic.models import TriageLevel

WELLBEING_GREEN_MIN = 7
WELLBEING_AMBER_MIN = 4


@dataclass(frozen=True)
class Guidance:
    level: TriageLevel
    headline: str
    actions: tuple[str, ...]

    @property
    def recommendation(self) -> str:
        return " ".join(self.actions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "headline": self.headline,
            "actions": list(self.actions),
            "recommendation": self.recommendation,
        }


_GUIDANCE = {
    TriageLevel.RED: Guidance(
        level=TriageLevel.RED,
        headline="Urgent same-day evaluation",
        actions=(
            "URGENT same-day evaluation.",
            "Patient advised to attend A&E.",
            "Consider ECG, troponins, echo.",
            "Contact cardiology on-call if not already notified.",
        ),
    ),
    TriageLevel.AMBER: Guidance(
        level=TriageLevel.AMBER,
        headline="Same-day phone review",
        actions=(
            "Same-day phone review.",
            "Consider bringing forward outpatient appointment.",
            "Check weight, ask about ankle swelling.",
            "May need echo or NT-proBNP if symptoms persist.",
        ),
    ),
    TriageLevel.GREEN: Guidance(
        level=TriageLevel.GREEN,
        headline="Routine monitoring",
        actions=(
            "Continue routine monitoring.",
            "No action required.",
            "Routine outpatient follow-up as scheduled.",
        ),
    ),
}


def recommend(level: TriageLevel | str) -> Guidance:
    """Return the fixed guidance for ``level``."""
    return _GUIDANCE[TriageLevel(level)]


def wellbeing_level(score: int | float) -> TriageLevel:
    """Band a 0-10 self-reported wellbeing score.

    Informational only; wellbeing never raises an alert by itself.
    """
    if score >= WELLBEING_GREEN_MIN:
        return TriageLevel.GREEN
    if score >= WELLBEING_AMBER_MIN:
        return TriageLevel.AMBER
    return TriageLevel.RED
