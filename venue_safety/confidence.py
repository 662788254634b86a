"""
Venue Safety - Confidence Estimator.

============================================================
POINT SYSTEM
============================================================
Quantity
    +30  any expert assessment
    +20  any safety protocol record
    +15  >= 3 community verifications
    +10  any health inspection
    +10  any certification
    +10  >= 5 review safety sub-assessments
Recency
    +5   an expert assessment younger than 30 days
    +5   a community verification younger than 90 days
Quality
    +0..5  average expert self-confidence / 100 * 5

Capped at 100, rounded to an integer.
============================================================
"""

from datetime import datetime

from .composer import days_between
from .types import RawSignalSet


EXPERT_RECENCY_DAYS = 30.0
COMMUNITY_RECENCY_DAYS = 90.0
MIN_COMMUNITY_VERIFICATIONS = 3
MIN_REVIEW_ASSESSMENTS = 5


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


class ConfidenceEstimator:
    """Derives a 0-100 confidence value from signal quantity, recency and quality."""

    def estimate(self, signals: RawSignalSet, now: datetime) -> int:
        confidence = 0.0

        if signals.expert_assessments:
            confidence += 30
        if signals.safety_protocols:
            confidence += 20
        if len(signals.community_verifications) >= MIN_COMMUNITY_VERIFICATIONS:
            confidence += 15
        if signals.health_inspections:
            confidence += 10
        if signals.certifications:
            confidence += 10
        if len(signals.review_safety_assessments) >= MIN_REVIEW_ASSESSMENTS:
            confidence += 10

        if any(
            days_between(expert.assessment_date, now) < EXPERT_RECENCY_DAYS
            for expert in signals.expert_assessments
        ):
            confidence += 5
        if any(
            days_between(verification.verification_date, now) < COMMUNITY_RECENCY_DAYS
            for verification in signals.community_verifications
        ):
            confidence += 5

        if signals.expert_assessments:
            average = sum(
                expert.effective_confidence for expert in signals.expert_assessments
            ) / len(signals.expert_assessments)
            confidence += average / 100.0 * 5

        return max(0, min(100, round_half_up(confidence)))
