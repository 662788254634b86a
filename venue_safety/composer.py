"""
Venue Safety - Score Composer.

============================================================
PURPOSE
============================================================
Turns a RawSignalSet and the current weight table into the
11-part ScoreBreakdown and the raw total.

============================================================
CATEGORY MODEL
============================================================
Ten positive categories blend direct evidence (protocol
flags, inspection grades, certification types, community
verifications) with a fractional contribution from expert
sub-scores, each expert weighted by its own confidence/100.
Every category is clamped to its configured weight ceiling.

Incident history is negative: each incident contributes
severity_magnitude * time_decay, and the sum is floored at
the category's (negative) weight.

raw_total = sum of all 11 categories, clamped to [0, 100].

============================================================
PURITY
============================================================
No I/O and no clock reads: ``now`` is an argument. The same
inputs always produce the same breakdown.

============================================================
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from .config import WeightCategory
from .types import (
    CertificationRecord,
    CommunityVerificationRecord,
    ExpertAssessmentRecord,
    HealthInspectionRecord,
    IncidentReportRecord,
    IncidentSeverity,
    RawSignalSet,
    SafetyProtocolRecord,
    ScoreBreakdown,
)
from .weights import ScoringWeightTable


# ============================================================
# CONSTANTS
# ============================================================

INCIDENT_DECAY_DAYS = 730.0
INCIDENT_DECAY_FLOOR = 0.1

TRAINING_FREQUENCY_POINTS = {
    "monthly": 5.0,
    "quarterly": 3.0,
    "annually": 1.0,
}

# (max age in days, points), checked in order
TRAINING_RECENCY_POINTS = (
    (90.0, 5.0),
    (180.0, 3.0),
    (365.0, 1.0),
)

INSPECTION_GRADE_POINTS = {
    "A": 5.0,
    "B": 3.0,
    "C": 1.0,
}

CERTIFICATION_POINTS = {
    "allergen_safe": 1.5,
    "gluten_free_certified": 1.5,
    "haccp": 1.0,
    "servsafe": 1.0,
}
DEFAULT_CERTIFICATION_POINTS = 0.5

# Per-verification maximum: (100 + 100) * 1.0 * 0.1
COMMUNITY_VERIFICATION_MAX = 20.0


# ============================================================
# HELPERS
# ============================================================


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from ``earlier`` to ``later`` (naive datetimes are UTC)."""
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    if later.tzinfo is None:
        later = later.replace(tzinfo=timezone.utc)
    return (later - earlier).total_seconds() / 86400.0


def time_decay(days_since: float) -> float:
    """
    Decay factor of an incident.

    Linear from 1.0 at day 0 to the 0.1 floor at day 730.
    Future-dated incidents count at full weight.
    """
    return max(INCIDENT_DECAY_FLOOR, 1.0 - max(0.0, days_since) / INCIDENT_DECAY_DAYS)


def incident_impact(severity: IncidentSeverity, days_since: float) -> float:
    """Score impact of one incident; always <= 0."""
    return severity.magnitude * time_decay(days_since)


def expert_contribution(
    experts: Iterable[ExpertAssessmentRecord],
    attribute: Callable[[ExpertAssessmentRecord], Optional[float]],
    fraction: float,
) -> float:
    """Sum of ``sub_score * fraction * confidence/100`` over experts with the sub-score."""
    total = 0.0
    for expert in experts:
        value = attribute(expert)
        if value is None:
            continue
        total += float(value) * fraction * expert.confidence_weight
    return total


# ============================================================
# SCORE COMPOSER
# ============================================================


class ScoreComposer:
    """
    Pure scoring of the 11 categories.

    Usage:
        composer = ScoreComposer()
        breakdown = composer.compose(signals, weights, now)
    """

    def compose(
        self,
        signals: RawSignalSet,
        weights: ScoringWeightTable,
        now: datetime,
    ) -> ScoreBreakdown:
        """
        Compute the score breakdown.

        Args:
            signals: Raw signal collections of one key
            weights: Weight snapshot
            now: Reference time for recency and decay

        Returns:
            ScoreBreakdown with sub-scores and raw_total set;
            severity_adjusted and confidence_weighted are zero
        """
        protocols = signals.safety_protocols
        experts = signals.expert_assessments

        staff_training = self.staff_training(protocols, experts, weights, now)
        kitchen_protocols = self.kitchen_protocols(protocols, experts, weights)
        equipment_safety = self.equipment_safety(protocols, experts, weights)
        cross_contamination = self.cross_contamination_prevention(protocols, experts, weights)
        ingredient_tracking = self.ingredient_tracking(protocols, experts, weights)
        emergency_preparedness = self.emergency_preparedness(protocols, experts, weights)
        incident_history = self.incident_history_impact(signals.incident_reports, weights, now)
        health_department = self.health_department(signals.health_inspections, weights)
        certification = self.certification(signals.certifications, weights)
        community = self.community_verification(signals.community_verifications, weights)
        expert = self.expert_assessment(experts, weights)

        raw_total = clamp(
            staff_training
            + kitchen_protocols
            + equipment_safety
            + cross_contamination
            + ingredient_tracking
            + emergency_preparedness
            + incident_history
            + health_department
            + certification
            + community
            + expert,
            0.0,
            100.0,
        )

        return ScoreBreakdown(
            staff_training=staff_training,
            kitchen_protocols=kitchen_protocols,
            equipment_safety=equipment_safety,
            cross_contamination_prevention=cross_contamination,
            ingredient_tracking=ingredient_tracking,
            emergency_preparedness=emergency_preparedness,
            incident_history_impact=incident_history,
            health_department=health_department,
            certification=certification,
            community_verification=community,
            expert_assessment=expert,
            raw_total=raw_total,
        )

    # --------------------------------------------------------
    # PROTOCOL-BASED CATEGORIES
    # --------------------------------------------------------

    def staff_training(
        self,
        protocols: Sequence[SafetyProtocolRecord],
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
        now: datetime,
    ) -> float:
        """
        Staff training and certification.

        Points per trained protocol plus the expert share, averaged
        over trained protocols and normalised against 30 points.
        """
        weight = weights.base_weight(WeightCategory.STAFF_TRAINING)
        if not protocols:
            return 0.0

        score = 0.0
        trained = 0
        for protocol in protocols:
            if not protocol.has_staff_training:
                continue
            trained += 1
            score += 20.0
            frequency = (protocol.staff_training_frequency or "").lower()
            score += TRAINING_FREQUENCY_POINTS.get(frequency, 0.0)
            if protocol.last_training_date is not None:
                age = days_between(protocol.last_training_date, now)
                for max_age, points in TRAINING_RECENCY_POINTS:
                    if age <= max_age:
                        score += points
                        break

        score += expert_contribution(experts, lambda e: e.staff_training_score, 0.3)

        if trained == 0:
            return 0.0
        average = score / trained
        return clamp(average / 30.0 * weight, 0.0, weight)

    def kitchen_protocols(
        self,
        protocols: Sequence[SafetyProtocolRecord],
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
    ) -> float:
        """Dedicated preparation areas, equipment and fryer."""
        weight = weights.base_weight(WeightCategory.KITCHEN_PROTOCOLS)
        if not protocols:
            return 0.0

        score = 0.0
        for protocol in protocols:
            if protocol.has_dedicated_prep_area:
                score += 8.0
            if protocol.has_dedicated_equipment:
                score += 7.0
            if protocol.has_dedicated_fryer:
                score += 5.0

        score += expert_contribution(experts, lambda e: e.kitchen_protocols_score, 0.2)
        return clamp(score / 20.0 * weight, 0.0, weight)

    def equipment_safety(
        self,
        protocols: Sequence[SafetyProtocolRecord],
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
    ) -> float:
        weight = weights.base_weight(WeightCategory.EQUIPMENT_SAFETY)
        score = 0.0
        for protocol in protocols:
            if protocol.has_dedicated_equipment:
                score += 10.0
            if protocol.has_cross_contamination_protocols:
                score += 5.0

        score += expert_contribution(experts, lambda e: e.equipment_safety_score, 0.15)
        return clamp(score, 0.0, weight)

    def cross_contamination_prevention(
        self,
        protocols: Sequence[SafetyProtocolRecord],
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
    ) -> float:
        weight = weights.base_weight(WeightCategory.CROSS_CONTAMINATION)
        score = 0.0
        for protocol in protocols:
            if protocol.has_cross_contamination_protocols:
                score += 15.0
            description = (protocol.protocol_description or "").lower()
            if "cross contamination" in description:
                score += 5.0

        score += expert_contribution(
            experts, lambda e: e.cross_contamination_prevention_score, 0.2
        )
        return clamp(score, 0.0, weight)

    def ingredient_tracking(
        self,
        protocols: Sequence[SafetyProtocolRecord],
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
    ) -> float:
        weight = weights.base_weight(WeightCategory.INGREDIENT_TRACKING)
        score = 0.0
        for protocol in protocols:
            if protocol.has_ingredient_tracking:
                score += 10.0
            if protocol.supplier_verification:
                score += 5.0

        score += expert_contribution(experts, lambda e: e.ingredient_sourcing_score, 0.15)
        return clamp(score, 0.0, weight)

    def emergency_preparedness(
        self,
        protocols: Sequence[SafetyProtocolRecord],
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
    ) -> float:
        weight = weights.base_weight(WeightCategory.EMERGENCY_PREPAREDNESS)
        score = 0.0
        for protocol in protocols:
            if protocol.emergency_procedures:
                score += 5.0
            if protocol.incident_response_plan:
                score += 5.0

        score += expert_contribution(experts, lambda e: e.emergency_preparedness_score, 0.1)
        return clamp(score, 0.0, weight)

    # --------------------------------------------------------
    # INCIDENT HISTORY
    # --------------------------------------------------------

    def incident_history_impact(
        self,
        incidents: Sequence[IncidentReportRecord],
        weights: ScoringWeightTable,
        now: datetime,
    ) -> float:
        """Decayed incident impact, floored at -|weight|. Always <= 0."""
        if not incidents:
            return 0.0

        floor = -abs(weights.base_weight(WeightCategory.INCIDENT_HISTORY))
        impact = sum(
            incident_impact(incident.severity, days_between(incident.incident_date, now))
            for incident in incidents
        )
        return clamp(impact, floor, 0.0)

    # --------------------------------------------------------
    # EXTERNAL EVIDENCE
    # --------------------------------------------------------

    def health_department(
        self,
        inspections: Sequence[HealthInspectionRecord],
        weights: ScoringWeightTable,
    ) -> float:
        """
        Health department compliance.

        Each inspection earns up to 5 points (numeric rating or
        letter grade) minus violation penalties; the average is
        rescaled to the weight.
        """
        weight = weights.base_weight(WeightCategory.HEALTH_DEPARTMENT)
        if not inspections:
            return 0.0

        total = 0.0
        for inspection in inspections:
            if inspection.rating_score is not None:
                total += float(inspection.rating_score) / 100.0 * 5.0
            elif inspection.rating_grade:
                total += INSPECTION_GRADE_POINTS.get(inspection.rating_grade.upper(), 0.0)
            total -= 0.5 * (inspection.critical_violations_count or 0)
            total -= 1.0 * (inspection.allergen_violations_count or 0)

        average = total / len(inspections)
        return clamp(average / 5.0 * weight, 0.0, weight)

    def certification(
        self,
        certifications: Sequence[CertificationRecord],
        weights: ScoringWeightTable,
    ) -> float:
        weight = weights.base_weight(WeightCategory.CERTIFICATION)
        score = sum(
            CERTIFICATION_POINTS.get(cert.certification_type.lower(), DEFAULT_CERTIFICATION_POINTS)
            for cert in certifications
        )
        return clamp(score, 0.0, weight)

    def community_verification(
        self,
        verifications: Sequence[CommunityVerificationRecord],
        weights: ScoringWeightTable,
    ) -> float:
        """
        Community verification.

        Knowledge and compliance scores, weighted by each
        verifier's confidence, averaged, then scaled by the mean
        confidence and the category weight.
        """
        weight = weights.base_weight(WeightCategory.COMMUNITY_VERIFICATION)
        if not verifications:
            return 0.0

        score = 0.0
        total_confidence = 0.0
        for verification in verifications:
            confidence = verification.effective_confidence
            w = confidence / 100.0
            knowledge = 50.0 if verification.knowledge_score is None else verification.knowledge_score
            compliance = (
                50.0
                if verification.protocol_compliance_score is None
                else verification.protocol_compliance_score
            )
            score += knowledge * w * 0.1
            score += compliance * w * 0.1
            total_confidence += confidence

        count = len(verifications)
        average = score / count
        average_confidence = total_confidence / count
        value = average / COMMUNITY_VERIFICATION_MAX * (average_confidence / 100.0) * weight
        return clamp(value, 0.0, weight)

    def expert_assessment(
        self,
        experts: Sequence[ExpertAssessmentRecord],
        weights: ScoringWeightTable,
    ) -> float:
        """Confidence-weighted mean of expert overall scores."""
        weight = weights.base_weight(WeightCategory.EXPERT_ASSESSMENT)
        if not experts:
            return 0.0

        total_score = 0.0
        total_weight = 0.0
        for expert in experts:
            overall = 50.0 if expert.overall_assessment_score is None else expert.overall_assessment_score
            total_score += float(overall) * expert.confidence_weight
            total_weight += expert.confidence_weight

        if total_weight <= 0:
            return 0.0
        return clamp(total_score / total_weight / 100.0 * weight, 0.0, weight)
