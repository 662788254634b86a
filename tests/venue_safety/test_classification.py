"""
Tests for severity adjustment, confidence and classification.
"""

from datetime import timedelta

import pytest

from venue_safety.classifier import (
    SafetyLevelClassifier,
    combine_safety_levels,
    compute_final_score,
)
from venue_safety.confidence import ConfidenceEstimator, round_half_up
from venue_safety.recommendations import generate_recommendations
from venue_safety.severity import SeverityAdjuster
from venue_safety.types import (
    DietaryRestriction,
    RawSignalSet,
    RecommendationPriority,
    RestrictionSeverity,
    SafetyLevel,
    ScoreBreakdown,
)

from .conftest import (
    NOW,
    certification,
    expert,
    inspection,
    protocol,
    review,
    verification,
)


# ============================================================
# SEVERITY ADJUSTER
# ============================================================


class TestSeverityAdjuster:
    """Tests for the severity-tiered adjustment."""

    @pytest.fixture
    def adjuster(self):
        return SeverityAdjuster()

    @pytest.mark.parametrize("severity", [RestrictionSeverity.MILD, RestrictionSeverity.MODERATE])
    def test_mild_and_moderate_unchanged(self, adjuster, severity):
        breakdown = ScoreBreakdown(incident_history_impact=-2.0, raw_total=70.0)

        assert adjuster.adjust(breakdown, severity) == 70.0

    def test_life_threatening_baseline_penalty(self, adjuster):
        breakdown = ScoreBreakdown(raw_total=95.0)

        assert adjuster.adjust(breakdown, RestrictionSeverity.LIFE_THREATENING) == 75.0

    def test_severe_amplifies_incidents(self, adjuster):
        breakdown = ScoreBreakdown(incident_history_impact=-2.0, raw_total=50.0)

        # 50 - 10, then one extra share of the -2 impact
        assert adjuster.adjust(breakdown, RestrictionSeverity.SEVERE) == pytest.approx(38.0)

    def test_life_threatening_amplifies_incidents(self, adjuster):
        breakdown = ScoreBreakdown(incident_history_impact=-2.0, raw_total=50.0)

        assert adjuster.adjust(breakdown, RestrictionSeverity.LIFE_THREATENING) == pytest.approx(26.0)

    def test_never_below_zero(self, adjuster):
        breakdown = ScoreBreakdown(incident_history_impact=-2.0, raw_total=5.0)

        assert adjuster.adjust(breakdown, RestrictionSeverity.LIFE_THREATENING) == 0.0


# ============================================================
# CONFIDENCE
# ============================================================


class TestConfidenceEstimator:
    """Tests for the confidence point system."""

    @pytest.fixture
    def estimator(self):
        return ConfidenceEstimator()

    def test_no_signals_zero_confidence(self, estimator):
        assert estimator.estimate(RawSignalSet(), NOW) == 0

    def test_quantity_points(self, estimator):
        signals = RawSignalSet(
            safety_protocols=(protocol(),),
            health_inspections=(inspection(),),
            certifications=(certification(),),
            review_safety_assessments=tuple(review(index=i) for i in range(5)),
        )

        assert estimator.estimate(signals, NOW) == 50

    def test_review_threshold(self, estimator):
        signals = RawSignalSet(review_safety_assessments=tuple(review(index=i) for i in range(4)))

        assert estimator.estimate(signals, NOW) == 0

    def test_community_needs_three_for_quantity_points(self, estimator):
        two = RawSignalSet(community_verifications=(
            verification(id="v1", days_ago=200),
            verification(id="v2", days_ago=200),
        ))
        three = RawSignalSet(community_verifications=(
            verification(id="v1", days_ago=200),
            verification(id="v2", days_ago=200),
            verification(id="v3", days_ago=200),
        ))

        assert estimator.estimate(two, NOW) == 0
        assert estimator.estimate(three, NOW) == 15

    def test_expert_recency_is_strict(self, estimator):
        at_boundary = RawSignalSet(expert_assessments=(expert(days_ago=30, confidence_level=0),))
        inside = RawSignalSet(expert_assessments=(expert(days_ago=29, confidence_level=0),))

        assert estimator.estimate(at_boundary, NOW) == 30
        assert estimator.estimate(inside, NOW) == 35

    def test_expert_quality_rounds_half_up(self, estimator):
        # 30 + 50/100*5 = 32.5
        signals = RawSignalSet(expert_assessments=(expert(days_ago=45),))

        assert estimator.estimate(signals, NOW) == 33

    def test_capped_at_100(self, estimator):
        signals = RawSignalSet(
            safety_protocols=(protocol(),),
            expert_assessments=(expert(days_ago=1, confidence_level=100),),
            community_verifications=tuple(verification(id=f"v{i}", days_ago=5) for i in range(3)),
            health_inspections=(inspection(),),
            certifications=(certification(),),
            review_safety_assessments=tuple(review(index=i) for i in range(5)),
        )

        assert estimator.estimate(signals, NOW) == 100

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(63.75) == 64
        assert round_half_up(63.49) == 63


# ============================================================
# CLASSIFIER
# ============================================================


class TestSafetyLevelClassifier:
    """Tests for the threshold ladders."""

    @pytest.fixture
    def classifier(self):
        return SafetyLevelClassifier()

    def test_zero_evidence_is_danger_for_every_severity(self, classifier):
        for severity in RestrictionSeverity:
            assert classifier.classify(0, 0, severity) is SafetyLevel.DANGER

    def test_life_threatening_partial_evidence_is_warning(self, classifier):
        final_score = compute_final_score(75.0, 85)

        assert final_score == 64
        level = classifier.classify(final_score, 85, RestrictionSeverity.LIFE_THREATENING)
        assert level is SafetyLevel.WARNING

    @pytest.mark.parametrize("score,confidence,expected", [
        (80, 60, SafetyLevel.SAFE),
        (80, 59, SafetyLevel.CAUTION),
        (65, 50, SafetyLevel.CAUTION),
        (80, 40, SafetyLevel.WARNING),
        (64, 100, SafetyLevel.WARNING),
        (50, 0, SafetyLevel.WARNING),
        (49, 100, SafetyLevel.DANGER),
    ])
    def test_standard_ladder(self, classifier, score, confidence, expected):
        assert classifier.classify(score, confidence, RestrictionSeverity.SEVERE) is expected

    @pytest.mark.parametrize("score,confidence,expected", [
        (90, 80, SafetyLevel.SAFE),
        (89, 100, SafetyLevel.CAUTION),
        (75, 70, SafetyLevel.CAUTION),
        (75, 69, SafetyLevel.WARNING),
        (60, 0, SafetyLevel.WARNING),
        (59, 100, SafetyLevel.DANGER),
    ])
    def test_life_threatening_ladder(self, classifier, score, confidence, expected):
        assert classifier.classify(score, confidence, RestrictionSeverity.LIFE_THREATENING) is expected

    def test_life_threatening_never_more_permissive(self, classifier):
        for score in range(0, 101, 5):
            for confidence in range(0, 101, 5):
                strict = classifier.classify(score, confidence, RestrictionSeverity.LIFE_THREATENING)
                standard = classifier.classify(score, confidence, RestrictionSeverity.MILD)
                assert strict.severity_order >= standard.severity_order

    def test_final_score_bounds(self):
        assert compute_final_score(100.0, 100) == 100
        assert compute_final_score(0.0, 100) == 0
        assert compute_final_score(100.0, 0) == 0

    def test_combine_most_restrictive(self):
        levels = [SafetyLevel.SAFE, SafetyLevel.WARNING, SafetyLevel.CAUTION]

        assert combine_safety_levels(levels) is SafetyLevel.WARNING
        assert combine_safety_levels([]) is SafetyLevel.SAFE
        assert SafetyLevel.most_restrictive([]) is None


# ============================================================
# RECOMMENDATIONS
# ============================================================


class TestRecommendations:
    """Tests for remediation suggestions."""

    def test_weak_breakdown_gets_three_recommendations(self):
        recommendations = generate_recommendations(ScoreBreakdown())

        assert [r.category for r in recommendations] == [
            "Staff Training",
            "Cross-Contamination Prevention",
            "Emergency Preparedness",
        ]
        assert [r.priority for r in recommendations] == [
            RecommendationPriority.HIGH,
            RecommendationPriority.HIGH,
            RecommendationPriority.MEDIUM,
        ]

    def test_life_threatening_escalates_priority(self):
        peanut = DietaryRestriction("peanut", "Peanut", RestrictionSeverity.LIFE_THREATENING)

        recommendations = generate_recommendations(ScoreBreakdown(), peanut)

        assert recommendations[0].priority is RecommendationPriority.CRITICAL
        assert recommendations[2].priority is RecommendationPriority.CRITICAL

    def test_strong_breakdown_gets_none(self):
        breakdown = ScoreBreakdown(
            staff_training=25.0,
            cross_contamination_prevention=20.0,
            emergency_preparedness=10.0,
        )

        assert generate_recommendations(breakdown) == []
