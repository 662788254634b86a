"""
Venue Safety - Recommendation Generator.

Derives remediation suggestions from weak sub-scores.
"""

from typing import List, Optional

from .types import (
    DietaryRestriction,
    ImplementationComplexity,
    RecommendationPriority,
    RestrictionSeverity,
    SafetyRecommendation,
    ScoreBreakdown,
)


STAFF_TRAINING_THRESHOLD = 15.0
CROSS_CONTAMINATION_THRESHOLD = 15.0
EMERGENCY_PREPAREDNESS_THRESHOLD = 8.0


def generate_recommendations(
    breakdown: ScoreBreakdown,
    restriction: Optional[DietaryRestriction] = None,
) -> List[SafetyRecommendation]:
    """
    Build recommendations for a breakdown.

    Priorities escalate to CRITICAL for life-threatening
    restrictions where the gap bears directly on a reaction.
    """
    life_threatening = (
        restriction is not None
        and restriction.medical_severity_default is RestrictionSeverity.LIFE_THREATENING
    )
    recommendations = []

    if breakdown.staff_training < STAFF_TRAINING_THRESHOLD:
        recommendations.append(SafetyRecommendation(
            category="Staff Training",
            priority=RecommendationPriority.CRITICAL if life_threatening else RecommendationPriority.HIGH,
            recommendation="Implement comprehensive allergen training program for all staff",
            impact_on_score=10.0,
            implementation_complexity=ImplementationComplexity.MODERATE,
            estimated_timeline="2-4 weeks",
        ))

    if breakdown.cross_contamination_prevention < CROSS_CONTAMINATION_THRESHOLD:
        recommendations.append(SafetyRecommendation(
            category="Cross-Contamination Prevention",
            priority=RecommendationPriority.HIGH,
            recommendation="Establish dedicated preparation areas and equipment protocols",
            impact_on_score=8.0,
            implementation_complexity=ImplementationComplexity.COMPLEX,
            estimated_timeline="1-3 months",
        ))

    if breakdown.emergency_preparedness < EMERGENCY_PREPAREDNESS_THRESHOLD:
        recommendations.append(SafetyRecommendation(
            category="Emergency Preparedness",
            priority=RecommendationPriority.CRITICAL if life_threatening else RecommendationPriority.MEDIUM,
            recommendation="Develop emergency response procedures and train staff",
            impact_on_score=5.0,
            implementation_complexity=ImplementationComplexity.EASY,
            estimated_timeline="1-2 weeks",
        ))

    return recommendations
