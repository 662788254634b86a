"""
Venue Safety - Configuration.

============================================================
PURPOSE
============================================================
Configuration dataclasses, thresholds and default scoring
weights for the safety assessment engine.

============================================================
DESIGN PRINCIPLES
============================================================
- Conservative defaults (err on the side of DANGER)
- Immutable configurations
- Every tunable can be overridden from the environment

============================================================
THRESHOLD PHILOSOPHY
============================================================
Two classification ladders, selected by the restriction's
default medical severity:

    Life-threatening   SAFE >= 90 @ conf 80
                       CAUTION >= 75 @ conf 70
                       WARNING >= 60
    Standard           SAFE >= 80 @ conf 60
                       CAUTION >= 65 @ conf 50
                       WARNING >= 50

Anything below the WARNING gate is DANGER.

============================================================
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

from dotenv import load_dotenv

from .types import RestrictionSeverity, ScoringWeight


# ============================================================
# SCORING WEIGHT CATEGORIES
# ============================================================


class WeightCategory(str, Enum):
    """Admin-tunable weight categories, one per sub-score."""

    STAFF_TRAINING = "staff_training_certification"
    KITCHEN_PROTOCOLS = "dedicated_preparation_areas"
    EQUIPMENT_SAFETY = "equipment_safety"
    CROSS_CONTAMINATION = "cross_contamination_protocols"
    INGREDIENT_TRACKING = "ingredient_tracking_systems"
    EMERGENCY_PREPAREDNESS = "emergency_response_preparedness"
    INCIDENT_HISTORY = "incident_history_impact"
    HEALTH_DEPARTMENT = "health_department_compliance"
    CERTIFICATION = "third_party_certifications"
    COMMUNITY_VERIFICATION = "community_verification"
    EXPERT_ASSESSMENT = "expert_assessment"


def _multipliers(mild: float, moderate: float, severe: float, life: float) -> Dict[RestrictionSeverity, float]:
    return {
        RestrictionSeverity.MILD: mild,
        RestrictionSeverity.MODERATE: moderate,
        RestrictionSeverity.SEVERE: severe,
        RestrictionSeverity.LIFE_THREATENING: life,
    }


DEFAULT_SCORING_WEIGHTS: Dict[str, ScoringWeight] = {
    weight.category: weight
    for weight in (
        ScoringWeight(WeightCategory.STAFF_TRAINING.value, 25.0, _multipliers(1.0, 1.2, 1.5, 2.0)),
        ScoringWeight(WeightCategory.KITCHEN_PROTOCOLS.value, 20.0, _multipliers(1.0, 1.3, 1.7, 2.5)),
        ScoringWeight(WeightCategory.EQUIPMENT_SAFETY.value, 15.0, _multipliers(1.0, 1.2, 1.5, 2.0)),
        ScoringWeight(WeightCategory.CROSS_CONTAMINATION.value, 20.0, _multipliers(1.0, 1.3, 1.8, 2.5)),
        ScoringWeight(WeightCategory.INGREDIENT_TRACKING.value, 15.0, _multipliers(1.0, 1.1, 1.3, 1.5)),
        ScoringWeight(WeightCategory.EMERGENCY_PREPAREDNESS.value, 10.0, _multipliers(1.0, 1.2, 1.8, 3.0)),
        ScoringWeight(WeightCategory.INCIDENT_HISTORY.value, -2.0, _multipliers(1.0, 2.0, 5.0, 10.0)),
        ScoringWeight(WeightCategory.HEALTH_DEPARTMENT.value, 5.0, _multipliers(1.0, 1.1, 1.2, 1.3)),
        ScoringWeight(WeightCategory.CERTIFICATION.value, 3.0, _multipliers(1.0, 1.1, 1.2, 1.3)),
        ScoringWeight(WeightCategory.COMMUNITY_VERIFICATION.value, 5.0, _multipliers(1.0, 1.0, 1.0, 1.0)),
        ScoringWeight(WeightCategory.EXPERT_ASSESSMENT.value, 10.0, _multipliers(1.0, 1.0, 1.0, 1.0)),
    )
}


# ============================================================
# CLASSIFICATION CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class ThresholdLadder:
    """
    Score / confidence gates for one severity tier.

    SAFE and CAUTION require both gates; WARNING only the score.
    """

    safe_min_score: int
    safe_min_confidence: int
    caution_min_score: int
    caution_min_confidence: int
    warning_min_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safe_min_score": self.safe_min_score,
            "safe_min_confidence": self.safe_min_confidence,
            "caution_min_score": self.caution_min_score,
            "caution_min_confidence": self.caution_min_confidence,
            "warning_min_score": self.warning_min_score,
        }


@dataclass(frozen=True)
class ClassificationConfig:
    """Threshold ladders for the safety level classifier."""

    life_threatening: ThresholdLadder = ThresholdLadder(
        safe_min_score=90,
        safe_min_confidence=80,
        caution_min_score=75,
        caution_min_confidence=70,
        warning_min_score=60,
    )
    standard: ThresholdLadder = ThresholdLadder(
        safe_min_score=80,
        safe_min_confidence=60,
        caution_min_score=65,
        caution_min_confidence=50,
        warning_min_score=50,
    )

    def ladder_for(self, severity: RestrictionSeverity) -> ThresholdLadder:
        return self.life_threatening if severity.is_life_threatening else self.standard


@dataclass(frozen=True)
class SeverityRule:
    """Baseline penalty and incident amplification for one tier."""

    baseline_penalty: float = 0.0
    incident_multiplier: float = 1.0


@dataclass(frozen=True)
class SeverityAdjustmentConfig:
    """
    Severity-tiered adjustments applied to the raw total.

    mild / moderate: no adjustment
    severe: -10 baseline, incident impact at 2x
    life_threatening: -20 baseline, incident impact at 3x
    """

    mild: SeverityRule = SeverityRule()
    moderate: SeverityRule = SeverityRule()
    severe: SeverityRule = SeverityRule(baseline_penalty=10.0, incident_multiplier=2.0)
    life_threatening: SeverityRule = SeverityRule(baseline_penalty=20.0, incident_multiplier=3.0)

    def rule_for(self, severity: RestrictionSeverity) -> SeverityRule:
        rules = {
            RestrictionSeverity.MILD: self.mild,
            RestrictionSeverity.MODERATE: self.moderate,
            RestrictionSeverity.SEVERE: self.severe,
            RestrictionSeverity.LIFE_THREATENING: self.life_threatening,
        }
        return rules[severity]


# ============================================================
# CACHE CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class CacheConfig:
    """
    Two-tier cache settings.

    Computed results live 24 hours; fail-safe fallbacks one hour.
    """

    assessment_ttl_seconds: float = 24 * 60 * 60
    fallback_ttl_seconds: float = 60 * 60
    single_flight_enabled: bool = True
    history_size: int = 20
    history_max_keys: int = 10000


@dataclass(frozen=True)
class WeightRegistryConfig:
    """Weight registry refresh settings."""

    refresh_interval_seconds: float = 60 * 60
    min_base_weight: float = -100.0
    max_base_weight: float = 100.0


@dataclass(frozen=True)
class BulkRecalculationConfig:
    """
    Bulk recalculation and stale sweep settings.

    ============================================================
    LOAD BOUNDS
    ============================================================
    - At most batch_size keys per sweep
    - Fixed delay between items
    - Whole invocation bounded by time_budget_seconds
    ============================================================
    """

    batch_size: int = 100
    stale_after_days: int = 30
    inter_item_delay_seconds: float = 0.05
    bulk_item_delay_seconds: float = 0.1
    time_budget_seconds: float = 5 * 60
    max_restrictions_per_venue: int = 10


@dataclass(frozen=True)
class ServiceConfig:
    """Service facade settings."""

    request_cache_ttl_seconds: float = 5 * 60
    low_confidence_threshold: int = 50
    trend_change_threshold: int = 5


# ============================================================
# COMPLETE CONFIGURATION
# ============================================================


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass(frozen=True)
class SafetyAssessmentConfig:
    """Complete configuration for the safety assessment engine."""

    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    severity: SeverityAdjustmentConfig = field(default_factory=SeverityAdjustmentConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    weights: WeightRegistryConfig = field(default_factory=WeightRegistryConfig)
    bulk: BulkRecalculationConfig = field(default_factory=BulkRecalculationConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)

    @classmethod
    def from_env(cls) -> "SafetyAssessmentConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv()
        return cls(
            cache=CacheConfig(
                assessment_ttl_seconds=float(os.getenv("SAFETY_ASSESSMENT_TTL_SECONDS", "86400")),
                fallback_ttl_seconds=float(os.getenv("SAFETY_FALLBACK_TTL_SECONDS", "3600")),
                single_flight_enabled=_env_bool("SAFETY_SINGLE_FLIGHT", True),
                history_size=int(os.getenv("SAFETY_HISTORY_SIZE", "20")),
                history_max_keys=int(os.getenv("SAFETY_HISTORY_MAX_KEYS", "10000")),
            ),
            weights=WeightRegistryConfig(
                refresh_interval_seconds=float(os.getenv("SAFETY_WEIGHT_REFRESH_SECONDS", "3600")),
            ),
            bulk=BulkRecalculationConfig(
                batch_size=int(os.getenv("SAFETY_BULK_BATCH_SIZE", "100")),
                stale_after_days=int(os.getenv("SAFETY_BULK_STALE_DAYS", "30")),
                inter_item_delay_seconds=float(os.getenv("SAFETY_BULK_DELAY_SECONDS", "0.05")),
                bulk_item_delay_seconds=float(os.getenv("SAFETY_BULK_ITEM_DELAY_SECONDS", "0.1")),
                time_budget_seconds=float(os.getenv("SAFETY_BULK_TIME_BUDGET_SECONDS", "300")),
            ),
            service=ServiceConfig(
                request_cache_ttl_seconds=float(os.getenv("SAFETY_REQUEST_CACHE_TTL_SECONDS", "300")),
            ),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.cache.assessment_ttl_seconds <= 0:
            errors.append("assessment_ttl_seconds must be positive")

        if self.cache.fallback_ttl_seconds > self.cache.assessment_ttl_seconds:
            errors.append("fallback_ttl_seconds must not exceed assessment_ttl_seconds")

        if self.bulk.batch_size < 1:
            errors.append("batch_size must be at least 1")

        if self.bulk.time_budget_seconds <= 0:
            errors.append("time_budget_seconds must be positive")

        if self.weights.refresh_interval_seconds <= 0:
            errors.append("refresh_interval_seconds must be positive")

        for name, ladder in (
            ("life_threatening", self.classification.life_threatening),
            ("standard", self.classification.standard),
        ):
            gates: Tuple[int, ...] = (
                ladder.safe_min_score,
                ladder.caution_min_score,
                ladder.warning_min_score,
            )
            if list(gates) != sorted(gates, reverse=True):
                errors.append(f"{name} ladder score gates must be descending")

        return errors


def get_default_config() -> SafetyAssessmentConfig:
    """Get the default configuration."""
    return SafetyAssessmentConfig()
