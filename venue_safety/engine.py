"""
Venue Safety - Assessment Engine.

============================================================
PURPOSE
============================================================
Runs the full assessment pipeline for one key:

1. Refresh weights if stale
2. Resolve the restriction and its severity
3. Gather the seven signal collections
4. Compose the 11-part breakdown
5. Apply the severity adjustment
6. Estimate confidence
7. Compute the final score and classify
8. Summarise data sources and build recommendations
9. Read the expert override flag

The engine does not cache; the cache manager wraps it.

============================================================
FAILURE MODEL
============================================================
Typed engine errors propagate unchanged; anything else is
wrapped in ScoringError. The conservative fallback result
is built here but applied by the service facade.

============================================================
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from .classifier import SafetyLevelClassifier, compute_final_score
from .clock import ClockProtocol, SystemClock
from .composer import ScoreComposer, days_between
from .confidence import ConfidenceEstimator
from .config import SafetyAssessmentConfig
from .exceptions import SafetyAssessmentError, ScoringError
from .gateway import SignalGateway
from .recommendations import generate_recommendations
from .severity import SeverityAdjuster
from .types import (
    AssessmentKey,
    AssessmentResult,
    DataSourceSummary,
    DietaryRestriction,
    RawSignalSet,
    RestrictionSeverity,
    SafetyLevel,
    ScoreBreakdown,
)
from .weights import WeightRegistry


logger = logging.getLogger(__name__)


# ============================================================
# CONSERVATIVE FALLBACK
# ============================================================

FALLBACK_SCORE = 30
FALLBACK_CONFIDENCE = 10
FALLBACK_FRESHNESS_DAYS = 999


def build_conservative_fallback(
    key: AssessmentKey,
    now: datetime,
    ttl_seconds: float = 3600,
) -> AssessmentResult:
    """
    Fixed fail-safe assessment.

    Score 30, confidence 10, DANGER, short expiry. Never cached.
    """
    return AssessmentResult(
        key=key,
        breakdown=ScoreBreakdown(
            raw_total=float(FALLBACK_SCORE),
            severity_adjusted=float(FALLBACK_SCORE),
            confidence_weighted=FALLBACK_SCORE,
        ),
        confidence=FALLBACK_CONFIDENCE,
        safety_level=SafetyLevel.DANGER,
        data_sources=DataSourceSummary(data_freshness_days=FALLBACK_FRESHNESS_DAYS),
        computed_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        is_fallback=True,
    )


# ============================================================
# DATA SOURCE SUMMARY
# ============================================================


def summarize_data_sources(signals: RawSignalSet, now: datetime) -> DataSourceSummary:
    """Counts per collection plus freshness of the newest dated evidence."""
    dated = (
        [e.assessment_date for e in signals.expert_assessments]
        + [v.verification_date for v in signals.community_verifications]
        + [i.inspection_date for i in signals.health_inspections]
    )
    freshness = 0
    if dated:
        youngest = min(days_between(moment, now) for moment in dated)
        freshness = max(0, math.floor(youngest))

    last_expert = None
    if signals.expert_assessments:
        last_expert = max(e.assessment_date for e in signals.expert_assessments)

    last_incident = None
    if signals.incident_reports:
        last_incident = max(i.incident_date for i in signals.incident_reports)

    return DataSourceSummary(
        safety_protocols_count=len(signals.safety_protocols),
        expert_assessments_count=len(signals.expert_assessments),
        community_verifications_count=len(signals.community_verifications),
        health_inspections_count=len(signals.health_inspections),
        certifications_count=len(signals.certifications),
        incident_reports_count=len(signals.incident_reports),
        review_safety_assessments_count=len(signals.review_safety_assessments),
        data_freshness_days=freshness,
        last_expert_assessment_date=last_expert,
        last_incident_date=last_incident,
    )


# ============================================================
# ENGINE
# ============================================================


class SafetyAssessmentEngine:
    """
    Orchestrates the scoring pipeline.

    Usage:
        engine = SafetyAssessmentEngine(gateway, registry, clock, config)
        result = await engine.compute(AssessmentKey("venue-1", "peanut"))
    """

    def __init__(
        self,
        gateway: SignalGateway,
        weights: WeightRegistry,
        clock: Optional[ClockProtocol] = None,
        config: Optional[SafetyAssessmentConfig] = None,
    ):
        self._gateway = gateway
        self._weights = weights
        self._clock = clock or SystemClock()
        self.config = config or SafetyAssessmentConfig()

        self._composer = ScoreComposer()
        self._adjuster = SeverityAdjuster(self.config.severity)
        self._estimator = ConfidenceEstimator()
        self._classifier = SafetyLevelClassifier(self.config.classification)

    async def compute(self, key: AssessmentKey) -> AssessmentResult:
        """
        Compute a fresh assessment for a key.

        Raises:
            SafetyAssessmentError: Any failure (typed or wrapped)
        """
        try:
            return await self._compute(key)
        except SafetyAssessmentError:
            raise
        except Exception as e:
            raise ScoringError(
                f"Assessment pipeline failed: {e}",
                venue_id=key.venue_id,
                restriction_id=key.restriction_id,
            ) from e

    async def _compute(self, key: AssessmentKey) -> AssessmentResult:
        weights = await self._weights.ensure_fresh()

        restriction: Optional[DietaryRestriction] = None
        if key.restriction_id is not None:
            restriction = await self._gateway.fetch_restriction(key.restriction_id)
        severity = (
            restriction.medical_severity_default
            if restriction is not None
            else RestrictionSeverity.MILD
        )

        signals = await self._gateway.gather_signals(key)
        if signals.is_empty:
            logger.debug(f"No safety evidence for {key}")
        now = self._clock.now()

        breakdown = self._composer.compose(signals, weights, now)
        adjusted = self._adjuster.adjust(breakdown, severity)
        confidence = self._estimator.estimate(signals, now)
        final_score = compute_final_score(adjusted, confidence)
        level = self._classifier.classify(final_score, confidence, severity)

        breakdown = ScoreBreakdown(
            **breakdown.sub_scores(),
            raw_total=breakdown.raw_total,
            severity_adjusted=adjusted,
            confidence_weighted=final_score,
        )

        expert_override = await self._gateway.fetch_expert_override(key)

        result = AssessmentResult(
            key=key,
            breakdown=breakdown,
            confidence=confidence,
            safety_level=level,
            data_sources=summarize_data_sources(signals, now),
            computed_at=now,
            expires_at=now + timedelta(seconds=self.config.cache.assessment_ttl_seconds),
            expert_override=expert_override,
            recommendations=tuple(generate_recommendations(breakdown, restriction)),
        )

        logger.info(
            f"Assessment computed for {key}: score={final_score} "
            f"confidence={confidence} level={level.value} severity={severity.value}"
        )
        return result
