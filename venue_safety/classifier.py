"""
Venue Safety - Safety Level Classifier.

============================================================
PURPOSE
============================================================
Maps (severity-adjusted score, confidence, severity) to a
discrete SafetyLevel.

    final_score = round(severity_adjusted * confidence / 100)

The ladder is chosen by the restriction's default medical
severity: life-threatening restrictions use the stricter one.
Each computation is classified independently; there is no
transition model over time.

============================================================
"""

from typing import Iterable, Optional

from .config import ClassificationConfig, ThresholdLadder
from .confidence import round_half_up
from .types import RestrictionSeverity, SafetyLevel


def compute_final_score(severity_adjusted: float, confidence: int) -> int:
    """Confidence-weighted final score, an integer in [0, 100]."""
    value = round_half_up(severity_adjusted * confidence / 100.0)
    return max(0, min(100, value))


def classify_with_ladder(final_score: int, confidence: int, ladder: ThresholdLadder) -> SafetyLevel:
    if final_score >= ladder.safe_min_score and confidence >= ladder.safe_min_confidence:
        return SafetyLevel.SAFE
    if final_score >= ladder.caution_min_score and confidence >= ladder.caution_min_confidence:
        return SafetyLevel.CAUTION
    if final_score >= ladder.warning_min_score:
        return SafetyLevel.WARNING
    return SafetyLevel.DANGER


def combine_safety_levels(levels: Iterable[SafetyLevel]) -> SafetyLevel:
    """
    Most restrictive level present.

    An empty input yields SAFE; callers decide what an empty
    set of assessments means before calling this.
    """
    combined = SafetyLevel.most_restrictive(levels)
    return combined if combined is not None else SafetyLevel.SAFE


class SafetyLevelClassifier:
    """Threshold-ladder classifier."""

    def __init__(self, config: Optional[ClassificationConfig] = None):
        self._config = config or ClassificationConfig()

    def classify(
        self,
        final_score: int,
        confidence: int,
        severity: RestrictionSeverity,
    ) -> SafetyLevel:
        ladder = self._config.ladder_for(severity)
        return classify_with_ladder(final_score, confidence, ladder)
