"""
Venue Safety - Severity Adjuster.

Applies the severity tier of the restriction to the raw total:

    mild / moderate    no adjustment
    severe             -10 baseline, incident impact at 2x
    life_threatening   -20 baseline, incident impact at 3x

The incident impact is already part of raw_total at 1x, so only
the extra (multiplier - 1) share is added here.
"""

from typing import Optional

from .config import SeverityAdjustmentConfig
from .types import RestrictionSeverity, ScoreBreakdown


class SeverityAdjuster:
    """Severity-tiered transform of raw_total into severity_adjusted."""

    def __init__(self, config: Optional[SeverityAdjustmentConfig] = None):
        self._config = config or SeverityAdjustmentConfig()

    def adjust(self, breakdown: ScoreBreakdown, severity: RestrictionSeverity) -> float:
        """
        Compute the severity-adjusted score.

        Args:
            breakdown: Composed breakdown (raw_total, incident impact)
            severity: Default medical severity of the restriction

        Returns:
            Adjusted score clamped to [0, 100]
        """
        rule = self._config.rule_for(severity)
        adjusted = max(0.0, breakdown.raw_total - rule.baseline_penalty)

        impact = breakdown.incident_history_impact
        if impact < 0 and rule.incident_multiplier > 1.0:
            adjusted += (rule.incident_multiplier - 1.0) * impact

        return max(0.0, min(100.0, adjusted))
