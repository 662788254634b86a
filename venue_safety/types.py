"""
Venue Safety - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the safety assessment engine.

Defines the enums, keys, raw signal records and result
bundles that flow between the gateway, the scoring
pipeline, the cache tiers and the service facade.

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable results: an AssessmentResult is never mutated,
  only superseded by a new one
- Closed enumerations for levels and severities
- Typed composite cache keys
- Explicit to_dict / from_dict for persistence and the API

============================================================
SAFETY LEVELS
============================================================
Ordered from safest to least safe:

    SAFE < CAUTION < WARNING < DANGER

============================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


# ============================================================
# SERIALIZATION HELPERS
# ============================================================


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ============================================================
# ENUMS
# ============================================================


class SafetyLevel(str, Enum):
    """
    Discrete safety classification of one assessment.

    Declaration order is the severity order: SAFE is the most
    permissive level, DANGER the most restrictive.
    """

    SAFE = "safe"
    CAUTION = "caution"
    WARNING = "warning"
    DANGER = "danger"

    @property
    def severity_order(self) -> int:
        """Numeric ordering for restrictiveness comparison."""
        return list(SafetyLevel).index(self)

    @classmethod
    def most_restrictive(cls, levels: Iterable["SafetyLevel"]) -> Optional["SafetyLevel"]:
        """Return the least safe level in ``levels`` or None when empty."""
        ordered = sorted(levels, key=lambda level: level.severity_order)
        return ordered[-1] if ordered else None


class RestrictionSeverity(str, Enum):
    """Medical severity of a dietary restriction."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    LIFE_THREATENING = "life_threatening"

    @property
    def is_life_threatening(self) -> bool:
        return self is RestrictionSeverity.LIFE_THREATENING


class IncidentSeverity(str, Enum):
    """Severity of a reported safety incident."""

    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"

    @property
    def magnitude(self) -> float:
        """Undecayed score impact of one incident (always negative)."""
        return _INCIDENT_MAGNITUDES[self]


_INCIDENT_MAGNITUDES: Dict[IncidentSeverity, float] = {
    IncidentSeverity.CRITICAL: -10.0,
    IncidentSeverity.SEVERE: -6.0,
    IncidentSeverity.MODERATE: -3.0,
    IncidentSeverity.MINOR: -1.0,
}


class SignalTable(str, Enum):
    """The seven raw signal collections backing one assessment."""

    SAFETY_PROTOCOLS = "venue_safety_protocols"
    EXPERT_ASSESSMENTS = "expert_safety_assessments"
    COMMUNITY_VERIFICATIONS = "community_safety_verifications"
    HEALTH_INSPECTIONS = "venue_health_ratings"
    CERTIFICATIONS = "venue_certifications"
    INCIDENT_REPORTS = "safety_incidents"
    REVIEW_SAFETY_ASSESSMENTS = "review_safety_assessments"

    @classmethod
    def all_tables(cls) -> List["SignalTable"]:
        """Return all signal tables in fetch order."""
        return list(cls)


class RecommendationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImplementationComplexity(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    COMPLEX = "complex"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


# ============================================================
# KEYS
# ============================================================


@dataclass(frozen=True)
class AssessmentKey:
    """
    Identifies one assessable unit.

    ``restriction_id=None`` denotes the venue-wide aggregate.
    """

    venue_id: str
    restriction_id: Optional[str] = None

    @property
    def is_venue_wide(self) -> bool:
        return self.restriction_id is None

    def __str__(self) -> str:
        return f"{self.venue_id}/{self.restriction_id or 'overall'}"


# ============================================================
# RESTRICTIONS AND WEIGHTS
# ============================================================


@dataclass(frozen=True)
class DietaryRestriction:
    """A dietary restriction as seen by the engine."""

    id: str
    name: str
    medical_severity_default: RestrictionSeverity = RestrictionSeverity.MILD
    category: Optional[str] = None


@dataclass(frozen=True)
class UserRestriction:
    """An active restriction of one user."""

    user_id: str
    restriction: DietaryRestriction
    severity: Optional[RestrictionSeverity] = None

    @property
    def effective_severity(self) -> RestrictionSeverity:
        """The user's own severity, else the restriction's default."""
        return self.severity or self.restriction.medical_severity_default


@dataclass(frozen=True)
class ScoringWeight:
    """
    Admin-tunable weight of one scoring category.

    ``base_weight`` is the category's ceiling (negative for the
    incident history category, where it is a floor).
    """

    category: str
    base_weight: float
    severity_multipliers: Dict[RestrictionSeverity, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "base_weight": self.base_weight,
            "severity_multipliers": {
                severity.value: multiplier
                for severity, multiplier in self.severity_multipliers.items()
            },
        }


# ============================================================
# RAW SIGNAL RECORDS
# ============================================================


@dataclass(frozen=True)
class SafetyProtocolRecord:
    id: str
    venue_id: str
    restriction_id: Optional[str] = None
    has_staff_training: bool = False
    staff_training_frequency: Optional[str] = None
    last_training_date: Optional[datetime] = None
    has_dedicated_prep_area: bool = False
    has_dedicated_equipment: bool = False
    has_dedicated_fryer: bool = False
    has_cross_contamination_protocols: bool = False
    protocol_description: Optional[str] = None
    has_ingredient_tracking: bool = False
    supplier_verification: bool = False
    emergency_procedures: bool = False
    incident_response_plan: bool = False


@dataclass(frozen=True)
class ExpertAssessmentRecord:
    """
    A published assessment by a verified expert.

    Sub-scores are on a 0-100 scale; ``confidence_level`` is the
    expert's own stated confidence (0-100, defaults to 50).
    """

    id: str
    venue_id: str
    assessment_date: datetime
    confidence_level: Optional[float] = None
    overall_assessment_score: Optional[float] = None
    staff_training_score: Optional[float] = None
    kitchen_protocols_score: Optional[float] = None
    equipment_safety_score: Optional[float] = None
    cross_contamination_prevention_score: Optional[float] = None
    ingredient_sourcing_score: Optional[float] = None
    emergency_preparedness_score: Optional[float] = None
    restrictions_assessed: Tuple[str, ...] = ()

    @property
    def effective_confidence(self) -> float:
        return 50.0 if self.confidence_level is None else float(self.confidence_level)

    @property
    def confidence_weight(self) -> float:
        return self.effective_confidence / 100.0


@dataclass(frozen=True)
class CommunityVerificationRecord:
    id: str
    venue_id: str
    verification_date: datetime
    confidence_in_verification: Optional[float] = None
    knowledge_score: Optional[float] = None
    protocol_compliance_score: Optional[float] = None
    restriction_ids: Tuple[str, ...] = ()

    @property
    def effective_confidence(self) -> float:
        if self.confidence_in_verification is None:
            return 50.0
        return float(self.confidence_in_verification)


@dataclass(frozen=True)
class HealthInspectionRecord:
    id: str
    venue_id: str
    inspection_date: datetime
    rating_score: Optional[float] = None
    rating_grade: Optional[str] = None
    critical_violations_count: int = 0
    allergen_violations_count: int = 0


@dataclass(frozen=True)
class CertificationRecord:
    id: str
    venue_id: str
    certification_type: str
    expiry_date: Optional[date] = None
    scope: Tuple[str, ...] = ()


@dataclass(frozen=True)
class IncidentReportRecord:
    id: str
    venue_id: str
    incident_date: datetime
    severity: IncidentSeverity
    restriction_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReviewSafetyAssessmentRecord:
    id: str
    venue_id: str
    review_id: Optional[str] = None
    restriction_id: Optional[str] = None
    safety_rating: Optional[float] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RawSignalSet:
    """
    The seven raw record collections for one assessment key.

    Fetched fresh on every recomputation and never persisted
    by the engine.
    """

    safety_protocols: Tuple[SafetyProtocolRecord, ...] = ()
    expert_assessments: Tuple[ExpertAssessmentRecord, ...] = ()
    community_verifications: Tuple[CommunityVerificationRecord, ...] = ()
    health_inspections: Tuple[HealthInspectionRecord, ...] = ()
    certifications: Tuple[CertificationRecord, ...] = ()
    incident_reports: Tuple[IncidentReportRecord, ...] = ()
    review_safety_assessments: Tuple[ReviewSafetyAssessmentRecord, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not any((
            self.safety_protocols,
            self.expert_assessments,
            self.community_verifications,
            self.health_inspections,
            self.certifications,
            self.incident_reports,
            self.review_safety_assessments,
        ))


# ============================================================
# OUTPUT CONTRACTS
# ============================================================


SUB_SCORE_FIELDS: Tuple[str, ...] = (
    "staff_training",
    "kitchen_protocols",
    "equipment_safety",
    "cross_contamination_prevention",
    "ingredient_tracking",
    "emergency_preparedness",
    "incident_history_impact",
    "health_department",
    "certification",
    "community_verification",
    "expert_assessment",
)


@dataclass(frozen=True)
class ScoreBreakdown:
    """
    The 11 named sub-scores plus raw, adjusted and final totals.

    ``incident_history_impact`` is always <= 0. ``raw_total`` and
    ``severity_adjusted`` are clamped to [0, 100];
    ``confidence_weighted`` is the integer final score.
    """

    staff_training: float = 0.0
    kitchen_protocols: float = 0.0
    equipment_safety: float = 0.0
    cross_contamination_prevention: float = 0.0
    ingredient_tracking: float = 0.0
    emergency_preparedness: float = 0.0
    incident_history_impact: float = 0.0
    health_department: float = 0.0
    certification: float = 0.0
    community_verification: float = 0.0
    expert_assessment: float = 0.0
    raw_total: float = 0.0
    severity_adjusted: float = 0.0
    confidence_weighted: int = 0

    def sub_scores(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in SUB_SCORE_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = self.sub_scores()
        data["raw_total"] = self.raw_total
        data["severity_adjusted"] = self.severity_adjusted
        data["confidence_weighted"] = self.confidence_weighted
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreBreakdown":
        values: Dict[str, Any] = {name: float(data.get(name, 0.0)) for name in SUB_SCORE_FIELDS}
        values["raw_total"] = float(data.get("raw_total", 0.0))
        values["severity_adjusted"] = float(data.get("severity_adjusted", 0.0))
        values["confidence_weighted"] = int(data.get("confidence_weighted", 0))
        return cls(**values)


@dataclass(frozen=True)
class DataSourceSummary:
    """Counts and freshness of the signals behind one assessment."""

    safety_protocols_count: int = 0
    expert_assessments_count: int = 0
    community_verifications_count: int = 0
    health_inspections_count: int = 0
    certifications_count: int = 0
    incident_reports_count: int = 0
    review_safety_assessments_count: int = 0
    data_freshness_days: int = 0
    last_expert_assessment_date: Optional[datetime] = None
    last_incident_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safety_protocols_count": self.safety_protocols_count,
            "expert_assessments_count": self.expert_assessments_count,
            "community_verifications_count": self.community_verifications_count,
            "health_inspections_count": self.health_inspections_count,
            "certifications_count": self.certifications_count,
            "incident_reports_count": self.incident_reports_count,
            "review_safety_assessments_count": self.review_safety_assessments_count,
            "data_freshness_days": self.data_freshness_days,
            "last_expert_assessment_date": _iso(self.last_expert_assessment_date),
            "last_incident_date": _iso(self.last_incident_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSourceSummary":
        return cls(
            safety_protocols_count=int(data.get("safety_protocols_count", 0)),
            expert_assessments_count=int(data.get("expert_assessments_count", 0)),
            community_verifications_count=int(data.get("community_verifications_count", 0)),
            health_inspections_count=int(data.get("health_inspections_count", 0)),
            certifications_count=int(data.get("certifications_count", 0)),
            incident_reports_count=int(data.get("incident_reports_count", 0)),
            review_safety_assessments_count=int(data.get("review_safety_assessments_count", 0)),
            data_freshness_days=int(data.get("data_freshness_days", 0)),
            last_expert_assessment_date=_parse_datetime(data.get("last_expert_assessment_date")),
            last_incident_date=_parse_datetime(data.get("last_incident_date")),
        )


@dataclass(frozen=True)
class SafetyRecommendation:
    category: str
    priority: RecommendationPriority
    recommendation: str
    impact_on_score: float
    implementation_complexity: ImplementationComplexity
    estimated_timeline: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "priority": self.priority.value,
            "recommendation": self.recommendation,
            "impact_on_score": self.impact_on_score,
            "implementation_complexity": self.implementation_complexity.value,
            "estimated_timeline": self.estimated_timeline,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyRecommendation":
        return cls(
            category=data["category"],
            priority=RecommendationPriority(data["priority"]),
            recommendation=data["recommendation"],
            impact_on_score=float(data["impact_on_score"]),
            implementation_complexity=ImplementationComplexity(data["implementation_complexity"]),
            estimated_timeline=data["estimated_timeline"],
        )


@dataclass(frozen=True)
class AssessmentResult:
    """
    Complete safety assessment for one (venue, restriction) key.

    ============================================================
    OUTPUT GUARANTEES
    ============================================================
    - final_score: Always an integer in [0, 100]
    - confidence: Always an integer in [0, 100]
    - safety_level: Always one of SAFE, CAUTION, WARNING, DANGER
    - expires_at: Always set; never served past it without
      a recomputation attempt

    ============================================================
    """

    key: AssessmentKey
    breakdown: ScoreBreakdown
    confidence: int
    safety_level: SafetyLevel
    data_sources: DataSourceSummary
    computed_at: datetime
    expires_at: datetime
    expert_override: bool = False
    recommendations: Tuple[SafetyRecommendation, ...] = ()
    is_fallback: bool = False

    @property
    def venue_id(self) -> str:
        return self.key.venue_id

    @property
    def restriction_id(self) -> Optional[str]:
        return self.key.restriction_id

    @property
    def final_score(self) -> int:
        return self.breakdown.confidence_weighted

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "restriction_id": self.restriction_id,
            "overall_safety_score": self.final_score,
            "confidence_score": self.confidence,
            "safety_level": self.safety_level.value,
            "score_breakdown": self.breakdown.to_dict(),
            "data_sources": self.data_sources.to_dict(),
            "expert_override": self.expert_override,
            "computed_at": self.computed_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "is_fallback": self.is_fallback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentResult":
        return cls(
            key=AssessmentKey(data["venue_id"], data.get("restriction_id")),
            breakdown=ScoreBreakdown.from_dict(data.get("score_breakdown") or {}),
            confidence=int(data["confidence_score"]),
            safety_level=SafetyLevel(data["safety_level"]),
            data_sources=DataSourceSummary.from_dict(data.get("data_sources") or {}),
            computed_at=_parse_datetime(data["computed_at"]),
            expires_at=_parse_datetime(data["expires_at"]),
            expert_override=bool(data.get("expert_override", False)),
            recommendations=tuple(
                SafetyRecommendation.from_dict(r) for r in data.get("recommendations") or []
            ),
            is_fallback=bool(data.get("is_fallback", False)),
        )


@dataclass(frozen=True)
class UserSafetyAssessment:
    """Venue assessment personalised to one user's active restrictions."""

    venue_id: str
    user_id: str
    overall: AssessmentResult
    per_restriction: Tuple[AssessmentResult, ...]
    combined_safety_level: SafetyLevel
    critical_warnings: Tuple[str, ...] = ()

    @property
    def expires_at(self) -> datetime:
        """Earliest expiry among the assessments it combines."""
        return min(r.expires_at for r in (self.overall, *self.per_restriction))

    @property
    def has_fallback(self) -> bool:
        return self.overall.is_fallback or any(r.is_fallback for r in self.per_restriction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "user_id": self.user_id,
            "overall_assessment": self.overall.to_dict(),
            "restriction_assessments": [r.to_dict() for r in self.per_restriction],
            "combined_safety_level": self.combined_safety_level.value,
            "critical_warnings": list(self.critical_warnings),
        }


# ============================================================
# BULK RECALCULATION
# ============================================================


@dataclass(frozen=True)
class BulkItemError:
    venue_id: str
    restriction_id: Optional[str]
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "restriction_id": self.restriction_id,
            "error": self.error,
        }


@dataclass
class BulkRecalculationResult:
    """Outcome of one bulk or sweep invocation."""

    success_count: int = 0
    error_count: int = 0
    errors: List[BulkItemError] = field(default_factory=list)
    stopped_early: bool = False
    skipped_count: int = 0
    elapsed_seconds: float = 0.0

    def record_success(self) -> None:
        self.success_count += 1

    def record_error(self, key: AssessmentKey, error: BaseException) -> None:
        self.error_count += 1
        self.errors.append(BulkItemError(key.venue_id, key.restriction_id, str(error)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_count": self.success_count,
            "error_count": self.error_count,
            "errors": [e.to_dict() for e in self.errors],
            "stopped_early": self.stopped_early,
            "skipped_count": self.skipped_count,
            "elapsed_seconds": self.elapsed_seconds,
        }


# ============================================================
# READ-ONLY VIEWS
# ============================================================


@dataclass(frozen=True)
class VenueComparisonEntry:
    venue_id: str
    safety_level: SafetyLevel
    final_score: int
    confidence: int
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "safety_level": self.safety_level.value,
            "overall_safety_score": self.final_score,
            "confidence_score": self.confidence,
            "is_fallback": self.is_fallback,
        }


@dataclass(frozen=True)
class VenueComparison:
    restriction_id: Optional[str]
    entries: Tuple[VenueComparisonEntry, ...]
    generated_at: datetime

    @property
    def safest_venue_id(self) -> Optional[str]:
        return self.entries[0].venue_id if self.entries else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restriction_id": self.restriction_id,
            "entries": [e.to_dict() for e in self.entries],
            "safest_venue_id": self.safest_venue_id,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class TrendPoint:
    computed_at: datetime
    final_score: int
    confidence: int
    safety_level: SafetyLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "computed_at": self.computed_at.isoformat(),
            "overall_safety_score": self.final_score,
            "confidence_score": self.confidence,
            "safety_level": self.safety_level.value,
        }


@dataclass(frozen=True)
class SafetyTrend:
    key: AssessmentKey
    points: Tuple[TrendPoint, ...]
    direction: TrendDirection
    score_change: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.key.venue_id,
            "restriction_id": self.key.restriction_id,
            "points": [p.to_dict() for p in self.points],
            "direction": self.direction.value,
            "score_change": self.score_change,
        }


@dataclass(frozen=True)
class SafetyStatistics:
    total_assessments: int
    assessments_by_level: Dict[SafetyLevel, int]
    avg_confidence_score: float
    expert_assessments_count: int
    community_verifications_count: int
    cache_hit_rate: float
    memory_cache_size: int
    request_cache_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_assessments": self.total_assessments,
            "assessments_by_level": {
                level.value: count for level, count in self.assessments_by_level.items()
            },
            "avg_confidence_score": self.avg_confidence_score,
            "expert_assessments_count": self.expert_assessments_count,
            "community_verifications_count": self.community_verifications_count,
            "cache_hit_rate": self.cache_hit_rate,
            "memory_cache_size": self.memory_cache_size,
            "request_cache_size": self.request_cache_size,
        }
