"""
Venue Safety Assessment Engine - Package.

============================================================
PURPOSE
============================================================
Scores how safe a venue is for a diner with a given dietary
restriction, and keeps those scores cached and fresh.

============================================================
WHAT IT IS
============================================================
- Weighted aggregation of seven kinds of safety evidence
- Severity-aware: life-threatening restrictions are judged
  against stricter thresholds
- Confidence-weighted: thin evidence lowers the final score
- Produces discrete levels: SAFE, CAUTION, WARNING, DANGER
- Fail-safe: any failure yields a conservative DANGER result

============================================================
WHAT IT IS NOT
============================================================
- NOT a venue or review CRUD layer
- NOT a schema owner (tables are managed elsewhere)
- NOT a distributed cache

============================================================
PIPELINE
============================================================
    SignalGateway -> ScoreComposer -> SeverityAdjuster
        -> ConfidenceEstimator -> SafetyLevelClassifier

wrapped by TwoTierCacheManager (memory + persistent rows)
and exposed through SafetyAssessmentService.

============================================================
USAGE
============================================================
    from venue_safety import (
        SafetyAssessmentService,
        SqlAlchemySafetyDataStore,
        create_database_engine,
        create_session_factory,
    )

    engine = create_database_engine()
    store = SqlAlchemySafetyDataStore(create_session_factory(engine))
    service = SafetyAssessmentService(store)
    await service.start()

    result = await service.calculate_safety_assessment("venue-1", "peanut")
    print(f"Level: {result.safety_level.value}")
    print(f"Score: {result.final_score}/100 (confidence {result.confidence})")

============================================================
"""

# Types
from .types import (
    # Enums
    SafetyLevel,
    RestrictionSeverity,
    IncidentSeverity,
    SignalTable,
    RecommendationPriority,
    ImplementationComplexity,
    TrendDirection,

    # Keys and inputs
    AssessmentKey,
    DietaryRestriction,
    UserRestriction,
    ScoringWeight,
    SafetyProtocolRecord,
    ExpertAssessmentRecord,
    CommunityVerificationRecord,
    HealthInspectionRecord,
    CertificationRecord,
    IncidentReportRecord,
    ReviewSafetyAssessmentRecord,
    RawSignalSet,

    # Output types
    ScoreBreakdown,
    DataSourceSummary,
    SafetyRecommendation,
    AssessmentResult,
    UserSafetyAssessment,
    BulkItemError,
    BulkRecalculationResult,
    VenueComparisonEntry,
    VenueComparison,
    TrendPoint,
    SafetyTrend,
    SafetyStatistics,
)

# Exceptions
from .exceptions import (
    SafetyAssessmentError,
    DataSourceError,
    CacheStoreError,
    ScoringError,
    WeightRegistryError,
    WeightValidationError,
    BulkRecalculationError,
)

# Configuration
from .config import (
    WeightCategory,
    DEFAULT_SCORING_WEIGHTS,
    ThresholdLadder,
    ClassificationConfig,
    SeverityRule,
    SeverityAdjustmentConfig,
    CacheConfig,
    WeightRegistryConfig,
    BulkRecalculationConfig,
    ServiceConfig,
    SafetyAssessmentConfig,
    get_default_config,
)

# Clock
from .clock import ClockProtocol, SystemClock, MockClock

# Pipeline
from .gateway import SafetyDataStore, SignalGateway
from .weights import ScoringWeightTable, WeightRegistry
from .composer import ScoreComposer, time_decay, incident_impact
from .severity import SeverityAdjuster
from .confidence import ConfidenceEstimator, round_half_up
from .classifier import (
    SafetyLevelClassifier,
    compute_final_score,
    classify_with_ladder,
    combine_safety_levels,
)
from .recommendations import generate_recommendations
from .engine import SafetyAssessmentEngine, build_conservative_fallback

# Caching and bulk work
from .singleflight import SingleFlight
from .cache import CacheEntry, CacheStats, TwoTierCacheManager
from .scheduler import BulkRecalculationScheduler

# Facade
from .service import SafetyAssessmentService

# Persistence
from .database import (
    Base,
    create_database_engine,
    create_session_factory,
    transaction_scope,
    create_all_tables,
)
from .repository import SqlAlchemySafetyDataStore


__all__ = [
    # Enums
    "SafetyLevel",
    "RestrictionSeverity",
    "IncidentSeverity",
    "SignalTable",
    "RecommendationPriority",
    "ImplementationComplexity",
    "TrendDirection",

    # Keys and inputs
    "AssessmentKey",
    "DietaryRestriction",
    "UserRestriction",
    "ScoringWeight",
    "SafetyProtocolRecord",
    "ExpertAssessmentRecord",
    "CommunityVerificationRecord",
    "HealthInspectionRecord",
    "CertificationRecord",
    "IncidentReportRecord",
    "ReviewSafetyAssessmentRecord",
    "RawSignalSet",

    # Output types
    "ScoreBreakdown",
    "DataSourceSummary",
    "SafetyRecommendation",
    "AssessmentResult",
    "UserSafetyAssessment",
    "BulkItemError",
    "BulkRecalculationResult",
    "VenueComparisonEntry",
    "VenueComparison",
    "TrendPoint",
    "SafetyTrend",
    "SafetyStatistics",

    # Exceptions
    "SafetyAssessmentError",
    "DataSourceError",
    "CacheStoreError",
    "ScoringError",
    "WeightRegistryError",
    "WeightValidationError",
    "BulkRecalculationError",

    # Configuration
    "WeightCategory",
    "DEFAULT_SCORING_WEIGHTS",
    "ThresholdLadder",
    "ClassificationConfig",
    "SeverityRule",
    "SeverityAdjustmentConfig",
    "CacheConfig",
    "WeightRegistryConfig",
    "BulkRecalculationConfig",
    "ServiceConfig",
    "SafetyAssessmentConfig",
    "get_default_config",

    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",

    # Pipeline
    "SafetyDataStore",
    "SignalGateway",
    "ScoringWeightTable",
    "WeightRegistry",
    "ScoreComposer",
    "time_decay",
    "incident_impact",
    "SeverityAdjuster",
    "ConfidenceEstimator",
    "round_half_up",
    "SafetyLevelClassifier",
    "compute_final_score",
    "classify_with_ladder",
    "combine_safety_levels",
    "generate_recommendations",
    "SafetyAssessmentEngine",
    "build_conservative_fallback",

    # Caching and bulk work
    "SingleFlight",
    "CacheEntry",
    "CacheStats",
    "TwoTierCacheManager",
    "BulkRecalculationScheduler",

    # Facade
    "SafetyAssessmentService",

    # Persistence
    "Base",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "create_all_tables",
    "SqlAlchemySafetyDataStore",
]


__version__ = "1.0.0"
