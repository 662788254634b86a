"""
Shared fixtures for the venue safety tests.

InMemorySafetyDataStore stands in for PostgreSQL: it keeps every
collection in plain dicts and can be told to fail or stall
individual operations.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from venue_safety.cache import TwoTierCacheManager
from venue_safety.clock import MockClock
from venue_safety.config import (
    BulkRecalculationConfig,
    CacheConfig,
    SafetyAssessmentConfig,
)
from venue_safety.engine import SafetyAssessmentEngine
from venue_safety.gateway import SafetyDataStore, SignalGateway
from venue_safety.types import (
    AssessmentKey,
    AssessmentResult,
    CertificationRecord,
    CommunityVerificationRecord,
    DietaryRestriction,
    ExpertAssessmentRecord,
    HealthInspectionRecord,
    IncidentReportRecord,
    IncidentSeverity,
    RestrictionSeverity,
    ReviewSafetyAssessmentRecord,
    SafetyLevel,
    SafetyProtocolRecord,
    ScoringWeight,
    SignalTable,
    UserRestriction,
)
from venue_safety.weights import WeightRegistry


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================
# IN-MEMORY STORE
# ============================================================


class InMemorySafetyDataStore(SafetyDataStore):
    """Dict-backed SafetyDataStore with failure injection."""

    def __init__(self):
        self.signals: Dict[SignalTable, List] = {table: [] for table in SignalTable}
        self.restrictions: Dict[str, DietaryRestriction] = {}
        self.user_restrictions: Dict[str, List[UserRestriction]] = {}
        self.weights: Dict[str, ScoringWeight] = {}
        self.rows: Dict[AssessmentKey, AssessmentResult] = {}
        self.overrides: Set[AssessmentKey] = set()

        # Failure injection
        self.failing_tables: Set[SignalTable] = set()
        self.failing_venues: Set[str] = set()
        self.fail_cache_reads = False
        self.fail_cache_writes = False
        self.fail_mark_expired = False
        self.fail_weights = False
        self.fail_weight_writes = False
        self.fail_statistics = False
        self.fail_stale_lookup = False

        # Set to stall fetch_signals until released
        self.gate: Optional[asyncio.Event] = None

        # Call counters
        self.signal_fetches = 0
        self.weight_loads = 0
        self.cache_writes = 0

    # --------------------------------------------------------
    # SEEDING HELPERS
    # --------------------------------------------------------

    def add(self, table: SignalTable, *records) -> None:
        self.signals[table].extend(records)

    def add_restriction(
        self,
        restriction_id: str,
        name: str,
        severity: RestrictionSeverity = RestrictionSeverity.MILD,
    ) -> DietaryRestriction:
        restriction = DietaryRestriction(restriction_id, name, severity)
        self.restrictions[restriction_id] = restriction
        return restriction

    # --------------------------------------------------------
    # SafetyDataStore
    # --------------------------------------------------------

    async def fetch_signals(self, table, venue_id, restriction_id=None):
        self.signal_fetches += 1
        if self.gate is not None:
            await self.gate.wait()
        if table in self.failing_tables or venue_id in self.failing_venues:
            raise ConnectionError(f"{table.value} unavailable")

        records = [r for r in self.signals[table] if r.venue_id == venue_id]
        if restriction_id is None:
            return records
        return [r for r in records if self._in_scope(r, restriction_id)]

    @staticmethod
    def _in_scope(record, restriction_id: str) -> bool:
        if hasattr(record, "restriction_ids"):
            return restriction_id in record.restriction_ids
        if hasattr(record, "restrictions_assessed"):
            return restriction_id in record.restrictions_assessed
        if hasattr(record, "restriction_id"):
            return record.restriction_id == restriction_id
        return True

    async def fetch_restriction(self, restriction_id):
        return self.restrictions.get(restriction_id)

    async def fetch_user_restrictions(self, user_id):
        return list(self.user_restrictions.get(user_id, []))

    async def fetch_active_restriction_ids(self, limit):
        return sorted(self.restrictions)[:limit]

    async def count_signals(self, table):
        if self.fail_statistics:
            raise ConnectionError("statistics unavailable")
        return len(self.signals[table])

    async def fetch_scoring_weights(self):
        self.weight_loads += 1
        if self.fail_weights:
            raise ConnectionError("weights unavailable")
        return list(self.weights.values())

    async def upsert_scoring_weight(self, weight):
        if self.fail_weight_writes:
            raise ConnectionError("weights read-only")
        self.weights[weight.category] = weight

    async def read_cache_row(self, key):
        if self.fail_cache_reads:
            raise ConnectionError("cache rows unavailable")
        return self.rows.get(key)

    async def upsert_cache_row(self, result):
        if self.fail_cache_writes:
            raise ConnectionError("cache rows read-only")
        self.cache_writes += 1
        self.rows[result.key] = result

    async def mark_expired(self, venue_id, expired_at):
        if self.fail_mark_expired:
            raise ConnectionError("cache rows read-only")
        keys = [key for key in self.rows if key.venue_id == venue_id]
        for key in keys:
            self.rows[key] = replace(self.rows[key], expires_at=expired_at)
        return len(keys)

    async def find_stale_venue_ids(self, now, stale_before, limit):
        if self.fail_stale_lookup:
            raise ConnectionError("cache rows unavailable")
        oldest: Dict[str, datetime] = {}
        for row in self.rows.values():
            if row.expires_at <= now or row.computed_at < stale_before:
                current = oldest.get(row.venue_id)
                if current is None or row.computed_at < current:
                    oldest[row.venue_id] = row.computed_at
        return sorted(oldest, key=oldest.get)[:limit]

    async def fetch_expert_override(self, key):
        return key in self.overrides

    async def fetch_cached_levels(self) -> List[Tuple[SafetyLevel, int]]:
        if self.fail_statistics:
            raise ConnectionError("statistics unavailable")
        return [(row.safety_level, row.confidence) for row in self.rows.values()]


# ============================================================
# RECORD BUILDERS
# ============================================================


def protocol(venue_id: str = "venue-1", **kwargs) -> SafetyProtocolRecord:
    kwargs.setdefault("id", f"proto-{venue_id}")
    return SafetyProtocolRecord(venue_id=venue_id, **kwargs)


def expert(venue_id: str = "venue-1", days_ago: float = 10, **kwargs) -> ExpertAssessmentRecord:
    kwargs.setdefault("id", f"expert-{venue_id}-{days_ago}")
    return ExpertAssessmentRecord(
        venue_id=venue_id,
        assessment_date=NOW - timedelta(days=days_ago),
        **kwargs,
    )


def verification(venue_id: str = "venue-1", days_ago: float = 10, **kwargs) -> CommunityVerificationRecord:
    kwargs.setdefault("id", f"verify-{venue_id}-{days_ago}")
    return CommunityVerificationRecord(
        venue_id=venue_id,
        verification_date=NOW - timedelta(days=days_ago),
        **kwargs,
    )


def inspection(venue_id: str = "venue-1", days_ago: float = 60, **kwargs) -> HealthInspectionRecord:
    kwargs.setdefault("id", f"inspect-{venue_id}-{days_ago}")
    return HealthInspectionRecord(
        venue_id=venue_id,
        inspection_date=NOW - timedelta(days=days_ago),
        **kwargs,
    )


def certification(venue_id: str = "venue-1", certification_type: str = "haccp", **kwargs) -> CertificationRecord:
    kwargs.setdefault("id", f"cert-{venue_id}-{certification_type}")
    return CertificationRecord(venue_id=venue_id, certification_type=certification_type, **kwargs)


def incident(
    venue_id: str = "venue-1",
    days_ago: float = 0,
    severity: IncidentSeverity = IncidentSeverity.CRITICAL,
    **kwargs,
) -> IncidentReportRecord:
    kwargs.setdefault("id", f"incident-{venue_id}-{days_ago}")
    return IncidentReportRecord(
        venue_id=venue_id,
        incident_date=NOW - timedelta(days=days_ago),
        severity=severity,
        **kwargs,
    )


def review(venue_id: str = "venue-1", index: int = 0, **kwargs) -> ReviewSafetyAssessmentRecord:
    return ReviewSafetyAssessmentRecord(id=f"review-{venue_id}-{index}", venue_id=venue_id, **kwargs)


def seed_well_documented_venue(store: InMemorySafetyDataStore, venue_id: str = "venue-1") -> None:
    """A venue with every kind of evidence and strong protocols."""
    store.add(SignalTable.SAFETY_PROTOCOLS, protocol(
        venue_id,
        has_staff_training=True,
        staff_training_frequency="monthly",
        last_training_date=NOW - timedelta(days=30),
        has_dedicated_prep_area=True,
        has_dedicated_equipment=True,
        has_dedicated_fryer=True,
        has_cross_contamination_protocols=True,
        protocol_description="Strict cross contamination controls",
        has_ingredient_tracking=True,
        supplier_verification=True,
        emergency_procedures=True,
        incident_response_plan=True,
    ))
    store.add(SignalTable.EXPERT_ASSESSMENTS, expert(
        venue_id,
        days_ago=5,
        confidence_level=90,
        overall_assessment_score=95,
        staff_training_score=90,
        kitchen_protocols_score=90,
        equipment_safety_score=90,
        cross_contamination_prevention_score=90,
        ingredient_sourcing_score=90,
        emergency_preparedness_score=90,
    ))
    store.add(SignalTable.COMMUNITY_VERIFICATIONS, *(
        verification(venue_id, days_ago=d, confidence_in_verification=100,
                     knowledge_score=100, protocol_compliance_score=100)
        for d in (3, 20, 40)
    ))
    store.add(SignalTable.HEALTH_INSPECTIONS, inspection(venue_id, rating_grade="A"))
    store.add(SignalTable.CERTIFICATIONS, certification(venue_id, "allergen_safe"))
    store.add(SignalTable.CERTIFICATIONS, certification(venue_id, "servsafe"))
    store.add(SignalTable.REVIEW_SAFETY_ASSESSMENTS, *(review(venue_id, i) for i in range(5)))


# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def store():
    return InMemorySafetyDataStore()


@pytest.fixture
def config():
    """Default config with bulk delays zeroed."""
    return SafetyAssessmentConfig(
        cache=CacheConfig(),
        bulk=BulkRecalculationConfig(
            inter_item_delay_seconds=0.0,
            bulk_item_delay_seconds=0.0,
        ),
    )


@pytest.fixture
def weights(store, clock, config):
    return WeightRegistry(store, clock, config.weights)


@pytest.fixture
def engine(store, clock, config, weights):
    return SafetyAssessmentEngine(SignalGateway(store), weights, clock, config)


@pytest.fixture
def cache(engine, store, clock, config):
    return TwoTierCacheManager(engine, store, clock, config.cache)
