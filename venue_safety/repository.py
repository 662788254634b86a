"""
Venue Safety - Repository.

============================================================
PURPOSE
============================================================
SqlAlchemySafetyDataStore: the production SafetyDataStore
over the async SQLAlchemy session factory.

Provides:
- Filtered signal reads for the seven signal tables
- Restriction and user restriction lookups
- Scoring weight reads and upserts
- Persistent cache row reads, upserts and expiry marking
- Stale venue enumeration and statistics queries

Each call runs in its own transaction.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .clock import ClockProtocol, SystemClock
from .database import transaction_scope
from .exceptions import CacheStoreError
from .gateway import SafetyDataStore
from .models import (
    CertificationRow,
    CommunityVerificationRow,
    DietaryRestrictionRow,
    ExpertAssessmentRow,
    HealthRatingRow,
    ReviewSafetyAssessmentRow,
    SafetyIncidentRow,
    SafetyProtocolRow,
    ScoringWeightRow,
    UserRestrictionRow,
    VenueSafetyScore,
)
from .types import (
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


logger = logging.getLogger(__name__)

INCIDENT_LOOKBACK_DAYS = 730
HEALTH_INSPECTION_LIMIT = 5

_SIGNAL_MODELS = {
    SignalTable.SAFETY_PROTOCOLS: SafetyProtocolRow,
    SignalTable.EXPERT_ASSESSMENTS: ExpertAssessmentRow,
    SignalTable.COMMUNITY_VERIFICATIONS: CommunityVerificationRow,
    SignalTable.HEALTH_INSPECTIONS: HealthRatingRow,
    SignalTable.CERTIFICATIONS: CertificationRow,
    SignalTable.INCIDENT_REPORTS: SafetyIncidentRow,
    SignalTable.REVIEW_SAFETY_ASSESSMENTS: ReviewSafetyAssessmentRow,
}


class SqlAlchemySafetyDataStore(SafetyDataStore):
    """
    Store implementation backed by PostgreSQL.

    ============================================================
    METHODS
    ============================================================
    - fetch_signals: Filtered records of one signal table
    - read_cache_row / upsert_cache_row: Persistent cache tier
    - mark_expired: Lazy venue invalidation
    - find_stale_venue_ids: Sweep candidates
    - fetch_scoring_weights / upsert_scoring_weight: Weights

    ============================================================
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize repository with a session factory.

        Args:
            session_factory: SQLAlchemy async session factory
            clock: Clock used for date-bounded filters
        """
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # --------------------------------------------------------
    # SIGNALS
    # --------------------------------------------------------

    async def fetch_signals(
        self,
        table: SignalTable,
        venue_id: str,
        restriction_id: Optional[str] = None,
    ) -> Sequence:
        readers: Dict[SignalTable, Callable[[AsyncSession, str, Optional[str]], Any]] = {
            SignalTable.SAFETY_PROTOCOLS: self._safety_protocols,
            SignalTable.EXPERT_ASSESSMENTS: self._expert_assessments,
            SignalTable.COMMUNITY_VERIFICATIONS: self._community_verifications,
            SignalTable.HEALTH_INSPECTIONS: self._health_inspections,
            SignalTable.CERTIFICATIONS: self._certifications,
            SignalTable.INCIDENT_REPORTS: self._incident_reports,
            SignalTable.REVIEW_SAFETY_ASSESSMENTS: self._review_safety_assessments,
        }
        async with transaction_scope(self._session_factory) as session:
            return await readers[table](session, venue_id, restriction_id)

    async def _safety_protocols(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[SafetyProtocolRecord]:
        stmt = select(SafetyProtocolRow).where(SafetyProtocolRow.venue_id == venue_id)
        if restriction_id:
            stmt = stmt.where(SafetyProtocolRow.restriction_id == restriction_id)
        rows = (await session.execute(stmt)).scalars().all()
        return [
            SafetyProtocolRecord(
                id=row.id,
                venue_id=row.venue_id,
                restriction_id=row.restriction_id,
                has_staff_training=bool(row.has_staff_training),
                staff_training_frequency=row.staff_training_frequency,
                last_training_date=row.last_training_date,
                has_dedicated_prep_area=bool(row.has_dedicated_prep_area),
                has_dedicated_equipment=bool(row.has_dedicated_equipment),
                has_dedicated_fryer=bool(row.has_dedicated_fryer),
                has_cross_contamination_protocols=bool(row.has_cross_contamination_protocols),
                protocol_description=row.protocol_description,
                has_ingredient_tracking=bool(row.has_ingredient_tracking),
                supplier_verification=bool(row.supplier_verification),
                emergency_procedures=bool(row.emergency_procedures),
                incident_response_plan=bool(row.incident_response_plan),
            )
            for row in rows
        ]

    async def _expert_assessments(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[ExpertAssessmentRecord]:
        stmt = select(ExpertAssessmentRow).where(
            ExpertAssessmentRow.venue_id == venue_id,
            ExpertAssessmentRow.is_published.is_(True),
        )
        if restriction_id:
            stmt = stmt.where(ExpertAssessmentRow.restrictions_assessed.contains([restriction_id]))
        rows = (await session.execute(stmt)).scalars().all()
        return [
            ExpertAssessmentRecord(
                id=row.id,
                venue_id=row.venue_id,
                assessment_date=row.assessment_date,
                confidence_level=row.confidence_level,
                overall_assessment_score=row.overall_assessment_score,
                staff_training_score=row.staff_training_score,
                kitchen_protocols_score=row.kitchen_protocols_score,
                equipment_safety_score=row.equipment_safety_score,
                cross_contamination_prevention_score=row.cross_contamination_prevention_score,
                ingredient_sourcing_score=row.ingredient_sourcing_score,
                emergency_preparedness_score=row.emergency_preparedness_score,
                restrictions_assessed=tuple(row.restrictions_assessed or ()),
            )
            for row in rows
        ]

    async def _community_verifications(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[CommunityVerificationRecord]:
        stmt = select(CommunityVerificationRow).where(CommunityVerificationRow.venue_id == venue_id)
        if restriction_id:
            stmt = stmt.where(CommunityVerificationRow.restriction_ids.contains([restriction_id]))
        rows = (await session.execute(stmt)).scalars().all()
        return [
            CommunityVerificationRecord(
                id=row.id,
                venue_id=row.venue_id,
                verification_date=row.verification_date,
                confidence_in_verification=row.confidence_in_verification,
                knowledge_score=row.knowledge_score,
                protocol_compliance_score=row.protocol_compliance_score,
                restriction_ids=tuple(row.restriction_ids or ()),
            )
            for row in rows
        ]

    async def _health_inspections(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[HealthInspectionRecord]:
        stmt = (
            select(HealthRatingRow)
            .where(HealthRatingRow.venue_id == venue_id, HealthRatingRow.is_current.is_(True))
            .order_by(desc(HealthRatingRow.inspection_date))
            .limit(HEALTH_INSPECTION_LIMIT)
        )
        rows = (await session.execute(stmt)).scalars().all()
        return [
            HealthInspectionRecord(
                id=row.id,
                venue_id=row.venue_id,
                inspection_date=row.inspection_date,
                rating_score=row.rating_score,
                rating_grade=row.rating_grade,
                critical_violations_count=row.critical_violations_count or 0,
                allergen_violations_count=row.allergen_violations_count or 0,
            )
            for row in rows
        ]

    async def _certifications(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[CertificationRecord]:
        stmt = select(CertificationRow).where(
            CertificationRow.venue_id == venue_id,
            CertificationRow.is_active.is_(True),
            CertificationRow.expiry_date >= self._clock.now().date(),
        )
        if restriction_id:
            restriction = await session.get(DietaryRestrictionRow, restriction_id)
            if restriction is not None:
                stmt = stmt.where(
                    CertificationRow.scope_of_certification.contains([restriction.name.lower()])
                )
        rows = (await session.execute(stmt)).scalars().all()
        return [
            CertificationRecord(
                id=row.id,
                venue_id=row.venue_id,
                certification_type=row.certification_type,
                expiry_date=row.expiry_date,
                scope=tuple(row.scope_of_certification or ()),
            )
            for row in rows
        ]

    async def _incident_reports(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[IncidentReportRecord]:
        since = self._clock.now() - timedelta(days=INCIDENT_LOOKBACK_DAYS)
        stmt = select(SafetyIncidentRow).where(
            SafetyIncidentRow.venue_id == venue_id,
            SafetyIncidentRow.incident_date >= since,
        )
        if restriction_id:
            stmt = stmt.where(SafetyIncidentRow.restriction_ids.contains([restriction_id]))
        rows = (await session.execute(stmt)).scalars().all()
        return [
            IncidentReportRecord(
                id=row.id,
                venue_id=row.venue_id,
                incident_date=row.incident_date,
                severity=IncidentSeverity(row.severity),
                restriction_ids=tuple(row.restriction_ids or ()),
            )
            for row in rows
        ]

    async def _review_safety_assessments(
        self, session: AsyncSession, venue_id: str, restriction_id: Optional[str]
    ) -> List[ReviewSafetyAssessmentRecord]:
        stmt = select(ReviewSafetyAssessmentRow).where(ReviewSafetyAssessmentRow.venue_id == venue_id)
        if restriction_id:
            stmt = stmt.where(ReviewSafetyAssessmentRow.restriction_id == restriction_id)
        rows = (await session.execute(stmt)).scalars().all()
        return [
            ReviewSafetyAssessmentRecord(
                id=row.id,
                venue_id=row.venue_id,
                review_id=row.review_id,
                restriction_id=row.restriction_id,
                safety_rating=row.safety_rating,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def count_signals(self, table: SignalTable) -> int:
        model = _SIGNAL_MODELS[table]
        async with transaction_scope(self._session_factory) as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())

    # --------------------------------------------------------
    # RESTRICTIONS
    # --------------------------------------------------------

    @staticmethod
    def _to_restriction(row: DietaryRestrictionRow) -> DietaryRestriction:
        return DietaryRestriction(
            id=row.id,
            name=row.name,
            medical_severity_default=RestrictionSeverity(row.medical_severity_default or "mild"),
            category=row.category,
        )

    async def fetch_restriction(self, restriction_id: str) -> Optional[DietaryRestriction]:
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(DietaryRestrictionRow, restriction_id)
            return self._to_restriction(row) if row is not None else None

    async def fetch_user_restrictions(self, user_id: str) -> List[UserRestriction]:
        stmt = (
            select(UserRestrictionRow, DietaryRestrictionRow)
            .join(DietaryRestrictionRow, UserRestrictionRow.restriction_id == DietaryRestrictionRow.id)
            .where(UserRestrictionRow.user_id == user_id, UserRestrictionRow.is_active.is_(True))
        )
        async with transaction_scope(self._session_factory) as session:
            rows = (await session.execute(stmt)).all()
        return [
            UserRestriction(
                user_id=link.user_id,
                restriction=self._to_restriction(restriction),
                severity=RestrictionSeverity(link.severity) if link.severity else None,
            )
            for link, restriction in rows
        ]

    async def fetch_active_restriction_ids(self, limit: int) -> List[str]:
        stmt = (
            select(DietaryRestrictionRow.id)
            .where(DietaryRestrictionRow.is_active.is_(True))
            .order_by(DietaryRestrictionRow.id)
            .limit(limit)
        )
        async with transaction_scope(self._session_factory) as session:
            return list((await session.execute(stmt)).scalars().all())

    # --------------------------------------------------------
    # SCORING WEIGHTS
    # --------------------------------------------------------

    async def fetch_scoring_weights(self) -> List[ScoringWeight]:
        async with transaction_scope(self._session_factory) as session:
            rows = (await session.execute(select(ScoringWeightRow))).scalars().all()
        return [
            ScoringWeight(
                category=row.category,
                base_weight=float(row.base_weight),
                severity_multipliers={
                    RestrictionSeverity(severity): float(multiplier)
                    for severity, multiplier in (row.severity_multipliers or {}).items()
                },
            )
            for row in rows
        ]

    async def upsert_scoring_weight(self, weight: ScoringWeight) -> None:
        multipliers = {s.value: m for s, m in weight.severity_multipliers.items()}
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(ScoringWeightRow, weight.category)
            if row is None:
                session.add(ScoringWeightRow(
                    category=weight.category,
                    base_weight=weight.base_weight,
                    severity_multipliers=multipliers,
                    updated_at=self._clock.now(),
                ))
            else:
                row.base_weight = weight.base_weight
                row.severity_multipliers = multipliers
                row.updated_at = self._clock.now()

    # --------------------------------------------------------
    # PERSISTENT CACHE ROWS
    # --------------------------------------------------------

    @staticmethod
    def _key_filter(key: AssessmentKey):
        if key.restriction_id is None:
            return (
                VenueSafetyScore.venue_id == key.venue_id,
                VenueSafetyScore.restriction_id.is_(None),
            )
        return (
            VenueSafetyScore.venue_id == key.venue_id,
            VenueSafetyScore.restriction_id == key.restriction_id,
        )

    async def _score_row(self, session: AsyncSession, key: AssessmentKey) -> Optional[VenueSafetyScore]:
        stmt = select(VenueSafetyScore).where(*self._key_filter(key))
        return (await session.execute(stmt)).scalar_one_or_none()

    async def read_cache_row(self, key: AssessmentKey) -> Optional[AssessmentResult]:
        try:
            async with transaction_scope(self._session_factory) as session:
                row = await self._score_row(session, key)
        except SQLAlchemyError as e:
            raise CacheStoreError(
                f"Failed to read cache row: {e}",
                venue_id=key.venue_id,
                restriction_id=key.restriction_id,
            ) from e
        if row is None:
            return None
        return AssessmentResult.from_dict({
            "venue_id": row.venue_id,
            "restriction_id": row.restriction_id,
            "overall_safety_score": row.overall_safety_score,
            "confidence_score": row.confidence_score,
            "safety_level": row.safety_level,
            "score_breakdown": row.score_breakdown,
            "data_sources": row.data_sources,
            "expert_override": row.expert_override,
            "computed_at": row.calculation_timestamp,
            "expires_at": row.expires_at,
            "recommendations": row.recommendations,
        })

    async def upsert_cache_row(self, result: AssessmentResult) -> None:
        payload = result.to_dict()
        try:
            async with transaction_scope(self._session_factory) as session:
                row = await self._score_row(session, result.key)
                if row is None:
                    row = VenueSafetyScore(venue_id=result.venue_id, restriction_id=result.restriction_id)
                    session.add(row)
                row.overall_safety_score = result.final_score
                row.confidence_score = result.confidence
                row.safety_level = result.safety_level.value
                row.score_breakdown = payload["score_breakdown"]
                row.data_sources = payload["data_sources"]
                row.recommendations = payload["recommendations"]
                row.calculation_timestamp = result.computed_at
                row.expires_at = result.expires_at
        except SQLAlchemyError as e:
            raise CacheStoreError(
                f"Failed to write cache row: {e}",
                venue_id=result.venue_id,
                restriction_id=result.restriction_id,
            ) from e

    async def mark_expired(self, venue_id: str, expired_at: datetime) -> int:
        stmt = (
            update(VenueSafetyScore)
            .where(VenueSafetyScore.venue_id == venue_id)
            .values(expires_at=expired_at)
        )
        try:
            async with transaction_scope(self._session_factory) as session:
                result = await session.execute(stmt)
        except SQLAlchemyError as e:
            raise CacheStoreError(f"Failed to expire cache rows: {e}", venue_id=venue_id) from e
        logger.debug(f"Marked {result.rowcount} persistent rows expired for venue {venue_id}")
        return int(result.rowcount or 0)

    async def find_stale_venue_ids(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> List[str]:
        oldest = func.min(VenueSafetyScore.calculation_timestamp)
        stmt = (
            select(VenueSafetyScore.venue_id)
            .where(or_(
                VenueSafetyScore.expires_at <= now,
                VenueSafetyScore.calculation_timestamp < stale_before,
            ))
            .group_by(VenueSafetyScore.venue_id)
            .order_by(oldest)
            .limit(limit)
        )
        async with transaction_scope(self._session_factory) as session:
            return list((await session.execute(stmt)).scalars().all())

    async def fetch_expert_override(self, key: AssessmentKey) -> bool:
        stmt = select(VenueSafetyScore.expert_override).where(*self._key_filter(key))
        async with transaction_scope(self._session_factory) as session:
            value = (await session.execute(stmt)).scalar_one_or_none()
        return bool(value)

    async def fetch_cached_levels(self) -> List[Tuple[SafetyLevel, int]]:
        stmt = select(VenueSafetyScore.safety_level, VenueSafetyScore.confidence_score)
        async with transaction_scope(self._session_factory) as session:
            rows = (await session.execute(stmt)).all()
        return [(SafetyLevel(level), int(confidence)) for level, confidence in rows]
