"""
Venue Safety - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy models for the tables the engine reads and writes.

The schema and its migrations are owned elsewhere; these
mappings describe only the columns the engine touches.

============================================================
MODELS
============================================================
Read:
    DietaryRestrictionRow, UserRestrictionRow
    SafetyProtocolRow, ExpertAssessmentRow,
    CommunityVerificationRow, HealthRatingRow,
    CertificationRow, SafetyIncidentRow,
    ReviewSafetyAssessmentRow
Read/write:
    ScoringWeightRow      admin-tunable weights
    VenueSafetyScore      persistent cache tier

============================================================
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


# ============================================================
# RESTRICTIONS
# ============================================================


class DietaryRestrictionRow(Base):
    __tablename__ = "dietary_restrictions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    medical_severity_default: Mapped[str] = mapped_column(String(32), nullable=False, default="mild")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserRestrictionRow(Base):
    __tablename__ = "user_restrictions"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    restriction_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("dietary_restrictions.id"), nullable=False
    )
    severity: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# ============================================================
# SIGNAL TABLES
# ============================================================


class SafetyProtocolRow(Base):
    __tablename__ = "venue_safety_protocols"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    restriction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    has_staff_training: Mapped[bool] = mapped_column(Boolean, default=False)
    staff_training_frequency: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    last_training_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    has_dedicated_prep_area: Mapped[bool] = mapped_column(Boolean, default=False)
    has_dedicated_equipment: Mapped[bool] = mapped_column(Boolean, default=False)
    has_dedicated_fryer: Mapped[bool] = mapped_column(Boolean, default=False)
    has_cross_contamination_protocols: Mapped[bool] = mapped_column(Boolean, default=False)
    protocol_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_ingredient_tracking: Mapped[bool] = mapped_column(Boolean, default=False)
    supplier_verification: Mapped[bool] = mapped_column(Boolean, default=False)
    emergency_procedures: Mapped[bool] = mapped_column(Boolean, default=False)
    incident_response_plan: Mapped[bool] = mapped_column(Boolean, default=False)


class ExpertAssessmentRow(Base):
    __tablename__ = "expert_safety_assessments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assessment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confidence_level: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    overall_assessment_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    staff_training_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    kitchen_protocols_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    equipment_safety_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cross_contamination_prevention_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ingredient_sourcing_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    emergency_preparedness_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    restrictions_assessed: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)


class CommunityVerificationRow(Base):
    __tablename__ = "community_safety_verifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    verification_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confidence_in_verification: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    knowledge_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    protocol_compliance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    restriction_ids: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)


class HealthRatingRow(Base):
    __tablename__ = "venue_health_ratings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    inspection_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rating_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating_grade: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    critical_violations_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allergen_violations_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CertificationRow(Base):
    __tablename__ = "venue_certifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    certification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    scope_of_certification: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)


class SafetyIncidentRow(Base):
    __tablename__ = "safety_incidents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    incident_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    restriction_ids: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)


class ReviewSafetyAssessmentRow(Base):
    __tablename__ = "review_safety_assessments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    review_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    restriction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    safety_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# ============================================================
# SCORING WEIGHTS
# ============================================================


class ScoringWeightRow(Base):
    __tablename__ = "safety_scoring_weights"

    category: Mapped[str] = mapped_column(String(64), primary_key=True)
    base_weight: Mapped[float] = mapped_column(Float, nullable=False)
    severity_multipliers: Mapped[Dict[str, float]] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ============================================================
# PERSISTENT CACHE TIER
# ============================================================


class VenueSafetyScore(Base):
    """
    Persistent cache row: one per (venue, restriction) key.

    ``restriction_id`` is NULL for the venue-wide assessment.
    ``expert_override`` is set by administrators and never
    overwritten by recomputation.
    """

    __tablename__ = "venue_safety_scores"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    venue_id: Mapped[str] = mapped_column(String(64), nullable=False)
    restriction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    overall_safety_score: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    safety_level: Mapped[str] = mapped_column(String(16), nullable=False)
    score_breakdown: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    data_sources: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    recommendations: Mapped[List[Dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)

    expert_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expert_override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    calculation_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("venue_id", "restriction_id", name="uq_venue_safety_scores_key"),
        Index("ix_venue_safety_scores_expires_at", "expires_at"),
        Index("ix_venue_safety_scores_calculation_timestamp", "calculation_timestamp"),
    )
