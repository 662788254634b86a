"""
Tests for the Assessment Engine.

============================================================
PURPOSE
============================================================
End-to-end pipeline runs against the in-memory store:
restriction resolution, data source summaries, failure
typing and the conservative fallback.

============================================================
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from venue_safety.engine import (
    FALLBACK_CONFIDENCE,
    FALLBACK_SCORE,
    build_conservative_fallback,
    summarize_data_sources,
)
from venue_safety.exceptions import DataSourceError, ScoringError
from venue_safety.types import (
    AssessmentKey,
    RawSignalSet,
    RestrictionSeverity,
    SafetyLevel,
    SignalTable,
)

from .conftest import (
    NOW,
    expert,
    incident,
    inspection,
    seed_well_documented_venue,
    verification,
)


# ============================================================
# PIPELINE
# ============================================================


class TestSafetyAssessmentEngine:
    """Tests for SafetyAssessmentEngine.compute()."""

    @pytest.mark.asyncio
    async def test_venue_without_signals_is_danger(self, engine, store):
        for severity in RestrictionSeverity:
            store.add_restriction(severity.value, severity.value, severity)
            result = await engine.compute(AssessmentKey("empty-venue", severity.value))

            assert result.breakdown.raw_total == 0.0
            assert result.confidence == 0
            assert result.final_score == 0
            assert result.safety_level is SafetyLevel.DANGER

    @pytest.mark.asyncio
    async def test_well_documented_venue_is_safe(self, engine, store):
        seed_well_documented_venue(store)

        result = await engine.compute(AssessmentKey("venue-1"))

        assert result.breakdown.raw_total == 100.0
        assert result.breakdown.severity_adjusted == 100.0
        assert result.confidence == 100
        assert result.final_score == 100
        assert result.safety_level is SafetyLevel.SAFE
        assert result.recommendations == ()
        assert not result.is_fallback

    @pytest.mark.asyncio
    async def test_life_threatening_restriction_uses_strict_ladder(self, engine, store):
        seed_well_documented_venue(store)
        store.add_restriction("sesame", "Sesame", RestrictionSeverity.LIFE_THREATENING)

        with patch.object(store, "_in_scope", return_value=True):
            result = await engine.compute(AssessmentKey("venue-1", "sesame"))

        assert result.breakdown.severity_adjusted == 80.0
        assert result.final_score == 80
        assert result.safety_level is SafetyLevel.CAUTION

    @pytest.mark.asyncio
    async def test_unknown_restriction_treated_as_mild(self, engine, store):
        seed_well_documented_venue(store)

        with patch.object(store, "_in_scope", return_value=True):
            result = await engine.compute(AssessmentKey("venue-1", "not-in-catalogue"))

        assert result.final_score == 100
        assert result.safety_level is SafetyLevel.SAFE

    @pytest.mark.asyncio
    async def test_expiry_and_timestamps(self, engine, store):
        result = await engine.compute(AssessmentKey("venue-1"))

        assert result.computed_at == NOW
        assert result.expires_at == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_expert_override_flag_passed_through(self, engine, store):
        key = AssessmentKey("venue-1")
        store.overrides.add(key)

        result = await engine.compute(key)

        assert result.expert_override is True

    @pytest.mark.asyncio
    async def test_signal_failure_raises_data_source_error(self, engine, store):
        store.failing_tables.add(SignalTable.CERTIFICATIONS)

        with pytest.raises(DataSourceError) as exc_info:
            await engine.compute(AssessmentKey("venue-1"))

        assert exc_info.value.table == "venue_certifications"
        assert exc_info.value.venue_id == "venue-1"

    @pytest.mark.asyncio
    async def test_unexpected_failure_wrapped_in_scoring_error(self, engine, store):
        with patch.object(engine._composer, "compose", side_effect=ZeroDivisionError("boom")):
            with pytest.raises(ScoringError) as exc_info:
                await engine.compute(AssessmentKey("venue-1", "peanut"))

        assert exc_info.value.restriction_id == "peanut"
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    @pytest.mark.asyncio
    async def test_weights_loaded_once_per_interval(self, engine, store, clock):
        await engine.compute(AssessmentKey("venue-1"))
        await engine.compute(AssessmentKey("venue-2"))
        assert store.weight_loads == 1

        clock.advance(hours=1)
        await engine.compute(AssessmentKey("venue-1"))
        assert store.weight_loads == 2


# ============================================================
# DATA SOURCES AND FALLBACK
# ============================================================


class TestDataSourceSummary:
    """Tests for summarize_data_sources()."""

    def test_freshness_from_youngest_dated_evidence(self):
        signals = RawSignalSet(
            expert_assessments=(expert(days_ago=12.5),),
            community_verifications=(verification(days_ago=7.9),),
            health_inspections=(inspection(days_ago=3.2),),
        )

        summary = summarize_data_sources(signals, NOW)

        assert summary.data_freshness_days == 3
        assert summary.expert_assessments_count == 1
        assert summary.last_expert_assessment_date == NOW - timedelta(days=12.5)

    def test_no_dated_evidence(self):
        signals = RawSignalSet(incident_reports=(incident(days_ago=40),))

        summary = summarize_data_sources(signals, NOW)

        assert summary.data_freshness_days == 0
        assert summary.incident_reports_count == 1
        assert summary.last_incident_date == NOW - timedelta(days=40)


class TestConservativeFallback:
    """Tests for the fail-safe result."""

    def test_fallback_values(self):
        result = build_conservative_fallback(AssessmentKey("venue-1", "peanut"), NOW)

        assert result.final_score == FALLBACK_SCORE == 30
        assert result.confidence == FALLBACK_CONFIDENCE == 10
        assert result.safety_level is SafetyLevel.DANGER
        assert result.expires_at == NOW + timedelta(hours=1)
        assert result.data_sources.data_freshness_days == 999
        assert result.is_fallback

    def test_fallback_serializes(self):
        data = build_conservative_fallback(AssessmentKey("venue-1"), NOW).to_dict()

        assert data["overall_safety_score"] == 30
        assert data["safety_level"] == "danger"
        assert data["restriction_id"] is None
        assert data["is_fallback"] is True
