"""
Tests for the safety assessment HTTP API.
"""

from dataclasses import replace
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from venue_safety.api import create_app
from venue_safety.engine import build_conservative_fallback
from venue_safety.service import SafetyAssessmentService
from venue_safety.types import AssessmentKey, RestrictionSeverity, UserRestriction

from .conftest import NOW, seed_well_documented_venue


@pytest.fixture
def service(store, clock, config):
    return SafetyAssessmentService(store, clock, config)


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


# ============================================================
# ASSESSMENTS
# ============================================================


class TestAssessmentEndpoints:
    """Tests for the assessment routes."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_venue_assessment(self, client, store):
        seed_well_documented_venue(store)

        response = client.get("/safety/venues/venue-1")

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["safety_level"] == "safe"
        assert body["data"]["overall_safety_score"] == 100
        assert body["data"]["restriction_id"] is None

    def test_venue_assessment_for_user(self, client, store):
        peanut = store.add_restriction("peanut", "Peanut", RestrictionSeverity.LIFE_THREATENING)
        store.user_restrictions["user-1"] = [UserRestriction("user-1", peanut)]

        response = client.get("/safety/venues/venue-1", params={"user_id": "user-1"})

        data = response.json()["data"]
        assert data["user_id"] == "user-1"
        assert data["combined_safety_level"] == "danger"
        assert len(data["restriction_assessments"]) == 1
        assert data["critical_warnings"]

    def test_fallback_is_still_a_success_response(self, client, store):
        store.failing_venues.add("venue-1")

        response = client.get("/safety/venues/venue-1/restrictions/peanut")

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["is_fallback"] is True
        assert data["overall_safety_score"] == 30
        assert data["safety_level"] == "danger"

    def test_invalidate(self, client, service):
        client.get("/safety/venues/venue-1")

        response = client.post("/safety/venues/venue-1/invalidate")

        assert response.json()["data"] == {"venue_id": "venue-1", "invalidated": True}
        assert service.get_cache_size() == 0

    def test_trends(self, client):
        response = client.get("/safety/venues/venue-1/trends")

        data = response.json()["data"]
        assert data["direction"] == "insufficient_data"
        assert len(data["points"]) == 1

    def test_compare(self, client, store):
        seed_well_documented_venue(store, "venue-good")

        response = client.get(
            "/safety/compare", params=[("venue_ids", "venue-bad"), ("venue_ids", "venue-good")]
        )

        data = response.json()["data"]
        assert data["safest_venue_id"] == "venue-good"
        assert [e["venue_id"] for e in data["entries"]] == ["venue-good", "venue-bad"]

    def test_compare_requires_venues(self, client):
        assert client.get("/safety/compare").status_code == 422


# ============================================================
# STATISTICS AND BACKGROUND WORK
# ============================================================


class TestStatisticsAndBulkEndpoints:
    """Tests for statistics, bulk recalculation and the sweep."""

    def test_statistics(self, client):
        client.get("/safety/venues/venue-1")

        response = client.get("/safety/statistics")

        data = response.json()["data"]
        assert data["total_assessments"] == 1
        assert data["assessments_by_level"]["danger"] == 1

    def test_statistics_unavailable(self, client, store):
        store.fail_statistics = True

        response = client.get("/safety/statistics")

        assert response.status_code == 503
        assert response.json()["success"] is False
        assert "statistics" in response.json()["error"]

    def test_bulk_recalculate(self, client, store):
        store.failing_venues.add("venue-2")

        response = client.post(
            "/safety/bulk-recalculate",
            json={"venue_ids": ["venue-1", "venue-2"], "restriction_ids": ["peanut"]},
        )

        data = response.json()["data"]
        assert data["success_count"] == 2
        assert data["error_count"] == 1
        assert data["skipped_count"] == 1
        assert data["errors"][0]["venue_id"] == "venue-2"

    def test_bulk_recalculate_rejects_empty_list(self, client):
        response = client.post("/safety/bulk-recalculate", json={"venue_ids": []})

        assert response.status_code == 422

    def test_sweep(self, client, store):
        stale = build_conservative_fallback(AssessmentKey("venue-1"), NOW - timedelta(days=2))
        store.rows[AssessmentKey("venue-1")] = replace(stale, is_fallback=False)

        response = client.post("/safety/sweep")

        assert response.json()["data"]["success_count"] == 1

    def test_sweep_unavailable(self, client, store):
        store.fail_stale_lookup = True

        response = client.post("/safety/sweep")

        assert response.status_code == 503


# ============================================================
# SCORING WEIGHTS
# ============================================================


class TestWeightEndpoints:
    """Tests for reading and updating scoring weights."""

    def test_list_weights(self, client):
        response = client.get("/safety/weights")

        categories = {w["category"] for w in response.json()["data"]}
        assert "expert_assessment" in categories
        assert len(categories) == 11

    def test_update_weight(self, client, store):
        response = client.put(
            "/safety/weights/expert_assessment",
            json={"base_weight": 12.0, "severity_multipliers": {"severe": 1.5}},
        )

        assert response.status_code == 200
        assert response.json()["data"]["base_weight"] == 12.0
        assert store.weights["expert_assessment"].base_weight == 12.0

    def test_update_unknown_category(self, client):
        response = client.put("/safety/weights/ambience", json={"base_weight": 5.0})

        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_update_store_failure(self, client, store):
        store.fail_weight_writes = True

        response = client.put("/safety/weights/expert_assessment", json={"base_weight": 5.0})

        assert response.status_code == 503
