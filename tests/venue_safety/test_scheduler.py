"""
Tests for the Bulk Recalculation Scheduler.

============================================================
PURPOSE
============================================================
Covers per-item failure isolation, the wall-clock budget,
inter-item pacing and the stale queue sweep.

============================================================
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from venue_safety.config import BulkRecalculationConfig
from venue_safety.engine import build_conservative_fallback
from venue_safety.exceptions import BulkRecalculationError
from venue_safety.scheduler import BulkRecalculationScheduler
from venue_safety.types import AssessmentKey

from .conftest import NOW


def _row(venue_id, computed_at, expires_at):
    return replace(
        build_conservative_fallback(AssessmentKey(venue_id), computed_at),
        expires_at=expires_at,
        is_fallback=False,
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_scheduler(cache, store, clock, sleeps):
    """Build a scheduler whose sleep advances the mock clock."""

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock.advance(seconds)

    def factory(**overrides):
        config = BulkRecalculationConfig(
            inter_item_delay_seconds=overrides.pop("inter_item_delay_seconds", 0.05),
            bulk_item_delay_seconds=overrides.pop("bulk_item_delay_seconds", 0.1),
            **overrides,
        )
        return BulkRecalculationScheduler(cache, store, clock, config, sleep=fake_sleep)

    return factory


# ============================================================
# BULK RECALCULATION
# ============================================================


class TestBulkRecalculate:
    """Tests for bulk_recalculate()."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated_to_its_item(self, make_scheduler, store):
        store.failing_venues.add("venue-2")
        scheduler = make_scheduler()

        result = await scheduler.bulk_recalculate(["venue-1", "venue-2", "venue-3"])

        assert result.success_count == 2
        assert result.error_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].venue_id == "venue-2"
        assert result.errors[0].restriction_id is None
        assert not result.stopped_early

    @pytest.mark.asyncio
    async def test_each_venue_recomputed_per_restriction(self, make_scheduler, store):
        scheduler = make_scheduler()

        result = await scheduler.bulk_recalculate(["venue-1", "venue-2"], ["peanut", "gluten"])

        assert result.success_count == 6
        assert AssessmentKey("venue-2", "gluten") in store.rows

    @pytest.mark.asyncio
    async def test_failed_venue_skips_its_restrictions(self, make_scheduler, store):
        store.failing_venues.add("venue-2")
        scheduler = make_scheduler()

        result = await scheduler.bulk_recalculate(["venue-1", "venue-2"], ["peanut", "gluten"])

        assert result.success_count == 3
        assert result.error_count == 1
        assert result.skipped_count == 2

    @pytest.mark.asyncio
    async def test_bulk_refresh_bypasses_cache(self, make_scheduler, cache, store):
        await cache.get(AssessmentKey("venue-1"))
        fetches_before = store.signal_fetches
        scheduler = make_scheduler()

        await scheduler.bulk_recalculate(["venue-1"])

        assert store.signal_fetches == 2 * fetches_before

    @pytest.mark.asyncio
    async def test_delay_between_items_only(self, make_scheduler, sleeps):
        scheduler = make_scheduler()

        await scheduler.bulk_recalculate(["venue-1", "venue-2", "venue-3"])

        assert sleeps == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_time_budget_stops_early(self, make_scheduler):
        scheduler = make_scheduler(bulk_item_delay_seconds=4.0, time_budget_seconds=10.0)

        result = await scheduler.bulk_recalculate([f"venue-{i}" for i in range(5)])

        assert result.stopped_early
        assert result.success_count == 3
        assert result.skipped_count == 2
        assert result.elapsed_seconds == pytest.approx(12.0)

    @pytest.mark.asyncio
    async def test_empty_input(self, make_scheduler):
        result = await make_scheduler().bulk_recalculate([])

        assert result.success_count == 0
        assert result.to_dict()["errors"] == []


# ============================================================
# STALE QUEUE
# ============================================================


class TestProcessStaleQueue:
    """Tests for process_stale_queue()."""

    @pytest.mark.asyncio
    async def test_recomputes_expired_and_old_venues(self, make_scheduler, store, sleeps):
        store.rows[AssessmentKey("expired")] = _row(
            "expired", NOW - timedelta(days=2), NOW - timedelta(days=1)
        )
        store.rows[AssessmentKey("fresh")] = _row(
            "fresh", NOW - timedelta(hours=1), NOW + timedelta(hours=23)
        )
        store.rows[AssessmentKey("old")] = _row(
            "old", NOW - timedelta(days=40), NOW + timedelta(hours=1)
        )
        scheduler = make_scheduler()

        result = await scheduler.process_stale_queue()

        assert result.success_count == 2
        assert store.rows[AssessmentKey("expired")].computed_at > NOW - timedelta(days=1)
        assert store.rows[AssessmentKey("old")].computed_at > NOW - timedelta(days=1)
        assert store.rows[AssessmentKey("fresh")].computed_at == NOW - timedelta(hours=1)
        assert sleeps == [0.05]

    @pytest.mark.asyncio
    async def test_includes_active_restrictions(self, make_scheduler, store):
        store.add_restriction("peanut", "Peanut")
        store.rows[AssessmentKey("expired")] = _row("expired", NOW - timedelta(days=2), NOW)

        result = await make_scheduler().process_stale_queue()

        assert result.success_count == 2
        assert AssessmentKey("expired", "peanut") in store.rows

    @pytest.mark.asyncio
    async def test_batch_size_limits_venues(self, make_scheduler, store):
        for i in range(3):
            store.rows[AssessmentKey(f"v{i}")] = _row(f"v{i}", NOW - timedelta(days=50 + i), NOW)

        result = await make_scheduler(batch_size=1).process_stale_queue()

        assert result.success_count == 1
        assert store.rows[AssessmentKey("v2")].computed_at == NOW

    @pytest.mark.asyncio
    async def test_enumeration_failure_raises(self, make_scheduler, store):
        store.fail_stale_lookup = True

        with pytest.raises(BulkRecalculationError):
            await make_scheduler().process_stale_queue()
