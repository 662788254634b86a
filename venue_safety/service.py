"""
Venue Safety - Assessment Service.

============================================================
PURPOSE
============================================================
The facade callers use. Constructed once at process start
and passed by reference to handlers; owns the weight
registry, the cache manager and the bulk scheduler.

============================================================
FAIL-SAFE
============================================================
Assessment reads never raise. Any failure yields the
conservative fallback (score 30, confidence 10, DANGER,
one hour expiry), which is never cached.

Administrative calls (weight updates, sweeps, statistics)
propagate their errors.

============================================================
REQUEST CACHE
============================================================
get_venue_safety_assessment() keeps a short-lived map on top
of the cache manager to absorb duplicate calls. It is purged
for a venue on invalidation and on bulk recalculation.

============================================================
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .cache import TwoTierCacheManager
from .classifier import combine_safety_levels
from .clock import ClockProtocol, SystemClock
from .config import SafetyAssessmentConfig
from .engine import SafetyAssessmentEngine, build_conservative_fallback
from .exceptions import DataSourceError
from .gateway import SafetyDataStore, SignalGateway
from .scheduler import BulkRecalculationScheduler
from .types import (
    AssessmentKey,
    AssessmentResult,
    BulkRecalculationResult,
    RestrictionSeverity,
    SafetyLevel,
    SafetyStatistics,
    SafetyTrend,
    ScoringWeight,
    SignalTable,
    TrendDirection,
    TrendPoint,
    UserRestriction,
    UserSafetyAssessment,
    VenueComparison,
    VenueComparisonEntry,
)
from .weights import WeightRegistry


logger = logging.getLogger(__name__)


FALLBACK_USER_WARNING = "Unable to calculate safety assessment. Please exercise extreme caution."


# ============================================================
# REQUEST CACHE
# ============================================================


class _RequestCache:
    """
    Short-TTL map absorbing duplicate facade calls.

    An entry is dropped once its TTL lapses or the assessment
    it holds expires, whichever comes first.
    """

    def __init__(self, clock: ClockProtocol, ttl_seconds: float):
        self._clock = clock
        self._ttl = ttl_seconds
        self._entries: Dict[Tuple[str, Optional[str]], Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0

    def get(self, key: Tuple[str, Optional[str]]) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if (
                self._clock.timestamp() - stored_at >= self._ttl
                or self._clock.now() >= value.expires_at
            ):
                del self._entries[key]
                return None
            self.hits += 1
            return value

    def put(self, key: Tuple[str, Optional[str]], value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock.timestamp(), value)

    def purge_venue(self, venue_id: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key[0] == venue_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ============================================================
# SERVICE
# ============================================================


class SafetyAssessmentService:
    """
    Safety assessment facade.

    Usage:
        service = SafetyAssessmentService(store)
        await service.start()
        result = await service.calculate_safety_assessment("venue-1", "peanut")
    """

    def __init__(
        self,
        store: SafetyDataStore,
        clock: Optional[ClockProtocol] = None,
        config: Optional[SafetyAssessmentConfig] = None,
    ):
        self.config = config or SafetyAssessmentConfig()
        self._store = store
        self._clock = clock or SystemClock()

        self._gateway = SignalGateway(store)
        self.weights = WeightRegistry(store, self._clock, self.config.weights)
        self.engine = SafetyAssessmentEngine(self._gateway, self.weights, self._clock, self.config)
        self.cache = TwoTierCacheManager(self.engine, store, self._clock, self.config.cache)
        self.scheduler = BulkRecalculationScheduler(self.cache, store, self._clock, self.config.bulk)
        self._requests = _RequestCache(self._clock, self.config.service.request_cache_ttl_seconds)

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        await self.weights.start()
        logger.info("Safety assessment service started")

    async def stop(self) -> None:
        await self.weights.stop()
        logger.info("Safety assessment service stopped")

    # --------------------------------------------------------
    # ASSESSMENTS
    # --------------------------------------------------------

    async def calculate_safety_assessment(
        self,
        venue_id: str,
        restriction_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> AssessmentResult:
        """
        Assessment of one key. Never raises.

        Args:
            venue_id: Venue to assess
            restriction_id: Restriction, or None for venue-wide
            force_refresh: Skip both cache tiers
        """
        key = AssessmentKey(venue_id, restriction_id)
        try:
            return await self.cache.get(key, force_refresh=force_refresh)
        except Exception:
            logger.exception(f"Safety assessment failed for {key}, returning conservative fallback")
            return build_conservative_fallback(
                key, self._clock.now(), self.config.cache.fallback_ttl_seconds
            )

    async def calculate_multiple_restrictions_assessment(
        self,
        venue_id: str,
        restriction_ids: Iterable[str],
        force_refresh: bool = False,
    ) -> List[AssessmentResult]:
        return list(await asyncio.gather(*(
            self.calculate_safety_assessment(venue_id, rid, force_refresh)
            for rid in restriction_ids
        )))

    async def get_user_specific_safety_assessment(
        self,
        venue_id: str,
        user_id: str,
        force_refresh: bool = False,
    ) -> UserSafetyAssessment:
        """
        Venue assessment against every active restriction of a user.

        combined_safety_level is the most restrictive per-restriction
        level; a user without restrictions gets the venue-wide level.
        """
        try:
            restrictions = await self._gateway.fetch_user_restrictions(user_id)
            overall = await self.calculate_safety_assessment(venue_id, None, force_refresh)

            if not restrictions:
                return UserSafetyAssessment(
                    venue_id=venue_id,
                    user_id=user_id,
                    overall=overall,
                    per_restriction=(),
                    combined_safety_level=overall.safety_level,
                )

            per_restriction = await self.calculate_multiple_restrictions_assessment(
                venue_id,
                [ur.restriction.id for ur in restrictions],
                force_refresh,
            )
            return UserSafetyAssessment(
                venue_id=venue_id,
                user_id=user_id,
                overall=overall,
                per_restriction=tuple(per_restriction),
                combined_safety_level=combine_safety_levels(r.safety_level for r in per_restriction),
                critical_warnings=tuple(self._critical_warnings(per_restriction, restrictions)),
            )

        except Exception:
            logger.exception(
                f"User-specific assessment failed for venue {venue_id} user {user_id}, "
                f"returning conservative fallback"
            )
            fallback = build_conservative_fallback(
                AssessmentKey(venue_id),
                self._clock.now(),
                self.config.cache.fallback_ttl_seconds,
            )
            return UserSafetyAssessment(
                venue_id=venue_id,
                user_id=user_id,
                overall=fallback,
                per_restriction=(),
                combined_safety_level=SafetyLevel.DANGER,
                critical_warnings=(FALLBACK_USER_WARNING,),
            )

    def _critical_warnings(
        self,
        assessments: List[AssessmentResult],
        restrictions: List[UserRestriction],
    ) -> List[str]:
        warnings = []
        threshold = self.config.service.low_confidence_threshold

        for assessment, user_restriction in zip(assessments, restrictions):
            name = user_restriction.restriction.name
            severity = user_restriction.effective_severity

            if assessment.safety_level is SafetyLevel.DANGER:
                warnings.append(
                    f"CRITICAL: High risk detected for {name}. "
                    f"Strongly recommend avoiding this venue."
                )
            if (
                assessment.safety_level is SafetyLevel.WARNING
                and severity is RestrictionSeverity.LIFE_THREATENING
            ):
                warnings.append(
                    f"WARNING: Limited safety data for life-threatening {name} allergy. "
                    f"Exercise extreme caution."
                )
            if assessment.confidence < threshold:
                warnings.append(
                    f"NOTICE: Low confidence in safety assessment for {name}. "
                    f"Verification recommended."
                )

        return warnings

    async def get_venue_safety_assessment(
        self,
        venue_id: str,
        user_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> Union[AssessmentResult, UserSafetyAssessment]:
        """
        Venue-wide assessment, or the user-specific one when a user is given.

        Served from the request cache unless forced.
        """
        request_key = (venue_id, user_id)
        if not force_refresh:
            cached = self._requests.get(request_key)
            if cached is not None:
                logger.debug(f"Request cache hit for {request_key}")
                return cached

        if user_id is None:
            value: Union[AssessmentResult, UserSafetyAssessment] = (
                await self.calculate_safety_assessment(venue_id, None, force_refresh)
            )
            is_fallback = value.is_fallback
        else:
            value = await self.get_user_specific_safety_assessment(venue_id, user_id, force_refresh)
            is_fallback = value.has_fallback

        if not is_fallback:
            self._requests.put(request_key, value)
        return value

    # --------------------------------------------------------
    # READ-ONLY VIEWS
    # --------------------------------------------------------

    async def compare_venue_safety(
        self,
        venue_ids: Iterable[str],
        restriction_id: Optional[str] = None,
    ) -> VenueComparison:
        """Rank venues safest first: level, then score, then confidence."""
        results = await asyncio.gather(*(
            self.calculate_safety_assessment(venue_id, restriction_id)
            for venue_id in dict.fromkeys(venue_ids)
        ))
        entries = sorted(
            (
                VenueComparisonEntry(
                    venue_id=r.venue_id,
                    safety_level=r.safety_level,
                    final_score=r.final_score,
                    confidence=r.confidence,
                    is_fallback=r.is_fallback,
                )
                for r in results
            ),
            key=lambda e: (e.safety_level.severity_order, -e.final_score, -e.confidence),
        )
        return VenueComparison(
            restriction_id=restriction_id,
            entries=tuple(entries),
            generated_at=self._clock.now(),
        )

    async def get_safety_trends(
        self,
        venue_id: str,
        restriction_id: Optional[str] = None,
    ) -> SafetyTrend:
        """Score trajectory from the cache manager's history plus the current result."""
        key = AssessmentKey(venue_id, restriction_id)
        current = await self.calculate_safety_assessment(venue_id, restriction_id)

        results = [r for r in self.cache.history(key) if not r.is_fallback]
        if not current.is_fallback and all(r.computed_at != current.computed_at for r in results):
            results.append(current)
        results.sort(key=lambda r: r.computed_at)

        points = tuple(
            TrendPoint(
                computed_at=r.computed_at,
                final_score=r.final_score,
                confidence=r.confidence,
                safety_level=r.safety_level,
            )
            for r in results
        )

        if len(points) < 2:
            return SafetyTrend(key=key, points=points, direction=TrendDirection.INSUFFICIENT_DATA)

        change = points[-1].final_score - points[0].final_score
        threshold = self.config.service.trend_change_threshold
        if change > threshold:
            direction = TrendDirection.IMPROVING
        elif change < -threshold:
            direction = TrendDirection.DECLINING
        else:
            direction = TrendDirection.STABLE

        return SafetyTrend(key=key, points=points, direction=direction, score_change=change)

    async def get_safety_statistics(self) -> SafetyStatistics:
        """
        Aggregate statistics over persisted assessments.

        Raises:
            DataSourceError: If the store cannot be read
        """
        try:
            levels = await self._store.fetch_cached_levels()
            expert_count = await self._store.count_signals(SignalTable.EXPERT_ASSESSMENTS)
            community_count = await self._store.count_signals(SignalTable.COMMUNITY_VERIFICATIONS)
        except Exception as e:
            raise DataSourceError(f"Failed to load safety statistics: {e}") from e

        by_level: Dict[SafetyLevel, int] = {level: 0 for level in SafetyLevel}
        for level, _ in levels:
            by_level[level] += 1

        avg_confidence = (
            round(sum(confidence for _, confidence in levels) / len(levels), 2)
            if levels
            else 0.0
        )

        return SafetyStatistics(
            total_assessments=len(levels),
            assessments_by_level=by_level,
            avg_confidence_score=avg_confidence,
            expert_assessments_count=expert_count,
            community_verifications_count=community_count,
            cache_hit_rate=round(self.cache.stats.hit_rate, 4),
            memory_cache_size=self.cache.size,
            request_cache_size=len(self._requests),
        )

    # --------------------------------------------------------
    # CACHE MAINTENANCE AND BULK WORK
    # --------------------------------------------------------

    async def invalidate_venue_cache(self, venue_id: str) -> None:
        await self.cache.invalidate(venue_id)
        self._requests.purge_venue(venue_id)

    async def bulk_recalculate_assessments(
        self,
        venue_ids: Iterable[str],
        restriction_ids: Iterable[str] = (),
    ) -> BulkRecalculationResult:
        venue_ids = list(venue_ids)
        result = await self.scheduler.bulk_recalculate(venue_ids, restriction_ids)
        for venue_id in venue_ids:
            self._requests.purge_venue(venue_id)
        return result

    async def process_stale_assessments(self) -> BulkRecalculationResult:
        return await self.scheduler.process_stale_queue()

    def clear_cache(self) -> None:
        self.cache.clear()
        self._requests.clear()

    def get_cache_size(self) -> int:
        return self.cache.size

    # --------------------------------------------------------
    # SCORING WEIGHTS
    # --------------------------------------------------------

    async def get_scoring_weights(self) -> List[ScoringWeight]:
        await self.weights.ensure_fresh()
        return self.weights.get_scoring_weights()

    async def update_scoring_weight(
        self,
        category: str,
        base_weight: float,
        severity_multipliers: Mapping[str, float],
    ) -> ScoringWeight:
        """
        Persist a new category weight.

        Raises:
            WeightValidationError: Invalid input
            WeightRegistryError: Store write failed
        """
        return await self.weights.update_scoring_weight(category, base_weight, severity_multipliers)
