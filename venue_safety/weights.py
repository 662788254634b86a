"""
Venue Safety - Weight Registry.

============================================================
PURPOSE
============================================================
Process-wide table of per-category scoring weights.

- Loaded from the store, refreshed on an interval
- Read-mostly: readers take an immutable snapshot
- A failed load keeps the previous snapshot in effect
- Updates only affect future recomputations

============================================================
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional

from .clock import ClockProtocol, SystemClock
from .config import DEFAULT_SCORING_WEIGHTS, WeightCategory, WeightRegistryConfig
from .exceptions import WeightRegistryError, WeightValidationError
from .gateway import SafetyDataStore
from .types import RestrictionSeverity, ScoringWeight


logger = logging.getLogger(__name__)


# ============================================================
# SNAPSHOT
# ============================================================


class ScoringWeightTable:
    """
    Immutable snapshot of the weight table.

    Categories missing from the store fall back to defaults.
    """

    def __init__(self, weights: Optional[Iterable[ScoringWeight]] = None):
        table: Dict[str, ScoringWeight] = dict(DEFAULT_SCORING_WEIGHTS)
        for weight in weights or ():
            table[weight.category] = weight
        self._weights = table

    def get(self, category: WeightCategory) -> ScoringWeight:
        return self._weights[category.value]

    def base_weight(self, category: WeightCategory) -> float:
        return self._weights[category.value].base_weight

    def all(self) -> List[ScoringWeight]:
        return list(self._weights.values())

    def __len__(self) -> int:
        return len(self._weights)


# ============================================================
# REGISTRY
# ============================================================


class WeightRegistry:
    """
    Holds the current weight snapshot and keeps it fresh.

    ============================================================
    REFRESH MODEL
    ============================================================
    - ensure_fresh(): reload when the snapshot is older than
      the refresh interval (called before each computation)
    - start(): optional background task refreshing on a timer
    - update_scoring_weight(): validate, persist, reload
    ============================================================
    """

    def __init__(
        self,
        store: SafetyDataStore,
        clock: Optional[ClockProtocol] = None,
        config: Optional[WeightRegistryConfig] = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or WeightRegistryConfig()
        self._table = ScoringWeightTable()
        self._loaded_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def table(self) -> ScoringWeightTable:
        return self._table

    @property
    def loaded_at(self) -> Optional[float]:
        return self._loaded_at

    def get_scoring_weights(self) -> List[ScoringWeight]:
        return self._table.all()

    def _is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        age = self._clock.timestamp() - self._loaded_at
        return age >= self._config.refresh_interval_seconds

    async def ensure_fresh(self) -> ScoringWeightTable:
        """Reload the snapshot if it is older than the refresh interval."""
        if self._is_stale():
            async with self._lock:
                if self._is_stale():
                    await self._load()
        return self._table

    async def refresh(self) -> ScoringWeightTable:
        """Force a reload from the store."""
        async with self._lock:
            await self._load()
        return self._table

    async def _load(self) -> None:
        # Stamped before the fetch: a failing store is retried once per interval.
        self._loaded_at = self._clock.timestamp()
        try:
            weights = await self._store.fetch_scoring_weights()
        except Exception as e:
            logger.warning(f"Failed to load scoring weights, keeping previous snapshot: {e}")
            return

        self._table = ScoringWeightTable(weights)
        logger.info(f"Loaded {len(weights)} scoring weights from store")

    # --------------------------------------------------------
    # ADMINISTRATIVE UPDATE
    # --------------------------------------------------------

    def validate_update(
        self,
        category: str,
        base_weight: float,
        severity_multipliers: Mapping[str, float],
    ) -> ScoringWeight:
        """
        Validate an update request and build the new weight.

        Raises:
            WeightValidationError: For an unknown category, an
                out-of-range base weight or an unknown severity
        """
        try:
            WeightCategory(category)
        except ValueError:
            raise WeightValidationError(f"Unknown scoring category: {category}", category=category)

        low = self._config.min_base_weight
        high = self._config.max_base_weight
        if not low <= base_weight <= high:
            raise WeightValidationError(
                f"base_weight {base_weight} outside [{low}, {high}]",
                category=category,
            )

        multipliers: Dict[RestrictionSeverity, float] = {}
        for severity, multiplier in severity_multipliers.items():
            try:
                multipliers[RestrictionSeverity(severity)] = float(multiplier)
            except ValueError:
                raise WeightValidationError(
                    f"Unknown severity in multiplier table: {severity}",
                    category=category,
                )
            if multiplier < 0:
                raise WeightValidationError(
                    f"Negative multiplier for {severity}: {multiplier}",
                    category=category,
                )

        return ScoringWeight(
            category=category,
            base_weight=float(base_weight),
            severity_multipliers=multipliers,
        )

    async def update_scoring_weight(
        self,
        category: str,
        base_weight: float,
        severity_multipliers: Mapping[str, float],
    ) -> ScoringWeight:
        """
        Persist a new weight for a category.

        Already-cached assessments are not recomputed.

        Raises:
            WeightValidationError: Invalid input
            WeightRegistryError: Store write failed
        """
        weight = self.validate_update(category, base_weight, severity_multipliers)

        try:
            await self._store.upsert_scoring_weight(weight)
        except Exception as e:
            raise WeightRegistryError(
                f"Failed to persist scoring weight {category}: {e}",
                details={"category": category},
            ) from e

        logger.info(f"Scoring weight updated: {category} base_weight={weight.base_weight}")
        await self.refresh()
        return weight

    # --------------------------------------------------------
    # BACKGROUND REFRESH
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic refresh task."""
        if self._task is not None:
            return
        await self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(
            f"Weight registry refresh started "
            f"(interval={self._config.refresh_interval_seconds}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Weight registry refresh stopped")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.refresh_interval_seconds)
            await self.refresh()
