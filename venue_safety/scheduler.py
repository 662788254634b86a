"""
Venue Safety - Bulk Recalculation Scheduler.

============================================================
PURPOSE
============================================================
Time-boxed, rate-limited recomputation across many keys.

- bulk_recalculate(): explicit list of venues (+ restrictions)
- process_stale_queue(): venues whose persistent rows expired
  or are older than the stale window

Both are invoked externally (operator, cron, HTTP); nothing
here runs on its own timer.

============================================================
EXECUTION MODEL
============================================================
For each venue: the venue-wide key first, then each
restriction key. Items run sequentially with a fixed delay
between them. A failed item is recorded and the batch goes
on; a failed venue-wide key skips that venue's restriction
keys. Only the wall-clock budget ends a run early, leaving
the rest for the next invocation.

============================================================
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from .cache import TwoTierCacheManager
from .clock import ClockProtocol, SystemClock
from .config import BulkRecalculationConfig
from .exceptions import BulkRecalculationError
from .gateway import SafetyDataStore
from .types import AssessmentKey, BulkRecalculationResult


logger = logging.getLogger(__name__)


class BulkRecalculationScheduler:
    """
    Drives the cache manager over many keys with forced refresh.

    The cache manager is used directly (not the fail-safe facade)
    so that per-item failures are observable.
    """

    def __init__(
        self,
        cache: TwoTierCacheManager,
        store: SafetyDataStore,
        clock: Optional[ClockProtocol] = None,
        config: Optional[BulkRecalculationConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._cache = cache
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or BulkRecalculationConfig()
        self._sleep = sleep

    # --------------------------------------------------------
    # ENTRY POINTS
    # --------------------------------------------------------

    async def bulk_recalculate(
        self,
        venue_ids: Iterable[str],
        restriction_ids: Iterable[str] = (),
    ) -> BulkRecalculationResult:
        """
        Recompute the given venues, each venue-wide and per restriction.

        Args:
            venue_ids: Venues to recompute
            restriction_ids: Restrictions to recompute for every venue

        Returns:
            BulkRecalculationResult with per-item errors
        """
        return await self._run(
            list(venue_ids),
            list(restriction_ids),
            self._config.bulk_item_delay_seconds,
            "bulk",
        )

    async def process_stale_queue(self) -> BulkRecalculationResult:
        """
        Sweep venues with expired or old persistent rows.

        Raises:
            BulkRecalculationError: If the stale venues or the
                active restrictions cannot be enumerated
        """
        now = self._clock.now()
        stale_before = now - timedelta(days=self._config.stale_after_days)
        try:
            venue_ids = await self._store.find_stale_venue_ids(
                now, stale_before, self._config.batch_size
            )
            restriction_ids = await self._store.fetch_active_restriction_ids(
                self._config.max_restrictions_per_venue
            )
        except Exception as e:
            raise BulkRecalculationError(f"Failed to enumerate stale assessments: {e}") from e

        logger.info(
            f"Stale sweep: {len(venue_ids)} venues, "
            f"{len(restriction_ids)} active restrictions"
        )
        return await self._run(
            venue_ids,
            restriction_ids,
            self._config.inter_item_delay_seconds,
            "sweep",
        )

    # --------------------------------------------------------
    # EXECUTION
    # --------------------------------------------------------

    async def _run(
        self,
        venue_ids: Sequence[str],
        restriction_ids: Sequence[str],
        delay: float,
        label: str,
    ) -> BulkRecalculationResult:
        result = BulkRecalculationResult()
        started = self._clock.timestamp()
        deadline = started + self._config.time_budget_seconds
        keys_per_venue = 1 + len(restriction_ids)
        first_item = True

        for venue_index, venue_id in enumerate(venue_ids):
            remaining_venues = len(venue_ids) - venue_index - 1

            keys: List[AssessmentKey] = [AssessmentKey(venue_id)]
            keys.extend(AssessmentKey(venue_id, rid) for rid in restriction_ids)

            for key_index, key in enumerate(keys):
                if not first_item:
                    await self._sleep(delay)
                first_item = False

                if self._clock.timestamp() >= deadline:
                    result.stopped_early = True
                    result.skipped_count += (len(keys) - key_index) + remaining_venues * keys_per_venue
                    break

                succeeded = await self._refresh(key, result)
                if key.is_venue_wide and not succeeded:
                    result.skipped_count += len(keys) - 1
                    break

            if result.stopped_early:
                logger.warning(
                    f"{label} recalculation stopped after exhausting its "
                    f"{self._config.time_budget_seconds}s budget, "
                    f"{result.skipped_count} keys left for the next run"
                )
                break

        result.elapsed_seconds = self._clock.timestamp() - started
        logger.info(
            f"{label} recalculation finished: success={result.success_count} "
            f"errors={result.error_count} skipped={result.skipped_count} "
            f"elapsed={result.elapsed_seconds:.1f}s"
        )
        return result

    async def _refresh(self, key: AssessmentKey, result: BulkRecalculationResult) -> bool:
        try:
            await self._cache.get(key, force_refresh=True)
        except Exception as e:
            result.record_error(key, e)
            logger.exception(f"Recalculation failed for {key}")
            return False
        result.record_success()
        return True
