"""
Venue Safety - Two-Tier Cache Manager.

============================================================
PURPOSE
============================================================
Wraps the assessment engine behind two cache tiers:

    memory      process-local map, AssessmentKey -> entry
    persistent  one cache row per key in the store

Contract: get(key, force_refresh) -> AssessmentResult

1. Not forced: memory entry with now < expires_at -> return
2. Not forced: persistent row with now < expires_at ->
   promote to memory, return
3. Otherwise recompute, upsert the row, insert into memory,
   return

A result is never served past expires_at without a
recomputation attempt.

============================================================
INVALIDATION
============================================================
invalidate(venue_id) is lazy: it purges the venue's memory
entries, detaches in-flight computations for the venue and
marks every persistent row of the venue expired. Nothing is
recomputed until the next read.

A computation that overlaps an invalidation still answers
its callers but is not written to either tier. Persistent
rows computed before a venue's last invalidation count as
misses, even when marking them expired failed.

============================================================
CONSISTENCY
============================================================
Single-instance deployment is assumed. Invalidation does not
reach the memory tier of other processes; those serve their
entries until their own expiry.

============================================================
"""

import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

from .clock import ClockProtocol, SystemClock
from .config import CacheConfig
from .engine import SafetyAssessmentEngine
from .gateway import SafetyDataStore
from .singleflight import SingleFlight
from .types import AssessmentKey, AssessmentResult


logger = logging.getLogger(__name__)


# ============================================================
# CACHE ENTRY AND STATS
# ============================================================


@dataclass
class CacheEntry:
    """Memory-tier entry for one assessment."""
    result: AssessmentResult
    stored_at: datetime
    hits: int = 0

    @property
    def expires_at(self) -> datetime:
        return self.result.expires_at

    def is_fresh(self, now: datetime) -> bool:
        return now < self.result.expires_at


@dataclass
class CacheStats:
    memory_hits: int = 0
    persistent_hits: int = 0
    misses: int = 0
    recomputations: int = 0
    coalesced: int = 0
    persistent_read_failures: int = 0
    persistent_write_failures: int = 0

    @property
    def hit_rate(self) -> float:
        """Share of reads answered by either tier, 0.0-1.0."""
        hits = self.memory_hits + self.persistent_hits
        total = hits + self.misses
        return hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory_hits": self.memory_hits,
            "persistent_hits": self.persistent_hits,
            "misses": self.misses,
            "recomputations": self.recomputations,
            "coalesced": self.coalesced,
            "persistent_read_failures": self.persistent_read_failures,
            "persistent_write_failures": self.persistent_write_failures,
            "hit_rate": round(self.hit_rate, 4),
        }


class _MemoryTier:
    """Mutex-guarded map keyed by AssessmentKey."""

    def __init__(self):
        self._entries: Dict[AssessmentKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: AssessmentKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: AssessmentKey, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def remove(self, key: AssessmentKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_venue(self, venue_id: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.venue_id == venue_id]
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
# CACHE MANAGER
# ============================================================


class TwoTierCacheManager:
    """
    Memory + persistent caching around the assessment engine.

    Concurrent misses for the same key share one computation
    unless single-flight is disabled in the config.
    """

    def __init__(
        self,
        engine: SafetyAssessmentEngine,
        store: SafetyDataStore,
        clock: Optional[ClockProtocol] = None,
        config: Optional[CacheConfig] = None,
    ):
        self._engine = engine
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or CacheConfig()

        self._memory = _MemoryTier()
        self._flights: SingleFlight[AssessmentKey, AssessmentResult] = SingleFlight()
        self._generations: Dict[str, int] = {}
        self._last_generation = 0
        self._invalidated_at: Dict[str, datetime] = {}
        self._history: "OrderedDict[AssessmentKey, Deque[AssessmentResult]]" = OrderedDict()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        self._stats.coalesced = self._flights.coalesced
        return self._stats

    @property
    def size(self) -> int:
        return len(self._memory)

    # --------------------------------------------------------
    # READ PATH
    # --------------------------------------------------------

    async def get(self, key: AssessmentKey, force_refresh: bool = False) -> AssessmentResult:
        """
        Return a fresh assessment for a key.

        Args:
            key: Assessment key
            force_refresh: Skip both tiers and recompute

        Raises:
            SafetyAssessmentError: If recomputation fails
        """
        if not force_refresh:
            cached = self._read_memory(key)
            if cached is not None:
                return cached

            cached = await self._read_persistent(key)
            if cached is not None:
                return cached

        self._stats.misses += 1
        logger.debug(f"Cache miss for {key} (force_refresh={force_refresh})")

        if self._config.single_flight_enabled:
            return await self._flights.do(key, lambda: self._recompute(key))
        return await self._recompute(key)

    def _read_memory(self, key: AssessmentKey) -> Optional[AssessmentResult]:
        entry = self._memory.get(key)
        if entry is None:
            return None

        now = self._clock.now()
        if not entry.is_fresh(now):
            self._memory.remove(key)
            logger.debug(f"Memory entry expired for {key}")
            return None

        entry.hits += 1
        self._stats.memory_hits += 1
        logger.debug(f"Memory cache hit for {key}")
        return entry.result

    async def _read_persistent(self, key: AssessmentKey) -> Optional[AssessmentResult]:
        try:
            row = await self._store.read_cache_row(key)
        except Exception as e:
            self._stats.persistent_read_failures += 1
            logger.warning(f"Persistent cache read failed for {key}, treating as miss: {e}")
            return None

        if row is None:
            return None

        now = self._clock.now()
        if row.is_expired(now):
            logger.debug(f"Persistent row expired for {key}")
            return None

        invalidated_at = self._invalidated_at.get(key.venue_id)
        if invalidated_at is not None and row.computed_at < invalidated_at:
            logger.debug(f"Persistent row for {key} predates invalidation at {invalidated_at}")
            return None

        self._memory.put(key, CacheEntry(result=row, stored_at=now))
        self._stats.persistent_hits += 1
        logger.debug(f"Persistent cache hit for {key}, promoted to memory")
        return row

    # --------------------------------------------------------
    # RECOMPUTATION
    # --------------------------------------------------------

    async def _recompute(self, key: AssessmentKey) -> AssessmentResult:
        generation = self._generations.get(key.venue_id, 0)

        result = await self._engine.compute(key)
        self._stats.recomputations += 1

        if self._generations.get(key.venue_id, 0) != generation:
            logger.info(f"Venue {key.venue_id} invalidated during computation of {key}, result not cached")
            return result

        try:
            await self._store.upsert_cache_row(result)
        except Exception as e:
            self._stats.persistent_write_failures += 1
            logger.warning(f"Persistent cache write failed for {key}: {e}")

        self._memory.put(key, CacheEntry(result=result, stored_at=self._clock.now()))
        self._remember(result)
        return result

    def _remember(self, result: AssessmentResult) -> None:
        history = self._history.get(result.key)
        if history is None:
            history = deque(maxlen=self._config.history_size)
            self._history[result.key] = history
        else:
            self._history.move_to_end(result.key)
        history.append(result)

        while len(self._history) > self._config.history_max_keys:
            self._history.popitem(last=False)

    def history(self, key: AssessmentKey) -> List[AssessmentResult]:
        """Recomputed results of a key, oldest first."""
        return list(self._history.get(key, ()))

    # --------------------------------------------------------
    # INVALIDATION
    # --------------------------------------------------------

    async def invalidate(self, venue_id: str) -> int:
        """
        Lazily invalidate every cached assessment of a venue.

        Returns:
            Number of memory entries purged
        """
        now = self._clock.now()
        self._prune_invalidations(now)
        self._last_generation += 1
        self._generations[venue_id] = self._last_generation
        self._invalidated_at[venue_id] = now
        purged = self._memory.purge_venue(venue_id)
        detached = self._flights.forget_where(lambda key: key.venue_id == venue_id)

        rows = 0
        try:
            rows = await self._store.mark_expired(venue_id, now)
        except Exception as e:
            logger.warning(f"Failed to expire persistent rows for venue {venue_id}: {e}")

        logger.info(
            f"Invalidated venue {venue_id}: memory={purged} "
            f"in_flight={detached} persistent_rows={rows}"
        )
        return purged

    def _prune_invalidations(self, now: datetime) -> None:
        # Rows computed before an invalidation this old have expired on their own.
        horizon = now - timedelta(seconds=self._config.assessment_ttl_seconds)
        stale = [venue_id for venue_id, at in self._invalidated_at.items() if at <= horizon]
        for venue_id in stale:
            del self._invalidated_at[venue_id]
            self._generations.pop(venue_id, None)

    def clear(self) -> None:
        """Drop the memory tier and recomputation history. Persistent rows are untouched."""
        self._memory.clear()
        self._history.clear()
        logger.info("Memory cache cleared")
