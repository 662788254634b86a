"""
Venue Safety - Data Source Gateway.

============================================================
PURPOSE
============================================================
Typed boundary between the engine and the persistent store.

- SafetyDataStore: abstract store interface (signals, weights,
  cache rows, restrictions)
- SignalGateway: gathers the seven raw signal collections
  for one assessment key

============================================================
FILTERING CONTRACT
============================================================
Implementations of fetch_signals return only records that
may influence the assessment:

- expert assessments: published only
- health inspections: current only, newest 5
- certifications: active and unexpired, scoped to the
  restriction name when a restriction is given
- incidents: within the last 730 days
- restriction-scoped collections: filtered by membership

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .exceptions import DataSourceError
from .types import (
    AssessmentKey,
    AssessmentResult,
    DietaryRestriction,
    RawSignalSet,
    SafetyLevel,
    ScoringWeight,
    SignalTable,
    UserRestriction,
)


logger = logging.getLogger(__name__)


# ============================================================
# STORE INTERFACE
# ============================================================


class SafetyDataStore(ABC):
    """
    Abstract interface over the persistent relational store.

    All operations are coroutines; every call is a suspension
    point for the calling task.
    """

    # --------------------------------------------------------
    # SIGNALS
    # --------------------------------------------------------

    @abstractmethod
    async def fetch_signals(
        self,
        table: SignalTable,
        venue_id: str,
        restriction_id: Optional[str] = None,
    ) -> Sequence:
        """Fetch the filtered records of one signal table."""
        pass

    @abstractmethod
    async def fetch_restriction(self, restriction_id: str) -> Optional[DietaryRestriction]:
        pass

    @abstractmethod
    async def fetch_user_restrictions(self, user_id: str) -> List[UserRestriction]:
        """Fetch the user's active restrictions."""
        pass

    @abstractmethod
    async def fetch_active_restriction_ids(self, limit: int) -> List[str]:
        pass

    @abstractmethod
    async def count_signals(self, table: SignalTable) -> int:
        """Count all records of a signal table across venues."""
        pass

    # --------------------------------------------------------
    # SCORING WEIGHTS
    # --------------------------------------------------------

    @abstractmethod
    async def fetch_scoring_weights(self) -> List[ScoringWeight]:
        pass

    @abstractmethod
    async def upsert_scoring_weight(self, weight: ScoringWeight) -> None:
        pass

    # --------------------------------------------------------
    # PERSISTENT CACHE ROWS
    # --------------------------------------------------------

    @abstractmethod
    async def read_cache_row(self, key: AssessmentKey) -> Optional[AssessmentResult]:
        pass

    @abstractmethod
    async def upsert_cache_row(self, result: AssessmentResult) -> None:
        """Insert or replace the persistent row for the result's key."""
        pass

    @abstractmethod
    async def mark_expired(self, venue_id: str, expired_at: datetime) -> int:
        """
        Set expires_at on every row of the venue.

        Returns:
            Number of rows touched
        """
        pass

    @abstractmethod
    async def find_stale_venue_ids(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> List[str]:
        """
        Distinct venues with a row expired at/before ``now`` or
        computed before ``stale_before``, oldest computation first.
        """
        pass

    @abstractmethod
    async def fetch_expert_override(self, key: AssessmentKey) -> bool:
        pass

    @abstractmethod
    async def fetch_cached_levels(self) -> List[Tuple[SafetyLevel, int]]:
        """(safety_level, confidence) of every persisted assessment."""
        pass


# ============================================================
# SIGNAL GATEWAY
# ============================================================


_SIGNAL_FIELDS: Dict[SignalTable, str] = {
    SignalTable.SAFETY_PROTOCOLS: "safety_protocols",
    SignalTable.EXPERT_ASSESSMENTS: "expert_assessments",
    SignalTable.COMMUNITY_VERIFICATIONS: "community_verifications",
    SignalTable.HEALTH_INSPECTIONS: "health_inspections",
    SignalTable.CERTIFICATIONS: "certifications",
    SignalTable.INCIDENT_REPORTS: "incident_reports",
    SignalTable.REVIEW_SAFETY_ASSESSMENTS: "review_safety_assessments",
}


class SignalGateway:
    """
    Fetches the raw inputs of one assessment.

    The seven tables are read concurrently; a failure of any
    one of them fails the whole fetch with DataSourceError.
    """

    def __init__(self, store: SafetyDataStore):
        self._store = store

    @property
    def store(self) -> SafetyDataStore:
        return self._store

    async def gather_signals(self, key: AssessmentKey) -> RawSignalSet:
        """
        Fetch all seven signal collections for a key.

        Args:
            key: Assessment key

        Returns:
            RawSignalSet with one tuple per table

        Raises:
            DataSourceError: If any table fetch fails
        """
        tables = SignalTable.all_tables()
        results = await asyncio.gather(
            *(self._fetch(table, key) for table in tables)
        )
        collections = {
            _SIGNAL_FIELDS[table]: tuple(records)
            for table, records in zip(tables, results)
        }
        signals = RawSignalSet(**collections)

        logger.debug(
            f"Gathered signals for {key}: "
            + ", ".join(f"{name}={len(records)}" for name, records in collections.items())
        )
        return signals

    async def fetch_restriction(self, restriction_id: str) -> Optional[DietaryRestriction]:
        try:
            return await self._store.fetch_restriction(restriction_id)
        except Exception as e:
            raise DataSourceError(
                f"Failed to fetch restriction: {e}",
                table="dietary_restrictions",
                restriction_id=restriction_id,
            ) from e

    async def fetch_user_restrictions(self, user_id: str) -> List[UserRestriction]:
        try:
            return await self._store.fetch_user_restrictions(user_id)
        except Exception as e:
            raise DataSourceError(
                f"Failed to fetch restrictions of user {user_id}: {e}",
                table="user_restrictions",
                details={"user_id": user_id},
            ) from e

    async def fetch_expert_override(self, key: AssessmentKey) -> bool:
        try:
            return await self._store.fetch_expert_override(key)
        except Exception as e:
            raise DataSourceError(
                f"Failed to read expert override: {e}",
                table="venue_safety_scores",
                venue_id=key.venue_id,
                restriction_id=key.restriction_id,
            ) from e

    async def _fetch(self, table: SignalTable, key: AssessmentKey) -> Sequence:
        try:
            return await self._store.fetch_signals(table, key.venue_id, key.restriction_id)
        except DataSourceError:
            raise
        except Exception as e:
            raise DataSourceError(
                f"Failed to fetch {table.value}: {e}",
                table=table.value,
                venue_id=key.venue_id,
                restriction_id=key.restriction_id,
            ) from e
