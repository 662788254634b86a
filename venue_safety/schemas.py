"""
Pydantic schemas for the safety assessment API.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# =======================
# COMMON
# =======================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SafetyAPIResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

# =======================
# REQUESTS
# =======================

class BulkRecalculationRequest(BaseModel):
    venue_ids: List[str] = Field(..., min_length=1)
    restriction_ids: List[str] = Field(default_factory=list)


class ScoringWeightUpdate(BaseModel):
    base_weight: float
    severity_multipliers: Dict[str, float] = Field(default_factory=dict)
