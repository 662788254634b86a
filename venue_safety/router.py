"""
FastAPI router exposing the safety assessment service.

Every response is wrapped in SafetyAPIResponse. The service is
read from app.state, set once at startup.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from .exceptions import SafetyAssessmentError, WeightValidationError
from .schemas import BulkRecalculationRequest, SafetyAPIResponse, ScoringWeightUpdate
from .service import SafetyAssessmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/safety", tags=["Venue Safety"])


def get_service(request: Request) -> SafetyAssessmentService:
    return request.app.state.safety_service


def _error(status_code: int, message: str) -> JSONResponse:
    body = SafetyAPIResponse(success=False, error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))

# =======================
# ASSESSMENTS
# =======================

@router.get("/venues/{venue_id}", response_model=SafetyAPIResponse)
async def get_venue_assessment(
    venue_id: str,
    user_id: Optional[str] = None,
    force_refresh: bool = False,
    service: SafetyAssessmentService = Depends(get_service),
):
    """
    Venue-wide assessment, or personalised to a user's restrictions.
    """
    value = await service.get_venue_safety_assessment(venue_id, user_id, force_refresh)
    return SafetyAPIResponse(success=True, data=value.to_dict())


@router.get("/venues/{venue_id}/restrictions/{restriction_id}", response_model=SafetyAPIResponse)
async def get_restriction_assessment(
    venue_id: str,
    restriction_id: str,
    force_refresh: bool = False,
    service: SafetyAssessmentService = Depends(get_service),
):
    result = await service.calculate_safety_assessment(venue_id, restriction_id, force_refresh)
    return SafetyAPIResponse(success=True, data=result.to_dict())


@router.post("/venues/{venue_id}/invalidate", response_model=SafetyAPIResponse)
async def invalidate_venue(
    venue_id: str,
    service: SafetyAssessmentService = Depends(get_service),
):
    await service.invalidate_venue_cache(venue_id)
    return SafetyAPIResponse(success=True, data={"venue_id": venue_id, "invalidated": True})


@router.get("/venues/{venue_id}/trends", response_model=SafetyAPIResponse)
async def get_trends(
    venue_id: str,
    restriction_id: Optional[str] = None,
    service: SafetyAssessmentService = Depends(get_service),
):
    trend = await service.get_safety_trends(venue_id, restriction_id)
    return SafetyAPIResponse(success=True, data=trend.to_dict())


@router.get("/compare", response_model=SafetyAPIResponse)
async def compare_venues(
    venue_ids: List[str] = Query(...),
    restriction_id: Optional[str] = None,
    service: SafetyAssessmentService = Depends(get_service),
):
    comparison = await service.compare_venue_safety(venue_ids, restriction_id)
    return SafetyAPIResponse(success=True, data=comparison.to_dict())


@router.get("/statistics", response_model=SafetyAPIResponse)
async def get_statistics(service: SafetyAssessmentService = Depends(get_service)):
    try:
        stats = await service.get_safety_statistics()
    except SafetyAssessmentError as e:
        logger.error(f"Statistics unavailable: {e}")
        return _error(503, e.message)
    return SafetyAPIResponse(success=True, data=stats.to_dict())

# =======================
# BACKGROUND WORK
# =======================

@router.post("/bulk-recalculate", response_model=SafetyAPIResponse)
async def bulk_recalculate(
    body: BulkRecalculationRequest,
    service: SafetyAssessmentService = Depends(get_service),
):
    result = await service.bulk_recalculate_assessments(body.venue_ids, body.restriction_ids)
    return SafetyAPIResponse(success=True, data=result.to_dict())


@router.post("/sweep", response_model=SafetyAPIResponse)
async def sweep_stale(service: SafetyAssessmentService = Depends(get_service)):
    try:
        result = await service.process_stale_assessments()
    except SafetyAssessmentError as e:
        logger.error(f"Stale sweep failed: {e}")
        return _error(503, e.message)
    return SafetyAPIResponse(success=True, data=result.to_dict())

# =======================
# SCORING WEIGHTS
# =======================

@router.get("/weights", response_model=SafetyAPIResponse)
async def get_weights(service: SafetyAssessmentService = Depends(get_service)):
    weights = await service.get_scoring_weights()
    return SafetyAPIResponse(success=True, data=[w.to_dict() for w in weights])


@router.put("/weights/{category}", response_model=SafetyAPIResponse)
async def update_weight(
    category: str,
    body: ScoringWeightUpdate,
    service: SafetyAssessmentService = Depends(get_service),
):
    try:
        weight = await service.update_scoring_weight(
            category, body.base_weight, body.severity_multipliers
        )
    except WeightValidationError as e:
        return _error(422, e.message)
    except SafetyAssessmentError as e:
        logger.error(f"Weight update failed: {e}")
        return _error(503, e.message)
    return SafetyAPIResponse(success=True, data=weight.to_dict())
