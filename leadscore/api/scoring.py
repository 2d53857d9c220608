"""
FastAPI router for real-time lead scoring.

Key Endpoints:
- POST   /scoring/leads/{lead_id}           - Score a CRM lead by id
- POST   /scoring/score-with-data           - Score a caller-supplied lead snapshot
- POST   /scoring/batch                     - Score up to max_batch_leads leads
- GET    /scoring/leads/{lead_id}/insights  - Top factors, risk level and recommendations
- POST   /scoring/outcomes                  - Record whether a scored lead converted
- GET    /scoring/statistics                - Rolling engine statistics
- GET    /scoring/health                    - Engine health (healthy/warning/unhealthy)
- DELETE /scoring/cache                     - Clear one lead's cached scores, or all
- PUT    /scoring/cache/settings            - Change cache TTL, capacity or enablement

The caller is identified by the X-Client-Id header for rate limiting.
Statistics and health degrade to defaults instead of failing.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from leadscore.api.responses import ok
from leadscore.core.dependencies import ClientIdDep, ScoringEngineDep
from leadscore.models.enums import HealthState
from leadscore.models.schemas import (
    ApiResponse,
    BatchScoreRequest,
    CacheSettingsUpdate,
    HealthStatus,
    RecordConversionRequest,
    ScoreWithDataRequest,
    ScoringStatistics,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/leads/{lead_id}", response_model=ApiResponse)
async def score_lead(
    lead_id: str,
    engine: ScoringEngineDep,
    client_id: ClientIdDep,
    model_id: Optional[str] = Query(default=None, alias="modelId"),
    use_cache: bool = Query(default=True, alias="useCache"),
    fallback_model_id: Optional[str] = Query(default=None, alias="fallbackModelId"),
) -> ApiResponse:
    score = await engine.score_lead(
        lead_id,
        model_id=model_id,
        use_cache=use_cache,
        client_id=client_id,
        fallback_model_id=fallback_model_id,
    )
    return ok(score)


@router.post("/score-with-data", response_model=ApiResponse)
async def score_lead_with_data(
    request: ScoreWithDataRequest,
    engine: ScoringEngineDep,
    client_id: ClientIdDep,
) -> ApiResponse:
    score = await engine.score_lead_with_data(
        request.profile,
        request.interactions,
        model_id=request.modelId,
        use_cache=request.useCache,
        client_id=client_id,
        fallback_model_id=request.fallbackModelId,
    )
    return ok(score)


@router.post("/batch", response_model=ApiResponse)
async def score_batch(
    request: BatchScoreRequest,
    engine: ScoringEngineDep,
    client_id: ClientIdDep,
) -> ApiResponse:
    result = await engine.score_batch(
        request.leadIds,
        model_id=request.modelId,
        priority=request.priority,
        client_id=client_id,
    )
    return ok(result)


@router.get("/leads/{lead_id}/insights", response_model=ApiResponse)
async def get_insights(
    lead_id: str,
    engine: ScoringEngineDep,
    client_id: ClientIdDep,
    model_id: Optional[str] = Query(default=None, alias="modelId"),
) -> ApiResponse:
    insights = await engine.get_insights(lead_id, model_id=model_id, client_id=client_id)
    return ok(insights)


@router.post("/outcomes", response_model=ApiResponse)
async def record_outcome(request: RecordConversionRequest, engine: ScoringEngineDep) -> ApiResponse:
    outcome = await engine.record_outcome(request.leadId, request.converted)
    return ok(outcome)


@router.get("/statistics", response_model=ApiResponse)
async def get_statistics(engine: ScoringEngineDep) -> ApiResponse:
    try:
        return ok(engine.get_statistics())
    except Exception:
        logger.exception("Failed to read scoring statistics")
        return ok(ScoringStatistics())


@router.get("/health", response_model=ApiResponse)
async def get_health(engine: ScoringEngineDep) -> ApiResponse:
    try:
        return ok(engine.get_health())
    except Exception as e:
        logger.exception("Failed to evaluate scoring health")
        return ok(HealthStatus(status=HealthState.UNHEALTHY, issues=[f"Health check failed: {e}"]))


@router.delete("/cache", response_model=ApiResponse)
async def clear_cache(
    engine: ScoringEngineDep,
    lead_id: Optional[str] = Query(default=None, alias="leadId"),
) -> ApiResponse:
    removed = await engine.clear_cache(lead_id)
    return ok({"cleared": removed, "leadId": lead_id})


@router.put("/cache/settings", response_model=ApiResponse)
async def update_cache_settings(update: CacheSettingsUpdate, engine: ScoringEngineDep) -> ApiResponse:
    return ok(await engine.update_cache_settings(update))
