"""
FastAPI router for champion/challenger A/B tests.

Key Endpoints:
- POST /ab-tests                          - Create and start a test against the active model
- GET  /ab-tests                          - List tests (optional status filter)
- GET  /ab-tests/{test_id}                - One test with accrued results
- POST /ab-tests/{test_id}/conversions    - Credit a conversion for a served lead
- POST /ab-tests/{test_id}/analyze        - Winner recommendation for the current snapshot
- POST /ab-tests/{test_id}/stop           - Abort a test (challenger is retired)
- POST /ab-tests/{test_id}/deploy         - Promote the winning challenger of a completed test

Analysis never changes test state; only completion (duration elapsed or
stopping rule) and explicit stop/deploy calls do.
"""

from typing import Optional

from fastapi import APIRouter

from leadscore.api.responses import ok
from leadscore.core.dependencies import ABTestManagerDep
from leadscore.models.enums import ABTestStatus
from leadscore.models.schemas import (
    AnalyzeTestRequest,
    ApiResponse,
    CreateABTestRequest,
    RecordConversionRequest,
    StopTestRequest,
)


router = APIRouter()


@router.post("", response_model=ApiResponse)
async def create_test(request: CreateABTestRequest, ab_tests: ABTestManagerDep) -> ApiResponse:
    test = await ab_tests.create_test(
        challenger_model_id=request.challengerModelId,
        name=request.name,
        traffic_split=request.trafficSplit,
        duration_days=request.durationDays,
        confidence_threshold=request.confidenceThreshold,
        min_sample_size=request.minSampleSize,
        target_metric=request.targetMetric,
        risk_profile=request.riskProfile,
    )
    return ok(test)


@router.get("", response_model=ApiResponse)
async def list_tests(ab_tests: ABTestManagerDep, status: Optional[ABTestStatus] = None) -> ApiResponse:
    return ok(ab_tests.list_tests(status))


@router.get("/{test_id}", response_model=ApiResponse)
async def get_test(test_id: str, ab_tests: ABTestManagerDep) -> ApiResponse:
    return ok(ab_tests.get_test(test_id))


@router.post("/{test_id}/conversions", response_model=ApiResponse)
async def record_conversion(
    test_id: str,
    request: RecordConversionRequest,
    ab_tests: ABTestManagerDep,
) -> ApiResponse:
    return ok(await ab_tests.record_conversion(test_id, request.leadId, request.converted))


@router.post("/{test_id}/analyze", response_model=ApiResponse)
async def analyze_test(
    test_id: str,
    ab_tests: ABTestManagerDep,
    request: Optional[AnalyzeTestRequest] = None,
) -> ApiResponse:
    risk_profile = request.riskProfile if request else None
    return ok(ab_tests.analyze(test_id, risk_profile))


@router.post("/{test_id}/stop", response_model=ApiResponse)
async def stop_test(
    test_id: str,
    ab_tests: ABTestManagerDep,
    request: Optional[StopTestRequest] = None,
) -> ApiResponse:
    reason = request.reason if request else "Stopped by operator"
    return ok(await ab_tests.stop_test(test_id, reason))


@router.post("/{test_id}/deploy", response_model=ApiResponse)
async def deploy_winner(test_id: str, ab_tests: ABTestManagerDep) -> ApiResponse:
    return ok(await ab_tests.deploy_winner(test_id))
