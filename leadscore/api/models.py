"""
FastAPI router for the model lifecycle.

Key Endpoints:
- GET  /models                       - List model versions (optional status filter)
- GET  /models/active                - The active (champion) model
- POST /models/train                 - Train a baseline/advanced/ensemble model
- POST /models/cross-validate        - k-fold cross-validation report
- POST /models/tune                  - Grid-search hyperparameter tuning
- GET  /models/drift                 - Drift analysis for a model (default: active)
- GET  /models/retraining/status     - Retraining scheduler state and cooldown
- POST /models/retraining/run        - Run retraining now (force bypasses gates)
- GET  /models/retraining/history    - Recent retraining attempts, newest first
- GET  /models/audit                 - Audit history (optional kind filter)
- GET  /models/{model_id}            - One model version
- POST /models/{model_id}/promote    - Make a version the single active model
- POST /models/{model_id}/retire     - Retire a non-active version

Training data is the labeled outcome history inside the requested window
(default: the retraining window). Training runs in a worker thread.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Query

from leadscore.api.responses import ok
from leadscore.core.container import ServiceContainer
from leadscore.core.dependencies import (
    AuditDep,
    ContainerDep,
    DriftDep,
    RegistryDep,
    RetrainingDep,
    TrainingDep,
)
from leadscore.models.enums import AuditKind, ModelStatus
from leadscore.models.schemas import (
    ApiResponse,
    CrossValidateRequest,
    RunRetrainingRequest,
    TrainModelRequest,
    TuneRequest,
    utcnow,
)
from leadscore.services.training import TrainingDataset


logger = logging.getLogger(__name__)

router = APIRouter()

# Upper bound for list endpoints
MAX_LIST_LIMIT: int = 100


async def _load_dataset(container: ServiceContainer, window_days: Optional[int]) -> TrainingDataset:
    days = window_days or container.retraining.config.training_window_days
    since = utcnow() - timedelta(days=days)
    frame = await container.outcomes.training_frame(since, container.training.feature_names)
    return TrainingDataset.from_frame(frame, container.training.feature_names)


# =============================================================================
# Listing
# =============================================================================


@router.get("", response_model=ApiResponse)
async def list_models(registry: RegistryDep, status: Optional[ModelStatus] = None) -> ApiResponse:
    return ok(registry.list(status))


@router.get("/active", response_model=ApiResponse)
async def get_active_model(registry: RegistryDep) -> ApiResponse:
    return ok(registry.get_active())


# =============================================================================
# Training
# =============================================================================


@router.post("/train", response_model=ApiResponse)
async def train_model(request: TrainModelRequest, container: ContainerDep, training: TrainingDep) -> ApiResponse:
    """
    Train and register a new model version with status=training.

    The version only serves traffic once promoted (directly or through an
    A/B test).
    """
    dataset = await _load_dataset(container, request.windowDays)
    trained = await asyncio.to_thread(training.train, dataset, request.modelType, request.config)
    version = await container.registry.register(trained.version, trained.model)
    return ok(version)


@router.post("/cross-validate", response_model=ApiResponse)
async def cross_validate(request: CrossValidateRequest, container: ContainerDep, training: TrainingDep) -> ApiResponse:
    dataset = await _load_dataset(container, request.windowDays)
    result = await asyncio.to_thread(
        training.cross_validate, dataset, request.modelType, request.folds, request.config
    )
    return ok(result)


@router.post("/tune", response_model=ApiResponse)
async def tune_hyperparameters(request: TuneRequest, container: ContainerDep, training: TrainingDep) -> ApiResponse:
    dataset = await _load_dataset(container, request.windowDays)
    result = await asyncio.to_thread(training.tune_hyperparameters, dataset, request.modelType, request.grid)
    return ok(result)


# =============================================================================
# Drift & Retraining
# =============================================================================


@router.get("/drift", response_model=ApiResponse)
async def detect_drift(
    drift: DriftDep,
    model_id: Optional[str] = Query(default=None, alias="modelId"),
) -> ApiResponse:
    return ok(await drift.detect_drift(model_id))


@router.get("/retraining/status", response_model=ApiResponse)
async def retraining_status(retraining: RetrainingDep) -> ApiResponse:
    return ok(retraining.status())


@router.post("/retraining/run", response_model=ApiResponse)
async def run_retraining(retraining: RetrainingDep, request: Optional[RunRetrainingRequest] = None) -> ApiResponse:
    force = request.force if request else False
    return ok(await retraining.run_retraining(force=force))


@router.get("/retraining/history", response_model=ApiResponse)
async def retraining_history(
    retraining: RetrainingDep,
    limit: int = Query(default=20, ge=1, le=MAX_LIST_LIMIT),
) -> ApiResponse:
    return ok(retraining.history(limit))


@router.get("/audit", response_model=ApiResponse)
async def audit_history(
    audit: AuditDep,
    kind: Optional[AuditKind] = None,
    limit: int = Query(default=50, ge=1, le=MAX_LIST_LIMIT),
) -> ApiResponse:
    return ok(audit.list(kind, limit))


# =============================================================================
# Single Model
# =============================================================================


@router.get("/{model_id}", response_model=ApiResponse)
async def get_model(model_id: str, registry: RegistryDep) -> ApiResponse:
    return ok(registry.get(model_id))


@router.post("/{model_id}/promote", response_model=ApiResponse)
async def promote_model(model_id: str, container: ContainerDep) -> ApiResponse:
    version = await container.registry.promote(model_id)
    container.audit.record(
        AuditKind.DEPLOYMENT,
        "manual_promotion",
        True,
        f"Model {model_id} promoted by operator",
        {"modelId": model_id},
    )
    return ok(version)


@router.post("/{model_id}/retire", response_model=ApiResponse)
async def retire_model(model_id: str, registry: RegistryDep) -> ApiResponse:
    return ok(await registry.retire(model_id))
