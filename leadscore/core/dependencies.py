"""
FastAPI dependency injection for the lead-scoring backend.

Routers never reach for globals: every service is resolved from the
ServiceContainer that the application lifespan stores on
``app.state.container``. Tests swap the whole container (or override a single
dependency through ``app.dependency_overrides``) without touching endpoint
code.

Key Dependencies Provided:
- get_container / ContainerDep: the application's ServiceContainer
- ScoringEngineDep, RegistryDep, TrainingDep, DriftDep, RetrainingDep,
  ABTestManagerDep, AuditDep: individual services
- get_client_id / ClientIdDep: caller identity used for rate limiting,
  taken from the X-Client-Id header

Usage Examples:
    @router.post("/{lead_id}")
    async def score_lead(lead_id: str, engine: ScoringEngineDep, client_id: ClientIdDep):
        return await engine.score_lead(lead_id, client_id=client_id)
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from leadscore.core.container import ServiceContainer
from leadscore.core.errors import ModelUnavailableError
from leadscore.services.ab_testing import ABTestManager
from leadscore.services.audit import AuditLog
from leadscore.services.drift_detector import DriftDetector
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.retraining_scheduler import RetrainingScheduler
from leadscore.services.scoring_engine import DEFAULT_CLIENT_ID, RealTimeScoringEngine
from leadscore.services.training import ModelTrainingOrchestrator


# =============================================================================
# Container
# =============================================================================


def get_container(request: Request) -> ServiceContainer:
    """
    Return the ServiceContainer built by the application lifespan.

    Raises:
        ModelUnavailableError: The application has not finished starting.
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise ModelUnavailableError("Service container is not initialized")
    return container


def get_client_id(x_client_id: Annotated[Optional[str], Header()] = None) -> str:
    """Caller identity for per-client rate limiting; anonymous when absent."""
    return x_client_id.strip() if x_client_id and x_client_id.strip() else DEFAULT_CLIENT_ID


# =============================================================================
# Service Dependencies
# =============================================================================


def get_scoring_engine(container: Annotated[ServiceContainer, Depends(get_container)]) -> RealTimeScoringEngine:
    return container.scoring


def get_registry(container: Annotated[ServiceContainer, Depends(get_container)]) -> ModelRegistry:
    return container.registry


def get_training(container: Annotated[ServiceContainer, Depends(get_container)]) -> ModelTrainingOrchestrator:
    return container.training


def get_drift_detector(container: Annotated[ServiceContainer, Depends(get_container)]) -> DriftDetector:
    return container.drift


def get_retraining(container: Annotated[ServiceContainer, Depends(get_container)]) -> RetrainingScheduler:
    return container.retraining


def get_ab_tests(container: Annotated[ServiceContainer, Depends(get_container)]) -> ABTestManager:
    return container.ab_tests


def get_audit(container: Annotated[ServiceContainer, Depends(get_container)]) -> AuditLog:
    return container.audit


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

ContainerDep = Annotated[ServiceContainer, Depends(get_container)]
ClientIdDep = Annotated[str, Depends(get_client_id)]

ScoringEngineDep = Annotated[RealTimeScoringEngine, Depends(get_scoring_engine)]
RegistryDep = Annotated[ModelRegistry, Depends(get_registry)]
TrainingDep = Annotated[ModelTrainingOrchestrator, Depends(get_training)]
DriftDep = Annotated[DriftDetector, Depends(get_drift_detector)]
RetrainingDep = Annotated[RetrainingScheduler, Depends(get_retraining)]
ABTestManagerDep = Annotated[ABTestManager, Depends(get_ab_tests)]
AuditDep = Annotated[AuditLog, Depends(get_audit)]
