"""
Model registry: ModelVersion metadata plus the trained predictors behind it.

The registry is the only component that changes a ModelVersion's status, and
it does so under a single asyncio.Lock so that at most one version is
``active`` at any time: promote() retires the previous champion and activates
the new one in the same critical section.

Allowed transitions:
    training   -> active | challenger | retired
    challenger -> active | retired
    active     -> retired            (only by promoting another version)
    retired    -> active             (rollback; predictor must be loaded)

Metadata is persisted through a ModelRepository. Predictors live in memory
only; versions restored from the repository after a restart are listed but
cannot serve until retrained.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from leadscore.core.errors import ModelUnavailableError, NotFoundError, StateTransitionError
from leadscore.models.enums import ModelStatus
from leadscore.models.schemas import ModelVersion, utcnow
from leadscore.services.model import LeadScoringModel
from leadscore.services.repositories import ModelRepository


logger = logging.getLogger(__name__)

_ALLOWED = {
    ModelStatus.TRAINING: {ModelStatus.ACTIVE, ModelStatus.CHALLENGER, ModelStatus.RETIRED},
    ModelStatus.CHALLENGER: {ModelStatus.ACTIVE, ModelStatus.RETIRED},
    ModelStatus.ACTIVE: {ModelStatus.RETIRED},
    ModelStatus.RETIRED: {ModelStatus.ACTIVE},
}


class ModelRegistry:
    def __init__(self, repository: ModelRepository):
        self._repository = repository
        self._versions: Dict[str, ModelVersion] = {}
        self._predictors: Dict[str, LeadScoringModel] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        """Restore version metadata from the repository. Returns versions loaded."""
        versions = await self._repository.list()
        async with self._lock:
            for version in versions:
                self._versions.setdefault(version.id, version)
        logger.info(f"Loaded {len(versions)} model version(s) from repository")
        return len(versions)

    async def register(self, version: ModelVersion, predictor: LeadScoringModel) -> ModelVersion:
        if not predictor.is_fitted:
            raise ModelUnavailableError(f"Cannot register unfitted model {version.id}")
        async with self._lock:
            self._versions[version.id] = version
            self._predictors[version.id] = predictor
        await self._repository.save(version)
        logger.info(f"Registered model {version.id} ({version.type.value}, {version.status.value})")
        return version

    def get(self, model_id: str) -> ModelVersion:
        version = self._versions.get(model_id)
        if version is None:
            raise NotFoundError(f"Model {model_id} not found")
        return version

    def get_predictor(self, model_id: str) -> LeadScoringModel:
        self.get(model_id)
        predictor = self._predictors.get(model_id)
        if predictor is None:
            raise ModelUnavailableError(f"Model {model_id} has no loaded predictor")
        return predictor

    def has_predictor(self, model_id: str) -> bool:
        return model_id in self._predictors

    def get_active(self) -> Optional[ModelVersion]:
        for version in self._versions.values():
            if version.status == ModelStatus.ACTIVE:
                return version
        return None

    def list(self, status: Optional[ModelStatus] = None) -> List[ModelVersion]:
        versions = sorted(self._versions.values(), key=lambda v: v.createdAt)
        if status is not None:
            versions = [v for v in versions if v.status == status]
        return versions

    async def promote(self, model_id: str) -> ModelVersion:
        """Make ``model_id`` the single active version, retiring the previous one."""
        changed: List[ModelVersion] = []
        async with self._lock:
            target = self.get(model_id)
            if target.status == ModelStatus.ACTIVE:
                return target
            self._check(target, ModelStatus.ACTIVE)
            if model_id not in self._predictors:
                raise ModelUnavailableError(f"Model {model_id} has no loaded predictor")

            for version in list(self._versions.values()):
                if version.status == ModelStatus.ACTIVE:
                    changed.append(self._set_status(version, ModelStatus.RETIRED))
            changed.append(self._set_status(target, ModelStatus.ACTIVE))

        for version in changed:
            await self._repository.save(version)
        logger.info(f"Promoted model {model_id} to active")
        return self._versions[model_id]

    async def mark_challenger(self, model_id: str) -> ModelVersion:
        return await self._transition(model_id, ModelStatus.CHALLENGER)

    async def retire(self, model_id: str) -> ModelVersion:
        return await self._transition(model_id, ModelStatus.RETIRED)

    async def _transition(self, model_id: str, status: ModelStatus) -> ModelVersion:
        async with self._lock:
            version = self.get(model_id)
            if version.status == status:
                return version
            if version.status == ModelStatus.ACTIVE:
                raise StateTransitionError(
                    f"Model {model_id} is active; promote another version instead"
                )
            self._check(version, status)
            updated = self._set_status(version, status)
        await self._repository.save(updated)
        logger.info(f"Model {model_id} -> {status.value}")
        return updated

    def _check(self, version: ModelVersion, status: ModelStatus) -> None:
        if status not in _ALLOWED[version.status]:
            raise StateTransitionError(
                f"Model {version.id} cannot move from {version.status.value} to {status.value}"
            )

    def _set_status(self, version: ModelVersion, status: ModelStatus) -> ModelVersion:
        updated = version.model_copy(update={"status": status, "updatedAt": utcnow()})
        self._versions[version.id] = updated
        return updated
