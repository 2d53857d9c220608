"""
Persistence contracts for lifecycle state, with in-memory and asyncpg backends.

Four repositories cover everything the subsystem persists or reads:

- ModelRepository: ModelVersion metadata (trained predictors stay in memory)
- OutcomeRepository: served predictions paired with observed outcomes, plus
  the feature vectors used to build retraining datasets
- ABTestRepository: A/B test state that must survive restarts
- LeadRepository: read-only access to CRM lead profiles and interactions

The in-memory implementations back tests and database-less deployments. The
Postgres implementations use the pool helpers from leadscore.core.database
and the statements in leadscore.sql.lifecycle_queries.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from leadscore.core.database import execute_command, execute_query, execute_query_one
from leadscore.models.schemas import (
    ABTest,
    Interaction,
    LeadProfile,
    ModelVersion,
    PredictionOutcome,
    utcnow,
)
from leadscore.sql import lifecycle_queries as q


logger = logging.getLogger(__name__)

LABEL_COLUMN = "converted"
TIMESTAMP_COLUMN = "recordedAt"


# =============================================================================
# Contracts
# =============================================================================


class ModelRepository(ABC):
    @abstractmethod
    async def save(self, version: ModelVersion) -> None: ...

    @abstractmethod
    async def get(self, model_id: str) -> Optional[ModelVersion]: ...

    @abstractmethod
    async def list(self) -> List[ModelVersion]: ...


class OutcomeRepository(ABC):
    @abstractmethod
    async def add(
        self,
        outcome: PredictionOutcome,
        features: Optional[Sequence[float]] = None,
    ) -> None: ...

    @abstractmethod
    async def list_since(
        self,
        since: datetime,
        model_id: Optional[str] = None,
    ) -> List[PredictionOutcome]: ...

    @abstractmethod
    async def count_since(self, since: datetime) -> int: ...

    @abstractmethod
    async def training_frame(self, since: datetime, feature_names: Sequence[str]) -> pd.DataFrame:
        """
        Labeled rows recorded since ``since``, oldest first.

        Columns are ``feature_names`` followed by "converted" and
        "recordedAt". Rows stored without features are skipped.
        """


class ABTestRepository(ABC):
    @abstractmethod
    async def save(self, test: ABTest) -> None: ...

    @abstractmethod
    async def get(self, test_id: str) -> Optional[ABTest]: ...

    @abstractmethod
    async def list(self) -> List[ABTest]: ...


class LeadRepository(ABC):
    @abstractmethod
    async def get(self, lead_id: str) -> Optional[Tuple[LeadProfile, List[Interaction]]]:
        """Return the lead snapshot and its interactions, or None if unknown."""


def _build_frame(
    rows: List[Tuple[List[float], int, datetime]],
    feature_names: Sequence[str],
) -> pd.DataFrame:
    columns = list(feature_names)
    frame = pd.DataFrame([r[0] for r in rows], columns=columns, dtype=float)
    frame[LABEL_COLUMN] = [r[1] for r in rows]
    frame[TIMESTAMP_COLUMN] = pd.to_datetime([r[2] for r in rows], utc=True)
    return frame


# =============================================================================
# In-Memory Implementations
# =============================================================================


class InMemoryModelRepository(ModelRepository):
    def __init__(self):
        self._versions: Dict[str, ModelVersion] = {}
        self._lock = asyncio.Lock()

    async def save(self, version: ModelVersion) -> None:
        async with self._lock:
            self._versions[version.id] = version

    async def get(self, model_id: str) -> Optional[ModelVersion]:
        return self._versions.get(model_id)

    async def list(self) -> List[ModelVersion]:
        return sorted(self._versions.values(), key=lambda v: v.createdAt)


class InMemoryOutcomeRepository(OutcomeRepository):
    def __init__(self):
        self._rows: List[Tuple[PredictionOutcome, Optional[List[float]]]] = []
        self._lock = asyncio.Lock()

    async def add(
        self,
        outcome: PredictionOutcome,
        features: Optional[Sequence[float]] = None,
    ) -> None:
        async with self._lock:
            self._rows.append((outcome, list(features) if features is not None else None))

    async def list_since(
        self,
        since: datetime,
        model_id: Optional[str] = None,
    ) -> List[PredictionOutcome]:
        selected = [
            o for o, _ in self._rows
            if o.timestamp >= since and (model_id is None or o.modelId == model_id)
        ]
        return sorted(selected, key=lambda o: o.timestamp)

    async def count_since(self, since: datetime) -> int:
        return sum(1 for o, _ in self._rows if o.timestamp >= since)

    async def training_frame(self, since: datetime, feature_names: Sequence[str]) -> pd.DataFrame:
        rows = [
            (features, o.actual, o.timestamp)
            for o, features in sorted(self._rows, key=lambda r: r[0].timestamp)
            if features is not None and o.timestamp >= since
        ]
        return _build_frame(rows, feature_names)


class InMemoryABTestRepository(ABTestRepository):
    def __init__(self):
        self._tests: Dict[str, ABTest] = {}

    async def save(self, test: ABTest) -> None:
        self._tests[test.id] = test.model_copy(deep=True)

    async def get(self, test_id: str) -> Optional[ABTest]:
        test = self._tests.get(test_id)
        return test.model_copy(deep=True) if test else None

    async def list(self) -> List[ABTest]:
        return [t.model_copy(deep=True) for t in self._tests.values()]


class InMemoryLeadRepository(LeadRepository):
    def __init__(self):
        self._leads: Dict[str, Tuple[LeadProfile, List[Interaction]]] = {}

    def add(self, profile: LeadProfile, interactions: Sequence[Interaction] = ()) -> None:
        self._leads[profile.leadId] = (profile, list(interactions))

    async def get(self, lead_id: str) -> Optional[Tuple[LeadProfile, List[Interaction]]]:
        return self._leads.get(lead_id)


# =============================================================================
# Postgres Implementations
# =============================================================================


async def ensure_schema() -> None:
    """Create the lifecycle tables if they do not exist."""
    await execute_command(q.CREATE_TABLES)
    logger.info("Lifecycle tables ensured")


class PostgresModelRepository(ModelRepository):
    async def save(self, version: ModelVersion) -> None:
        await execute_command(
            q.UPSERT_MODEL_VERSION,
            version.id,
            version.type.value,
            version.status.value,
            version.model_dump_json(),
            version.createdAt,
            version.updatedAt,
        )

    async def get(self, model_id: str) -> Optional[ModelVersion]:
        row = await execute_query_one(q.SELECT_MODEL_VERSION, model_id)
        return ModelVersion.model_validate_json(row["payload"]) if row else None

    async def list(self) -> List[ModelVersion]:
        rows = await execute_query(q.SELECT_MODEL_VERSIONS)
        return [ModelVersion.model_validate_json(r["payload"]) for r in rows]


class PostgresOutcomeRepository(OutcomeRepository):
    async def add(
        self,
        outcome: PredictionOutcome,
        features: Optional[Sequence[float]] = None,
    ) -> None:
        await execute_command(
            q.INSERT_OUTCOME,
            outcome.modelId,
            outcome.leadId,
            outcome.prediction,
            outcome.actual,
            json.dumps([float(f) for f in features]) if features is not None else None,
            outcome.timestamp,
        )

    async def list_since(
        self,
        since: datetime,
        model_id: Optional[str] = None,
    ) -> List[PredictionOutcome]:
        rows = await execute_query(q.SELECT_OUTCOMES_SINCE, since, model_id)
        return [
            PredictionOutcome(
                modelId=r["model_id"],
                leadId=r["lead_id"],
                prediction=r["prediction"],
                actual=r["actual"],
                timestamp=r["recorded_at"],
            )
            for r in rows
        ]

    async def count_since(self, since: datetime) -> int:
        row = await execute_query_one(q.COUNT_OUTCOMES_SINCE, since)
        return int(row["n"]) if row else 0

    async def training_frame(self, since: datetime, feature_names: Sequence[str]) -> pd.DataFrame:
        rows = await execute_query(q.SELECT_TRAINING_ROWS_SINCE, since)
        width = len(feature_names)
        parsed = []
        for r in rows:
            features = json.loads(r["features"])
            if len(features) != width:
                logger.warning(f"Skipping training row with {len(features)} features (expected {width})")
                continue
            parsed.append((features, int(r["actual"]), r["recorded_at"]))
        return _build_frame(parsed, feature_names)


class PostgresABTestRepository(ABTestRepository):
    async def save(self, test: ABTest) -> None:
        await execute_command(
            q.UPSERT_AB_TEST,
            test.id,
            test.status.value,
            test.model_dump_json(),
            utcnow(),
        )

    async def get(self, test_id: str) -> Optional[ABTest]:
        row = await execute_query_one(q.SELECT_AB_TEST, test_id)
        return ABTest.model_validate_json(row["payload"]) if row else None

    async def list(self) -> List[ABTest]:
        rows = await execute_query(q.SELECT_AB_TESTS)
        return [ABTest.model_validate_json(r["payload"]) for r in rows]


class PostgresLeadRepository(LeadRepository):
    async def get(self, lead_id: str) -> Optional[Tuple[LeadProfile, List[Interaction]]]:
        row = await execute_query_one(q.SELECT_LEAD, lead_id)
        if row is None:
            return None

        profile = LeadProfile(
            leadId=row["lead_id"],
            firstName=row["first_name"],
            lastName=row["last_name"],
            email=row["email"],
            phone=row["phone_number"],
            status=row["status"],
            source=row["source"],
            createdAt=row["created_at"],
            budgetMin=float(row["budget_min"]) if row["budget_min"] is not None else None,
            budgetMax=float(row["budget_max"]) if row["budget_max"] is not None else None,
        )
        interaction_rows = await execute_query(q.SELECT_LEAD_INTERACTIONS, lead_id)
        interactions = [
            Interaction(type=r["type"], occurredAt=r["interaction_date"])
            for r in interaction_rows
            if r["interaction_date"] is not None
        ]
        return profile, interactions
