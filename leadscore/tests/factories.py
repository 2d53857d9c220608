"""
Test data builders shared across the suite.

- Fake clocks (monotonic seconds and UTC datetimes) so TTLs, rate windows
  and test durations can be advanced deterministically
- Stub predictors with known outputs
- Synthetic labeled data driven by the first feature
- Lead profiles and interactions
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import numpy as np
import pandas as pd

from leadscore.models.enums import ModelStatus, ModelType
from leadscore.models.schemas import Interaction, LeadProfile, ModelVersion, PredictionOutcome
from leadscore.services.feature_extraction import FEATURE_NAMES
from leadscore.services.model import LeadScoringModel
from leadscore.services.repositories import LABEL_COLUMN, TIMESTAMP_COLUMN, OutcomeRepository


BASE_TIME = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# CLOCKS
# ============================================================


class FakeClock:
    """Monotonic seconds clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    """UTC datetime clock advanced by hand."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ============================================================
# STUB PREDICTORS
# ============================================================


class ConstantModel(LeadScoringModel):
    """Predicts the same probability for every lead and counts predictions."""

    model_type = ModelType.BASELINE

    def __init__(self, value: float = 0.7):
        super().__init__()
        self.value = value
        self.predict_calls = 0

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        pass

    def _predict(self, X: np.ndarray) -> np.ndarray:
        self.predict_calls += 1
        return np.full(X.shape[0], self.value)


class ThresholdModel(LeadScoringModel):
    """Predicts conversion exactly when the first feature is positive."""

    model_type = ModelType.BASELINE

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        pass

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return (X[:, 0] > 0).astype(float)


def fitted(model: LeadScoringModel) -> LeadScoringModel:
    return model.fit(np.zeros((2, len(FEATURE_NAMES))), np.array([0, 1]))


def make_version(model_id: str, status: ModelStatus = ModelStatus.TRAINING) -> ModelVersion:
    return ModelVersion(id=model_id, type=ModelType.BASELINE, version="20261001.120000", status=status)


# ============================================================
# SYNTHETIC DATA
# ============================================================


def make_labeled_data(
    n: int = 400,
    noise: float = 0.0,
    positive_rate: Optional[float] = None,
    seed: int = 42,
):
    """
    Generate a feature matrix and labels driven by the first feature.

    Labels are 1 when ``x0 + noise * eps > 0``. With ``positive_rate`` the
    labels are instead drawn independently at that rate.
    """
    rng = np.random.RandomState(seed)
    X = rng.normal(size=(n, len(FEATURE_NAMES)))
    if positive_rate is not None:
        y = (rng.uniform(size=n) < positive_rate).astype(int)
    else:
        y = (X[:, 0] + noise * rng.normal(size=n) > 0).astype(int)
    return X, y


def make_frame(X: np.ndarray, y: np.ndarray, end: datetime = BASE_TIME) -> pd.DataFrame:
    """Outcome frame with one row per minute, the last one at ``end``."""
    frame = pd.DataFrame(X, columns=FEATURE_NAMES)
    frame[LABEL_COLUMN] = y
    frame[TIMESTAMP_COLUMN] = pd.to_datetime(
        [end - timedelta(minutes=len(y) - 1 - i) for i in range(len(y))], utc=True
    )
    return frame


async def seed_outcomes(
    repository: OutcomeRepository,
    X: np.ndarray,
    y: np.ndarray,
    end: datetime,
    model_id: str = "seed-model",
) -> None:
    """Store one outcome per row, a minute apart, the last one at ``end``."""
    for i, (features, label) in enumerate(zip(X, y)):
        await repository.add(
            PredictionOutcome(
                modelId=model_id,
                leadId=f"lead-{i}",
                prediction=0.5,
                actual=int(label),
                timestamp=end - timedelta(minutes=len(y) - 1 - i),
            ),
            features.tolist(),
        )


# ============================================================
# LEADS
# ============================================================


def make_lead(lead_id: str, **overrides) -> LeadProfile:
    fields = dict(
        leadId=lead_id,
        firstName="Dana",
        lastName="Reyes",
        email=f"{lead_id}@example.com",
        phone="+15551234567",
        status="new",
        createdAt=BASE_TIME - timedelta(days=30),
        budgetMin=350000,
        budgetMax=450000,
        propertyCount=3,
    )
    fields.update(overrides)
    return LeadProfile(**fields)


def make_interactions(count: int = 3) -> List[Interaction]:
    kinds = ["email", "phone call", "meeting", "website visit"]
    return [
        Interaction(type=kinds[i % len(kinds)], occurredAt=BASE_TIME - timedelta(days=count - i))
        for i in range(count)
    ]
