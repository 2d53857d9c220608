"""
Trainable lead-scoring models behind a fit/predict/evaluate contract.

The rest of the system treats a model as opaque: it is fit on a feature
matrix and binary labels, predicts conversion probabilities in [0, 1] and
evaluates itself into ModelMetrics. Three implementations are provided on top
of scikit-learn:

- LogisticRegressionModel (baseline): standardized logistic regression
- GradientBoostingModel (advanced): gradient boosted decision trees
- EnsembleModel (ensemble): equal-weight average of >= 2 member models

compute_metrics() is shared by every model and by the training orchestrator
so that all evaluation paths report identical metric definitions. AUC is the
true ROC AUC and is None when the labels contain a single class.

Dependencies:
    - numpy: array handling
    - scikit-learn: estimators and metric functions
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
from sklearn.ensemble import GradientBoostingClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    f1_score,
    log_loss,
    precision_score,
    recall_score,
    roc_auc_score,
)
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from leadscore.core.errors import ModelUnavailableError, ValidationError
from leadscore.models.enums import ModelType
from leadscore.models.schemas import ModelMetrics, utcnow


logger = logging.getLogger(__name__)


DEFAULT_CONFIGS: Dict[ModelType, Dict[str, Any]] = {
    ModelType.BASELINE: {"C": 1.0, "max_iter": 1000},
    ModelType.ADVANCED: {"learning_rate": 0.1, "n_estimators": 100, "max_depth": 3},
    ModelType.ENSEMBLE: {"members": [ModelType.BASELINE.value, ModelType.ADVANCED.value]},
}

_PROBABILITY_EPS = 1e-15


# =============================================================================
# Metrics
# =============================================================================


def compute_metrics(
    y_true: np.ndarray,
    y_prob: np.ndarray,
    threshold: float = 0.5,
) -> ModelMetrics:
    """
    Compute classification metrics from labels and predicted probabilities.

    Args:
        y_true: Binary labels (0/1).
        y_prob: Predicted probabilities of the positive class.
        threshold: Decision threshold for the confusion counts.

    Returns:
        ModelMetrics with confusion counts, accuracy, precision, recall, f1,
        ROC AUC (None for single-class labels) and log loss.
    """
    y_true = np.asarray(y_true, dtype=int)
    y_prob = np.clip(np.asarray(y_prob, dtype=float), 0.0, 1.0)
    if y_true.shape[0] == 0:
        raise ValidationError("Cannot evaluate on an empty dataset")

    y_pred = (y_prob >= threshold).astype(int)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()

    auc: Optional[float] = None
    if np.unique(y_true).size == 2:
        auc = float(roc_auc_score(y_true, y_prob))

    loss = float(log_loss(y_true, np.clip(y_prob, _PROBABILITY_EPS, 1 - _PROBABILITY_EPS), labels=[0, 1]))

    return ModelMetrics(
        accuracy=float(accuracy_score(y_true, y_pred)),
        precision=float(precision_score(y_true, y_pred, zero_division=0)),
        recall=float(recall_score(y_true, y_pred, zero_division=0)),
        f1=float(f1_score(y_true, y_pred, zero_division=0)),
        truePositives=int(tp),
        falsePositives=int(fp),
        trueNegatives=int(tn),
        falseNegatives=int(fn),
        auc=auc,
        loss=loss,
        sampleSize=int(y_true.shape[0]),
        evaluatedAt=utcnow(),
    )


# =============================================================================
# Model Contract
# =============================================================================


class LeadScoringModel(ABC):
    """Opaque trainable predictor of conversion probability."""

    model_type: ModelType

    def __init__(self, config: Optional[Mapping[str, Any]] = None, random_state: int = 42):
        self.config: Dict[str, Any] = {**DEFAULT_CONFIGS[self.model_type], **dict(config or {})}
        self.random_state = random_state
        self._fitted = False

    @property
    def is_fitted(self) -> bool:
        return self._fitted

    def fit(self, X: np.ndarray, y: np.ndarray) -> "LeadScoringModel":
        self._fit(np.asarray(X, dtype=float), np.asarray(y, dtype=int))
        self._fitted = True
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Return positive-class probabilities, one per row of X."""
        if not self._fitted:
            raise ModelUnavailableError(f"{self.model_type.value} model has not been fit")
        X = np.atleast_2d(np.asarray(X, dtype=float))
        return np.clip(self._predict(X), 0.0, 1.0)

    def evaluate(self, X: np.ndarray, y: np.ndarray, threshold: float = 0.5) -> ModelMetrics:
        return compute_metrics(y, self.predict(X), threshold)

    @abstractmethod
    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        ...

    @abstractmethod
    def _predict(self, X: np.ndarray) -> np.ndarray:
        ...


class LogisticRegressionModel(LeadScoringModel):
    model_type = ModelType.BASELINE

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        self._pipeline = Pipeline([
            ("scale", StandardScaler()),
            ("clf", LogisticRegression(
                C=float(self.config["C"]),
                max_iter=int(self.config.get("max_iter", 1000)),
                random_state=self.random_state,
            )),
        ])
        self._pipeline.fit(X, y)

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return self._pipeline.predict_proba(X)[:, 1]


class GradientBoostingModel(LeadScoringModel):
    model_type = ModelType.ADVANCED

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        self._clf = GradientBoostingClassifier(
            learning_rate=float(self.config["learning_rate"]),
            n_estimators=int(self.config["n_estimators"]),
            max_depth=int(self.config["max_depth"]),
            random_state=self.random_state,
        )
        self._clf.fit(X, y)

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return self._clf.predict_proba(X)[:, 1]


class EnsembleModel(LeadScoringModel):
    """
    Equal-weight average of member model predictions.

    config["members"] lists the member types (at least two); optional
    per-member configs may be supplied under config["memberConfigs"], keyed
    by member type.
    """

    model_type = ModelType.ENSEMBLE

    def __init__(self, config: Optional[Mapping[str, Any]] = None, random_state: int = 42):
        super().__init__(config, random_state)
        member_types = [ModelType(m) for m in self.config["members"]]
        if len(member_types) < 2:
            raise ValidationError("An ensemble needs at least two member models")
        if ModelType.ENSEMBLE in member_types:
            raise ValidationError("Ensembles cannot contain ensembles")
        member_configs = self.config.get("memberConfigs", {})
        self.members: List[LeadScoringModel] = [
            build_model(t, member_configs.get(t.value), random_state) for t in member_types
        ]

    def _fit(self, X: np.ndarray, y: np.ndarray) -> None:
        for member in self.members:
            member.fit(X, y)

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return np.mean([member.predict(X) for member in self.members], axis=0)


_MODEL_CLASSES = {
    ModelType.BASELINE: LogisticRegressionModel,
    ModelType.ADVANCED: GradientBoostingModel,
    ModelType.ENSEMBLE: EnsembleModel,
}


def build_model(
    model_type: ModelType,
    config: Optional[Mapping[str, Any]] = None,
    random_state: int = 42,
) -> LeadScoringModel:
    """Instantiate an unfitted model of the given type."""
    return _MODEL_CLASSES[ModelType(model_type)](config, random_state)
