"""
Model training orchestrator.

Trains baseline, advanced and ensemble models, cross-validates them and runs
grid-search hyperparameter tuning. Every trained model comes back as a
ModelVersion with status=training; only the registry changes status later.

Key Features:
- Contiguous, time-ordered splits everywhere: the holdout is the most recent
  slice of the dataset and cross-validation folds are contiguous blocks
- Deterministic results for a fixed dataset, config and random_state
- Refuses to train below the configured sample floor or on a single class
- Data-quality validation used by the retraining gate

Algorithm Overview:
    train:            fit on the first 80%, evaluate on the last 20%
    cross_validate:   k contiguous folds; fold i is evaluated by a model
                      trained on the other k-1 folds; mean/std per metric,
                      best/worst fold by f1
    tune:             full grid (itertools.product) over the supplied or
                      default grid; each candidate scored by mean f1 over a
                      reduced k=3 cross-validation; ties keep the earliest

Training is CPU bound and synchronous. Async callers run it through
asyncio.to_thread.

Usage:
    orchestrator = ModelTrainingOrchestrator(TrainingConfig(), FEATURE_NAMES)
    dataset = TrainingDataset.from_frame(frame, FEATURE_NAMES)
    trained = orchestrator.train_baseline(dataset)
    cv = orchestrator.cross_validate(dataset, ModelType.ADVANCED, folds=5)
"""

import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from leadscore.core.config import TrainingConfig
from leadscore.core.errors import InsufficientDataError, ValidationError
from leadscore.models.enums import ModelStatus, ModelType
from leadscore.models.schemas import (
    CVResult,
    DataQualityReport,
    ModelMetrics,
    ModelVersion,
    TrainingDataDescriptor,
    TuningCandidate,
    TuningResult,
    utcnow,
)
from leadscore.services.model import LeadScoringModel, build_model
from leadscore.services.repositories import LABEL_COLUMN, TIMESTAMP_COLUMN


logger = logging.getLogger(__name__)


DEFAULT_GRIDS: Dict[ModelType, Dict[str, List[Any]]] = {
    ModelType.BASELINE: {"C": [0.1, 1.0, 10.0]},
    ModelType.ADVANCED: {
        "learning_rate": [0.05, 0.1, 0.2],
        "n_estimators": [50, 100],
        "max_depth": [2, 3],
    },
}

CV_METRICS = ("accuracy", "precision", "recall", "f1", "auc", "loss")


# =============================================================================
# Datasets
# =============================================================================


@dataclass
class TrainingDataset:
    """Time-ordered feature matrix and binary labels."""

    X: np.ndarray
    y: np.ndarray
    feature_names: List[str]
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    def __post_init__(self):
        self.X = np.asarray(self.X, dtype=float)
        self.y = np.asarray(self.y, dtype=int)
        if self.X.ndim != 2:
            raise ValidationError("Feature matrix must be two-dimensional")
        if self.X.shape[0] != self.y.shape[0]:
            raise ValidationError(
                f"Feature rows ({self.X.shape[0]}) and labels ({self.y.shape[0]}) differ"
            )
        if self.X.shape[1] != len(self.feature_names):
            raise ValidationError(
                f"Expected {len(self.feature_names)} features, got {self.X.shape[1]}"
            )
        if self.y.size and not np.isin(self.y, (0, 1)).all():
            raise ValidationError("Labels must be 0 or 1")

    def __len__(self) -> int:
        return int(self.y.shape[0])

    @property
    def positive_rate(self) -> float:
        return float(self.y.mean()) if len(self) else 0.0

    def slice(self, rows) -> "TrainingDataset":
        return TrainingDataset(self.X[rows], self.y[rows], self.feature_names)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, feature_names: Sequence[str]) -> "TrainingDataset":
        """
        Build a dataset from an outcome frame (features + "converted" + "recordedAt").

        Rows are ordered by recordedAt when present; missing feature values
        are filled with 0.
        """
        if TIMESTAMP_COLUMN in frame.columns:
            frame = frame.sort_values(TIMESTAMP_COLUMN, kind="stable")
        missing = [c for c in list(feature_names) + [LABEL_COLUMN] if c not in frame.columns]
        if missing:
            raise ValidationError(f"Training frame is missing columns: {', '.join(missing)}")

        window_start = window_end = None
        if TIMESTAMP_COLUMN in frame.columns and len(frame):
            window_start = frame[TIMESTAMP_COLUMN].iloc[0].to_pydatetime()
            window_end = frame[TIMESTAMP_COLUMN].iloc[-1].to_pydatetime()

        return cls(
            X=frame[list(feature_names)].fillna(0.0).to_numpy(dtype=float),
            y=frame[LABEL_COLUMN].to_numpy(dtype=int),
            feature_names=list(feature_names),
            window_start=window_start,
            window_end=window_end,
        )


@dataclass
class TrainedModel:
    """A fitted predictor, its version metadata and the holdout it was scored on."""

    version: ModelVersion
    model: LeadScoringModel
    holdout: TrainingDataset


# =============================================================================
# Data Quality
# =============================================================================


def validate_training_data(
    frame: pd.DataFrame,
    feature_names: Sequence[str],
    completeness_threshold: float = 0.95,
    min_positive_rate: float = 0.05,
    max_positive_rate: float = 0.95,
    severe_drift_z: float = 1.0,
) -> DataQualityReport:
    """
    Check a training frame before automated retraining.

    Completeness is the share of non-null feature cells. Severe feature drift
    compares each feature's mean in the older and newer halves of the frame,
    in units of the feature's overall standard deviation.
    """
    features = frame[list(feature_names)] if len(frame) else pd.DataFrame(columns=list(feature_names))
    total = int(len(frame))
    issues: List[str] = []

    if total == 0:
        return DataQualityReport(
            totalSamples=0,
            featureCount=len(feature_names),
            completeness=0.0,
            positiveRate=0.0,
            issues=["No training data available"],
        )

    completeness = float(features.notna().to_numpy().mean())
    positive_rate = float(frame[LABEL_COLUMN].mean())

    if completeness < completeness_threshold:
        issues.append(
            f"Data completeness {completeness:.1%} below threshold {completeness_threshold:.1%}"
        )
    if not min_positive_rate <= positive_rate <= max_positive_rate:
        issues.append(
            f"Label imbalance: positive rate {positive_rate:.1%} outside "
            f"[{min_positive_rate:.0%}, {max_positive_rate:.0%}]"
        )

    drifted: List[str] = []
    if total >= 2:
        half = total // 2
        older, newer = features.iloc[:half], features.iloc[half:]
        spread = features.std(ddof=0)
        for name in feature_names:
            std = spread[name]
            if not std or np.isnan(std):
                continue
            shift = abs(newer[name].mean() - older[name].mean()) / std
            if shift > severe_drift_z:
                drifted.append(name)
    if drifted:
        issues.append(f"Severe feature drift in: {', '.join(drifted)}")

    return DataQualityReport(
        totalSamples=total,
        featureCount=len(feature_names),
        completeness=completeness,
        positiveRate=positive_rate,
        driftedFeatures=drifted,
        issues=issues,
    )


# =============================================================================
# Orchestrator
# =============================================================================


class ModelTrainingOrchestrator:
    def __init__(self, config: TrainingConfig, feature_names: Sequence[str]):
        self.config = config
        self.feature_names = list(feature_names)

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    def train_baseline(self, dataset: TrainingDataset, config: Optional[Mapping[str, Any]] = None) -> TrainedModel:
        return self.train(dataset, ModelType.BASELINE, config)

    def train_advanced(self, dataset: TrainingDataset, config: Optional[Mapping[str, Any]] = None) -> TrainedModel:
        return self.train(dataset, ModelType.ADVANCED, config)

    def train_ensemble(self, dataset: TrainingDataset, config: Optional[Mapping[str, Any]] = None) -> TrainedModel:
        return self.train(dataset, ModelType.ENSEMBLE, config)

    def train(
        self,
        dataset: TrainingDataset,
        model_type: ModelType = ModelType.BASELINE,
        config: Optional[Mapping[str, Any]] = None,
    ) -> TrainedModel:
        """
        Train one model on the older part of the dataset and score it on the newest slice.

        Raises:
            InsufficientDataError: Fewer samples than the configured floor, or
                a training/holdout split lacking one of the classes.
            ValidationError: Invalid model configuration.
        """
        model_type = ModelType(model_type)
        self._require_samples(dataset)

        holdout_size = max(1, int(round(len(dataset) * self.config.holdout_fraction)))
        split = len(dataset) - holdout_size
        train_part = dataset.slice(slice(0, split))
        holdout = dataset.slice(slice(split, None))
        self._require_both_classes(train_part.y, "training split")

        model = build_model(model_type, config, self.config.random_state)
        logger.info(f"Training {model_type.value} model on {len(train_part)} samples")
        model.fit(train_part.X, train_part.y)
        metrics = model.evaluate(holdout.X, holdout.y, self.config.decision_threshold)

        now = utcnow()
        version = ModelVersion(
            id=f"{model_type.value}-{uuid.uuid4().hex[:12]}",
            type=model_type,
            version=now.strftime("%Y%m%d.%H%M%S"),
            config=dict(model.config),
            trainingData=TrainingDataDescriptor(
                sampleCount=len(dataset),
                trainingSize=len(train_part),
                holdoutSize=len(holdout),
                positiveRate=dataset.positive_rate,
                featureNames=list(dataset.feature_names),
                windowStart=dataset.window_start,
                windowEnd=dataset.window_end,
            ),
            metrics=metrics,
            status=ModelStatus.TRAINING,
            createdAt=now,
            updatedAt=now,
        )
        logger.info(
            f"Trained {version.id}: f1={metrics.f1:.3f}, accuracy={metrics.accuracy:.3f}, "
            f"auc={metrics.auc if metrics.auc is not None else 'n/a'}"
        )
        return TrainedModel(version=version, model=model, holdout=holdout)

    # -------------------------------------------------------------------------
    # Cross-validation
    # -------------------------------------------------------------------------

    def cross_validate(
        self,
        dataset: TrainingDataset,
        model_type: ModelType = ModelType.BASELINE,
        folds: Optional[int] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> CVResult:
        """
        k-fold cross-validation over contiguous folds.

        Returns:
            CVResult with per-fold metrics, mean/std per metric (auc averaged
            over the folds where it is defined) and the indices of the best
            and worst folds by f1 (first occurrence on ties).
        """
        model_type = ModelType(model_type)
        k = folds or self.config.cv_folds
        if k < 2:
            raise ValidationError("Cross-validation needs at least 2 folds")
        self._require_samples(dataset)
        if len(dataset) < k:
            raise InsufficientDataError(f"Cannot split {len(dataset)} samples into {k} folds")

        indices = np.array_split(np.arange(len(dataset)), k)
        fold_metrics: List[ModelMetrics] = []
        resolved_config: Dict[str, Any] = {}
        for i, test_idx in enumerate(indices):
            train_idx = np.concatenate([idx for j, idx in enumerate(indices) if j != i])
            self._require_both_classes(dataset.y[train_idx], f"fold {i} training data")

            model = build_model(model_type, config, self.config.random_state)
            model.fit(dataset.X[train_idx], dataset.y[train_idx])
            fold_metrics.append(
                model.evaluate(dataset.X[test_idx], dataset.y[test_idx], self.config.decision_threshold)
            )
            resolved_config = dict(model.config)

        mean: Dict[str, float] = {}
        std: Dict[str, float] = {}
        for name in CV_METRICS:
            values = [getattr(m, name) for m in fold_metrics if getattr(m, name) is not None]
            if values:
                mean[name] = float(np.mean(values))
                std[name] = float(np.std(values))

        f1_scores = np.array([m.f1 for m in fold_metrics])
        result = CVResult(
            modelType=model_type,
            folds=k,
            config=resolved_config,
            foldMetrics=fold_metrics,
            mean=mean,
            std=std,
            bestFold=int(np.argmax(f1_scores)),
            worstFold=int(np.argmin(f1_scores)),
        )
        logger.info(
            f"{k}-fold CV for {model_type.value}: f1={mean['f1']:.3f} +/- {std['f1']:.3f}"
        )
        return result

    # -------------------------------------------------------------------------
    # Hyperparameter Tuning
    # -------------------------------------------------------------------------

    def tune_hyperparameters(
        self,
        dataset: TrainingDataset,
        model_type: ModelType = ModelType.BASELINE,
        grid: Optional[Mapping[str, Sequence[Any]]] = None,
    ) -> TuningResult:
        """
        Exhaustive grid search scored by mean f1 over a reduced cross-validation.

        Raises:
            ValidationError: Ensemble models (tune the members instead) or an
                empty grid dimension.
        """
        model_type = ModelType(model_type)
        if model_type not in DEFAULT_GRIDS:
            raise ValidationError(f"Hyperparameter tuning is not supported for {model_type.value} models")

        search = dict(grid) if grid else DEFAULT_GRIDS[model_type]
        if not search or any(len(values) == 0 for values in search.values()):
            raise ValidationError("Every grid parameter needs at least one candidate value")

        names = list(search)
        candidates: List[TuningCandidate] = []
        best_config: Dict[str, Any] = {}
        best_score = -1.0
        for combination in itertools.product(*(search[n] for n in names)):
            candidate = dict(zip(names, combination))
            cv = self.cross_validate(dataset, model_type, self.config.tuning_folds, candidate)
            score = cv.mean["f1"]
            candidates.append(TuningCandidate(config=candidate, meanF1=score))
            if score > best_score:
                best_score, best_config = score, candidate

        logger.info(
            f"Tuned {model_type.value} over {len(candidates)} candidates: "
            f"best={best_config} (f1={best_score:.3f})"
        )
        return TuningResult(
            modelType=model_type,
            bestConfig=best_config,
            bestScore=best_score,
            candidates=candidates,
        )

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    def _require_samples(self, dataset: TrainingDataset) -> None:
        if len(dataset) < self.config.min_samples:
            raise InsufficientDataError(
                f"Need at least {self.config.min_samples} samples, got {len(dataset)}",
                details={"sampleCount": len(dataset), "minimum": self.config.min_samples},
            )

    @staticmethod
    def _require_both_classes(y: np.ndarray, label: str) -> None:
        if np.unique(y).size < 2:
            raise InsufficientDataError(f"The {label} contains a single class")
