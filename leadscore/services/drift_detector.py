"""
Drift detection over served predictions paired with observed outcomes.

The most recent ``window_days`` of (prediction, actual) pairs are split into
two time-ordered halves. The older half is the baseline, the newer half the
recent window, and three deltas are compared against the threshold:

    accuracyDelta        |acc(recent) - acc(baseline)|  (prediction >= 0.5 vs actual)
    meanPredictionDelta  |mean(recent) - mean(baseline)|
    predictionStdDelta   |std(recent) - std(baseline)|

    driftDetected = any delta > threshold
    confidence    = min(1, max delta / threshold)

Below ``min_samples`` pairs nothing is guessed: the analysis reports
driftDetected=False with confidence 0.

The analysis also reports score-distribution anomalies across the window
(a gap wider than 0.2 between neighbouring predictions, or one 0.1-wide
bucket holding more than half of all predictions). Anomalies are reported
only and do not change the verdict.
"""

import logging
from datetime import timedelta
from typing import Callable, List, Optional, Sequence

import numpy as np

from leadscore.core.config import DriftConfig
from leadscore.models.enums import AuditKind
from leadscore.models.schemas import DriftAnalysis, DriftMetrics, PredictionOutcome, utcnow
from leadscore.services.audit import AuditLog
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.repositories import OutcomeRepository


logger = logging.getLogger(__name__)

MAX_SCORE_GAP = 0.2
MAX_BUCKET_SHARE = 0.5
BUCKET_COUNT = 10


def _accuracy(pairs: Sequence[PredictionOutcome]) -> float:
    correct = sum(1 for p in pairs if int(p.prediction >= 0.5) == p.actual)
    return correct / len(pairs)


def distribution_anomalies(predictions: Sequence[float]) -> List[str]:
    """Describe gaps and over-concentrated buckets in a score distribution."""
    if len(predictions) < 2:
        return []
    anomalies: List[str] = []

    ordered = np.sort(np.asarray(predictions, dtype=float))
    gaps = np.diff(ordered)
    widest = int(np.argmax(gaps))
    if gaps[widest] > MAX_SCORE_GAP:
        anomalies.append(
            f"No predictions between {ordered[widest]:.2f} and {ordered[widest + 1]:.2f}"
        )

    counts, edges = np.histogram(ordered, bins=BUCKET_COUNT, range=(0.0, 1.0))
    shares = counts / len(ordered)
    for i in np.flatnonzero(shares > MAX_BUCKET_SHARE):
        anomalies.append(
            f"{shares[i]:.0%} of predictions fall in [{edges[i]:.1f}, {edges[i + 1]:.1f})"
        )
    return anomalies


class DriftDetector:
    def __init__(
        self,
        config: DriftConfig,
        outcomes: OutcomeRepository,
        registry: ModelRegistry,
        audit: AuditLog,
        clock: Callable = utcnow,
    ):
        self.config = config
        self._outcomes = outcomes
        self._registry = registry
        self._audit = audit
        self._clock = clock
        self.last_analysis: Optional[DriftAnalysis] = None

    async def detect_drift(self, model_id: Optional[str] = None) -> DriftAnalysis:
        """
        Analyze drift for one model, defaulting to the active model.

        With no model id and no active model, all recent pairs are analyzed.
        """
        if model_id is None:
            active = self._registry.get_active()
            model_id = active.id if active else None

        since = self._clock() - timedelta(days=self.config.window_days)
        pairs = await self._outcomes.list_since(since, model_id)
        n = len(pairs)

        if n < self.config.min_samples:
            analysis = DriftAnalysis(
                modelId=model_id,
                driftDetected=False,
                confidence=0.0,
                driftMetrics=DriftMetrics(sampleSize=n),
                timestamp=self._clock(),
            )
            self._audit.record(
                AuditKind.DRIFT,
                "detect_drift",
                True,
                f"Insufficient data for drift analysis: {n} < {self.config.min_samples} pairs",
                {"modelId": model_id, "sampleSize": n},
            )
            self.last_analysis = analysis
            return analysis

        half = n // 2
        baseline, recent = pairs[:half], pairs[half:]
        base_pred = np.array([p.prediction for p in baseline])
        recent_pred = np.array([p.prediction for p in recent])

        baseline_accuracy = _accuracy(baseline)
        recent_accuracy = _accuracy(recent)
        metrics = DriftMetrics(
            accuracyDelta=abs(recent_accuracy - baseline_accuracy),
            meanPredictionDelta=float(abs(recent_pred.mean() - base_pred.mean())),
            predictionStdDelta=float(abs(recent_pred.std() - base_pred.std())),
            baselineAccuracy=baseline_accuracy,
            recentAccuracy=recent_accuracy,
            sampleSize=n,
            distributionAnomalies=distribution_anomalies([p.prediction for p in pairs]),
        )

        worst = max(metrics.accuracyDelta, metrics.meanPredictionDelta, metrics.predictionStdDelta)
        drift_detected = worst > self.config.threshold
        analysis = DriftAnalysis(
            modelId=model_id,
            driftDetected=drift_detected,
            confidence=min(1.0, worst / self.config.threshold),
            driftMetrics=metrics,
            timestamp=self._clock(),
        )

        if drift_detected:
            logger.warning(
                f"Drift detected for model {model_id}: accuracy delta {metrics.accuracyDelta:.3f}, "
                f"mean prediction delta {metrics.meanPredictionDelta:.3f}, "
                f"std delta {metrics.predictionStdDelta:.3f}"
            )
        self._audit.record(
            AuditKind.DRIFT,
            "detect_drift",
            True,
            f"Drift {'detected' if drift_detected else 'not detected'} "
            f"(confidence {analysis.confidence:.2f}, {n} pairs)",
            {"modelId": model_id, "driftDetected": drift_detected, "confidence": analysis.confidence},
        )
        self.last_analysis = analysis
        return analysis
