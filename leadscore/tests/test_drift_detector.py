"""
Tests for drift detection over (prediction, outcome) pairs.
"""

from datetime import timedelta
from typing import Callable

import pytest

from leadscore.core.config import DriftConfig
from leadscore.models.enums import AuditKind
from leadscore.models.schemas import PredictionOutcome
from leadscore.services.drift_detector import DriftDetector, distribution_anomalies
from leadscore.services.repositories import InMemoryOutcomeRepository
from leadscore.tests.factories import BASE_TIME, FakeDateTimeClock


async def add_pairs(
    repository: InMemoryOutcomeRepository,
    count: int,
    start_minutes_ago: int,
    pair: Callable[[int], tuple],
    model_id: str = "m1",
) -> None:
    """Store ``count`` pairs one minute apart; ``pair(i)`` gives (prediction, actual)."""
    for i in range(count):
        prediction, actual = pair(i)
        await repository.add(
            PredictionOutcome(
                modelId=model_id,
                leadId=f"lead-{i}",
                prediction=prediction,
                actual=actual,
                timestamp=BASE_TIME - timedelta(minutes=start_minutes_ago - i),
            )
        )


@pytest.fixture
def detector(outcome_repository, registry, audit, datetime_clock: FakeDateTimeClock) -> DriftDetector:
    return DriftDetector(DriftConfig(), outcome_repository, registry, audit, clock=datetime_clock)


@pytest.mark.asyncio
class TestDetectDrift:

    async def test_too_few_pairs_is_not_drift(self, detector, outcome_repository) -> None:
        await add_pairs(outcome_repository, 40, 100, lambda i: (0.9, 0))

        analysis = await detector.detect_drift("m1")

        assert not analysis.driftDetected
        assert analysis.confidence == 0.0
        assert analysis.driftMetrics.sampleSize == 40

    async def test_stable_model_has_no_drift(self, detector, outcome_repository) -> None:
        await add_pairs(outcome_repository, 200, 300, lambda i: (0.7, 1) if i % 2 else (0.3, 0))

        analysis = await detector.detect_drift("m1")

        assert not analysis.driftDetected
        assert analysis.driftMetrics.accuracyDelta == pytest.approx(0.0)
        assert analysis.driftMetrics.meanPredictionDelta == pytest.approx(0.0)
        # Bimodal scores leave a gap but do not change the verdict
        assert analysis.driftMetrics.distributionAnomalies

    async def test_shifted_predictions_drift(self, detector, outcome_repository) -> None:
        await add_pairs(outcome_repository, 100, 300, lambda i: (0.2, 0))
        await add_pairs(outcome_repository, 100, 150, lambda i: (0.8, 0))

        analysis = await detector.detect_drift("m1")

        assert analysis.driftDetected
        assert analysis.confidence == 1.0
        assert analysis.driftMetrics.baselineAccuracy == 1.0
        assert analysis.driftMetrics.recentAccuracy == 0.0
        assert analysis.driftMetrics.meanPredictionDelta == pytest.approx(0.6)

    async def test_accuracy_drop_alone_is_drift(self, detector, outcome_repository) -> None:
        def baseline(i: int) -> tuple:
            return (0.7, 1) if i % 2 else (0.3, 0)

        def recent(i: int) -> tuple:
            prediction, actual = baseline(i)
            return (prediction, 1 - actual) if i % 10 < 3 else (prediction, actual)

        await add_pairs(outcome_repository, 100, 300, baseline)
        await add_pairs(outcome_repository, 100, 150, recent)

        analysis = await detector.detect_drift("m1")

        metrics = analysis.driftMetrics
        assert metrics.meanPredictionDelta == pytest.approx(0.0)
        assert metrics.predictionStdDelta == pytest.approx(0.0)
        assert metrics.accuracyDelta == pytest.approx(0.3)
        assert analysis.driftDetected
        assert analysis.confidence > 0

    async def test_pairs_outside_window_ignored(
        self,
        detector,
        outcome_repository,
        datetime_clock: FakeDateTimeClock,
    ) -> None:
        await add_pairs(outcome_repository, 200, 300, lambda i: (0.8, 1))

        datetime_clock.advance(days=31)
        analysis = await detector.detect_drift("m1")

        assert analysis.driftMetrics.sampleSize == 0

    async def test_other_models_excluded(self, detector, outcome_repository) -> None:
        await add_pairs(outcome_repository, 150, 300, lambda i: (0.8, 1), model_id="m2")

        analysis = await detector.detect_drift("m1")

        assert analysis.driftMetrics.sampleSize == 0

    async def test_each_analysis_is_audited(self, detector, outcome_repository, audit) -> None:
        await add_pairs(outcome_repository, 200, 300, lambda i: (0.6, 1))

        await detector.detect_drift("m1")
        await detector.detect_drift("m1")

        entries = audit.list(AuditKind.DRIFT)
        assert len(entries) == 2
        assert entries[0].details["modelId"] == "m1"
        assert detector.last_analysis is not None


class TestDistributionAnomalies:

    def test_even_spread_is_clean(self) -> None:
        assert distribution_anomalies([i / 100 for i in range(100)]) == []

    def test_concentrated_bucket(self) -> None:
        anomalies = distribution_anomalies([0.55] * 60 + [i / 40 for i in range(40)])

        assert any("[0.5, 0.6)" in a for a in anomalies)

    def test_single_prediction(self) -> None:
        assert distribution_anomalies([0.4]) == []
