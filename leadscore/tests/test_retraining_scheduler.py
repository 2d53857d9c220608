"""
Tests for the retraining scheduler: gating, the data-quality check, the
promotion policy and bootstrap training.
"""

from typing import Optional

import pytest

from leadscore.core.config import ABTestConfig, RetrainingConfig, TrainingConfig
from leadscore.core.errors import DataQualityError
from leadscore.models.enums import ABTestStatus, ModelStatus, RetrainingOutcome
from leadscore.services.ab_testing import ABTestManager
from leadscore.services.feature_extraction import FEATURE_NAMES
from leadscore.services.model import LeadScoringModel
from leadscore.services.retraining_scheduler import RetrainingScheduler
from leadscore.services.training import ModelTrainingOrchestrator
from leadscore.tests.factories import (
    BASE_TIME,
    ConstantModel,
    ThresholdModel,
    fitted,
    make_labeled_data,
    make_version,
    seed_outcomes,
)


pytestmark = pytest.mark.asyncio


def make_scheduler(
    registry,
    outcome_repository,
    ab_test_repository,
    audit,
    datetime_clock,
    **overrides,
) -> RetrainingScheduler:
    config = RetrainingConfig(**{"min_data_points": 200, **overrides})
    ab_tests = ABTestManager(registry, ab_test_repository, ABTestConfig(), audit, clock=datetime_clock)
    return RetrainingScheduler(
        config,
        ModelTrainingOrchestrator(TrainingConfig(), FEATURE_NAMES),
        registry,
        outcome_repository,
        ab_tests,
        audit,
        clock=datetime_clock,
    )


async def serve_with(registry, model: LeadScoringModel, model_id: str = "serving") -> None:
    await registry.register(make_version(model_id), fitted(model))
    await registry.promote(model_id)


async def seed(outcome_repository, n: int = 400, noise: float = 0.5, positive_rate: Optional[float] = None) -> None:
    X, y = make_labeled_data(n=n, noise=noise, positive_rate=positive_rate)
    await seed_outcomes(outcome_repository, X, y, end=BASE_TIME)


@pytest.fixture
def scheduler_args(registry, outcome_repository, ab_test_repository, audit, datetime_clock):
    return registry, outcome_repository, ab_test_repository, audit, datetime_clock


class TestPromotionPolicy:

    async def test_clear_improvement_is_promoted(self, scheduler_args, registry, outcome_repository) -> None:
        await seed(outcome_repository)
        await serve_with(registry, ConstantModel(0.0))
        scheduler = make_scheduler(*scheduler_args)

        attempt = await scheduler.run_retraining()

        assert attempt.outcome == RetrainingOutcome.PROMOTED
        assert attempt.previousModelId == "serving"
        assert attempt.improvement > 0.02
        assert attempt.confidence > 0.8
        assert registry.get_active().id == attempt.candidateModelId
        assert registry.get("serving").status == ModelStatus.RETIRED

    async def test_improvement_without_auto_deploy_starts_ab_test(
        self,
        scheduler_args,
        registry,
        outcome_repository,
        ab_test_repository,
    ) -> None:
        await seed(outcome_repository)
        await serve_with(registry, ConstantModel(0.0))
        scheduler = make_scheduler(*scheduler_args, auto_deploy=False)

        attempt = await scheduler.run_retraining()

        assert attempt.outcome == RetrainingOutcome.AB_TEST_STARTED
        assert registry.get_active().id == "serving"
        assert registry.get(attempt.candidateModelId).status == ModelStatus.CHALLENGER
        test = await ab_test_repository.get(attempt.abTestId)
        assert test.status == ABTestStatus.RUNNING
        assert test.challengerModelId == attempt.candidateModelId

    async def test_no_improvement_is_rejected(self, scheduler_args, registry, outcome_repository) -> None:
        await seed(outcome_repository, noise=0.0)
        await serve_with(registry, ThresholdModel())
        scheduler = make_scheduler(*scheduler_args)

        attempt = await scheduler.run_retraining()

        assert attempt.outcome == RetrainingOutcome.REJECTED
        assert attempt.improvement <= 0
        assert registry.get_active().id == "serving"
        assert registry.get(attempt.candidateModelId).status == ModelStatus.RETIRED

    async def test_first_model_promoted_without_serving_model(
        self,
        scheduler_args,
        registry,
        outcome_repository,
    ) -> None:
        await seed(outcome_repository)
        scheduler = make_scheduler(*scheduler_args)

        attempt = await scheduler.run_retraining()

        assert attempt.outcome == RetrainingOutcome.PROMOTED
        assert registry.get_active().id == attempt.candidateModelId


class TestGates:

    async def test_too_little_data_is_skipped(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository, n=100)
        scheduler = make_scheduler(*scheduler_args)

        attempt = await scheduler.run_retraining()

        assert attempt.outcome == RetrainingOutcome.SKIPPED
        assert "Insufficient data" in attempt.reason

    async def test_forced_run_below_sample_floor_is_skipped(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository, n=50)
        scheduler = make_scheduler(*scheduler_args)

        attempt = await scheduler.run_retraining(force=True)

        assert attempt.outcome == RetrainingOutcome.SKIPPED
        assert attempt.forced

    async def test_imbalanced_labels_fail_quality_gate(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository, positive_rate=0.97)
        scheduler = make_scheduler(*scheduler_args)

        with pytest.raises(DataQualityError) as exc_info:
            await scheduler.run_retraining()

        assert any("imbalance" in issue for issue in exc_info.value.issues)
        attempt = scheduler.history()[0]
        assert attempt.outcome == RetrainingOutcome.FAILED
        assert attempt.issues

    async def test_forced_run_proceeds_despite_issues(self, scheduler_args, registry, outcome_repository) -> None:
        await seed(outcome_repository, positive_rate=0.97)
        scheduler = make_scheduler(*scheduler_args)

        attempt = await scheduler.run_retraining(force=True)

        assert attempt.outcome == RetrainingOutcome.PROMOTED
        assert attempt.issues
        assert registry.get_active() is not None

    async def test_cooldown_after_success(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository)
        scheduler = make_scheduler(*scheduler_args)

        await scheduler.run_retraining()
        second = await scheduler.run_retraining()

        assert second.outcome == RetrainingOutcome.SKIPPED
        assert "Cooldown" in second.reason

    async def test_cooldown_elapses(self, scheduler_args, outcome_repository, datetime_clock) -> None:
        await seed(outcome_repository)
        scheduler = make_scheduler(*scheduler_args, frequency="daily")

        await scheduler.run_retraining()
        datetime_clock.advance(hours=21)

        assert scheduler.cooldown_elapsed()

    async def test_disabled_scheduler_never_runs(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository)
        scheduler = make_scheduler(*scheduler_args, enabled=False)

        assert await scheduler.check_and_run() is None
        assert scheduler.history() == []

    async def test_periodic_check_waits_for_data(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository, n=100)
        scheduler = make_scheduler(*scheduler_args, scheduled_time="02:00")

        assert await scheduler.check_and_run() is None
        assert scheduler.history() == []

    async def test_periodic_check_runs_when_due(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository)
        scheduler = make_scheduler(*scheduler_args, scheduled_time="02:00")

        first = await scheduler.check_and_run()
        second = await scheduler.check_and_run()

        assert first.outcome == RetrainingOutcome.PROMOTED
        assert second is None


class TestBootstrapAndReporting:

    async def test_bootstrap_trains_initial_model(self, scheduler_args, registry, outcome_repository) -> None:
        await seed(outcome_repository)
        scheduler = make_scheduler(*scheduler_args)

        promoted = await scheduler.bootstrap()

        assert promoted is not None
        assert registry.get_active().id == promoted.id
        assert await scheduler.bootstrap() is None

    async def test_bootstrap_without_data(self, scheduler_args) -> None:
        scheduler = make_scheduler(*scheduler_args)

        assert await scheduler.bootstrap() is None

    async def test_status_and_history(self, scheduler_args, outcome_repository) -> None:
        await seed(outcome_repository, n=100)
        scheduler = make_scheduler(*scheduler_args)

        await scheduler.run_retraining()
        await scheduler.run_retraining()
        status = scheduler.status()

        assert status["state"] == "idle"
        assert not status["inProgress"]
        assert status["lastSuccessAt"] is None
        assert status["lastAttempt"]["outcome"] == "skipped"
        assert len(scheduler.history()) == 2
        assert len(scheduler.history(limit=1)) == 1
