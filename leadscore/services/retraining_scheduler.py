"""
Retraining scheduler: time- and data-gated retraining with a promotion policy.

State machine:
    idle -> eligible -> training -> evaluating -> {promote, A/B test, reject} -> idle

Gates checked before training (a forced run bypasses all of them):
    1. retraining enabled
    2. cooldown since the last successful retrain, derived from frequency
       (daily >= 20h, weekly >= 166h, monthly >= 696h)
    3. recent labeled data points >= min_data_points
    4. data quality: completeness, label balance within bounds and no severe
       feature drift; failures raise DataQualityError with itemized issues

The periodic check additionally waits for the configured time of day and
for enough stored outcomes in the training window, without recording an
attempt while either is missing.

Promotion policy once the candidate is trained:
    improvement = f1(candidate) - f1(active), both scored on the candidate's
    holdout; confidence comes from a two-proportion test on correct holdout
    predictions.

    improvement > 0.02 and confidence > 0.8 and auto deploy -> promote
    improvement > 0.01                                      -> start A/B test
    otherwise                                               -> reject

With no serving model at all, the candidate is promoted when auto deploy is
enabled and kept as a challenger otherwise.

Every attempt lands in the bounded attempt history and the audit log.
"""

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime, time, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from leadscore.core.config import RetrainingConfig
from leadscore.core.errors import DataQualityError, InsufficientDataError, StateTransitionError
from leadscore.models.enums import (
    AuditKind,
    ModelType,
    RetrainingFrequency,
    RetrainingOutcome,
    RetrainingState,
)
from leadscore.models.schemas import ModelMetrics, ModelVersion, RetrainingAttempt, utcnow
from leadscore.services.ab_testing import ABTestManager
from leadscore.services.audit import AuditLog
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.repositories import OutcomeRepository
from leadscore.services.statistics import two_proportion_test
from leadscore.services.training import (
    ModelTrainingOrchestrator,
    TrainedModel,
    TrainingDataset,
    validate_training_data,
)


logger = logging.getLogger(__name__)


COOLDOWNS: Dict[RetrainingFrequency, timedelta] = {
    RetrainingFrequency.DAILY: timedelta(hours=20),
    RetrainingFrequency.WEEKLY: timedelta(hours=166),
    RetrainingFrequency.MONTHLY: timedelta(hours=696),
}


class RetrainingScheduler:
    def __init__(
        self,
        config: RetrainingConfig,
        orchestrator: ModelTrainingOrchestrator,
        registry: ModelRegistry,
        outcomes: OutcomeRepository,
        ab_tests: ABTestManager,
        audit: AuditLog,
        model_type: ModelType = ModelType.BASELINE,
        history_limit: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.model_type = ModelType(model_type)
        self._orchestrator = orchestrator
        self._registry = registry
        self._outcomes = outcomes
        self._ab_tests = ab_tests
        self._audit = audit
        self._clock = clock
        self._lock = asyncio.Lock()
        self._history: Deque[RetrainingAttempt] = deque(maxlen=history_limit)

        self.state = RetrainingState.IDLE
        self.last_success_at: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    @property
    def cooldown(self) -> timedelta:
        return COOLDOWNS[RetrainingFrequency(self.config.frequency)]

    def next_eligible_at(self) -> Optional[datetime]:
        if self.last_success_at is None:
            return None
        return self.last_success_at + self.cooldown

    def cooldown_elapsed(self, now: Optional[datetime] = None) -> bool:
        eligible_at = self.next_eligible_at()
        return eligible_at is None or (now or self._clock()) >= eligible_at

    def in_schedule_window(self, now: Optional[datetime] = None) -> bool:
        hours, minutes = (int(part) for part in self.config.scheduled_time.split(":"))
        return (now or self._clock()).time() >= time(hours, minutes)

    # -------------------------------------------------------------------------
    # Entry Points
    # -------------------------------------------------------------------------

    async def check_and_run(self) -> Optional[RetrainingAttempt]:
        """Periodic entry point: retrain only when enabled, due and in window."""
        now = self._clock()
        if not self.config.enabled:
            return None
        if not self.cooldown_elapsed(now) or not self.in_schedule_window(now):
            return None
        if self._lock.locked():
            return None
        if await self._outcomes.count_since(self._window_start()) < self.config.min_data_points:
            return None
        return await self.run_retraining(force=False)

    async def run_retraining(self, force: bool = False) -> RetrainingAttempt:
        """
        Run one retraining attempt.

        Gates that are not met produce a "skipped" attempt. A forced run
        bypasses the enabled, cooldown, data-count and data-quality gates.

        Raises:
            StateTransitionError: A retraining attempt is already in progress.
            DataQualityError: The data-quality gate failed on an unforced run.
        """
        if self._lock.locked():
            raise StateTransitionError("A retraining attempt is already in progress")

        async with self._lock:
            attempt = RetrainingAttempt(id=f"rt-{uuid.uuid4().hex[:12]}", forced=force)
            try:
                return await self._run(attempt, force)
            except DataQualityError as e:
                self._finish(attempt, RetrainingOutcome.FAILED, e.message, issues=e.issues)
                raise
            except InsufficientDataError as e:
                return self._finish(attempt, RetrainingOutcome.SKIPPED, e.message)
            except Exception as e:
                logger.exception("Retraining attempt failed")
                self._finish(attempt, RetrainingOutcome.FAILED, f"Unexpected error: {e}")
                raise
            finally:
                self.state = RetrainingState.IDLE

    async def bootstrap(self) -> Optional[ModelVersion]:
        """
        Train and promote an initial model when nothing can serve.

        Uses every stored outcome inside the training window. Returns None
        when a serving model already exists or the data is insufficient.
        """
        active = self._registry.get_active()
        if active is not None and self._registry.has_predictor(active.id):
            return None

        frame = await self._outcomes.training_frame(self._window_start(), self._orchestrator.feature_names)
        try:
            dataset = TrainingDataset.from_frame(frame, self._orchestrator.feature_names)
            trained = await asyncio.to_thread(self._orchestrator.train, dataset, self.model_type)
        except InsufficientDataError as e:
            logger.warning(f"Bootstrap training skipped: {e.message}")
            return None

        await self._registry.register(trained.version, trained.model)
        promoted = await self._registry.promote(trained.version.id)
        self.last_success_at = self._clock()
        self._audit.record(
            AuditKind.RETRAINING,
            "bootstrap",
            True,
            f"Bootstrapped model {promoted.id} from {len(dataset)} samples",
            {"modelId": promoted.id},
        )
        return promoted

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def history(self, limit: Optional[int] = None) -> List[RetrainingAttempt]:
        attempts = list(reversed(self._history))
        return attempts[:limit] if limit is not None else attempts

    def status(self) -> Dict[str, Any]:
        next_eligible = self.next_eligible_at()
        last = self._history[-1] if self._history else None
        return {
            "enabled": self.config.enabled,
            "frequency": RetrainingFrequency(self.config.frequency).value,
            "scheduledTime": self.config.scheduled_time,
            "state": self.state.value,
            "inProgress": self._lock.locked(),
            "lastSuccessAt": self.last_success_at.isoformat() if self.last_success_at else None,
            "nextEligibleAt": next_eligible.isoformat() if next_eligible else None,
            "lastAttempt": last.model_dump(mode="json") if last else None,
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _window_start(self) -> datetime:
        return self._clock() - timedelta(days=self.config.training_window_days)

    async def _run(self, attempt: RetrainingAttempt, force: bool) -> RetrainingAttempt:
        now = self._clock()
        if not force:
            if not self.config.enabled:
                return self._finish(attempt, RetrainingOutcome.SKIPPED, "Retraining is disabled")
            if not self.cooldown_elapsed(now):
                return self._finish(
                    attempt,
                    RetrainingOutcome.SKIPPED,
                    f"Cooldown active until {self.next_eligible_at().isoformat()}",
                )

        feature_names = self._orchestrator.feature_names
        frame = await self._outcomes.training_frame(self._window_start(), feature_names)
        if not force and len(frame) < self.config.min_data_points:
            return self._finish(
                attempt,
                RetrainingOutcome.SKIPPED,
                f"Insufficient data: {len(frame)} < {self.config.min_data_points} data points",
            )

        report = await asyncio.to_thread(
            validate_training_data,
            frame,
            feature_names,
            self.config.completeness_threshold,
            self.config.min_positive_rate,
            self.config.max_positive_rate,
            self.config.severe_feature_drift_z,
        )
        if not report.passed:
            if not force:
                raise DataQualityError("Training data failed quality checks", report.issues)
            logger.warning(f"Forced retraining despite data quality issues: {report.issues}")
            attempt.issues = list(report.issues)

        self.state = RetrainingState.ELIGIBLE
        dataset = TrainingDataset.from_frame(frame, feature_names)

        self.state = RetrainingState.TRAINING
        trained = await asyncio.to_thread(self._orchestrator.train, dataset, self.model_type)
        attempt.candidateModelId = trained.version.id

        self.state = RetrainingState.EVALUATING
        await self._registry.register(trained.version, trained.model)
        return await self._decide(attempt, trained)

    async def _decide(self, attempt: RetrainingAttempt, trained: TrainedModel) -> RetrainingAttempt:
        candidate = trained.version
        active = self._registry.get_active()

        if active is None or not self._registry.has_predictor(active.id):
            self.last_success_at = self._clock()
            if self.config.auto_deploy:
                await self._registry.promote(candidate.id)
                return self._finish(
                    attempt, RetrainingOutcome.PROMOTED, "No serving model; candidate promoted"
                )
            await self._registry.mark_challenger(candidate.id)
            return self._finish(
                attempt,
                RetrainingOutcome.REJECTED,
                "No serving model and auto deploy disabled; candidate kept as challenger",
            )

        attempt.previousModelId = active.id
        holdout = trained.holdout
        active_predictor = self._registry.get_predictor(active.id)
        active_metrics: ModelMetrics = await asyncio.to_thread(
            active_predictor.evaluate, holdout.X, holdout.y, self._orchestrator.config.decision_threshold
        )
        candidate_metrics = candidate.metrics

        improvement = candidate_metrics.f1 - active_metrics.f1
        significance = two_proportion_test(
            _correct(active_metrics), len(holdout), _correct(candidate_metrics), len(holdout)
        )
        attempt.improvement = improvement
        attempt.confidence = significance.confidence
        self.last_success_at = self._clock()

        summary = (
            f"f1 {candidate_metrics.f1:.3f} vs {active_metrics.f1:.3f} "
            f"(improvement {improvement:+.3f}, confidence {significance.confidence:.1%})"
        )

        if (
            improvement > self.config.promote_improvement
            and significance.confidence > self.config.promote_confidence
            and self.config.auto_deploy
        ):
            await self._registry.promote(candidate.id)
            return self._finish(attempt, RetrainingOutcome.PROMOTED, f"Promoted: {summary}")

        if improvement > self.config.ab_test_improvement:
            try:
                test = await self._ab_tests.create_test(
                    challenger_model_id=candidate.id,
                    champion_model_id=active.id,
                    name=f"Retraining {attempt.id}",
                )
            except StateTransitionError as e:
                await self._registry.retire(candidate.id)
                return self._finish(
                    attempt, RetrainingOutcome.REJECTED, f"{summary}; A/B test not started: {e.message}"
                )
            attempt.abTestId = test.id
            return self._finish(
                attempt, RetrainingOutcome.AB_TEST_STARTED, f"A/B test {test.id} started: {summary}"
            )

        await self._registry.retire(candidate.id)
        return self._finish(attempt, RetrainingOutcome.REJECTED, f"Insufficient improvement: {summary}")

    def _finish(
        self,
        attempt: RetrainingAttempt,
        outcome: RetrainingOutcome,
        reason: str,
        issues: Optional[List[str]] = None,
    ) -> RetrainingAttempt:
        attempt.outcome = outcome
        attempt.reason = reason
        attempt.finishedAt = self._clock()
        if issues:
            attempt.issues = list(issues)
        self._history.append(attempt)

        success = outcome != RetrainingOutcome.FAILED
        self._audit.record(
            AuditKind.RETRAINING,
            outcome.value,
            success,
            reason,
            {
                "attemptId": attempt.id,
                "forced": attempt.forced,
                "candidateModelId": attempt.candidateModelId,
                "issues": attempt.issues,
            },
        )
        return attempt


def _correct(metrics: ModelMetrics) -> int:
    return metrics.truePositives + metrics.trueNegatives
