"""
A/B test manager: champion/challenger traffic split and result accrual.

Lifecycle:
    created -> running -> completed   (duration elapsed or stopping rule fired)
                       -> aborted     (operator stop)

At most one test runs at a time; while it runs, every scoring request that
does not pin a model is routed through route(). Assignment is sticky per
lead: a deterministic hash of (test id, lead id) picks the side, so the same
lead always sees the same model for the lifetime of the test.

Result accrual:
    - record_score() counts a served request and updates the side's running
      average score. Only served requests are counted.
    - record_conversion() credits a conversion to the side that served the
      lead, at most once per lead and only for leads actually served, so
      conversions can never exceed routed traffic.

Every ``checkInterval`` visitors the sequential stopping rule is evaluated
against the stricter of the test's own thresholds and the success criteria
of its risk profile, so an early stop always has enough sample for the
winner selector. The periodic completion job also completes tests whose
duration elapsed.
Completion asks the winner selector for a recommendation. A winning
challenger is promoted automatically only when the policy has auto deploy
enabled; otherwise deploy_winner() must be called explicitly and requires
winner=challenger with confidence >= the test's confidence threshold.

Usage:
    manager = ABTestManager(registry, repository, ABTestConfig(), audit)
    test = await manager.create_test(challenger_model_id="m-new")
    routed = manager.route("lead-42")
    await manager.record_score(routed.test_id, routed.variant, 0.73, "lead-42")
    await manager.record_conversion(test.id, "lead-42")
"""

import asyncio
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from leadscore.core.config import ABTestConfig
from leadscore.core.errors import (
    ModelUnavailableError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from leadscore.models.enums import (
    ABTestStatus,
    AuditKind,
    ModelStatus,
    RiskProfile,
    TargetMetric,
    Variant,
    WinnerDecision,
)
from leadscore.models.schemas import (
    ABTest,
    ABTestResult,
    ModelVersion,
    VariantResults,
    WinnerRecommendation,
)
from leadscore.services.audit import AuditLog
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.repositories import ABTestRepository
from leadscore.services.statistics import check_stopping_rule, two_proportion_test
from leadscore.services.winner_selector import criteria_for, select_winner


logger = logging.getLogger(__name__)

_HASH_BUCKETS = 10_000


@dataclass(frozen=True)
class RoutedRequest:
    test_id: str
    variant: Variant
    model_id: str


def _bucket(test_id: str, lead_id: str) -> float:
    digest = hashlib.md5(f"{test_id}:{lead_id}".encode()).hexdigest()
    return (int(digest[:8], 16) % _HASH_BUCKETS) / _HASH_BUCKETS


def _with_conversion(results: VariantResults) -> VariantResults:
    conversions = results.conversions + 1
    return results.model_copy(update={
        "conversions": conversions,
        "conversionRate": conversions / results.requests if results.requests else 0.0,
    })


def _with_request(results: VariantResults, score: float) -> VariantResults:
    requests = results.requests + 1
    return results.model_copy(update={
        "requests": requests,
        "conversionRate": results.conversions / requests,
        "averageScore": results.averageScore + (score - results.averageScore) / requests,
    })


class ABTestManager:
    def __init__(
        self,
        registry: ModelRegistry,
        repository: ABTestRepository,
        config: ABTestConfig,
        audit: AuditLog,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._registry = registry
        self._repository = repository
        self.config = config
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tests: Dict[str, ABTest] = {}
        self._served: Dict[str, Dict[str, Variant]] = {}
        self._converted: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def load(self) -> int:
        """
        Restore tests persisted by a previous process.

        Predictors live only in memory, so a restored running test whose
        champion or challenger has no loaded predictor is aborted instead
        of routing traffic to models that cannot serve.
        """
        tests = await self._repository.list()
        async with self._lock:
            for test in tests:
                self._tests.setdefault(test.id, test)
                self._served.setdefault(test.id, {})
                self._converted.setdefault(test.id, set())
        logger.info(f"Loaded {len(tests)} A/B test(s) from repository")

        for test in self.list_tests(ABTestStatus.RUNNING):
            missing = [
                model_id
                for model_id in (test.championModelId, test.challengerModelId)
                if not self._registry.has_predictor(model_id)
            ]
            if missing:
                logger.warning(f"Aborting restored A/B test {test.id}: no predictor for {', '.join(missing)}")
                await self.stop_test(test.id, f"Models unavailable after restart: {', '.join(missing)}")
        return len(tests)

    async def create_test(
        self,
        challenger_model_id: str,
        champion_model_id: Optional[str] = None,
        name: Optional[str] = None,
        traffic_split: Optional[float] = None,
        duration_days: Optional[float] = None,
        confidence_threshold: Optional[float] = None,
        min_sample_size: Optional[int] = None,
        target_metric: TargetMetric = TargetMetric.CONVERSION_RATE,
        risk_profile: Optional[RiskProfile] = None,
        start: bool = True,
    ) -> ABTest:
        """
        Create (and by default start) a champion/challenger test.

        The champion defaults to the active model. The challenger must have
        a loaded predictor and is moved to status=challenger.

        Raises:
            ModelUnavailableError: No champion available.
            ValidationError: Champion and challenger are the same model.
            StateTransitionError: Another test is already running.
        """
        if champion_model_id is None:
            active = self._registry.get_active()
            if active is None:
                raise ModelUnavailableError("No active model to act as champion")
            champion_model_id = active.id
        if champion_model_id == challenger_model_id:
            raise ValidationError("Champion and challenger must be different models")

        self._registry.get_predictor(champion_model_id)
        self._registry.get_predictor(challenger_model_id)

        if start and self.running_test() is not None:
            raise StateTransitionError("Another A/B test is already running")

        test = ABTest(
            id=f"abt-{uuid.uuid4().hex[:12]}",
            name=name or f"{champion_model_id} vs {challenger_model_id}",
            championModelId=champion_model_id,
            challengerModelId=challenger_model_id,
            trafficSplit=traffic_split if traffic_split is not None else self.config.traffic_split,
            targetMetric=target_metric,
            riskProfile=risk_profile,
            confidenceThreshold=confidence_threshold or self.config.confidence_threshold,
            minSampleSize=min_sample_size or self.config.min_sample_size,
            durationDays=duration_days or self.config.duration_days,
            checkInterval=self.config.check_interval,
        )
        await self._registry.mark_challenger(challenger_model_id)

        async with self._lock:
            self._tests[test.id] = test
            self._served[test.id] = {}
            self._converted[test.id] = set()
        await self._repository.save(test)
        self._audit.record(AuditKind.AB_TEST, "created", True, f"Test {test.id}: {test.name}",
                           {"testId": test.id})

        if start:
            test = await self.start_test(test.id)
        return test

    async def start_test(self, test_id: str) -> ABTest:
        async with self._lock:
            test = self._get(test_id)
            if test.status != ABTestStatus.CREATED:
                raise StateTransitionError(f"Test {test_id} is {test.status.value}, not created")
            running = self.running_test()
            if running is not None:
                raise StateTransitionError(f"Test {running.id} is already running")
            test = test.model_copy(update={"status": ABTestStatus.RUNNING, "startTime": self._clock()})
            self._tests[test_id] = test
        await self._repository.save(test)
        self._audit.record(AuditKind.AB_TEST, "started", True, f"Test {test_id} running",
                           {"testId": test_id, "trafficSplit": test.trafficSplit})
        return test

    async def stop_test(self, test_id: str, reason: str = "Stopped by operator") -> ABTest:
        """Abort a created or running test; the challenger is retired."""
        async with self._lock:
            test = self._get(test_id)
            if test.status not in (ABTestStatus.CREATED, ABTestStatus.RUNNING):
                raise StateTransitionError(f"Test {test_id} is already {test.status.value}")
            test = test.model_copy(update={
                "status": ABTestStatus.ABORTED,
                "endTime": self._clock(),
                "abortReason": reason,
            })
            self._tests[test_id] = test
        await self._retire_challenger(test)
        await self._repository.save(test)
        self._audit.record(AuditKind.AB_TEST, "aborted", True, f"Test {test_id}: {reason}",
                           {"testId": test_id})
        return test

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _get(self, test_id: str) -> ABTest:
        test = self._tests.get(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")
        return test

    def get_test(self, test_id: str) -> ABTest:
        return self._get(test_id)

    def list_tests(self, status: Optional[ABTestStatus] = None) -> List[ABTest]:
        tests = list(self._tests.values())
        if status is not None:
            tests = [t for t in tests if t.status == status]
        return tests

    def running_test(self) -> Optional[ABTest]:
        for test in self._tests.values():
            if test.status == ABTestStatus.RUNNING:
                return test
        return None

    def duration_days(self, test: ABTest) -> float:
        if test.startTime is None:
            return 0.0
        end = test.endTime or self._clock()
        return max((end - test.startTime).total_seconds() / 86400.0, 0.0)

    # -------------------------------------------------------------------------
    # Routing & Accrual
    # -------------------------------------------------------------------------

    def route(self, lead_id: str) -> Optional[RoutedRequest]:
        """Pick the side for ``lead_id`` in the running test, if any."""
        test = self.running_test()
        if test is None:
            return None
        variant = self._served.get(test.id, {}).get(lead_id)
        if variant is None:
            variant = (
                Variant.CHALLENGER
                if _bucket(test.id, lead_id) < test.trafficSplit
                else Variant.CHAMPION
            )
        model_id = test.challengerModelId if variant == Variant.CHALLENGER else test.championModelId
        return RoutedRequest(test_id=test.id, variant=variant, model_id=model_id)

    async def record_score(self, test_id: str, variant: Variant, score: float, lead_id: str) -> None:
        """Count one served request; may complete the test via the stopping rule."""
        async with self._lock:
            test = self._tests.get(test_id)
            if test is None or test.status != ABTestStatus.RUNNING:
                return

            served = self._served.setdefault(test_id, {})
            served.setdefault(lead_id, variant)
            field = "challengerResults" if variant == Variant.CHALLENGER else "championResults"
            test = test.model_copy(update={field: _with_request(getattr(test, field), score)})
            self._tests[test_id] = test

            total = test.championResults.requests + test.challengerResults.requests
            if total < test.lastCheckedVisitors + test.checkInterval:
                return

            # Never stop before completion could pick a winner.
            criteria = criteria_for(test.targetMetric, test.riskProfile)
            stats = two_proportion_test(
                test.championResults.conversions,
                test.championResults.requests,
                test.challengerResults.conversions,
                test.challengerResults.requests,
                confidence_level=max(test.confidenceThreshold, criteria.minimumConfidence),
            )
            decision = check_stopping_rule(
                stats,
                total,
                test.lastCheckedVisitors,
                test.checkInterval,
                max(test.minSampleSize, criteria.minimumSampleSize),
            )
            test = test.model_copy(update={"lastCheckedVisitors": total})
            self._tests[test_id] = test

        if decision.canStop:
            await self._complete(test_id, decision.reason)
        else:
            await self._repository.save(test)

    async def record_conversion(self, test_id: str, lead_id: str, converted: bool = True) -> ABTest:
        """
        Credit a conversion for a lead served by this test.

        Raises:
            NotFoundError: Unknown test.
            StateTransitionError: Test is not running.
            ValidationError: The lead was never served by this test.
        """
        async with self._lock:
            test = self._get(test_id)
            if test.status != ABTestStatus.RUNNING:
                raise StateTransitionError(f"Test {test_id} is {test.status.value}")
            variant = self._served.get(test_id, {}).get(lead_id)
            if variant is None:
                raise ValidationError(f"Lead {lead_id} was not served by test {test_id}")
            converted_leads = self._converted.setdefault(test_id, set())
            if not converted or lead_id in converted_leads:
                return test

            converted_leads.add(lead_id)
            field = "challengerResults" if variant == Variant.CHALLENGER else "championResults"
            test = test.model_copy(update={field: _with_conversion(getattr(test, field))})
            self._tests[test_id] = test
        await self._repository.save(test)
        return test

    # -------------------------------------------------------------------------
    # Analysis & Completion
    # -------------------------------------------------------------------------

    def analyze(self, test_id: str, risk_profile: Optional[RiskProfile] = None) -> WinnerRecommendation:
        """Winner recommendation for the current snapshot; does not change state."""
        return self.analyze_snapshot(self._get(test_id), risk_profile)

    async def check_completion(self) -> List[ABTestResult]:
        """Complete running tests whose duration has elapsed."""
        results = []
        for test in self.list_tests(ABTestStatus.RUNNING):
            if self.duration_days(test) >= test.durationDays:
                result = await self._complete(test.id, f"Test duration of {test.durationDays:g} days elapsed")
                if result is not None:
                    results.append(result)
        return results

    async def _complete(self, test_id: str, reason: str) -> Optional[ABTestResult]:
        async with self._lock:
            test = self._tests.get(test_id)
            if test is None or test.status != ABTestStatus.RUNNING:
                return None
            end = self._clock()
            test = test.model_copy(update={"status": ABTestStatus.COMPLETED, "endTime": end})
            recommendation = self.analyze_snapshot(test)
            result = ABTestResult(
                testId=test_id,
                winner=recommendation.winner,
                confidence=recommendation.confidence,
                completedReason=reason,
                recommendation=recommendation,
            )
            test = test.model_copy(update={"result": result})
            self._tests[test_id] = test

        logger.info(f"A/B test {test_id} completed: {reason} -> {recommendation.decision.value}")

        if self._challenger_won(test):
            if self.config.auto_deploy:
                await self._deploy(test)
                test = self._tests[test_id]
        else:
            await self._retire_challenger(test)

        await self._repository.save(self._tests[test_id])
        self._audit.record(
            AuditKind.AB_TEST,
            "completed",
            True,
            f"Test {test_id}: {recommendation.decision.value}",
            {"testId": test_id, "winner": result.winner.value if result.winner else None,
             "confidence": result.confidence, "reason": reason},
        )
        return self._tests[test_id].result

    def analyze_snapshot(
        self,
        test: ABTest,
        risk_profile: Optional[RiskProfile] = None,
    ) -> WinnerRecommendation:
        return select_winner(
            test.id,
            test.championResults.conversions,
            test.championResults.requests,
            test.challengerResults.conversions,
            test.challengerResults.requests,
            self.duration_days(test),
            target_metric=test.targetMetric,
            risk_profile=risk_profile or test.riskProfile,
        )

    def _challenger_won(self, test: ABTest) -> bool:
        result = test.result
        return (
            result is not None
            and result.recommendation.decision == WinnerDecision.IMPLEMENT_WINNER
            and result.winner == Variant.CHALLENGER
            and result.confidence >= test.confidenceThreshold
        )

    async def deploy_winner(self, test_id: str) -> ModelVersion:
        """
        Promote the challenger of a completed test.

        Raises:
            StateTransitionError: Test is not completed.
            ValidationError: Winner is not the challenger, or confidence is
                below the test's confidence threshold.
        """
        test = self._get(test_id)
        if test.status != ABTestStatus.COMPLETED or test.result is None:
            raise StateTransitionError(f"Test {test_id} has not completed")
        if test.result.winner != Variant.CHALLENGER:
            raise ValidationError(f"Challenger did not win test {test_id}")
        if test.result.confidence < test.confidenceThreshold:
            raise ValidationError(
                f"Confidence {test.result.confidence:.3f} below threshold {test.confidenceThreshold}"
            )
        if test.result.deployed:
            return self._registry.get(test.challengerModelId)
        version = await self._deploy(test)
        await self._repository.save(self._tests[test_id])
        return version

    async def _deploy(self, test: ABTest) -> ModelVersion:
        version = await self._registry.promote(test.challengerModelId)
        async with self._lock:
            current = self._tests[test.id]
            result = current.result.model_copy(update={"deployed": True})
            self._tests[test.id] = current.model_copy(update={"result": result})
        self._audit.record(
            AuditKind.DEPLOYMENT,
            "ab_test_winner_deployed",
            True,
            f"Model {test.challengerModelId} promoted from test {test.id}",
            {"testId": test.id, "modelId": test.challengerModelId},
        )
        return version

    async def _retire_challenger(self, test: ABTest) -> None:
        try:
            version = self._registry.get(test.challengerModelId)
        except NotFoundError:
            return
        if version.status == ModelStatus.CHALLENGER:
            await self._registry.retire(version.id)
