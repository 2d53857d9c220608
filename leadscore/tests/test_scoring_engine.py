"""
Tests for the real-time scoring engine.

Covers the online path end to end with stub predictors: caching, model
resolution and fallback, rate limiting, batch scoring, outcome recording,
A/B routing, statistics and health.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import pytest

from leadscore.core.config import ABTestConfig, ScoringConfig
from leadscore.core.errors import (
    ModelUnavailableError,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
)
from leadscore.models.enums import HealthState, Variant
from leadscore.models.schemas import CacheSettingsUpdate
from leadscore.services.ab_testing import ABTestManager
from leadscore.services.audit import AuditLog
from leadscore.services.feature_extraction import FEATURE_NAMES, DefaultFeatureExtractor
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.rate_limiter import SlidingWindowRateLimiter
from leadscore.services.repositories import (
    InMemoryABTestRepository,
    InMemoryLeadRepository,
    InMemoryOutcomeRepository,
)
from leadscore.services.request_queue import RequestQueue
from leadscore.services.score_cache import ScoreCache
from leadscore.services.scoring_engine import RealTimeScoringEngine
from leadscore.tests.factories import BASE_TIME, ConstantModel, FakeClock, fitted, make_lead, make_version


pytestmark = pytest.mark.asyncio


@dataclass
class EngineSetup:
    engine: RealTimeScoringEngine
    model: ConstantModel
    registry: ModelRegistry
    outcomes: InMemoryOutcomeRepository
    clock: FakeClock


async def build_engine(
    registry: ModelRegistry,
    leads: InMemoryLeadRepository,
    outcomes: InMemoryOutcomeRepository,
    clock: FakeClock,
    value: float = 0.7,
    activate: bool = True,
    rate_limit: int = 1000,
    ab_tests: Optional[ABTestManager] = None,
) -> EngineSetup:
    model = fitted(ConstantModel(value))
    if activate:
        await registry.register(make_version("champion"), model)
        await registry.promote("champion")

    config = ScoringConfig(batch_pause_seconds=0, rate_limit_max=rate_limit)
    engine = RealTimeScoringEngine(
        registry=registry,
        leads=leads,
        outcomes=outcomes,
        extractor=DefaultFeatureExtractor(clock=lambda: BASE_TIME),
        cache=ScoreCache(ttl_seconds=300, clock=clock),
        rate_limiter=SlidingWindowRateLimiter(max_requests=rate_limit, window_seconds=60, clock=clock),
        queue=RequestQueue(max_concurrency=config.queue_max_concurrency, poll_interval_seconds=0.01),
        config=config,
        ab_tests=ab_tests,
    )
    return EngineSetup(engine, model, registry, outcomes, clock)


@pytest.fixture
def setup_args(registry, lead_repository, outcome_repository, clock):
    return registry, lead_repository, outcome_repository, clock


class TestScoreLead:
    """Single-lead scoring through the cache and the active model."""

    async def test_score_uses_active_model(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        score = await s.engine.score_lead("lead-1")

        assert score.leadId == "lead-1"
        assert score.value == pytest.approx(0.7)
        assert score.confidence == pytest.approx(0.4)
        assert score.modelId == "champion"
        assert score.variant is None
        assert len(score.featuresUsed) == 14

    async def test_second_call_within_ttl_hits_cache(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        first = await s.engine.score_lead("lead-1")
        second = await s.engine.score_lead("lead-1")

        assert second == first
        assert s.model.predict_calls == 1
        stats = s.engine.get_statistics()
        assert stats.cacheHits == 1
        assert stats.cacheMisses == 1

    async def test_expired_cache_entry_recomputes(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        await s.engine.score_lead("lead-1")
        s.clock.advance(301)
        await s.engine.score_lead("lead-1")

        assert s.model.predict_calls == 2

    async def test_use_cache_false_always_runs_model(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        await s.engine.score_lead("lead-1")
        await s.engine.score_lead("lead-1", use_cache=False)

        assert s.model.predict_calls == 2

    async def test_unknown_lead(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        with pytest.raises(NotFoundError):
            await s.engine.score_lead("no-such-lead")
        assert s.engine.get_statistics().failedRequests == 1

    async def test_no_active_model(self, setup_args) -> None:
        s = await build_engine(*setup_args, activate=False)

        with pytest.raises(ModelUnavailableError):
            await s.engine.score_lead("lead-1")

    async def test_score_with_supplied_data(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        score = await s.engine.score_lead_with_data(make_lead("walk-in"))

        assert score.leadId == "walk-in"
        assert score.modelId == "champion"


class TestModelResolution:
    """Explicit models and caller-supplied fallbacks."""

    async def test_explicit_model_overrides_active(self, setup_args) -> None:
        s = await build_engine(*setup_args)
        await s.registry.register(make_version("other"), fitted(ConstantModel(0.2)))

        score = await s.engine.score_lead("lead-1", model_id="other")

        assert score.modelId == "other"
        assert score.value == pytest.approx(0.2)

    async def test_missing_model_without_fallback_fails(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        with pytest.raises(NotFoundError):
            await s.engine.score_lead("lead-1", model_id="missing")

    async def test_explicit_fallback_is_used(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        score = await s.engine.score_lead("lead-1", model_id="missing", fallback_model_id="champion")

        assert score.modelId == "champion"

    async def test_fallback_when_no_active_model(self, setup_args) -> None:
        s = await build_engine(*setup_args, activate=False)
        await s.registry.register(make_version("standby"), fitted(ConstantModel(0.4)))

        score = await s.engine.score_lead("lead-1", fallback_model_id="standby")

        assert score.modelId == "standby"


class TestRateLimiting:

    async def test_requests_beyond_window_rejected(self, setup_args) -> None:
        s = await build_engine(*setup_args, rate_limit=2)

        await s.engine.score_lead("lead-1", client_id="crm-ui")
        await s.engine.score_lead("lead-2", client_id="crm-ui")
        with pytest.raises(RateLimitExceeded):
            await s.engine.score_lead("lead-3", client_id="crm-ui")

        stats = s.engine.get_statistics()
        assert stats.rateLimitedRequests == 1
        assert stats.totalRequests == 2

    async def test_rate_limit_checked_before_any_work(self, setup_args) -> None:
        s = await build_engine(*setup_args, rate_limit=1)
        await s.engine.score_lead("lead-1", client_id="crm-ui")

        with pytest.raises(RateLimitExceeded):
            await s.engine.score_lead("no-such-lead", client_id="crm-ui")


class TestBatchScoring:

    async def test_one_bad_lead_does_not_abort_batch(self, setup_args) -> None:
        s = await build_engine(*setup_args)
        lead_ids = [f"lead-{i}" for i in range(49)] + ["no-such-lead"]

        result = await s.engine.score_batch(lead_ids)
        await s.engine.stop()

        assert result.total == 50
        assert result.successful == 49
        assert result.failed == 1
        assert result.errors[0].leadId == "no-such-lead"
        assert result.errors[0].code == "NOT_FOUND"
        assert {score.leadId for score in result.results} == set(lead_ids[:49])

    async def test_batch_counts_as_one_rate_limited_request(self, setup_args) -> None:
        s = await build_engine(*setup_args, rate_limit=2)

        await s.engine.score_batch([f"lead-{i}" for i in range(30)], client_id="crm-ui")
        await s.engine.score_lead("lead-40", client_id="crm-ui")
        assert await s.engine.rate_limiter.remaining("crm-ui") == 0
        await s.engine.stop()

    @pytest.mark.parametrize("lead_ids", [[], [f"lead-{i}" for i in range(501)]])
    async def test_batch_size_limits(self, setup_args, lead_ids) -> None:
        s = await build_engine(*setup_args)

        with pytest.raises(ValidationError):
            await s.engine.score_batch(lead_ids)


class TestOutcomesAndCache:

    async def test_record_outcome_pairs_latest_prediction(self, setup_args) -> None:
        s = await build_engine(*setup_args)
        await s.engine.score_lead("lead-1")

        outcome = await s.engine.record_outcome("lead-1", converted=True)

        assert outcome.modelId == "champion"
        assert outcome.prediction == pytest.approx(0.7)
        assert outcome.actual == 1
        frame = await s.outcomes.training_frame(BASE_TIME - timedelta(days=3650), FEATURE_NAMES)
        assert len(frame) == 1

    async def test_outcome_without_prediction(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        with pytest.raises(NotFoundError):
            await s.engine.record_outcome("lead-1", converted=False)

    async def test_clear_cache_for_lead(self, setup_args) -> None:
        s = await build_engine(*setup_args)
        await s.engine.score_lead("lead-1")
        await s.engine.score_lead("lead-2")

        assert await s.engine.clear_cache("lead-1") == 1
        await s.engine.score_lead("lead-1")
        assert s.model.predict_calls == 3

    async def test_update_cache_settings(self, setup_args) -> None:
        s = await build_engine(*setup_args)

        stats = await s.engine.update_cache_settings(CacheSettingsUpdate(ttlSeconds=30, maxEntries=5))

        assert stats["ttlSeconds"] == 30
        assert stats["maxEntries"] == 5


class TestABRouting:

    async def test_running_test_routes_and_accrues(self, setup_args) -> None:
        registry = setup_args[0]
        ab_tests = ABTestManager(registry, InMemoryABTestRepository(), ABTestConfig(), AuditLog())
        s = await build_engine(*setup_args, ab_tests=ab_tests)
        await registry.register(make_version("challenger"), fitted(ConstantModel(0.9)))
        test = await ab_tests.create_test(challenger_model_id="challenger", traffic_split=0.5)

        scores = [await s.engine.score_lead(f"lead-{i}") for i in range(40)]

        assert all(score.abTestId == test.id for score in scores)
        by_variant = {score.variant for score in scores}
        assert by_variant == {Variant.CHAMPION, Variant.CHALLENGER}
        for score in scores:
            expected = "challenger" if score.variant == Variant.CHALLENGER else "champion"
            assert score.modelId == expected

        current = ab_tests.get_test(test.id)
        assert current.championResults.requests + current.challengerResults.requests == 40

    async def test_conversion_credited_to_serving_side(self, setup_args) -> None:
        registry = setup_args[0]
        ab_tests = ABTestManager(registry, InMemoryABTestRepository(), ABTestConfig(), AuditLog())
        s = await build_engine(*setup_args, ab_tests=ab_tests)
        await registry.register(make_version("challenger"), fitted(ConstantModel(0.9)))
        test = await ab_tests.create_test(challenger_model_id="challenger")

        score = await s.engine.score_lead("lead-1")
        await s.engine.record_outcome("lead-1", converted=True)

        current = ab_tests.get_test(test.id)
        side = current.challengerResults if score.variant == Variant.CHALLENGER else current.championResults
        assert side.conversions == 1


class TestHealth:

    async def test_healthy_with_active_model(self, setup_args) -> None:
        s = await build_engine(*setup_args)
        await s.engine.score_lead("lead-1")

        health = s.engine.get_health()

        assert health.status == HealthState.HEALTHY
        assert health.checks["modelExists"] is True

    async def test_warning_without_model(self, setup_args) -> None:
        s = await build_engine(*setup_args, activate=False)

        health = s.engine.get_health()

        assert health.status == HealthState.WARNING
        assert "No active model loaded" in health.issues

    async def test_error_rate_raises_issue(self, setup_args) -> None:
        s = await build_engine(*setup_args)
        for _ in range(3):
            with pytest.raises(NotFoundError):
                await s.engine.score_lead("no-such-lead")

        health = s.engine.get_health()

        assert health.status == HealthState.WARNING
        assert any("error rate" in issue for issue in health.issues)

