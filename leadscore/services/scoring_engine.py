"""
Real-time scoring engine.

Orchestrates the online path for every scoring request:

    rate limit -> resolve model -> cache lookup -> load lead ->
    feature extraction -> inference -> confidence + insights ->
    cache store -> rolling statistics

Key Behaviors:
- The per-client sliding-window rate limit is checked before any other work.
- A cache hit within TTL returns the cached Score without invoking the model.
- Model resolution: an explicitly requested model wins; otherwise a running
  A/B test routes the lead to champion or challenger; otherwise the active
  model serves. When the resolved model cannot serve, a fallback model is
  used only if its id was explicitly supplied; the engine never substitutes
  a model on its own.
- Inference runs in a worker thread (asyncio.to_thread) so one slow
  prediction never blocks sibling requests on the event loop.
- confidence = |score - 0.5| * 2
- Rolling statistics are running averages updated per request under a lock,
  never recomputed from history.

Batches are split into fixed sub-batches (default 10) processed sequentially
with a short pause in between. Leads inside a sub-batch run concurrently on
the bounded RequestQueue and may finish in any order. A failing lead is
reported in BatchResult.errors and never aborts the batch.

Usage:
    engine = RealTimeScoringEngine(registry, leads, outcomes, extractor,
                                   cache, limiter, queue, ScoringConfig())
    score = await engine.score_lead("lead-42", client_id="crm-ui")
    batch = await engine.score_batch(["lead-1", "lead-2"], client_id="crm-ui")
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from leadscore.core.config import ScoringConfig
from leadscore.core.errors import (
    LeadScoringError,
    ModelUnavailableError,
    NotFoundError,
    RateLimitExceeded,
    StateTransitionError,
    ValidationError,
)
from leadscore.models.enums import BatchPriority, HealthState
from leadscore.models.schemas import (
    BatchError,
    BatchResult,
    CacheSettingsUpdate,
    HealthStatus,
    Interaction,
    LeadProfile,
    ModelVersion,
    PredictionOutcome,
    Score,
    ScoreInsights,
    ScoringStatistics,
    utcnow,
)
from leadscore.services.ab_testing import ABTestManager, RoutedRequest
from leadscore.services.feature_extraction import FeatureExtractor
from leadscore.services.insights import build_insights
from leadscore.services.model import LeadScoringModel
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.rate_limiter import SlidingWindowRateLimiter
from leadscore.services.repositories import LeadRepository, OutcomeRepository
from leadscore.services.request_queue import RequestQueue
from leadscore.services.score_cache import ScoreCache


logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "anonymous"

# Recently served predictions kept for outcome pairing
RECENT_PREDICTIONS_LIMIT = 10_000


def confidence_for(value: float) -> float:
    return min(abs(value - 0.5) * 2.0, 1.0)


@dataclass
class _Target:
    version: ModelVersion
    predictor: LeadScoringModel
    routed: Optional[RoutedRequest] = None


class RealTimeScoringEngine:
    def __init__(
        self,
        registry: ModelRegistry,
        leads: LeadRepository,
        outcomes: OutcomeRepository,
        extractor: FeatureExtractor,
        cache: ScoreCache,
        rate_limiter: SlidingWindowRateLimiter,
        queue: RequestQueue,
        config: ScoringConfig,
        ab_tests: Optional[ABTestManager] = None,
    ):
        self._registry = registry
        self._leads = leads
        self._outcomes = outcomes
        self._extractor = extractor
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.queue = queue
        self.config = config
        self._ab_tests = ab_tests

        self._stats = ScoringStatistics()
        self._stats_lock = asyncio.Lock()
        self._recent: "OrderedDict[str, Tuple[Score, np.ndarray]]" = OrderedDict()

    async def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    # =========================================================================
    # Public Scoring API
    # =========================================================================

    async def score_lead(
        self,
        lead_id: str,
        model_id: Optional[str] = None,
        use_cache: bool = True,
        client_id: str = DEFAULT_CLIENT_ID,
        fallback_model_id: Optional[str] = None,
    ) -> Score:
        """
        Score a lead stored in the CRM.

        Raises:
            RateLimitExceeded: Client exceeded its window.
            NotFoundError: Unknown lead or explicitly requested model.
            ModelUnavailableError: No model can serve and no fallback id was given.
        """
        await self._check_rate_limit(client_id)
        return await self._score_by_id(lead_id, model_id, use_cache, fallback_model_id)

    async def score_lead_with_data(
        self,
        profile: LeadProfile,
        interactions: Sequence[Interaction] = (),
        model_id: Optional[str] = None,
        use_cache: bool = True,
        client_id: str = DEFAULT_CLIENT_ID,
        fallback_model_id: Optional[str] = None,
    ) -> Score:
        """Score a caller-supplied lead snapshot without a repository lookup."""
        await self._check_rate_limit(client_id)
        started = time.perf_counter()
        try:
            target = self._resolve(profile.leadId, model_id, fallback_model_id)

            async def load() -> Tuple[LeadProfile, List[Interaction]]:
                return profile, list(interactions)

            return await self._serve(profile.leadId, target, use_cache, load, started)
        except Exception:
            await self._record(started, success=False)
            raise

    async def score_batch(
        self,
        lead_ids: Sequence[str],
        model_id: Optional[str] = None,
        priority: BatchPriority = BatchPriority.NORMAL,
        client_id: str = DEFAULT_CLIENT_ID,
        fallback_model_id: Optional[str] = None,
    ) -> BatchResult:
        """
        Score many leads; per-lead failures are collected, never raised.

        Raises:
            ValidationError: Empty batch or more than max_batch_leads ids.
            RateLimitExceeded: Client exceeded its window.
        """
        if not lead_ids:
            raise ValidationError("leadIds must not be empty")
        if len(lead_ids) > self.config.max_batch_leads:
            raise ValidationError(
                f"Batch of {len(lead_ids)} exceeds the maximum of {self.config.max_batch_leads} leads"
            )
        await self._check_rate_limit(client_id)

        started = time.perf_counter()
        results: List[Score] = []
        errors: List[BatchError] = []
        size = self.config.batch_size
        chunks = [list(lead_ids[i:i + size]) for i in range(0, len(lead_ids), size)]

        for index, chunk in enumerate(chunks):
            futures = [
                self.queue.submit(
                    lambda lid=lid: self._score_by_id(lid, model_id, True, fallback_model_id),
                    priority,
                )
                for lid in chunk
            ]
            outcomes = await asyncio.gather(*futures, return_exceptions=True)
            for lead_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Score):
                    results.append(outcome)
                elif isinstance(outcome, LeadScoringError):
                    errors.append(BatchError(leadId=lead_id, code=outcome.code, message=outcome.message))
                else:
                    logger.error(f"Unexpected error scoring lead {lead_id} in batch: {outcome!r}")
                    errors.append(BatchError(leadId=lead_id, code="INTERNAL_ERROR", message=str(outcome)))

            if index < len(chunks) - 1 and self.config.batch_pause_seconds > 0:
                await asyncio.sleep(self.config.batch_pause_seconds)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Batch scored {len(lead_ids)} leads: {len(results)} ok, "
            f"{len(errors)} failed in {duration_ms:.0f}ms"
        )
        return BatchResult(
            total=len(lead_ids),
            successful=len(results),
            failed=len(errors),
            results=results,
            errors=errors,
            durationMs=duration_ms,
        )

    async def get_insights(
        self,
        lead_id: str,
        model_id: Optional[str] = None,
        client_id: str = DEFAULT_CLIENT_ID,
    ) -> ScoreInsights:
        score = await self.score_lead(lead_id, model_id=model_id, client_id=client_id)
        return score.insights

    async def record_outcome(self, lead_id: str, converted: bool) -> PredictionOutcome:
        """
        Pair the lead's most recent served prediction with its observed outcome.

        The pair feeds drift detection and retraining. If the prediction was
        served by a running A/B test, the conversion is also credited there.

        Raises:
            NotFoundError: No recent prediction for the lead.
        """
        recent = self._recent.get(lead_id)
        if recent is None:
            raise NotFoundError(f"No recent prediction for lead {lead_id}")
        score, features = recent

        outcome = PredictionOutcome(
            modelId=score.modelId,
            leadId=lead_id,
            prediction=score.value,
            actual=1 if converted else 0,
            timestamp=utcnow(),
        )
        await self._outcomes.add(outcome, features.tolist())

        if converted and score.abTestId and self._ab_tests is not None:
            try:
                await self._ab_tests.record_conversion(score.abTestId, lead_id)
            except (StateTransitionError, ValidationError, NotFoundError) as e:
                logger.info(f"Conversion for lead {lead_id} not credited to test {score.abTestId}: {e}")
        return outcome

    # =========================================================================
    # Cache Management
    # =========================================================================

    async def clear_cache(self, lead_id: Optional[str] = None) -> int:
        return await self.cache.invalidate(lead_id)

    async def update_cache_settings(self, update: CacheSettingsUpdate) -> Dict[str, Any]:
        return await self.cache.update_settings(
            ttl_seconds=update.ttlSeconds,
            max_entries=update.maxEntries,
            enabled=update.enabled,
        )

    # =========================================================================
    # Statistics & Health
    # =========================================================================

    def get_statistics(self) -> ScoringStatistics:
        return self._stats.model_copy(update={"cacheSize": len(self.cache)})

    def get_health(self) -> HealthStatus:
        stats = self.get_statistics()
        issues: List[str] = []

        active = self._registry.get_active()
        model_ready = active is not None and self._registry.has_predictor(active.id)
        if not model_ready:
            issues.append("No active model loaded")
        if stats.errorRate > self.config.health_error_rate_threshold:
            issues.append(f"High error rate: {stats.errorRate:.1%}")
        if stats.averageLatencyMs > self.config.health_latency_threshold_ms:
            issues.append(f"Slow responses: {stats.averageLatencyMs:.0f}ms average")

        if not issues:
            state = HealthState.HEALTHY
        elif len(issues) <= 2:
            state = HealthState.WARNING
        else:
            state = HealthState.UNHEALTHY

        return HealthStatus(
            status=state,
            checks={
                "modelExists": model_ready,
                "activeModelId": active.id if active else None,
                "errorRate": stats.errorRate,
                "averageLatencyMs": stats.averageLatencyMs,
                "cache": self.cache.stats(),
                "queue": self.queue.stats(),
            },
            issues=issues,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _check_rate_limit(self, client_id: str) -> None:
        try:
            await self.rate_limiter.acquire(client_id)
        except RateLimitExceeded:
            async with self._stats_lock:
                self._stats = self._stats.model_copy(
                    update={"rateLimitedRequests": self._stats.rateLimitedRequests + 1}
                )
            raise

    async def _score_by_id(
        self,
        lead_id: str,
        model_id: Optional[str],
        use_cache: bool,
        fallback_model_id: Optional[str],
    ) -> Score:
        started = time.perf_counter()
        try:
            target = self._resolve(lead_id, model_id, fallback_model_id)

            async def load() -> Tuple[LeadProfile, List[Interaction]]:
                lead = await self._leads.get(lead_id)
                if lead is None:
                    raise NotFoundError(f"Lead {lead_id} not found")
                return lead

            return await self._serve(lead_id, target, use_cache, load, started)
        except Exception:
            await self._record(started, success=False)
            raise

    def _resolve(
        self,
        lead_id: str,
        model_id: Optional[str],
        fallback_model_id: Optional[str],
    ) -> _Target:
        routed: Optional[RoutedRequest] = None
        primary = model_id
        if primary is None and self._ab_tests is not None:
            routed = self._ab_tests.route(lead_id)
            if routed is not None:
                primary = routed.model_id
        if primary is None:
            active = self._registry.get_active()
            primary = active.id if active else None

        try:
            if primary is None:
                raise ModelUnavailableError("No active model available")
            return _Target(
                version=self._registry.get(primary),
                predictor=self._registry.get_predictor(primary),
                routed=routed,
            )
        except (ModelUnavailableError, NotFoundError) as e:
            if fallback_model_id is None or fallback_model_id == primary:
                raise
            logger.warning(f"Model {primary} unavailable ({e.message}); using fallback {fallback_model_id}")
            return _Target(
                version=self._registry.get(fallback_model_id),
                predictor=self._registry.get_predictor(fallback_model_id),
            )

    async def _serve(
        self,
        lead_id: str,
        target: _Target,
        use_cache: bool,
        load: Callable[[], Awaitable[Tuple[LeadProfile, List[Interaction]]]],
        started: float,
    ) -> Score:
        model_id = target.version.id

        if use_cache:
            cached = await self.cache.get(lead_id, model_id)
            if cached is not None:
                await self._record(started, success=True, cache_hit=True)
                return cached

        profile, interactions = await load()
        features = self._extractor.extract(profile, interactions)
        predictions = await asyncio.to_thread(target.predictor.predict, features.reshape(1, -1))
        value = float(np.clip(predictions[0], 0.0, 1.0))

        score = Score(
            leadId=lead_id,
            value=value,
            confidence=confidence_for(value),
            modelId=model_id,
            modelVersion=target.version.version,
            featuresUsed=self._extractor.feature_names,
            insights=build_insights(value, self._extractor.as_dict(features)),
            variant=target.routed.variant if target.routed else None,
            abTestId=target.routed.test_id if target.routed else None,
        )

        await self.cache.set(score)
        self._remember(score, features)
        if target.routed is not None and self._ab_tests is not None:
            await self._ab_tests.record_score(target.routed.test_id, target.routed.variant, value, lead_id)

        await self._record(started, success=True, cache_hit=False if use_cache else None)
        return score

    def _remember(self, score: Score, features: np.ndarray) -> None:
        self._recent.pop(score.leadId, None)
        self._recent[score.leadId] = (score, features)
        while len(self._recent) > RECENT_PREDICTIONS_LIMIT:
            self._recent.popitem(last=False)

    async def _record(self, started: float, success: bool, cache_hit: Optional[bool] = None) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        async with self._stats_lock:
            s = self._stats
            total = s.totalRequests + 1
            successful = s.successfulRequests + (1 if success else 0)
            failed = s.failedRequests + (0 if success else 1)
            hits = s.cacheHits + (1 if cache_hit else 0)
            misses = s.cacheMisses + (1 if cache_hit is False else 0)
            lookups = hits + misses
            self._stats = s.model_copy(update={
                "totalRequests": total,
                "successfulRequests": successful,
                "failedRequests": failed,
                "cacheHits": hits,
                "cacheMisses": misses,
                "averageLatencyMs": s.averageLatencyMs + (latency_ms - s.averageLatencyMs) / total,
                "successRate": successful / total,
                "errorRate": failed / total,
                "cacheHitRate": hits / lookups if lookups else 0.0,
                "lastRequestAt": utcnow(),
            })
