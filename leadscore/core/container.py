"""
Explicit service wiring for the lead-scoring backend.

Every component owns its state and receives its collaborators through its
constructor; build_container() is the single place where they are created and
connected. The FastAPI lifespan builds one container per application and
stores it on ``app.state.container``; tests build their own containers with
in-memory repositories and fake clocks.

Repository selection:
- DATABASE_URL set   -> asyncpg-backed repositories (see services/repositories.py)
- DATABASE_URL unset -> in-memory repositories

Usage:
    container = build_container(get_settings())
    await container.startup()
    score = await container.scoring.score_lead("lead-42")
    await container.shutdown()
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from leadscore.core.config import Settings
from leadscore.core.database import close_db, init_db
from leadscore.core.scheduler import PeriodicTask
from leadscore.jobs.maintenance import build_maintenance_tasks
from leadscore.services.ab_testing import ABTestManager
from leadscore.services.audit import AuditLog
from leadscore.services.drift_detector import DriftDetector
from leadscore.services.feature_extraction import DefaultFeatureExtractor, FeatureExtractor
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.rate_limiter import SlidingWindowRateLimiter
from leadscore.services.repositories import (
    ABTestRepository,
    InMemoryABTestRepository,
    InMemoryLeadRepository,
    InMemoryModelRepository,
    InMemoryOutcomeRepository,
    LeadRepository,
    ModelRepository,
    OutcomeRepository,
    PostgresABTestRepository,
    PostgresLeadRepository,
    PostgresModelRepository,
    PostgresOutcomeRepository,
    ensure_schema,
)
from leadscore.services.request_queue import RequestQueue
from leadscore.services.retraining_scheduler import RetrainingScheduler
from leadscore.services.score_cache import ScoreCache
from leadscore.services.scoring_engine import RealTimeScoringEngine
from leadscore.services.training import ModelTrainingOrchestrator


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    leads: LeadRepository
    outcomes: OutcomeRepository
    models: ModelRepository
    ab_test_store: ABTestRepository
    audit: AuditLog
    registry: ModelRegistry
    extractor: FeatureExtractor
    scoring: RealTimeScoringEngine
    training: ModelTrainingOrchestrator
    drift: DriftDetector
    ab_tests: ABTestManager
    retraining: RetrainingScheduler
    uses_database: bool = False
    tasks: List[PeriodicTask] = field(default_factory=list)

    async def startup(self) -> None:
        """Connect storage, restore lifecycle state and start workers."""
        if self.uses_database:
            await init_db(self.settings.database_url)
            await ensure_schema()
        await self.registry.load()
        await self.ab_tests.load()
        await self.scoring.start()

        if self.settings.bootstrap_training_on_startup:
            try:
                await self.retraining.bootstrap()
            except Exception:
                logger.exception("Bootstrap training failed; scoring needs a trained model")

        if self.settings.start_background_jobs:
            self.tasks = build_maintenance_tasks(self)
            for task in self.tasks:
                task.start()

    async def shutdown(self) -> None:
        for task in self.tasks:
            await task.stop()
        self.tasks = []
        await self.scoring.stop()
        if self.uses_database:
            await close_db()


def build_container(
    settings: Settings,
    leads: Optional[LeadRepository] = None,
    outcomes: Optional[OutcomeRepository] = None,
    models: Optional[ModelRepository] = None,
    ab_test_store: Optional[ABTestRepository] = None,
    extractor: Optional[FeatureExtractor] = None,
) -> ServiceContainer:
    """
    Create and connect every service for one application instance.

    Explicit repositories win over the DATABASE_URL-based defaults, which
    lets tests inject seeded in-memory stores.
    """
    uses_database = bool(settings.database_url)
    if uses_database:
        leads = leads or PostgresLeadRepository()
        outcomes = outcomes or PostgresOutcomeRepository()
        models = models or PostgresModelRepository()
        ab_test_store = ab_test_store or PostgresABTestRepository()
    else:
        leads = leads or InMemoryLeadRepository()
        outcomes = outcomes or InMemoryOutcomeRepository()
        models = models or InMemoryModelRepository()
        ab_test_store = ab_test_store or InMemoryABTestRepository()
    extractor = extractor or DefaultFeatureExtractor()

    scoring_config = settings.scoring_config()
    audit = AuditLog(settings.audit_history_limit)
    registry = ModelRegistry(models)
    ab_tests = ABTestManager(registry, ab_test_store, settings.ab_test_config(), audit)

    scoring = RealTimeScoringEngine(
        registry=registry,
        leads=leads,
        outcomes=outcomes,
        extractor=extractor,
        cache=ScoreCache(
            ttl_seconds=scoring_config.cache_ttl_seconds,
            max_entries=scoring_config.cache_max_entries,
            enabled=scoring_config.cache_enabled,
        ),
        rate_limiter=SlidingWindowRateLimiter(
            max_requests=scoring_config.rate_limit_max,
            window_seconds=scoring_config.rate_limit_window_seconds,
        ),
        queue=RequestQueue(
            max_concurrency=scoring_config.queue_max_concurrency,
            poll_interval_seconds=scoring_config.queue_poll_interval_seconds,
        ),
        config=scoring_config,
        ab_tests=ab_tests,
    )
    training = ModelTrainingOrchestrator(settings.training_config(), extractor.feature_names)
    drift = DriftDetector(settings.drift_config(), outcomes, registry, audit)
    retraining = RetrainingScheduler(
        settings.retraining_config(),
        training,
        registry,
        outcomes,
        ab_tests,
        audit,
        history_limit=settings.audit_history_limit,
    )

    return ServiceContainer(
        settings=settings,
        leads=leads,
        outcomes=outcomes,
        models=models,
        ab_test_store=ab_test_store,
        audit=audit,
        registry=registry,
        extractor=extractor,
        scoring=scoring,
        training=training,
        drift=drift,
        ab_tests=ab_tests,
        retraining=retraining,
        uses_database=uses_database,
    )
