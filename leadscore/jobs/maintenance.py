"""
Background maintenance jobs for the lead-scoring backend.

Each job is a PeriodicTask running on its own timer, fully separate from
the inference path:

    job                 cadence (default)   work
    cache-sweep         5 min               drop expired score cache entries
    rate-limit-sweep    1 min               drop idle client windows
    retraining-check    1 h                 run the retraining scheduler when due
    ab-test-completion  10 min              complete A/B tests whose duration elapsed

Failures are logged by PeriodicTask and never reach request handlers.

Usage:
    tasks = build_maintenance_tasks(container)
    for task in tasks:
        task.start()
"""

import logging
from typing import TYPE_CHECKING, List

from leadscore.core.scheduler import PeriodicTask

if TYPE_CHECKING:
    from leadscore.core.container import ServiceContainer


logger = logging.getLogger(__name__)


async def sweep_score_cache(container: "ServiceContainer") -> int:
    removed = await container.scoring.cache.sweep_expired()
    if removed:
        logger.info(f"Cache sweep removed {removed} expired score(s)")
    return removed


async def sweep_rate_limits(container: "ServiceContainer") -> int:
    return await container.scoring.rate_limiter.sweep()


async def check_retraining(container: "ServiceContainer") -> None:
    attempt = await container.retraining.check_and_run()
    if attempt is not None:
        logger.info(f"Scheduled retraining {attempt.id} finished: {attempt.outcome.value} ({attempt.reason})")


async def check_ab_tests(container: "ServiceContainer") -> None:
    results = await container.ab_tests.check_completion()
    for result in results:
        logger.info(f"A/B test {result.testId} completed: {result.completedReason}")


def build_maintenance_tasks(container: "ServiceContainer") -> List[PeriodicTask]:
    scoring = container.scoring.config
    return [
        PeriodicTask(
            "cache-sweep",
            scoring.cache_sweep_interval_seconds,
            lambda: sweep_score_cache(container),
        ),
        PeriodicTask(
            "rate-limit-sweep",
            scoring.rate_limit_sweep_interval_seconds,
            lambda: sweep_rate_limits(container),
        ),
        PeriodicTask(
            "retraining-check",
            container.retraining.config.check_interval_seconds,
            lambda: check_retraining(container),
        ),
        PeriodicTask(
            "ab-test-completion",
            container.ab_tests.config.completion_check_interval_seconds,
            lambda: check_ab_tests(container),
        ),
    ]
