"""
Core infrastructure for the lead-scoring backend.

Re-exports the leaf modules most callers need:

    from leadscore.core import get_settings, ValidationError

Wiring (container, dependencies) and periodic tasks are imported from their
own modules, since they depend on the services package.
"""

from leadscore.core.config import (
    ABTestConfig,
    DriftConfig,
    RetrainingConfig,
    ScoringConfig,
    Settings,
    TrainingConfig,
    apply_overrides,
    get_settings,
)
from leadscore.core.database import close_db, get_db_pool, init_db
from leadscore.core.errors import (
    DataQualityError,
    InsufficientDataError,
    LeadScoringError,
    ModelUnavailableError,
    NotFoundError,
    RateLimitExceeded,
    StateTransitionError,
    ValidationError,
)

__all__ = [
    "ABTestConfig",
    "DriftConfig",
    "RetrainingConfig",
    "ScoringConfig",
    "Settings",
    "TrainingConfig",
    "apply_overrides",
    "get_settings",
    "close_db",
    "get_db_pool",
    "init_db",
    "DataQualityError",
    "InsufficientDataError",
    "LeadScoringError",
    "ModelUnavailableError",
    "NotFoundError",
    "RateLimitExceeded",
    "StateTransitionError",
    "ValidationError",
]
