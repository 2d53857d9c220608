"""
Enumeration definitions for the lead-scoring backend.

All enums inherit from both ``str`` and ``Enum`` so they serialize as plain
strings in pydantic models and JSON responses.
"""

from enum import Enum


class ModelType(str, Enum):
    """
    Family of trainable model.

    - baseline: Logistic regression
    - advanced: Gradient boosted trees
    - ensemble: Equal-weight average of >= 2 base models
    """
    BASELINE = "baseline"
    ADVANCED = "advanced"
    ENSEMBLE = "ensemble"


class ModelStatus(str, Enum):
    """
    Lifecycle status of a ModelVersion.

    Every newly trained version starts as ``training``. Status changes only
    through deployment decisions (promotion, A/B test start/finish,
    rejection). At most one version is ``active`` at any time.
    """
    TRAINING = "training"
    ACTIVE = "active"
    CHALLENGER = "challenger"
    RETIRED = "retired"


class ABTestStatus(str, Enum):
    """A/B test lifecycle: created -> running -> completed | aborted."""
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class Variant(str, Enum):
    """Side of an A/B test a request was routed to."""
    CHAMPION = "champion"
    CHALLENGER = "challenger"


class WinnerDecision(str, Enum):
    """Decision emitted by the automatic winner selector."""
    IMPLEMENT_WINNER = "implement_winner"
    CONTINUE_TESTING = "continue_testing"
    NO_CLEAR_WINNER = "no_clear_winner"
    STOP_TEST = "stop_test"


class SignificanceOutcome(str, Enum):
    """Headline result of a two-proportion test."""
    SIGNIFICANT = "significant"
    NOT_SIGNIFICANT = "not_significant"
    INSUFFICIENT_DATA = "insufficient_data"


class RiskProfile(str, Enum):
    """Preset success criteria families for winner selection."""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class TargetMetric(str, Enum):
    """Business metric an A/B test optimizes; selects the default risk profile."""
    CONVERSION_RATE = "conversion_rate"
    RESPONSE_RATE = "response_rate"
    CLICK_RATE = "click_rate"
    OPEN_RATE = "open_rate"


class RiskLevel(str, Enum):
    """Risk level attached to scores and deployment recommendations."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RetrainingFrequency(str, Enum):
    """How often automated retraining may run."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RetrainingState(str, Enum):
    """
    Retraining scheduler state machine.

    idle -> eligible -> training -> evaluating -> {promote, ab_test, reject} -> idle
    """
    IDLE = "idle"
    ELIGIBLE = "eligible"
    TRAINING = "training"
    EVALUATING = "evaluating"


class RetrainingOutcome(str, Enum):
    """Terminal result of one retraining attempt."""
    PROMOTED = "promoted"
    AB_TEST_STARTED = "ab_test_started"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    FAILED = "failed"


class BatchPriority(str, Enum):
    """Priority of queued batch work. FIFO order holds within a priority."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class HealthState(str, Enum):
    """Overall health of the scoring engine."""
    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


class AuditKind(str, Enum):
    """Category of an entry in the bounded audit history."""
    RETRAINING = "retraining"
    AB_TEST = "ab_test"
    DRIFT = "drift"
    DEPLOYMENT = "deployment"
