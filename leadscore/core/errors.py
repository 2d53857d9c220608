"""
Error taxonomy for the lead-scoring backend.

Every failure that can cross a service boundary is expressed as a subclass of
LeadScoringError. Each class carries a machine-readable ``code`` and the HTTP
status the API layer should answer with, so routers never have to translate
exceptions by hand: a single FastAPI exception handler (see leadscore.main)
renders them into the uniform response envelope:

    {"success": false, "error": {"code": "...", "message": "..."}, "timestamp": "..."}

Error classes:
    ValidationError: Malformed parameters. Never retried.
    NotFoundError: Missing lead, model or A/B test.
    RateLimitExceeded: Caller must back off; carries retry_after seconds.
    InsufficientDataError: Too few samples for training or analysis.
    DataQualityError: Training data failed quality gates; carries issues.
    ModelUnavailableError: No usable model and no explicit fallback id.
    StateTransitionError: Lifecycle transition not allowed from current state.

Statistical underpower is deliberately absent: an underpowered A/B test is a
valid "continue_testing" outcome, returned as data.
"""

from typing import Any, Dict, List, Optional


class LeadScoringError(Exception):
    """
    Base class for all domain errors.

    Attributes:
        code: Machine-readable error code used in the API envelope.
        status_code: HTTP status code the API layer responds with.
        message: Human-readable description.
        details: Optional structured payload (e.g. itemized issues).
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LeadScoringError):
    """Malformed or out-of-range parameters."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(LeadScoringError):
    """Requested lead, model version or A/B test does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class RateLimitExceeded(LeadScoringError):
    """Client exceeded its sliding-window request budget."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, client_id: str, retry_after: float):
        self.client_id = client_id
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for client {client_id}. Retry after {retry_after:.2f}s",
            details={"retryAfter": round(retry_after, 3)},
        )


class InsufficientDataError(LeadScoringError):
    """Not enough samples to train or analyze."""

    code = "INSUFFICIENT_DATA"
    status_code = 422


class DataQualityError(LeadScoringError):
    """Training data failed one or more quality gates."""

    code = "DATA_QUALITY_ERROR"
    status_code = 422

    def __init__(self, message: str, issues: List[str]):
        self.issues = list(issues)
        super().__init__(message, details={"issues": self.issues})


class ModelUnavailableError(LeadScoringError):
    """No usable model version could serve the request."""

    code = "MODEL_UNAVAILABLE"
    status_code = 503


class StateTransitionError(LeadScoringError):
    """A lifecycle transition was requested from an incompatible state."""

    code = "INVALID_STATE"
    status_code = 409
