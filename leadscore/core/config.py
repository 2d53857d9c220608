"""
Settings and configuration management for the lead-scoring backend.

This module provides centralized configuration using pydantic-settings, which
loads values from environment variables and an optional .env file. The flat
Settings object is then projected into small, explicit, typed configuration
structs - one per component - so that services receive only the knobs they
own instead of reaching into a global settings object.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for development (no database required)
- Singleton access via @lru_cache on get_settings()
- Typed per-component config structs with named defaults
- apply_overrides() for explicit, validated runtime overrides

Environment Variables:
- DATABASE_URL: PostgreSQL connection string (optional; unset means the
  in-memory repositories are used)
- CACHE_TTL_SECONDS / RATE_LIMIT_MAX / RATE_LIMIT_WINDOW_SECONDS: inference
  engine throttling and caching
- RETRAINING_ENABLED / RETRAINING_FREQUENCY / RETRAINING_TIME: retraining
  schedule
- AB_TEST_DURATION_DAYS / AB_TEST_TRAFFIC_SPLIT / AB_TEST_CONFIDENCE_THRESHOLD /
  AB_TEST_MIN_SAMPLE_SIZE: A/B testing defaults

Usage:
    from leadscore.core.config import get_settings, apply_overrides

    settings = get_settings()
    scoring_config = settings.scoring_config()
    faster = apply_overrides(scoring_config, {"cache_ttl_seconds": 60})
"""

from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from leadscore.core.errors import ValidationError
from leadscore.models.enums import RetrainingFrequency


ConfigT = TypeVar("ConfigT", bound=BaseModel)


# =============================================================================
# Typed Component Configuration
# =============================================================================


class ScoringConfig(BaseModel):
    """Configuration for the real-time scoring engine and its collaborators."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_enabled: bool = True
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_entries: int = Field(default=10_000, ge=1)
    rate_limit_max: int = Field(default=100, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    batch_size: int = Field(default=10, ge=1)
    batch_pause_seconds: float = Field(default=0.1, ge=0)
    max_batch_leads: int = Field(default=500, ge=1)
    queue_max_concurrency: int = Field(default=10, ge=1)
    queue_poll_interval_seconds: float = Field(default=0.1, gt=0)
    cache_sweep_interval_seconds: float = Field(default=300.0, gt=0)
    rate_limit_sweep_interval_seconds: float = Field(default=60.0, gt=0)
    health_error_rate_threshold: float = Field(default=0.1, ge=0, le=1)
    health_latency_threshold_ms: float = Field(default=5000.0, gt=0)


class TrainingConfig(BaseModel):
    """Configuration for the model training orchestrator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_samples: int = Field(default=100, ge=1)
    cv_folds: int = Field(default=5, ge=2)
    tuning_folds: int = Field(default=3, ge=2)
    holdout_fraction: float = Field(default=0.2, gt=0, lt=1)
    decision_threshold: float = Field(default=0.5, gt=0, lt=1)
    random_state: int = 42


class DriftConfig(BaseModel):
    """Configuration for the drift detector."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    window_days: int = Field(default=30, ge=1)
    threshold: float = Field(default=0.1, gt=0)
    min_samples: int = Field(default=100, ge=2)


class RetrainingConfig(BaseModel):
    """Configuration for the retraining scheduler and its promotion policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    frequency: RetrainingFrequency = RetrainingFrequency.WEEKLY
    scheduled_time: str = Field(default="02:00", pattern=r"^\d{2}:\d{2}$")
    training_window_days: int = Field(default=90, ge=1)
    min_data_points: int = Field(default=1000, ge=1)
    completeness_threshold: float = Field(default=0.95, ge=0, le=1)
    min_positive_rate: float = Field(default=0.05, ge=0, le=1)
    max_positive_rate: float = Field(default=0.95, ge=0, le=1)
    severe_feature_drift_z: float = Field(default=1.0, gt=0)
    auto_deploy: bool = True
    promote_improvement: float = 0.02
    promote_confidence: float = Field(default=0.8, ge=0, le=1)
    ab_test_improvement: float = 0.01
    check_interval_seconds: float = Field(default=3600.0, gt=0)


class ABTestConfig(BaseModel):
    """Default parameters applied to newly created A/B tests."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    duration_days: float = Field(default=14.0, gt=0)
    traffic_split: float = Field(default=0.5, gt=0, lt=1)
    confidence_threshold: float = Field(default=0.95, gt=0, lt=1)
    min_sample_size: int = Field(default=1000, ge=1)
    check_interval: int = Field(default=100, ge=1)
    auto_deploy: bool = False
    completion_check_interval_seconds: float = Field(default=600.0, gt=0)


def apply_overrides(config: ConfigT, overrides: Optional[Mapping[str, Any]]) -> ConfigT:
    """
    Return a copy of a config struct with overrides applied and re-validated.

    Args:
        config: Any of the typed config structs in this module.
        overrides: Mapping of field name to new value. None or empty returns
            the config unchanged.

    Returns:
        A new config instance of the same type.

    Raises:
        ValidationError: If a key is unknown or a value fails validation.

    Example:
        >>> cfg = apply_overrides(ScoringConfig(), {"batch_size": 25})
        >>> cfg.batch_size
        25
    """
    if not overrides:
        return config

    unknown = sorted(set(overrides) - set(type(config).model_fields))
    if unknown:
        raise ValidationError(
            f"Unknown {type(config).__name__} keys: {', '.join(unknown)}",
            details={"unknownKeys": unknown},
        )

    merged: Dict[str, Any] = {**config.model_dump(), **dict(overrides)}
    try:
        return type(config).model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {type(config).__name__} override: {e.errors()[0]['msg']}",
            details={"errors": [err["loc"] for err in e.errors()]},
        ) from e


# =============================================================================
# Environment Settings
# =============================================================================


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Values are flat so they map one-to-one onto environment variables; the
    *_config() methods group them into the typed structs consumed by services.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # Optional - without it the service runs on in-memory repositories
    database_url: Optional[str] = None

    app_name: str = 'Lead Scoring API'
    cors_origins: str = 'http://localhost:3000,http://127.0.0.1:3000'
    start_background_jobs: bool = True
    bootstrap_training_on_startup: bool = True
    audit_history_limit: int = 100

    # Real-time scoring
    cache_enabled: bool = True
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 10_000
    rate_limit_max: int = 100
    rate_limit_window_seconds: float = 60.0
    batch_size: int = 10
    batch_pause_seconds: float = 0.1
    max_batch_leads: int = 500
    queue_max_concurrency: int = 10
    queue_poll_interval_seconds: float = 0.1

    # Training
    min_training_samples: int = 100
    cv_folds: int = 5
    tuning_folds: int = 3

    # Drift detection
    drift_window_days: int = 30
    drift_threshold: float = 0.1
    drift_min_samples: int = 100

    # Retraining schedule
    retraining_enabled: bool = True
    retraining_frequency: RetrainingFrequency = RetrainingFrequency.WEEKLY
    retraining_time: str = '02:00'
    retraining_window_days: int = 90
    retraining_min_data_points: int = 1000
    retraining_auto_deploy: bool = True

    # A/B testing defaults
    ab_test_duration_days: float = 14.0
    ab_test_traffic_split: float = 0.5
    ab_test_confidence_threshold: float = 0.95
    ab_test_min_sample_size: int = 1000
    ab_test_check_interval: int = 100
    ab_test_auto_deploy: bool = False

    def scoring_config(self) -> ScoringConfig:
        return ScoringConfig(
            cache_enabled=self.cache_enabled,
            cache_ttl_seconds=self.cache_ttl_seconds,
            cache_max_entries=self.cache_max_entries,
            rate_limit_max=self.rate_limit_max,
            rate_limit_window_seconds=self.rate_limit_window_seconds,
            batch_size=self.batch_size,
            batch_pause_seconds=self.batch_pause_seconds,
            max_batch_leads=self.max_batch_leads,
            queue_max_concurrency=self.queue_max_concurrency,
            queue_poll_interval_seconds=self.queue_poll_interval_seconds,
        )

    def training_config(self) -> TrainingConfig:
        return TrainingConfig(
            min_samples=self.min_training_samples,
            cv_folds=self.cv_folds,
            tuning_folds=self.tuning_folds,
        )

    def drift_config(self) -> DriftConfig:
        return DriftConfig(
            window_days=self.drift_window_days,
            threshold=self.drift_threshold,
            min_samples=self.drift_min_samples,
        )

    def retraining_config(self) -> RetrainingConfig:
        return RetrainingConfig(
            enabled=self.retraining_enabled,
            frequency=self.retraining_frequency,
            scheduled_time=self.retraining_time,
            training_window_days=self.retraining_window_days,
            min_data_points=self.retraining_min_data_points,
            auto_deploy=self.retraining_auto_deploy,
        )

    def ab_test_config(self) -> ABTestConfig:
        return ABTestConfig(
            duration_days=self.ab_test_duration_days,
            traffic_split=self.ab_test_traffic_split,
            confidence_threshold=self.ab_test_confidence_threshold,
            min_sample_size=self.ab_test_min_sample_size,
            check_interval=self.ab_test_check_interval,
            auto_deploy=self.ab_test_auto_deploy,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The cached settings instance.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
