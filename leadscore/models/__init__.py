"""
Package initialization file for lead-scoring models.

Re-exports the enumerations from enums.py and the Pydantic schemas from
schemas.py so other modules can import data models from leadscore.models
directly.

Usage:
    from leadscore.models import (
        ModelStatus,
        LeadProfile,
        Score,
        WinnerRecommendation,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from leadscore.models.enums import (
    ABTestStatus,
    AuditKind,
    BatchPriority,
    HealthState,
    ModelStatus,
    ModelType,
    RetrainingFrequency,
    RetrainingOutcome,
    RetrainingState,
    RiskLevel,
    RiskProfile,
    SignificanceOutcome,
    TargetMetric,
    Variant,
    WinnerDecision,
)


# =============================================================================
# Schemas
# =============================================================================

from leadscore.models.schemas import (
    # Lead input
    Interaction,
    LeadProfile,
    # Scores
    ScoreInsights,
    Score,
    BatchError,
    BatchResult,
    ScoringStatistics,
    HealthStatus,
    # Model lifecycle
    ModelMetrics,
    TrainingDataDescriptor,
    ModelVersion,
    CVResult,
    TuningCandidate,
    TuningResult,
    DataQualityReport,
    PredictionOutcome,
    # Drift
    DriftMetrics,
    DriftAnalysis,
    # A/B testing and statistics
    VariantResults,
    SignificanceResult,
    SuccessCriteria,
    StoppingDecision,
    RiskAssessment,
    WinnerRecommendation,
    ABTestResult,
    ABTest,
    # Retraining and audit
    RetrainingAttempt,
    AuditEntry,
    # API requests
    ScoreWithDataRequest,
    BatchScoreRequest,
    CacheSettingsUpdate,
    TrainModelRequest,
    CrossValidateRequest,
    TuneRequest,
    CreateABTestRequest,
    RecordConversionRequest,
    AnalyzeTestRequest,
    StopTestRequest,
    RunRetrainingRequest,
    # Envelope
    ApiError,
    ApiResponse,
    utcnow,
)


__all__ = [
    # Enums
    "ABTestStatus",
    "AuditKind",
    "BatchPriority",
    "HealthState",
    "ModelStatus",
    "ModelType",
    "RetrainingFrequency",
    "RetrainingOutcome",
    "RetrainingState",
    "RiskLevel",
    "RiskProfile",
    "SignificanceOutcome",
    "TargetMetric",
    "Variant",
    "WinnerDecision",
    # Schemas
    "Interaction",
    "LeadProfile",
    "ScoreInsights",
    "Score",
    "BatchError",
    "BatchResult",
    "ScoringStatistics",
    "HealthStatus",
    "ModelMetrics",
    "TrainingDataDescriptor",
    "ModelVersion",
    "CVResult",
    "TuningCandidate",
    "TuningResult",
    "DataQualityReport",
    "PredictionOutcome",
    "DriftMetrics",
    "DriftAnalysis",
    "VariantResults",
    "SignificanceResult",
    "SuccessCriteria",
    "StoppingDecision",
    "RiskAssessment",
    "WinnerRecommendation",
    "ABTestResult",
    "ABTest",
    "RetrainingAttempt",
    "AuditEntry",
    "ScoreWithDataRequest",
    "BatchScoreRequest",
    "CacheSettingsUpdate",
    "TrainModelRequest",
    "CrossValidateRequest",
    "TuneRequest",
    "CreateABTestRequest",
    "RecordConversionRequest",
    "AnalyzeTestRequest",
    "StopTestRequest",
    "RunRetrainingRequest",
    "ApiError",
    "ApiResponse",
    "utcnow",
]
