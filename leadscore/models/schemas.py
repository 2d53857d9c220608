"""
Pydantic models for the lead-scoring backend.

This module defines the data contracts shared by the services and the API
layer: lead snapshots, scores, model versions and their metrics, drift
analyses, A/B tests, statistical results and winner recommendations, plus the
request bodies and the uniform response envelope used by the routers.

Value objects that must never change after creation (Score, ModelMetrics,
DriftAnalysis, SignificanceResult, WinnerRecommendation) are frozen. Mutable
lifecycle records (ModelVersion, ABTest) are replaced through model_copy()
by the component that owns them.

Field names are camelCase to match the API contract consumed by the CRM UI.

All models use Pydantic v2 syntax.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from leadscore.models.enums import (
    ABTestStatus,
    AuditKind,
    BatchPriority,
    HealthState,
    ModelStatus,
    ModelType,
    RetrainingOutcome,
    RiskLevel,
    RiskProfile,
    SignificanceOutcome,
    TargetMetric,
    Variant,
    WinnerDecision,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Lead Input Models
# =============================================================================


class Interaction(BaseModel):
    """A single touchpoint with a lead (email, phone, meeting, website)."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Interaction channel, e.g. email/phone/meeting/website")
    occurredAt: datetime = Field(..., description="When the interaction happened")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LeadProfile(BaseModel):
    """
    Immutable snapshot of a lead's identity and attributes.

    Consumed once per scoring call and never persisted by the scoring engine.
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "leadId": "lead-1042",
                "firstName": "Dana",
                "lastName": "Reyes",
                "email": "dana@example.com",
                "phone": "+15551234567",
                "status": "new",
                "createdAt": "2026-09-01T12:00:00Z",
                "budgetMin": 350000,
                "budgetMax": 450000,
                "propertyCount": 3,
            }
        },
    )

    leadId: str = Field(..., min_length=1, description="Unique lead identifier")
    firstName: Optional[str] = Field(default=None, max_length=255)
    lastName: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = Field(default=None, description="CRM pipeline status")
    source: Optional[str] = Field(default=None, description="Acquisition channel")
    createdAt: Optional[datetime] = None
    budgetMin: Optional[float] = Field(default=None, ge=0)
    budgetMax: Optional[float] = Field(default=None, ge=0)
    propertyCount: int = Field(default=0, ge=0, description="Properties the lead has saved")


# =============================================================================
# Score Models
# =============================================================================


class ScoreInsights(BaseModel):
    """Human-readable explanation attached to every score."""
    model_config = ConfigDict(frozen=True)

    topFactors: List[str] = Field(default_factory=list)
    riskLevel: RiskLevel = RiskLevel.LOW
    recommendations: List[str] = Field(default_factory=list)


class Score(BaseModel):
    """
    Conversion-likelihood score for one lead from one model version.

    Immutable once produced; cached per (leadId, modelId) for the cache TTL.
    """
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    leadId: str
    value: float = Field(..., ge=0.0, le=1.0, description="Predicted conversion probability")
    confidence: float = Field(..., ge=0.0, le=1.0, description="|value - 0.5| * 2")
    modelId: str
    modelVersion: str
    timestamp: datetime = Field(default_factory=utcnow)
    featuresUsed: List[str] = Field(default_factory=list)
    insights: ScoreInsights = Field(default_factory=ScoreInsights)
    variant: Optional[Variant] = Field(default=None, description="A/B side when routed by a test")
    abTestId: Optional[str] = None


class BatchError(BaseModel):
    leadId: str
    code: str
    message: str


class BatchResult(BaseModel):
    """Outcome of a batch scoring call; per-lead failures never abort the batch."""
    total: int
    successful: int
    failed: int
    results: List[Score] = Field(default_factory=list)
    errors: List[BatchError] = Field(default_factory=list)
    durationMs: float = 0.0


class ScoringStatistics(BaseModel):
    """Rolling statistics for the scoring engine (running averages)."""
    totalRequests: int = 0
    successfulRequests: int = 0
    failedRequests: int = 0
    rateLimitedRequests: int = 0
    cacheHits: int = 0
    cacheMisses: int = 0
    averageLatencyMs: float = 0.0
    successRate: float = 0.0
    errorRate: float = 0.0
    cacheHitRate: float = 0.0
    cacheSize: int = 0
    lastRequestAt: Optional[datetime] = None


class HealthStatus(BaseModel):
    status: HealthState
    checks: Dict[str, Any] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Model Lifecycle Models
# =============================================================================


class ModelMetrics(BaseModel):
    """
    Evaluation metrics for a model on a labeled dataset.

    Confusion counts use a 0.5 decision threshold. ``auc`` is the ROC AUC and
    is None when the evaluation set holds a single class.
    """
    model_config = ConfigDict(frozen=True)

    accuracy: float = Field(..., ge=0.0, le=1.0)
    precision: float = Field(..., ge=0.0, le=1.0)
    recall: float = Field(..., ge=0.0, le=1.0)
    f1: float = Field(..., ge=0.0, le=1.0)
    truePositives: int = Field(..., ge=0)
    falsePositives: int = Field(..., ge=0)
    trueNegatives: int = Field(..., ge=0)
    falseNegatives: int = Field(..., ge=0)
    auc: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    loss: Optional[float] = Field(default=None, ge=0.0, description="Binary cross-entropy")
    sampleSize: int = Field(..., ge=0)
    evaluatedAt: datetime = Field(default_factory=utcnow)


class TrainingDataDescriptor(BaseModel):
    """Describes, without storing, the data a model version was trained on."""
    model_config = ConfigDict(frozen=True)

    sampleCount: int
    trainingSize: int
    holdoutSize: int
    positiveRate: float
    featureNames: List[str] = Field(default_factory=list)
    windowStart: Optional[datetime] = None
    windowEnd: Optional[datetime] = None


class ModelVersion(BaseModel):
    """
    Metadata of one trained model version.

    Produced by the training orchestrator with status=training. Status only
    changes through the model registry in response to deployment decisions.
    """
    model_config = ConfigDict(protected_namespaces=())

    id: str
    type: ModelType
    version: str
    config: Dict[str, Any] = Field(default_factory=dict)
    trainingData: Optional[TrainingDataDescriptor] = None
    metrics: Optional[ModelMetrics] = None
    status: ModelStatus = ModelStatus.TRAINING
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)


class CVResult(BaseModel):
    """Cross-validation summary over k contiguous folds."""
    modelType: ModelType
    folds: int
    config: Dict[str, Any] = Field(default_factory=dict)
    foldMetrics: List[ModelMetrics]
    mean: Dict[str, float]
    std: Dict[str, float]
    bestFold: int = Field(..., description="Index of the fold with the highest f1")
    worstFold: int = Field(..., description="Index of the fold with the lowest f1")


class TuningCandidate(BaseModel):
    config: Dict[str, Any]
    meanF1: float


class TuningResult(BaseModel):
    modelType: ModelType
    bestConfig: Dict[str, Any]
    bestScore: float
    candidates: List[TuningCandidate]


class DataQualityReport(BaseModel):
    """Outcome of the training-data quality gate."""
    totalSamples: int
    featureCount: int
    completeness: float
    positiveRate: float
    driftedFeatures: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues


class PredictionOutcome(BaseModel):
    """A served prediction paired with the observed conversion outcome."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    modelId: str
    leadId: str
    prediction: float = Field(..., ge=0.0, le=1.0)
    actual: int = Field(..., ge=0, le=1)
    timestamp: datetime


# =============================================================================
# Drift Models
# =============================================================================


class DriftMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    accuracyDelta: float = 0.0
    meanPredictionDelta: float = 0.0
    predictionStdDelta: float = 0.0
    baselineAccuracy: Optional[float] = None
    recentAccuracy: Optional[float] = None
    sampleSize: int = 0
    distributionAnomalies: List[str] = Field(default_factory=list)


class DriftAnalysis(BaseModel):
    """Rolling drift verdict for one model; not persisted long term."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    modelId: Optional[str]
    driftDetected: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    driftMetrics: DriftMetrics
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# A/B Testing & Statistics Models
# =============================================================================


class VariantResults(BaseModel):
    """Accrued traffic for one side of an A/B test."""
    requests: int = 0
    conversions: int = 0
    conversionRate: float = 0.0
    averageScore: float = 0.0


class SignificanceResult(BaseModel):
    """
    Two-proportion z-test of treatment (challenger) against control (champion).

    ``requiredSampleSize`` is per group, for 80% power at the observed effect;
    None when the observed effect is zero.
    """
    model_config = ConfigDict(frozen=True)

    outcome: SignificanceOutcome
    controlRate: float
    treatmentRate: float
    absoluteDifference: float
    relativeImprovement: float
    standardError: float
    zScore: float
    pValue: float
    confidence: float
    confidenceInterval: Tuple[float, float]
    power: float
    requiredSampleSize: Optional[int]
    totalSampleSize: int


class SuccessCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    riskProfile: RiskProfile
    minimumConfidence: float
    minimumSampleSize: int
    minimumEffectSize: float
    maximumTestDurationDays: float


class StoppingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    checked: bool
    canStop: bool
    reason: str
    totalVisitors: int
    nextCheckAt: int


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    factors: List[str] = Field(default_factory=list)


class WinnerRecommendation(BaseModel):
    """One immutable recommendation per winner-selection call."""
    model_config = ConfigDict(frozen=True)

    testId: str
    winner: Optional[Variant] = None
    decision: WinnerDecision
    confidence: float
    relativeImprovement: float
    testDurationDays: float
    reasoning: List[str] = Field(default_factory=list)
    riskAssessment: RiskAssessment
    nextSteps: List[str] = Field(default_factory=list)
    criteria: SuccessCriteria
    statistics: SignificanceResult
    createdAt: datetime = Field(default_factory=utcnow)


class ABTestResult(BaseModel):
    testId: str
    winner: Optional[Variant] = None
    confidence: float
    completedReason: str
    recommendation: WinnerRecommendation
    deployed: bool = False


class ABTest(BaseModel):
    """Champion/challenger experiment; terminal once completed or aborted."""
    id: str
    name: str
    championModelId: str
    challengerModelId: str
    status: ABTestStatus = ABTestStatus.CREATED
    trafficSplit: float = Field(..., gt=0.0, lt=1.0, description="Share of traffic sent to the challenger")
    targetMetric: TargetMetric = TargetMetric.CONVERSION_RATE
    riskProfile: Optional[RiskProfile] = None
    confidenceThreshold: float = 0.95
    minSampleSize: int = 1000
    durationDays: float = 14.0
    checkInterval: int = 100
    lastCheckedVisitors: int = 0
    championResults: VariantResults = Field(default_factory=VariantResults)
    challengerResults: VariantResults = Field(default_factory=VariantResults)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    abortReason: Optional[str] = None
    result: Optional[ABTestResult] = None


# =============================================================================
# Retraining & Audit Models
# =============================================================================


class RetrainingAttempt(BaseModel):
    id: str
    forced: bool = False
    startedAt: datetime = Field(default_factory=utcnow)
    finishedAt: Optional[datetime] = None
    outcome: Optional[RetrainingOutcome] = None
    reason: str = ""
    candidateModelId: Optional[str] = None
    previousModelId: Optional[str] = None
    improvement: Optional[float] = None
    confidence: Optional[float] = None
    abTestId: Optional[str] = None
    issues: List[str] = Field(default_factory=list)


class AuditEntry(BaseModel):
    kind: AuditKind
    action: str
    success: bool
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# API Request Models
# =============================================================================


class ScoreWithDataRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    profile: LeadProfile
    interactions: List[Interaction] = Field(default_factory=list)
    modelId: Optional[str] = None
    useCache: bool = True
    fallbackModelId: Optional[str] = None


class BatchScoreRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    leadIds: List[str] = Field(..., min_length=1)
    modelId: Optional[str] = None
    priority: BatchPriority = BatchPriority.NORMAL


class CacheSettingsUpdate(BaseModel):
    ttlSeconds: Optional[float] = Field(default=None, gt=0)
    maxEntries: Optional[int] = Field(default=None, ge=1)
    enabled: Optional[bool] = None


class TrainModelRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    modelType: ModelType = ModelType.BASELINE
    config: Dict[str, Any] = Field(default_factory=dict)
    windowDays: Optional[int] = Field(default=None, ge=1)


class CrossValidateRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    modelType: ModelType = ModelType.BASELINE
    folds: Optional[int] = Field(default=None, ge=2)
    config: Dict[str, Any] = Field(default_factory=dict)
    windowDays: Optional[int] = Field(default=None, ge=1)


class TuneRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    modelType: ModelType = ModelType.BASELINE
    grid: Optional[Dict[str, List[Any]]] = None
    windowDays: Optional[int] = Field(default=None, ge=1)


class CreateABTestRequest(BaseModel):
    name: Optional[str] = None
    challengerModelId: str
    trafficSplit: Optional[float] = Field(default=None, gt=0.0, lt=1.0)
    durationDays: Optional[float] = Field(default=None, gt=0)
    confidenceThreshold: Optional[float] = Field(default=None, gt=0.0, lt=1.0)
    minSampleSize: Optional[int] = Field(default=None, ge=1)
    targetMetric: TargetMetric = TargetMetric.CONVERSION_RATE
    riskProfile: Optional[RiskProfile] = None


class RecordConversionRequest(BaseModel):
    leadId: str
    converted: bool = True


class AnalyzeTestRequest(BaseModel):
    riskProfile: Optional[RiskProfile] = None


class StopTestRequest(BaseModel):
    reason: str = "Stopped by operator"


class RunRetrainingRequest(BaseModel):
    force: bool = False


# =============================================================================
# Response Envelope
# =============================================================================


class ApiError(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ApiResponse(BaseModel):
    """Uniform envelope: {success, data | error{code, message}, timestamp}."""
    success: bool
    data: Optional[Any] = None
    error: Optional[ApiError] = None
    timestamp: datetime = Field(default_factory=utcnow)
