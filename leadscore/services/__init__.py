"""
Business logic services for the lead-scoring backend.

Online path:
- feature_extraction: lead snapshot -> fixed-order feature vector
- insights: top factors, risk level and recommendations per score
- score_cache / rate_limiter / request_queue: shared serving resources
- scoring_engine: real-time, batch and data-supplied scoring

Model lifecycle:
- model: trainable models behind fit/predict/evaluate
- model_registry: versions, predictors and the single-active invariant
- training: training, cross-validation, tuning and data validation
- drift_detector: rolling prediction/outcome drift analysis
- retraining_scheduler: gated retraining and promotion policy

Experiments:
- statistics: two-proportion test, power, sample size, stopping rule
- winner_selector: ordered decision policy with risk presets
- ab_testing: champion/challenger routing and result accrual

Support:
- repositories: persistence contracts (in-memory and asyncpg)
- audit: bounded lifecycle audit history
"""

from leadscore.services.ab_testing import ABTestManager
from leadscore.services.audit import AuditLog
from leadscore.services.drift_detector import DriftDetector
from leadscore.services.feature_extraction import FEATURE_NAMES, DefaultFeatureExtractor, FeatureExtractor
from leadscore.services.model import LeadScoringModel, build_model, compute_metrics
from leadscore.services.model_registry import ModelRegistry
from leadscore.services.rate_limiter import SlidingWindowRateLimiter
from leadscore.services.request_queue import RequestQueue
from leadscore.services.retraining_scheduler import RetrainingScheduler
from leadscore.services.score_cache import ScoreCache
from leadscore.services.scoring_engine import RealTimeScoringEngine
from leadscore.services.statistics import two_proportion_test
from leadscore.services.training import ModelTrainingOrchestrator, TrainingDataset
from leadscore.services.winner_selector import select_winner

__all__ = [
    "ABTestManager",
    "AuditLog",
    "DriftDetector",
    "FEATURE_NAMES",
    "DefaultFeatureExtractor",
    "FeatureExtractor",
    "LeadScoringModel",
    "build_model",
    "compute_metrics",
    "ModelRegistry",
    "SlidingWindowRateLimiter",
    "RequestQueue",
    "RetrainingScheduler",
    "ScoreCache",
    "RealTimeScoringEngine",
    "two_proportion_test",
    "ModelTrainingOrchestrator",
    "TrainingDataset",
    "select_winner",
]
