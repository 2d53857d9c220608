"""
FastAPI routers for the lead-scoring backend:
- scoring: real-time scoring, insights, statistics, health and cache control
- models: training, cross-validation, tuning, promotion, drift and retraining
- experiments: champion/challenger A/B tests
"""

from fastapi import APIRouter

from leadscore.api.experiments import router as experiments_router
from leadscore.api.models import router as models_router
from leadscore.api.scoring import router as scoring_router

api_router = APIRouter()

api_router.include_router(scoring_router, prefix="/scoring", tags=["scoring"])
api_router.include_router(models_router, prefix="/models", tags=["models"])
api_router.include_router(experiments_router, prefix="/ab-tests", tags=["ab-tests"])

__all__ = [
    "api_router",
    "scoring_router",
    "models_router",
    "experiments_router",
]
