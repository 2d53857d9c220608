"""
Lead Scoring Backend Package.

Lead-scoring inference and model-lifecycle service for the real-estate CRM:
real-time scoring with caching and rate limiting, model training and
cross-validation, drift detection, scheduled retraining, and champion/
challenger A/B testing with automatic winner selection.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, errors, dependency wiring, periodic tasks
    - models: Pydantic schemas and enums
    - services: Scoring, training and lifecycle services
    - jobs: Background maintenance jobs
    - sql: Parameterized SQL statements
"""

__version__ = "1.0.0"
