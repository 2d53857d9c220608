"""
FastAPI application entry point for the Lead Scoring API.

This module configures logging, CORS, the uniform error envelope and the API
routers, and owns the application lifespan:

On startup:
    - Build the ServiceContainer (unless one was injected, e.g. by tests)
    - Connect storage, restore model versions and A/B tests
    - Bootstrap an initial model when none can serve
    - Start background maintenance jobs

On shutdown:
    - Stop background jobs and the request queue
    - Close the database pool
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from leadscore.api import api_router
from leadscore.api.responses import error_body
from leadscore.core.config import get_settings
from leadscore.core.container import ServiceContainer, build_container
from leadscore.core.errors import LeadScoringError, RateLimitExceeded, ValidationError


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# Exception Handlers
# =============================================================================


async def lead_scoring_error_handler(request: Request, exc: LeadScoringError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(max(1, int(round(exc.retry_after))))}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'Invalid request')}" if location else "Invalid request"
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=error_body(ValidationError.code, message),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_body("INTERNAL_ERROR", "Internal server error"),
    )


# =============================================================================
# Application Factory
# =============================================================================


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built services. When omitted, the lifespan builds one
            from get_settings().
    """
    settings = container.settings if container is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"{settings.app_name} starting")
        services = container or build_container(settings)
        app.state.container = services
        try:
            await services.startup()
            logger.info("Lead scoring services started")
        except Exception as e:
            logger.error(f"Failed to start lead scoring services: {e}")

        yield

        logger.info(f"{settings.app_name} shutting down")
        try:
            await services.shutdown()
            logger.info("Lead scoring services stopped")
        except Exception as e:
            logger.error(f"Error stopping lead scoring services: {e}")

    app = FastAPI(
        title=settings.app_name,
        version=API_VERSION,
        description=(
            "Lead scoring inference and model lifecycle: real-time scoring, "
            "training, drift detection, retraining and champion/challenger A/B tests."
        ),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LeadScoringError, lead_scoring_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router)

    @app.get("/health")
    async def health_check():
        """Liveness probe for monitoring and load balancers."""
        return {"status": "healthy"}

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": API_VERSION,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "leadscore.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
