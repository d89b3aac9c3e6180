"""
FastAPI Application Factory.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --workers 4
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware
from matching.errors import CandidatePoolUnavailableError, InvalidRequestError

logger = get_logger(__name__)

RETRY_AFTER_SECONDS = 5


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging on startup; flush analytics on shutdown."""
    settings = get_settings()

    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting matching API",
        environment=settings.environment,
        port=settings.port,
        experiment_version=settings.experiment_version,
    )

    yield

    from api.routes.matches import get_matching_service
    if get_matching_service.cache_info().currsize:
        service = get_matching_service()
        if service.analytics is not None:
            service.analytics.shutdown(wait=True)
    logger.info("Shutting down matching API")


async def invalid_request_handler(request: Request, exc: InvalidRequestError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def pool_unavailable_handler(request: Request, exc: CandidatePoolUnavailableError) -> JSONResponse:
    logger.warning("Returning retryable error", error=str(exc))
    return JSONResponse(
        status_code=503,
        content={"detail": "Matching temporarily unavailable, please retry", "retryable": True},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title="Matching API",
        description="""
        People recommendations for the discovery feed and in-person events.

        ## Main Endpoints

        - `POST /api/matches` - Ranked candidates for the authenticated user
        - `GET /api/matches/{target_id}/explanation` - Why someone was suggested

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Detailed health with dependency status
        - `/ready` - Kubernetes readiness probe
        - `/live` - Kubernetes liveness probe
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # =========================================================================
    # Middleware (order matters - first added = outermost)
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTracingMiddleware)

    # =========================================================================
    # Error mapping
    # =========================================================================

    app.add_exception_handler(InvalidRequestError, invalid_request_handler)
    app.add_exception_handler(CandidatePoolUnavailableError, pool_unavailable_handler)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.matches import router as matches_router
    app.include_router(matches_router)

    return app


# Default app instance for uvicorn
app = create_app()
