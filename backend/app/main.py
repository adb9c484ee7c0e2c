"""Cadence Scheduler - FastAPI ops application.

The schedulers themselves run under Celery beat; this app only exposes
health checks and, when enabled, manual ticks.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.config import get_settings
from api.routes import health
from api.v1.router import api_v1_router
from app.dependencies import check_condition_service
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from db.session import close_db, init_db

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging("api")
    await init_db()
    logger.info(
        "app_started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        manual_ticks=settings.MANUAL_TICKS_ENABLED,
    )
    check_condition_service(settings)
    yield
    await close_db()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Trigger evaluation and reminder scheduling service.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestTrackingMiddleware)
    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s liveness checks)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
