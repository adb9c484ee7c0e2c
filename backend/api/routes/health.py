"""Health check endpoints.

Provides:
- Basic liveness check (/health)
- Database readiness check (/health/ready)
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from app.dependencies import get_session_factory

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=dict[str, Any])
async def liveness(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    """Simple liveness check."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/ready", response_model=dict[str, Any])
async def readiness(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> dict[str, Any]:
    """
    Readiness check.
    Returns 503 if the database cannot be reached.
    """
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_database_unavailable", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "healthy", "database": "ok"}
