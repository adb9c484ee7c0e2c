"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import health, scheduler, triggers

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Manual scheduler ticks (ops only)
api_v1_router.include_router(
    scheduler.router,
    tags=["Scheduler"],
)

# Data change events for compound rules
api_v1_router.include_router(
    triggers.router,
    tags=["Triggers"],
)
