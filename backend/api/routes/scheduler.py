"""Manual tick endpoints.

Run one trigger tick, one reminder pass or one form reminder pass on
demand and return its summary. Disabled (404) unless
MANUAL_TICKS_ENABLED is set. The operations are the same ones Celery
beat runs, so calling them next to the periodic ticks is safe.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.config import Settings, get_settings
from app.dependencies import (
    get_form_reminder_scheduler,
    get_reminder_scheduler,
    get_trigger_evaluator,
)
from reminders.forms import FormReminderScheduler
from reminders.scheduler import ReminderScheduler
from triggers.evaluator import TriggerEvaluator

logger = structlog.get_logger(__name__)


def require_manual_ticks(settings: Settings = Depends(get_settings)) -> None:
    if not settings.MANUAL_TICKS_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


router = APIRouter(
    prefix="/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(require_manual_ticks)],
)


@router.post("/triggers/tick", response_model=dict[str, Any])
async def run_trigger_tick(
    evaluator: TriggerEvaluator = Depends(get_trigger_evaluator),
) -> dict[str, Any]:
    """Run one trigger evaluator tick."""
    logger.info("manual_trigger_tick")
    summary = await evaluator.tick()
    return summary.to_dict()


@router.post("/reminders/run", response_model=dict[str, Any])
async def run_reminders(
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
) -> dict[str, Any]:
    """Run one reminder scheduler pass."""
    logger.info("manual_reminder_run")
    result = await scheduler.run_once()
    return result.to_dict()


@router.post("/reminders/forms/run", response_model=dict[str, Any])
async def run_form_reminders(
    scheduler: FormReminderScheduler = Depends(get_form_reminder_scheduler),
) -> dict[str, Any]:
    """Run one form reminder pass."""
    logger.info("manual_form_reminder_run")
    result = await scheduler.run_once()
    return result.to_dict()
