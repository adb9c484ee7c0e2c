"""Celery task that runs the trigger evaluator tick.

Beat fires it every five minutes on the ``triggers`` queue. A Redis
lock skips ticks that start while a previous one is still inside its
throttle window; dispatch itself is idempotent either way.
"""

import asyncio

import structlog

from core.logging_config import scheduler_context
from worker.celery_app import celery_app

logger = structlog.get_logger(__name__)

TICK_NAME = "trigger-evaluator"


@celery_app.task(
    name="worker.tasks.trigger_tick.evaluate_triggers",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def evaluate_triggers(self):
    """Evaluate due scheduled, data-condition and compound trigger rules."""
    with scheduler_context(TICK_NAME):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            result = loop.run_until_complete(_run_tick())
            return result
        except Exception as exc:
            logger.error("trigger_tick_failed", error=str(exc), exc_info=True)
            raise self.retry(exc=exc)
        finally:
            loop.close()


async def _run_tick() -> dict:
    from app.config import get_settings
    from app.dependencies import build_trigger_evaluator
    from db.worker_session import worker_sessionmaker
    from worker.throttle import acquire_tick_lock

    settings = get_settings()
    if not await acquire_tick_lock(TICK_NAME, settings.TRIGGER_TICK_LOCK_SECONDS):
        return {"skipped": True}

    async with worker_sessionmaker() as session_factory:
        summary = await build_trigger_evaluator(session_factory, settings).tick()
    return summary.to_dict()
