"""Celery tasks that send due reminders.

Beat fires both every five minutes on the ``reminders`` queue: one pass
over outstanding-request follow-ups and one over pending forms.
Overlapping runs are safe: each item is claimed with a compare-and-set
before anything is sent.
"""

import asyncio

import structlog

from core.logging_config import scheduler_context
from worker.celery_app import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(
    name="worker.tasks.reminders.send_due_reminders",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="reminders",
)
def send_due_reminders(self):
    """Run one reminder scheduler pass."""
    with scheduler_context("reminders"):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            result = loop.run_until_complete(_run_reminders())
            return result
        except Exception as exc:
            logger.error("reminder_run_failed", error=str(exc), exc_info=True)
            raise self.retry(exc=exc)
        finally:
            loop.close()


@celery_app.task(
    name="worker.tasks.reminders.send_due_form_reminders",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="reminders",
)
def send_due_form_reminders(self):
    """Run one form reminder pass."""
    with scheduler_context("form-reminders"):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(_run_form_reminders())
        except Exception as exc:
            logger.error("form_reminder_run_failed", error=str(exc), exc_info=True)
            raise self.retry(exc=exc)
        finally:
            loop.close()


async def _run_reminders() -> dict:
    from app.dependencies import build_reminder_scheduler
    from db.worker_session import worker_sessionmaker

    async with worker_sessionmaker() as session_factory:
        result = await build_reminder_scheduler(session_factory).run_once()
    return result.to_dict()


async def _run_form_reminders() -> dict:
    from app.dependencies import build_form_reminder_scheduler
    from db.worker_session import worker_sessionmaker

    async with worker_sessionmaker() as session_factory:
        result = await build_form_reminder_scheduler(session_factory).run_once()
    return result.to_dict()
