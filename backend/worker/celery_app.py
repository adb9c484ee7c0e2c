"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Separate queues for trigger ticks, reminder runs and workflow runs
- Beat schedule for the trigger tick and the two reminder passes
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging
from celery.signals import worker_ready

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "cadence_scheduler",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task routing
    task_routes={
        "worker.tasks.trigger_tick.*": {"queue": "triggers"},
        "worker.tasks.reminders.*": {"queue": "reminders"},
        "worker.tasks.workflow.*": {"queue": "workflows"},
    },
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits
    task_soft_time_limit=300,   # 5 min soft limit (raises SoftTimeLimitExceeded)
    task_time_limit=600,        # 10 min hard limit (kills the task)
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=True,

    beat_schedule={
        "evaluate-triggers": {
            "task": "worker.tasks.trigger_tick.evaluate_triggers",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "triggers"},
        },
        "send-due-reminders": {
            "task": "worker.tasks.reminders.send_due_reminders",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "reminders"},
        },
        "send-due-form-reminders": {
            "task": "worker.tasks.reminders.send_due_form_reminders",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "reminders"},
        },
    },

    include=[
        "worker.tasks.trigger_tick",
        "worker.tasks.reminders",
    ],
)


@celery_setup_logging.connect
def _configure_logging(**kwargs):
    """Use the structlog setup instead of Celery's own logging config."""
    from core.logging_config import setup_logging

    setup_logging("worker")


@worker_ready.connect
def _check_collaborators(**kwargs):
    from app.dependencies import check_condition_service

    check_condition_service()
