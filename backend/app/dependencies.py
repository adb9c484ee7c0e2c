"""FastAPI dependency injection functions.

The builders are shared with the Celery tick tasks so the API and the
worker wire the schedulers the same way.
"""

from typing import Optional

import structlog
from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from db.session import AsyncSessionLocal
from reminders.delivery import EmailDelivery
from reminders.forms import FormReminderScheduler
from reminders.scheduler import ReminderScheduler
from reminders.templates import ReminderTemplateRenderer
from services.run_dispatcher import CeleryDispatchPublisher, RunDispatcher
from triggers.evaluator import TriggerEvaluator
from triggers.evaluator_client import HttpConditionEvaluator

logger = structlog.get_logger(__name__)


def get_session_factory() -> async_sessionmaker:
    """Session factory for the API process."""
    return AsyncSessionLocal


def check_condition_service(settings: Optional[Settings] = None) -> bool:
    """Warn once at process start when no condition service is configured.

    Scheduled rules still fire without one; every data-condition and
    compound rule with a condition counts as an evaluation error.
    """
    settings = settings or get_settings()
    if settings.CONDITION_SERVICE_URL:
        return True
    logger.warning(
        "condition_service_not_configured",
        setting="CONDITION_SERVICE_URL",
        effect="data-condition rules will fail evaluation",
    )
    return False


def build_trigger_evaluator(
    session_factory: async_sessionmaker, settings: Optional[Settings] = None
) -> TriggerEvaluator:
    settings = settings or get_settings()
    return TriggerEvaluator(
        session_factory=session_factory,
        dispatcher=RunDispatcher(session_factory, CeleryDispatchPublisher()),
        condition_evaluator=HttpConditionEvaluator(
            base_url=settings.CONDITION_SERVICE_URL,
            token=settings.CONDITION_SERVICE_TOKEN,
            timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        ),
        settings=settings,
    )


def build_reminder_scheduler(
    session_factory: async_sessionmaker, settings: Optional[Settings] = None
) -> ReminderScheduler:
    settings = settings or get_settings()
    return ReminderScheduler(
        session_factory=session_factory,
        renderer=ReminderTemplateRenderer(),
        delivery=EmailDelivery(settings.smtp_config),
        settings=settings,
    )


def build_form_reminder_scheduler(
    session_factory: async_sessionmaker, settings: Optional[Settings] = None
) -> FormReminderScheduler:
    settings = settings or get_settings()
    return FormReminderScheduler(
        session_factory=session_factory,
        delivery=EmailDelivery(settings.smtp_config),
        settings=settings,
    )


async def get_trigger_evaluator(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> TriggerEvaluator:
    return build_trigger_evaluator(session_factory, settings)


async def get_reminder_scheduler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> ReminderScheduler:
    return build_reminder_scheduler(session_factory, settings)


async def get_form_reminder_scheduler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> FormReminderScheduler:
    return build_form_reminder_scheduler(session_factory, settings)
