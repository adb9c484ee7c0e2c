"""Structured logging for the API process and the Celery workers.

Every scheduler event (run_dispatched, reminder_sent, ...) is a structlog
key/value event, and that stream is the audit trail. Context bound for a
unit of work is merged into each event:

- ``scheduler_context`` binds ``tick`` and a fresh ``tick_id`` around one
  Celery tick, so all lines of a tick can be pulled out together
- the evaluator binds ``rule_id`` per rule and the reminder schedulers
  bind ``reminder_state_id`` / ``form_request_id`` per item
- the request middleware binds ``request_id`` per HTTP request
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

import structlog
from app.config import get_settings

_LIBRARY_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "redis": logging.WARNING,
    "celery": logging.INFO,
}


def service_fields(process: str):
    """Processor stamping service name, process role and environment."""
    settings = get_settings()

    def add_service_fields(logger, method_name, event_dict):
        event_dict.setdefault("service", settings.APP_NAME)
        event_dict.setdefault("process", process)
        event_dict.setdefault("environment", settings.ENVIRONMENT)
        return event_dict

    return add_service_fields


def shared_processors(process: str) -> list:
    return [
        structlog.contextvars.merge_contextvars,
        service_fields(process),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def setup_logging(process: str = "api") -> None:
    """Route structlog and stdlib logging through one stdout handler.

    ``process`` is "api" for the FastAPI app and "worker" for Celery.
    """
    settings = get_settings()
    shared = shared_processors(process)

    if settings.is_development or settings.LOG_FORMAT == "text":
        render = [structlog.dev.ConsoleRenderer(colors=settings.is_development)]
    else:
        render = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING
    )


@contextmanager
def scheduler_context(tick: str) -> Iterator[str]:
    """Bind ``tick`` and a new ``tick_id`` for one scheduler pass.

    Context left over from a previous task on the same worker thread is
    cleared first.
    """
    tick_id = uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    with structlog.contextvars.bound_contextvars(tick=tick, tick_id=tick_id):
        yield tick_id
