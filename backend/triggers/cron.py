"""Cron next-occurrence calculation.

Expressions are evaluated in the rule's own IANA timezone so that
day-of-week / day-of-month fields and DST transitions follow the
rule's wall clock, never the worker's. Results are **naive UTC**
datetimes suitable for ``TIMESTAMP WITHOUT TIME ZONE`` columns.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo

import structlog
from croniter import croniter

from app.config import get_settings
from core.exceptions import InvalidScheduleError
from core.utils import to_naive_utc, utcnow_naive

logger = structlog.get_logger(__name__)


def next_occurrence(
    cron_expression: str,
    timezone: Optional[str] = "UTC",
    from_: Optional[datetime] = None,
) -> datetime:
    """Return the first occurrence strictly after ``from_``.

    Args:
        cron_expression: 5-field cron expression (names like MON allowed)
        timezone: IANA timezone the expression is written in
        from_: Reference instant, naive UTC (defaults to now)

    Raises:
        InvalidScheduleError: on an unparsable expression or unknown timezone
    """
    tz = timezone or "UTC"
    if not cron_expression or not cron_expression.strip():
        raise InvalidScheduleError(cron_expression, tz, "empty expression")
    if len(cron_expression.split()) != 5:
        raise InvalidScheduleError(
            cron_expression, tz, f"expected 5 fields, got {len(cron_expression.split())}"
        )

    reference = to_naive_utc(from_) if from_ is not None else utcnow_naive()

    try:
        tz_obj = ZoneInfo(tz)
        start_local = reference.replace(tzinfo=dt_timezone.utc).astimezone(tz_obj)
        next_local = croniter(cron_expression, start_local).get_next(datetime)
    except (ValueError, KeyError) as exc:
        # CroniterError and ZoneInfoNotFoundError derive from these
        raise InvalidScheduleError(cron_expression, tz, str(exc)) from exc

    return to_naive_utc(next_local)


def next_occurrence_or_fallback(
    cron_expression: str,
    timezone: Optional[str],
    from_: datetime,
    rule_id: Optional[str] = None,
) -> datetime:
    """Batch-safe variant of ``next_occurrence``.

    On an invalid schedule the condition is logged and the rule is
    pushed ``INVALID_CRON_FALLBACK_HOURS`` into the future instead of
    failing the tick.
    """
    try:
        return next_occurrence(cron_expression, timezone, from_)
    except InvalidScheduleError as exc:
        fallback = to_naive_utc(from_) + timedelta(
            hours=get_settings().INVALID_CRON_FALLBACK_HOURS
        )
        logger.warning(
            "schedule_invalid_cron",
            rule_id=rule_id,
            cron_expression=cron_expression,
            timezone=timezone,
            error=exc.message,
            fallback_next_run_at=fallback.isoformat(),
        )
        return fallback
