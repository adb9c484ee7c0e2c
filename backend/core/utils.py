"""
UTC datetime helpers.

All scheduler timestamps are NAIVE UTC to match the database column
type (TIMESTAMP WITHOUT TIME ZONE). These helpers are the only place
aware datetimes are converted.
"""

from datetime import datetime, timezone


def utcnow_naive() -> datetime:
    """Return the current UTC time as a **naive** datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC.

    Naive input is assumed to already be UTC.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value: datetime) -> str:
    """Render an instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Millisecond precision with a literal ``Z``. Idempotency keys embed
    this string, so the format must never change.
    """
    value = to_naive_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_date_key(value: datetime) -> str:
    """Return the UTC calendar date of an instant as ``YYYY-MM-DD``."""
    return to_naive_utc(value).strftime("%Y-%m-%d")
