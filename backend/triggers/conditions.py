"""Row-level data-condition evaluation.

Evaluates a ConditionSpec directly against dataset rows handed over by
a RowSource. Used when datasets are reachable from the worker instead
of through the external predicate service.

Period-scoped conditions may reference the tenant's active reporting
period with ``{{period.start}}`` / ``{{period.end}}``, or with the
``{{board.periodStart}}`` / ``{{board.periodEnd}}`` spelling older rules
were written with. Both resolve to ISO dates and the period start
month (``YYYY-MM``) becomes the period key, so a condition that stays
true all month fires once that month.
"""

import re
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

import structlog

from core.constants import CURRENT_PERIOD_SCOPE, ConditionOperator
from core.exceptions import ConditionEvaluationError
from triggers.base import ConditionResult, ConditionSpec
from triggers.evaluator_client import ConditionEvaluator

logger = structlog.get_logger(__name__)

_PERIOD_START = re.compile(r"\{\{\s*(?:period\.start|board\.periodStart)\s*\}\}")
_PERIOD_END = re.compile(r"\{\{\s*(?:period\.end|board\.periodEnd)\s*\}\}")


class RowSource(ABC):
    """Read access to tenant datasets and reporting periods."""

    @abstractmethod
    async def load_rows(self, dataset_id: str, tenant_id: str) -> Optional[list[dict]]:
        """Return the dataset rows, or None if the dataset doesn't exist."""
        ...

    @abstractmethod
    async def active_period(self, tenant_id: str) -> Optional[tuple[date, date]]:
        """Return (start, end) of the tenant's active period, if any."""
        ...


def resolve_period_placeholders(value: Any, start: date, end: date) -> Any:
    """Substitute period placeholders in a string or list of strings."""
    if isinstance(value, str):
        value = _PERIOD_START.sub(start.isoformat(), value)
        return _PERIOD_END.sub(end.isoformat(), value)
    if isinstance(value, list):
        return [resolve_period_placeholders(item, start, end) for item in value]
    return value


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def matches(cell: Any, operator: ConditionOperator, value: Any) -> bool:
    """Evaluate ``cell <operator> value`` for one row."""
    if operator == ConditionOperator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            return False
        low, high = (_as_text(v) for v in value)
        return low <= _as_text(cell) <= high

    if operator == ConditionOperator.EQ:
        return _as_text(cell) == _as_text(value)

    if operator == ConditionOperator.CONTAINS:
        return _as_text(value).lower() in _as_text(cell).lower()

    left, right = _as_number(cell), _as_number(value)
    if left is None or right is None:
        return False
    if operator == ConditionOperator.GT:
        return left > right
    if operator == ConditionOperator.LT:
        return left < right
    if operator == ConditionOperator.GTE:
        return left >= right
    if operator == ConditionOperator.LTE:
        return left <= right
    return False


def count_matching_rows(
    rows: list[dict], column_key: str, operator: ConditionOperator, value: Any
) -> int:
    """Count rows whose ``column_key`` cell satisfies the predicate.

    Rows with a missing or null cell never match.
    """
    count = 0
    for row in rows:
        cell = row.get(column_key)
        if cell is None:
            continue
        if matches(cell, operator, value):
            count += 1
    return count


class RowConditionEvaluator(ConditionEvaluator):
    """ConditionEvaluator that reads rows through a RowSource."""

    def __init__(self, row_source: RowSource):
        self.row_source = row_source

    async def evaluate(self, condition: ConditionSpec, tenant_id: str) -> ConditionResult:
        try:
            rows = await self.row_source.load_rows(condition.dataset_id, tenant_id)
            period = None
            if condition.period_scope == CURRENT_PERIOD_SCOPE:
                period = await self.row_source.active_period(tenant_id)
        except ConditionEvaluationError:
            raise
        except Exception as exc:
            raise ConditionEvaluationError(
                f"Could not load dataset {condition.dataset_id}: {exc}"
            ) from exc

        if rows is None:
            logger.warning(
                "condition_dataset_missing",
                dataset_id=condition.dataset_id,
                tenant_id=tenant_id,
            )
            return ConditionResult(matched=False)
        if not rows:
            return ConditionResult(matched=False)

        value = condition.value
        period_key = None
        if condition.period_scope == CURRENT_PERIOD_SCOPE:
            if period is None:
                logger.warning("condition_no_active_period", tenant_id=tenant_id)
            else:
                start, end = period
                value = resolve_period_placeholders(value, start, end)
                period_key = f"{start.year}-{start.month:02d}"

        matched_row_count = count_matching_rows(
            rows, condition.column_key, condition.operator, value
        )
        return ConditionResult(
            matched=matched_row_count > 0,
            matched_row_count=matched_row_count,
            period_key=period_key,
        )
