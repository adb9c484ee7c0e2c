"""Trigger variants, trigger context and condition results.

A rule row stores its kind-specific fields in nullable columns; the
rest of the scheduler only ever sees one of the tagged variants below,
built by ``trigger_from_fields``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Union

from core.constants import DEFAULT_SETTLING_MINUTES, ConditionOperator, TriggerKind


@dataclass(frozen=True)
class ConditionSpec:
    """Predicate over one column of an external dataset.

    ``value`` is a scalar for comparison operators and a two-element
    list for ``between``. With ``period_scope == "current_period"`` it
    may contain ``{{period.start}}`` / ``{{period.end}}`` placeholders
    (or the ``{{board.periodStart}}`` / ``{{board.periodEnd}}`` spelling).
    """

    dataset_id: str
    column_key: str
    operator: ConditionOperator
    value: Any = None
    period_scope: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ConditionSpec":
        missing = [k for k in ("dataset_id", "column_key", "operator") if not data.get(k)]
        if missing:
            raise ValueError(f"Condition is missing field(s): {', '.join(missing)}")
        return cls(
            dataset_id=str(data["dataset_id"]),
            column_key=str(data["column_key"]),
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
            period_scope=data.get("period_scope"),
        )

    def to_dict(self) -> dict:
        return {
            "dataset_id": self.dataset_id,
            "column_key": self.column_key,
            "operator": self.operator.value,
            "value": self.value,
            "period_scope": self.period_scope,
        }


@dataclass(frozen=True)
class ScheduledTrigger:
    """Cron-driven trigger."""

    cron_expression: str
    timezone: str = "UTC"
    kind: TriggerKind = field(default=TriggerKind.SCHEDULED, init=False)


@dataclass(frozen=True)
class DataConditionTrigger:
    """Trigger that fires once per period while a data predicate holds."""

    condition: ConditionSpec
    kind: TriggerKind = field(default=TriggerKind.DATA_CONDITION, init=False)


@dataclass(frozen=True)
class CompoundTrigger:
    """Cron tick arms the rule; the data condition, once settled, fires it.

    With no condition the rule fires on the cron tick like a scheduled one.
    """

    cron_expression: str
    timezone: str = "UTC"
    condition: Optional[ConditionSpec] = None
    settling_minutes: int = DEFAULT_SETTLING_MINUTES
    kind: TriggerKind = field(default=TriggerKind.COMPOUND, init=False)


Trigger = Union[ScheduledTrigger, DataConditionTrigger, CompoundTrigger]


def trigger_from_fields(
    kind: str,
    cron_expression: Optional[str],
    timezone: Optional[str],
    condition_spec: Optional[dict],
    settling_minutes: Optional[int] = None,
) -> Trigger:
    """Build the tagged variant for a rule's stored fields.

    Raises:
        ValueError: if the populated fields don't match ``kind``
    """
    kind = TriggerKind(kind)
    if kind == TriggerKind.SCHEDULED:
        if not cron_expression or condition_spec is not None:
            raise ValueError("Scheduled trigger needs a cron expression and no condition")
        return ScheduledTrigger(cron_expression=cron_expression, timezone=timezone or "UTC")

    if kind == TriggerKind.COMPOUND:
        if not cron_expression:
            raise ValueError("Compound trigger needs a cron expression")
        return CompoundTrigger(
            cron_expression=cron_expression,
            timezone=timezone or "UTC",
            condition=ConditionSpec.from_dict(condition_spec) if condition_spec else None,
            settling_minutes=(
                settling_minutes if settling_minutes is not None else DEFAULT_SETTLING_MINUTES
            ),
        )

    if condition_spec is None or cron_expression:
        raise ValueError("Data-condition trigger needs a condition and no cron expression")
    return DataConditionTrigger(condition=ConditionSpec.from_dict(condition_spec))


@dataclass
class TriggerContext:
    """What fired a run. Stored on the run record and sent with the dispatch."""

    trigger_kind: TriggerKind
    trigger_event_id: str
    tenant_id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["trigger_kind"] = self.trigger_kind.value
        return data


@dataclass(frozen=True)
class ConditionResult:
    """Outcome of evaluating a data condition for one tick."""

    matched: bool
    matched_row_count: int = 0
    period_key: Optional[str] = None
