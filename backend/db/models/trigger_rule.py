"""TriggerRule model for the cadence scheduler."""

from datetime import datetime
from typing import Optional, Union

from sqlalchemy import JSON, CheckConstraint, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import DEFAULT_SETTLING_MINUTES, TriggerKind
from db.base import BaseModel, SoftDeleteMixin


class TriggerRule(SoftDeleteMixin, BaseModel):
    """An automation definition that starts workflow runs.

    Attributes:
        id: UUID primary key
        tenant_id: Owning tenant
        name: Human-readable rule name
        kind: "scheduled", "data_condition" or "compound"
        cron_expression: Cron expression (scheduled and compound)
        timezone: IANA timezone the cron expression is written in
        condition_spec: Dataset predicate, see ConditionSpec (data_condition,
            optional for compound)
        settling_minutes: Quiet period after the last data change before an
            armed compound rule fires (compound only)
        action_payload: Opaque workflow definition, passed through untouched
        is_active: Inactive rules are skipped by the evaluator
        last_run_at: Last tick that dispatched (or re-confirmed) this rule
        next_run_at: Next cron occurrence, naive UTC (scheduled and compound)
        armed_at: Cron tick that armed a compound rule; NULL while idle
        data_settled_at: Last data change seen while armed; NULL until one arrives
        created_by_id: Actor that configured the rule

    Config examples by kind:
        scheduled:       cron_expression="0 9 * * MON", timezone="America/New_York"
        data_condition:  condition_spec={"dataset_id": "...", "column_key": "due_date",
                                         "operator": "between",
                                         "value": ["{{period.start}}", "{{period.end}}"],
                                         "period_scope": "current_period"}
        compound:        cron_expression="0 6 1 * *", condition_spec={...},
                         settling_minutes=60
    """

    __tablename__ = "trigger_rules"
    __table_args__ = (
        CheckConstraint(
            "(kind = 'scheduled' AND cron_expression IS NOT NULL AND condition_spec IS NULL)"
            " OR (kind = 'data_condition' AND condition_spec IS NOT NULL"
            " AND cron_expression IS NULL)"
            " OR (kind = 'compound' AND cron_expression IS NOT NULL)",
            name="ck_trigger_rules_kind_fields",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(nullable=False, index=True)
    cron_expression: Mapped[Optional[str]] = mapped_column(nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(nullable=True)
    condition_spec: Mapped[Optional[dict]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    settling_minutes: Mapped[Optional[int]] = mapped_column(nullable=True)
    action_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    armed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    data_settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_by_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def trigger(self):
        """Tagged variant (Scheduled | DataCondition | Compound) for this row."""
        from triggers.base import trigger_from_fields

        return trigger_from_fields(
            self.kind,
            self.cron_expression,
            self.timezone,
            self.condition_spec,
            self.settling_minutes,
        )

    @classmethod
    def scheduled(
        cls,
        *,
        tenant_id: str,
        name: str,
        cron_expression: str,
        timezone: str = "UTC",
        next_run_at: Optional[datetime] = None,
        **kwargs,
    ) -> "TriggerRule":
        """Build a scheduled rule.

        When ``next_run_at`` is omitted it is computed from now, which
        also rejects an invalid schedule with InvalidScheduleError.
        """
        if next_run_at is None:
            from triggers.cron import next_occurrence

            next_run_at = next_occurrence(cron_expression, timezone)
        return cls(
            tenant_id=tenant_id,
            name=name,
            kind=TriggerKind.SCHEDULED.value,
            cron_expression=cron_expression,
            timezone=timezone,
            condition_spec=None,
            next_run_at=next_run_at,
            **kwargs,
        )

    @classmethod
    def data_condition(
        cls,
        *,
        tenant_id: str,
        name: str,
        condition: Union[dict, "ConditionSpec"],
        **kwargs,
    ) -> "TriggerRule":
        """Build a data-condition rule. The condition is validated before storing."""
        from triggers.base import ConditionSpec

        if isinstance(condition, dict):
            condition = ConditionSpec.from_dict(condition)
        return cls(
            tenant_id=tenant_id,
            name=name,
            kind=TriggerKind.DATA_CONDITION.value,
            cron_expression=None,
            timezone=None,
            condition_spec=condition.to_dict(),
            next_run_at=None,
            **kwargs,
        )

    @classmethod
    def compound(
        cls,
        *,
        tenant_id: str,
        name: str,
        cron_expression: str,
        timezone: str = "UTC",
        condition: Union[dict, "ConditionSpec", None] = None,
        settling_minutes: int = DEFAULT_SETTLING_MINUTES,
        next_run_at: Optional[datetime] = None,
        **kwargs,
    ) -> "TriggerRule":
        """Build a compound rule: armed by the cron schedule, fired by the data.

        Without a condition the rule behaves like a scheduled one.
        """
        from triggers.base import ConditionSpec

        if next_run_at is None:
            from triggers.cron import next_occurrence

            next_run_at = next_occurrence(cron_expression, timezone)
        if isinstance(condition, dict):
            condition = ConditionSpec.from_dict(condition)
        return cls(
            tenant_id=tenant_id,
            name=name,
            kind=TriggerKind.COMPOUND.value,
            cron_expression=cron_expression,
            timezone=timezone,
            condition_spec=condition.to_dict() if condition is not None else None,
            settling_minutes=settling_minutes,
            next_run_at=next_run_at,
            **kwargs,
        )
