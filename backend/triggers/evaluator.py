"""Trigger evaluator — one scheduler tick over all trigger rules.

Each tick:
1. loads active scheduled rules whose next_run_at <= now, dispatches
   them keyed on the tick instant and advances next_run_at
2. loads every active data-condition rule, evaluates its predicate and
   dispatches once per period while it holds
3. arms compound rules whose cron tick is due (or fires them right away
   when they carry no data condition)
4. fires armed compound rules whose data has been quiet for the settling
   window and still matches, once per period

Rules are processed independently: a failing rule is logged, counted
and left for the next tick. Only a failure to load a due set aborts
the tick. Every schedule move is a compare-and-set on the value this
tick observed, so a duplicate tick never advances a rule twice, and
repeated dispatches of one occurrence collapse on the idempotency key.
Overlapping ticks at different instants are kept apart by the Redis
tick throttle.

Important: All datetime comparisons use NAIVE UTC to match the database
column type (TIMESTAMP WITHOUT TIME ZONE).
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from core.constants import TriggerKind
from core.exceptions import ConditionEvaluationError
from core.utils import isoformat_utc, utc_date_key, utcnow_naive
from db.models.trigger_rule import TriggerRule
from services.run_dispatcher import DispatchResult, RunDispatcher, build_idempotency_key
from triggers.base import ConditionResult, TriggerContext
from triggers.cron import next_occurrence_or_fallback
from triggers.evaluator_client import ConditionEvaluator

logger = structlog.get_logger(__name__)


@dataclass
class TickSummary:
    """Counts reported by one tick."""

    scheduled_dispatched: int = 0
    data_condition_dispatched: int = 0
    compound_armed: int = 0
    compound_dispatched: int = 0
    duplicates: int = 0
    debounced: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class TriggerEvaluator:
    """Finds due trigger rules and dispatches their occurrences."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: RunDispatcher,
        condition_evaluator: ConditionEvaluator,
        clock: Callable[[], datetime] = utcnow_naive,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.condition_evaluator = condition_evaluator
        self.clock = clock
        self.settings = settings or get_settings()

    async def tick(self) -> TickSummary:
        """Run one evaluation pass to completion."""
        now = self.clock()
        summary = TickSummary()

        due_rules = await self._load_due_scheduled(now)
        if due_rules:
            logger.info("scheduled_rules_due", count=len(due_rules), now=now.isoformat())
        await self._each(due_rules, self._process_scheduled, now, summary, "scheduled_rule_failed")

        condition_rules = await self._load_data_condition_rules()
        await self._each(
            condition_rules, self._process_data_condition, now, summary,
            "data_condition_rule_failed",
        )

        due_compound = await self._load_due_compound(now)
        if due_compound:
            logger.info("compound_rules_due", count=len(due_compound), now=now.isoformat())
        await self._each(due_compound, self._arm_compound, now, summary, "compound_rule_failed")

        settled = await self._load_settled_compound()
        await self._each(
            settled, self._fire_settled_compound, now, summary, "compound_rule_failed"
        )

        logger.info("trigger_tick_completed", **summary.to_dict())
        return summary

    async def record_data_settled(self, tenant_id: str, dataset_id: str) -> int:
        """Note a data change for the armed compound rules watching a dataset.

        Every call restarts the settling window. Rules that are not armed
        ignore data changes.

        Returns:
            Number of armed rules that took the change.
        """
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                self._active(TriggerKind.COMPOUND)
                .where(TriggerRule.tenant_id == tenant_id)
                .where(TriggerRule.armed_at != None)         # noqa: E711
            )
            rule_ids = [
                rule.id
                for rule in result.scalars().all()
                if (rule.condition_spec or {}).get("dataset_id") == dataset_id
            ]
            if rule_ids:
                await session.execute(
                    update(TriggerRule)
                    .where(TriggerRule.id.in_(rule_ids))
                    .where(TriggerRule.armed_at != None)     # noqa: E711
                    .values(data_settled_at=now)
                )
                await session.commit()

        logger.info(
            "compound_data_settled",
            tenant_id=tenant_id,
            dataset_id=dataset_id,
            rules=len(rule_ids),
        )
        return len(rule_ids)

    async def _each(self, rules, handler, now: datetime, summary: TickSummary, failure: str):
        for rule in rules:
            with structlog.contextvars.bound_contextvars(rule_id=rule.id):
                try:
                    await handler(rule, now, summary)
                except Exception as exc:
                    summary.errors += 1
                    logger.error(failure, rule_id=rule.id, error=str(exc), exc_info=True)

    # ─── Due sets ──────────────────────────────────────────

    def _active(self, kind: TriggerKind):
        return (
            select(TriggerRule)
            .where(TriggerRule.kind == kind.value)
            .where(TriggerRule.is_active == True)        # noqa: E712
            .where(TriggerRule.is_deleted == False)      # noqa: E712
        )

    async def _load_due_scheduled(self, now: datetime) -> list[TriggerRule]:
        async with self.session_factory() as session:
            result = await session.execute(
                self._active(TriggerKind.SCHEDULED)
                .where(TriggerRule.next_run_at != None)      # noqa: E711
                .where(TriggerRule.next_run_at <= now)
                .order_by(TriggerRule.next_run_at)
                .limit(self.settings.TRIGGER_BATCH_SIZE)
            )
            return list(result.scalars().all())

    async def _load_data_condition_rules(self) -> list[TriggerRule]:
        async with self.session_factory() as session:
            result = await session.execute(
                self._active(TriggerKind.DATA_CONDITION)
                .order_by(TriggerRule.id)
                .limit(self.settings.TRIGGER_BATCH_SIZE)
            )
            return list(result.scalars().all())

    async def _load_due_compound(self, now: datetime) -> list[TriggerRule]:
        async with self.session_factory() as session:
            result = await session.execute(
                self._active(TriggerKind.COMPOUND)
                .where(TriggerRule.armed_at == None)         # noqa: E711
                .where(TriggerRule.next_run_at != None)      # noqa: E711
                .where(TriggerRule.next_run_at <= now)
                .order_by(TriggerRule.next_run_at)
                .limit(self.settings.TRIGGER_BATCH_SIZE)
            )
            return list(result.scalars().all())

    async def _load_settled_compound(self) -> list[TriggerRule]:
        async with self.session_factory() as session:
            result = await session.execute(
                self._active(TriggerKind.COMPOUND)
                .where(TriggerRule.armed_at != None)         # noqa: E711
                .where(TriggerRule.data_settled_at != None)  # noqa: E711
                .order_by(TriggerRule.data_settled_at)
                .limit(self.settings.TRIGGER_BATCH_SIZE)
            )
            return list(result.scalars().all())

    # ─── Scheduled rules ───────────────────────────────────

    async def _process_scheduled(
        self, rule: TriggerRule, now: datetime, summary: TickSummary
    ) -> None:
        await self._fire_on_schedule(rule, TriggerKind.SCHEDULED, now, summary)

    async def _fire_on_schedule(
        self, rule: TriggerRule, kind: TriggerKind, now: datetime, summary: TickSummary
    ) -> None:
        trigger = rule.trigger
        observed = rule.next_run_at
        scheduled_time = isoformat_utc(now)

        context = TriggerContext(
            trigger_kind=kind,
            trigger_event_id=scheduled_time,
            tenant_id=rule.tenant_id,
            metadata={
                "scheduled_time": scheduled_time,
                "cron_expression": trigger.cron_expression,
                "timezone": trigger.timezone,
                "triggered_by": rule.created_by_id,
            },
        )
        result = await self._dispatch(rule, kind, scheduled_time, context)
        self._count_dispatch(result, kind, summary)

        # Advance even for a duplicate so the schedule never stalls
        next_run = next_occurrence_or_fallback(
            trigger.cron_expression, trigger.timezone, now, rule_id=rule.id
        )
        advanced = await self._advance_schedule(rule.id, observed, now, next_run)
        if advanced:
            logger.debug(
                "schedule_advanced",
                rule_id=rule.id,
                next_run_at=next_run.isoformat(),
            )
        else:
            logger.info(
                "schedule_already_advanced",
                rule_id=rule.id,
                observed_next_run_at=observed.isoformat(),
            )

    async def _advance_schedule(
        self,
        rule_id: str,
        observed_next_run_at: datetime,
        now: datetime,
        next_run_at: datetime,
    ) -> bool:
        """Move next_run_at forward unless another tick already did."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(TriggerRule)
                .where(TriggerRule.id == rule_id)
                .where(TriggerRule.next_run_at == observed_next_run_at)
                .values(last_run_at=now, next_run_at=next_run_at)
            )
            await session.commit()
            return result.rowcount == 1

    # ─── Data-condition rules ──────────────────────────────

    async def _process_data_condition(
        self, rule: TriggerRule, now: datetime, summary: TickSummary
    ) -> None:
        debounce = self.settings.DATA_CONDITION_DEBOUNCE_SECONDS
        if rule.last_run_at and (now - rule.last_run_at).total_seconds() < debounce:
            summary.debounced += 1
            return

        trigger = rule.trigger
        evaluation = await self._evaluate(rule, trigger.condition)
        if evaluation is None:
            summary.errors += 1
            return
        if not evaluation.matched:
            return

        event_id = evaluation.period_key or utc_date_key(now)
        context = TriggerContext(
            trigger_kind=TriggerKind.DATA_CONDITION,
            trigger_event_id=event_id,
            tenant_id=rule.tenant_id,
            metadata={
                "dataset_id": trigger.condition.dataset_id,
                "column_key": trigger.condition.column_key,
                "matched_row_count": evaluation.matched_row_count,
                "period_key": evaluation.period_key,
                "triggered_by": rule.created_by_id,
            },
        )
        result = await self._dispatch(rule, TriggerKind.DATA_CONDITION, event_id, context)
        self._count_dispatch(result, TriggerKind.DATA_CONDITION, summary)

        async with self.session_factory() as session:
            await session.execute(
                update(TriggerRule)
                .where(TriggerRule.id == rule.id)
                .values(last_run_at=now)
            )
            await session.commit()

    # ─── Compound rules ────────────────────────────────────

    async def _arm_compound(
        self, rule: TriggerRule, now: datetime, summary: TickSummary
    ) -> None:
        trigger = rule.trigger
        if trigger.condition is None:
            await self._fire_on_schedule(rule, TriggerKind.COMPOUND, now, summary)
            return

        next_run = next_occurrence_or_fallback(
            trigger.cron_expression, trigger.timezone, now, rule_id=rule.id
        )
        async with self.session_factory() as session:
            result = await session.execute(
                update(TriggerRule)
                .where(TriggerRule.id == rule.id)
                .where(TriggerRule.armed_at == None)         # noqa: E711
                .where(TriggerRule.next_run_at == rule.next_run_at)
                .values(armed_at=now, data_settled_at=None, next_run_at=next_run)
            )
            await session.commit()

        if result.rowcount == 1:
            summary.compound_armed += 1
            logger.info(
                "compound_rule_armed",
                rule_id=rule.id,
                next_run_at=next_run.isoformat(),
            )
        else:
            logger.info("compound_rule_already_armed", rule_id=rule.id)

    async def _fire_settled_compound(
        self, rule: TriggerRule, now: datetime, summary: TickSummary
    ) -> None:
        trigger = rule.trigger
        if now - rule.data_settled_at < timedelta(minutes=trigger.settling_minutes):
            return
        if trigger.condition is None:
            # Condition removed after arming; nothing left to wait for
            await self._disarm(rule, last_run_at=None)
            return

        evaluation = await self._evaluate(rule, trigger.condition)
        if evaluation is None:
            summary.errors += 1
            return

        if not evaluation.matched:
            async with self.session_factory() as session:
                await session.execute(
                    update(TriggerRule)
                    .where(TriggerRule.id == rule.id)
                    .where(TriggerRule.data_settled_at == rule.data_settled_at)
                    .values(data_settled_at=None)
                )
                await session.commit()
            logger.info("compound_data_no_longer_matches", rule_id=rule.id)
            return

        period_key = evaluation.period_key or rule.armed_at.strftime("%Y-%m")
        context = TriggerContext(
            trigger_kind=TriggerKind.COMPOUND,
            trigger_event_id=period_key,
            tenant_id=rule.tenant_id,
            metadata={
                "dataset_id": trigger.condition.dataset_id,
                "armed_at": isoformat_utc(rule.armed_at),
                "settled_at": isoformat_utc(rule.data_settled_at),
                "settling_minutes": trigger.settling_minutes,
                "matched_row_count": evaluation.matched_row_count,
                "period_key": period_key,
                "triggered_by": rule.created_by_id,
            },
        )
        result = await self._dispatch(rule, TriggerKind.COMPOUND, period_key, context)
        self._count_dispatch(result, TriggerKind.COMPOUND, summary)
        await self._disarm(rule, last_run_at=now)

    async def _disarm(self, rule: TriggerRule, last_run_at: Optional[datetime]) -> None:
        values = {"armed_at": None, "data_settled_at": None}
        if last_run_at is not None:
            values["last_run_at"] = last_run_at
        async with self.session_factory() as session:
            await session.execute(
                update(TriggerRule)
                .where(TriggerRule.id == rule.id)
                .where(TriggerRule.armed_at == rule.armed_at)
                .values(**values)
            )
            await session.commit()

    # ─── Shared ────────────────────────────────────────────

    async def _dispatch(
        self,
        rule: TriggerRule,
        kind: TriggerKind,
        event_id: str,
        context: TriggerContext,
    ) -> DispatchResult:
        return await self.dispatcher.create_run(
            rule_id=rule.id,
            tenant_id=rule.tenant_id,
            trigger_context=context,
            idempotency_key=build_idempotency_key(rule.id, kind, event_id),
            triggered_by=rule.created_by_id,
        )

    async def _evaluate(self, rule: TriggerRule, condition) -> Optional[ConditionResult]:
        """Evaluate a rule's condition; None means the evaluator failed."""
        try:
            return await asyncio.wait_for(
                self.condition_evaluator.evaluate(condition, rule.tenant_id),
                timeout=self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
            )
        except (ConditionEvaluationError, asyncio.TimeoutError) as exc:
            logger.warning(
                "condition_evaluation_failed",
                rule_id=rule.id,
                tenant_id=rule.tenant_id,
                error=str(exc) or type(exc).__name__,
            )
            return None

    @staticmethod
    def _count_dispatch(result, kind: TriggerKind, summary: TickSummary) -> None:
        if not result.created:
            summary.duplicates += 1
            return
        if kind == TriggerKind.SCHEDULED:
            summary.scheduled_dispatched += 1
        elif kind == TriggerKind.DATA_CONDITION:
            summary.data_condition_dispatched += 1
        else:
            summary.compound_dispatched += 1
        if not result.published:
            summary.errors += 1
