"""Idempotent run dispatch.

Every trigger occurrence maps to one deterministic idempotency key.
``RunDispatcher.create_run`` inserts a RunRecord under that key in its
own transaction and relies on the unique constraint alone:

- insert succeeds -> new occurrence, publish exactly one dispatch event
- unique conflict -> occurrence already dispatched (by this tick or a
  racing one), return the existing run and publish nothing

No in-process locking is involved, so any number of scheduler
instances or overlapping ticks can call it for the same occurrence.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.constants import RunStatus, TriggerKind
from core.exceptions import DispatchConflictError
from db.models.run_record import RunRecord
from triggers.base import TriggerContext

logger = structlog.get_logger(__name__)


def build_idempotency_key(
    rule_id: str,
    trigger_kind: Union[TriggerKind, str],
    trigger_event_id: str,
) -> str:
    """Return ``"<rule_id>:<trigger_kind>:<trigger_event_id>"``.

    The format is shared with every other writer of run records and
    must not change.
    """
    kind = trigger_kind.value if isinstance(trigger_kind, TriggerKind) else str(trigger_kind)
    return f"{rule_id}:{kind}:{trigger_event_id}"


@dataclass
class DispatchResult:
    """Outcome of a create_run call."""

    run: RunRecord
    created: bool
    published: bool = False


class DispatchPublisher(ABC):
    """Hands a freshly created run to the execution worker."""

    @abstractmethod
    async def publish_dispatch(
        self,
        rule_id: str,
        run_id: str,
        tenant_id: str,
        trigger_context: TriggerContext,
    ) -> None:
        ...


class CeleryDispatchPublisher(DispatchPublisher):
    """Publishes dispatch events as Celery tasks on the workflows queue.

    Delivery downstream is at-least-once; the execution worker keys its
    work on ``run_id``.
    """

    TASK_NAME = "worker.tasks.workflow.execute_run"
    QUEUE = "workflows"

    def __init__(self, celery_app=None):
        self._celery_app = celery_app

    @property
    def celery_app(self):
        if self._celery_app is None:
            from worker.celery_app import celery_app

            self._celery_app = celery_app
        return self._celery_app

    async def publish_dispatch(
        self,
        rule_id: str,
        run_id: str,
        tenant_id: str,
        trigger_context: TriggerContext,
    ) -> None:
        kwargs = {
            "rule_id": rule_id,
            "run_id": run_id,
            "tenant_id": tenant_id,
            "trigger_context": trigger_context.to_dict(),
        }
        # send_task talks to the broker synchronously
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self.celery_app.send_task(self.TASK_NAME, kwargs=kwargs, queue=self.QUEUE),
        )


class RunDispatcher:
    """Creates run records at most once per idempotency key."""

    def __init__(self, session_factory: async_sessionmaker, publisher: DispatchPublisher):
        self.session_factory = session_factory
        self.publisher = publisher

    async def create_run(
        self,
        rule_id: str,
        tenant_id: str,
        trigger_context: TriggerContext,
        idempotency_key: str,
        triggered_by: Optional[str] = None,
    ) -> DispatchResult:
        """Record the occurrence and publish it if it is new.

        Returns:
            DispatchResult with ``created=False`` and the pre-existing run
            when the key was already taken.
        """
        try:
            run = await self._insert_run(
                rule_id, tenant_id, trigger_context, idempotency_key, triggered_by
            )
        except DispatchConflictError:
            existing = await self.get_by_key(idempotency_key)
            logger.info(
                "run_duplicate_skipped",
                rule_id=rule_id,
                idempotency_key=idempotency_key,
                existing_run_id=existing.id,
            )
            return DispatchResult(run=existing, created=False)

        published = await self._publish(run, trigger_context)
        logger.info(
            "run_dispatched",
            rule_id=rule_id,
            run_id=run.id,
            tenant_id=tenant_id,
            trigger_kind=trigger_context.trigger_kind.value,
            trigger_event_id=trigger_context.trigger_event_id,
            published=published,
        )
        return DispatchResult(run=run, created=True, published=published)

    async def get_by_key(self, idempotency_key: str) -> Optional[RunRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RunRecord).where(RunRecord.idempotency_key == idempotency_key)
            )
            return result.scalar_one_or_none()

    async def _insert_run(
        self,
        rule_id: str,
        tenant_id: str,
        trigger_context: TriggerContext,
        idempotency_key: str,
        triggered_by: Optional[str],
    ) -> RunRecord:
        run = RunRecord(
            rule_id=rule_id,
            tenant_id=tenant_id,
            idempotency_key=idempotency_key,
            trigger_kind=trigger_context.trigger_kind.value,
            trigger_event_id=trigger_context.trigger_event_id,
            trigger_metadata=trigger_context.metadata,
            status=RunStatus.PENDING.value,
            triggered_by=triggered_by,
        )
        async with self.session_factory() as session:
            session.add(run)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # Only a taken key is a conflict; other violations propagate
                if await self.get_by_key(idempotency_key) is not None:
                    raise DispatchConflictError(idempotency_key)
                raise
        return run

    async def _publish(self, run: RunRecord, trigger_context: TriggerContext) -> bool:
        try:
            await self.publisher.publish_dispatch(
                rule_id=run.rule_id,
                run_id=run.id,
                tenant_id=run.tenant_id,
                trigger_context=trigger_context,
            )
        except Exception as exc:
            logger.error(
                "run_publish_failed",
                rule_id=run.rule_id,
                run_id=run.id,
                error=str(exc),
                exc_info=True,
            )
            return False
        return True
