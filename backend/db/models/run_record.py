"""RunRecord model for the cadence scheduler."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import RunStatus
from core.utils import utcnow_naive
from db.base import Base


class RunRecord(Base):
    """Durable record of one dispatched trigger occurrence.

    Append-only: the scheduler inserts a run and never updates it.
    ``status`` starts as pending and is owned by the execution worker.

    Attributes:
        id: UUID primary key
        rule_id: Foreign key to TriggerRule
        tenant_id: Owning tenant
        idempotency_key: "<rule_id>:<trigger_kind>:<trigger_event_id>", unique
        trigger_kind: Kind of trigger that fired
        trigger_event_id: Occurrence ISO timestamp or data-condition period key
        trigger_metadata: Cron expression used, matched row count, actor, ...
        status: Execution status, written downstream
        triggered_by: Actor that configured the rule
        created_at: Insert timestamp
    """

    __tablename__ = "run_records"

    id: Mapped[str] = mapped_column(primary_key=True, default=lambda: str(uuid4()))
    rule_id: Mapped[str] = mapped_column(
        ForeignKey("trigger_rules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    idempotency_key: Mapped[str] = mapped_column(nullable=False, unique=True)
    trigger_kind: Mapped[str] = mapped_column(nullable=False, index=True)
    trigger_event_id: Mapped[str] = mapped_column(nullable=False)
    # "metadata" is reserved on declarative classes
    trigger_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    status: Mapped[str] = mapped_column(default=RunStatus.PENDING.value, index=True)
    triggered_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
