"""FormRequest model — a form a contact was asked to fill in."""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import FormRequestStatus
from db.base import BaseModel


class FormRequest(BaseModel):
    """Pending form with its own reminder cadence.

    Unlike an OutstandingRequest, the reminder bookkeeping lives on the
    row itself: ``reminders_sent`` counts delivered reminders and
    ``next_reminder_at`` is NULL once the sequence is over.

    Attributes:
        id: UUID primary key
        tenant_id: Owning tenant
        contact_id: Recipient of the form
        form_name: Form title quoted in the reminder
        task_name: Task the form belongs to
        sender_name / sender_email: Owner of the task, signs the reminder
        status: FormRequestStatus value; only "pending" forms are chased
        reminders_enabled: Reminders are only sent when true
        reminders_max_count: Reminders allowed
        reminders_sent: Reminders delivered so far
        reminder_frequency_hours: Hours between reminders
        next_reminder_at: When the next reminder is due; NULL when done
        deadline_date: Optional deadline quoted in reminders
    """

    __tablename__ = "form_requests"
    __table_args__ = (
        CheckConstraint(
            "reminders_sent <= reminders_max_count",
            name="ck_form_requests_sent_within_max",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    contact_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    form_name: Mapped[str] = mapped_column(nullable=False)
    task_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    sender_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    sender_email: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        default=FormRequestStatus.PENDING.value, index=True
    )
    reminders_enabled: Mapped[bool] = mapped_column(default=False)
    reminders_max_count: Mapped[int] = mapped_column(default=0)
    reminders_sent: Mapped[int] = mapped_column(default=0)
    reminder_frequency_hours: Mapped[int] = mapped_column(default=72)
    next_reminder_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    deadline_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    contact: Mapped[Optional["Contact"]] = relationship("Contact", lazy="selectin")
