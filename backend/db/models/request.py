"""OutstandingRequest model — the item a reminder sequence chases."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RequestStatus
from db.base import BaseModel


class OutstandingRequest(BaseModel):
    """A request sent to a contact that is waiting on a reply.

    Written by the product surface; the reminder scheduler only reads it.
    The reminder policy columns are snapshotted at every send.

    Attributes:
        id: UUID primary key
        tenant_id: Owning tenant
        contact_id: Foreign key to the Contact being chased
        campaign_name: Fallback subject when the original has none
        status: RequestStatus value; "replied" stops reminders
        reminders_enabled / reminders_approved: Both must be true to poll
        reminders_max_count: Follow-ups allowed; 0 or NULL means none
        reminders_frequency_hours: Hours between follow-ups
        deadline_date: Optional deadline quoted in follow-ups
    """

    __tablename__ = "requests"

    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    contact_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    campaign_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        default=RequestStatus.NO_REPLY.value, index=True
    )
    reminders_enabled: Mapped[bool] = mapped_column(default=False)
    reminders_approved: Mapped[bool] = mapped_column(default=False)
    reminders_max_count: Mapped[Optional[int]] = mapped_column(nullable=True)
    reminders_frequency_hours: Mapped[Optional[int]] = mapped_column(nullable=True)
    deadline_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    contact: Mapped[Optional["Contact"]] = relationship("Contact", lazy="selectin")
    reminder_state: Mapped[Optional["ReminderState"]] = relationship(
        "ReminderState", back_populates="request", lazy="noload", uselist=False
    )
