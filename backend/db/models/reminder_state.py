"""ReminderState model for the cadence scheduler."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class ReminderState(BaseModel):
    """Follow-up sequence for one outstanding request.

    Attributes:
        id: UUID primary key
        request_id: Foreign key to the OutstandingRequest being chased
        next_send_at: When the next follow-up is due; NULL once stopped
        sent_count: Follow-ups actually delivered
        reminder_number: Sequence label rendered into the next follow-up
        last_sent_at: Timestamp of the last delivered follow-up
        stopped_reason: "replied" | "max_reached" | NULL while active
    """

    __tablename__ = "reminder_states"
    __table_args__ = (
        CheckConstraint(
            "(stopped_reason IS NULL AND next_send_at IS NOT NULL)"
            " OR (stopped_reason IS NOT NULL AND next_send_at IS NULL)",
            name="ck_reminder_states_stop_schedule",
        ),
    )

    request_id: Mapped[str] = mapped_column(
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    next_send_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    sent_count: Mapped[int] = mapped_column(default=0)
    reminder_number: Mapped[int] = mapped_column(default=1)
    last_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    stopped_reason: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)

    request: Mapped["OutstandingRequest"] = relationship(
        "OutstandingRequest", back_populates="reminder_state", lazy="noload"
    )

    @property
    def is_stopped(self) -> bool:
        return self.stopped_reason is not None

    @classmethod
    def for_request(
        cls,
        request: "OutstandingRequest",
        now: datetime,
        default_frequency_hours: int = 72,
    ) -> "ReminderState":
        """Open a sequence whose first follow-up is one interval after ``now``."""
        frequency = request.reminders_frequency_hours or default_frequency_hours
        return cls(
            request_id=request.id,
            next_send_at=now + timedelta(hours=frequency),
            sent_count=0,
            reminder_number=1,
        )
