"""Message model — a mail on a request thread."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import MessageDirection
from db.base import BaseModel


class Message(BaseModel):
    """Inbound or outbound message attached to an OutstandingRequest.

    The most recent outbound message is what a follow-up quotes.
    """

    __tablename__ = "messages"

    request_id: Mapped[str] = mapped_column(
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    direction: Mapped[str] = mapped_column(
        default=MessageDirection.OUTBOUND.value, index=True
    )
    subject: Mapped[Optional[str]] = mapped_column(nullable=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    html_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
