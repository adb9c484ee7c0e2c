"""Contact model."""

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Contact(BaseModel):
    """Recipient of requests and their follow-ups."""

    __tablename__ = "contacts"

    tenant_id: Mapped[str] = mapped_column(nullable=False, index=True)
    email: Mapped[str] = mapped_column(nullable=False, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(nullable=True)
