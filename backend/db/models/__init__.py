"""Database models for the cadence scheduler.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.contact import Contact
from db.models.form_request import FormRequest
from db.models.request import OutstandingRequest
from db.models.message import Message
from db.models.reminder_state import ReminderState
from db.models.trigger_rule import TriggerRule
from db.models.run_record import RunRecord

__all__ = [
    "Contact",
    "FormRequest",
    "OutstandingRequest",
    "Message",
    "ReminderState",
    "TriggerRule",
    "RunRecord",
]
