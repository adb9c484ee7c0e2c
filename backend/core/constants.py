"""Constants and enums for the cadence scheduler."""

from enum import Enum


class TriggerKind(str, Enum):
    """Kind of automation trigger a rule carries."""

    SCHEDULED = "scheduled"
    DATA_CONDITION = "data_condition"
    COMPOUND = "compound"


class RunStatus(str, Enum):
    """Run status. Only PENDING is written here; the rest belong downstream."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StoppedReason(str, Enum):
    """Why a reminder sequence stopped."""

    REPLIED = "replied"
    MAX_REACHED = "max_reached"


class RequestStatus(str, Enum):
    """Status of an outstanding request (the item reminders follow up on)."""

    NO_REPLY = "no_reply"
    REPLIED = "replied"
    COMPLETE = "complete"


class FormRequestStatus(str, Enum):
    """Status of a form request; only pending forms are chased."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"


class MessageDirection(str, Enum):
    """Direction of a message on a request thread."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


class ConditionOperator(str, Enum):
    """Comparison operators for data-condition predicates."""

    BETWEEN = "between"
    EQ = "eq"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"


# Period scope that resolves {{period.start}} / {{period.end}} placeholders
CURRENT_PERIOD_SCOPE = "current_period"

# Quiet time an armed compound rule waits after the last data change
DEFAULT_SETTLING_MINUTES = 60
