"""Custom exceptions for the cadence scheduler.

Every scheduler error is per-entity: the tick loops catch it, log it with
the rule / reminder-state id and count it. None of them abort a tick.
"""

from typing import Optional


class SchedulerError(Exception):
    """Base exception for the cadence scheduler."""

    def __init__(self, message: str):
        """Initialize exception with message.

        Args:
            message: Exception message
        """
        self.message = message
        super().__init__(self.message)


class InvalidScheduleError(SchedulerError):
    """Cron expression or timezone could not be parsed."""

    def __init__(self, cron_expression: Optional[str], timezone: Optional[str], reason: str = ""):
        self.cron_expression = cron_expression
        self.timezone = timezone
        message = f"Invalid schedule '{cron_expression}' (tz={timezone})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConditionEvaluationError(SchedulerError):
    """The data-condition evaluator collaborator failed."""

    def __init__(self, message: str = "Condition evaluation failed"):
        super().__init__(message)


class DispatchConflictError(SchedulerError):
    """A run with this idempotency key already exists.

    Expected outcome of a duplicate or racing tick, not a failure.
    """

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Run already dispatched for key {idempotency_key}")


class MissingOriginalMessageError(SchedulerError):
    """A reminder has no outbound message to follow up on."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request {request_id}: no original message")


class DeliveryError(SchedulerError):
    """The delivery transport failed to send a message."""

    def __init__(self, message: str = "Delivery failed", recipient: str = ""):
        self.recipient = recipient
        super().__init__(message)
