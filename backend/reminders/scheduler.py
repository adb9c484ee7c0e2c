"""Reminder scheduler — sends due follow-ups for outstanding requests.

Per due ReminderState:

    active --claim--> claimed --sent--> active (rescheduled) | stopped(max_reached)
    active --claim--> claimed --request replied--> stopped(replied)
    active --claim lost--> unchanged (another execution owns it)

The claim is a compare-and-set on (id, stopped_reason IS NULL,
next_send_at <= now, sent_count = observed) that pushes next_send_at
forward by REMINDER_CLAIM_HOLD_SECONDS. Exactly one of any number of
overlapping executions can win it, and a failed send simply leaves
the hold in place so the state is retried once the hold expires.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from core.constants import MessageDirection, RequestStatus, StoppedReason
from core.exceptions import MissingOriginalMessageError
from core.utils import utcnow_naive
from db.models.message import Message
from db.models.reminder_state import ReminderState
from db.models.request import OutstandingRequest
from reminders.delivery import MessageDelivery, send_with_timeout
from reminders.templates import FollowUpRenderer, render_template

logger = structlog.get_logger(__name__)

SENT = "sent"
SKIPPED = "skipped"


@dataclass
class ReminderRunResult:
    """Counts reported by one scheduler execution."""

    checked: int = 0
    sent: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class MessageSource(ABC):
    """Finds the message a follow-up replies to."""

    @abstractmethod
    async def find_original_message(self, request_id: str) -> Optional[Message]:
        ...


class SqlMessageSource(MessageSource):
    """Most recent outbound message on the request thread."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_original_message(self, request_id: str) -> Optional[Message]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Message)
                .where(Message.request_id == request_id)
                .where(Message.direction == MessageDirection.OUTBOUND.value)
                .order_by(Message.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()


class ReminderScheduler:
    """Runs one pass over due reminder states."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        renderer: FollowUpRenderer,
        delivery: MessageDelivery,
        message_source: Optional[MessageSource] = None,
        clock: Callable[[], datetime] = utcnow_naive,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.renderer = renderer
        self.delivery = delivery
        self.message_source = message_source or SqlMessageSource(session_factory)
        self.clock = clock
        self.settings = settings or get_settings()

    async def run_once(self) -> ReminderRunResult:
        """Process every due reminder state once."""
        now = self.clock()
        due = await self._load_due(now)
        result = ReminderRunResult(checked=len(due))

        if not due:
            logger.info("reminder_due_none")
            return result
        logger.info("reminder_due_found", count=len(due))

        for state, request in due:
            with structlog.contextvars.bound_contextvars(reminder_state_id=state.id):
                try:
                    outcome = await self._process(state, request, now)
                except MissingOriginalMessageError as exc:
                    logger.error(
                        "reminder_send_failed",
                        request_id=request.id,
                        reminder_state_id=state.id,
                        reason="no_original_message",
                    )
                    result.errors.append(exc.message)
                    continue
                except Exception as exc:
                    # sent_count untouched; the claim hold delays the retry
                    logger.error(
                        "reminder_send_failed",
                        request_id=request.id,
                        reminder_state_id=state.id,
                        error=str(exc),
                    )
                    result.errors.append(f"Reminder {state.id}: {exc}")
                    continue

            if outcome == SENT:
                result.sent += 1
            else:
                result.skipped += 1

        logger.info(
            "reminder_run_completed",
            checked=result.checked,
            sent=result.sent,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    async def claim(self, state_id: str, observed_sent_count: int, now: datetime) -> bool:
        """Take the state for this execution.

        Returns:
            True when this call updated the row, False when another
            execution already holds or advanced it.
        """
        hold_until = now + timedelta(seconds=self.settings.REMINDER_CLAIM_HOLD_SECONDS)
        async with self.session_factory() as session:
            result = await session.execute(
                update(ReminderState)
                .where(ReminderState.id == state_id)
                .where(ReminderState.stopped_reason == None)     # noqa: E711
                .where(ReminderState.next_send_at <= now)
                .where(ReminderState.sent_count == observed_sent_count)
                .values(next_send_at=hold_until)
            )
            await session.commit()
            return result.rowcount == 1

    # ─── Internals ─────────────────────────────────────────

    async def _load_due(self, now: datetime) -> list[tuple[ReminderState, OutstandingRequest]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReminderState, OutstandingRequest)
                .join(OutstandingRequest, ReminderState.request_id == OutstandingRequest.id)
                .where(ReminderState.next_send_at <= now)
                .where(ReminderState.stopped_reason == None)     # noqa: E711
                .where(OutstandingRequest.reminders_enabled == True)     # noqa: E712
                .where(OutstandingRequest.reminders_approved == True)    # noqa: E712
                .order_by(ReminderState.next_send_at)
                .limit(self.settings.REMINDER_BATCH_SIZE)
            )
            return [(row[0], row[1]) for row in result.all()]

    async def _process(
        self, state: ReminderState, request: OutstandingRequest, now: datetime
    ) -> str:
        max_count = request.reminders_max_count or 0
        if not max_count:
            await self._stop(state.id, StoppedReason.MAX_REACHED)
            logger.info(
                "reminder_stopped_maxed",
                request_id=request.id,
                reminder_state_id=state.id,
                max_count=max_count,
            )
            return SKIPPED

        if not await self.claim(state.id, state.sent_count, now):
            logger.info("reminder_skipped_claimed", reminder_state_id=state.id)
            return SKIPPED

        if await self._current_status(request.id) == RequestStatus.REPLIED.value:
            await self._stop(state.id, StoppedReason.REPLIED)
            logger.info(
                "reminder_skipped_replied",
                request_id=request.id,
                reminder_state_id=state.id,
            )
            return SKIPPED

        if state.sent_count >= max_count:
            await self._stop(state.id, StoppedReason.MAX_REACHED)
            logger.info(
                "reminder_stopped_maxed",
                request_id=request.id,
                reminder_state_id=state.id,
                sent_count=state.sent_count,
            )
            return SKIPPED

        original = await self.message_source.find_original_message(request.id)
        if original is None:
            raise MissingOriginalMessageError(request.id)

        rendered = await asyncio.wait_for(
            self.renderer.render_follow_up(
                sequence_number=state.reminder_number,
                max_count=max_count,
                original_subject=original.subject or request.campaign_name or "Request",
                original_body=original.body or original.html_body or "",
                deadline=request.deadline_date,
            ),
            timeout=self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )

        contact = request.contact
        recipient = contact.email if contact else ""
        personalization = {
            "First Name": contact.first_name if contact else "",
            "Email": recipient,
        }
        subject = render_template(rendered.subject, personalization).rendered
        body = render_template(rendered.body, personalization).rendered

        message_id = await send_with_timeout(
            self.delivery, recipient, subject, body,
            self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
        await self._record_sent(state, request, max_count, now)

        logger.info(
            "reminder_sent",
            request_id=request.id,
            reminder_state_id=state.id,
            reminder_number=state.reminder_number,
            message_id=message_id,
        )
        return SENT

    async def _record_sent(
        self,
        state: ReminderState,
        request: OutstandingRequest,
        max_count: int,
        now: datetime,
    ) -> None:
        frequency_hours = (
            request.reminders_frequency_hours
            or self.settings.REMINDER_DEFAULT_FREQUENCY_HOURS
        )
        sent_count = state.sent_count + 1
        keep_going = sent_count < max_count

        async with self.session_factory() as session:
            result = await session.execute(
                update(ReminderState)
                .where(ReminderState.id == state.id)
                .where(ReminderState.sent_count == state.sent_count)
                .values(
                    sent_count=sent_count,
                    reminder_number=state.reminder_number + 1,
                    last_sent_at=now,
                    next_send_at=now + timedelta(hours=frequency_hours) if keep_going else None,
                    stopped_reason=None if keep_going else StoppedReason.MAX_REACHED.value,
                )
            )
            await session.commit()

        if result.rowcount != 1:
            logger.warning(
                "reminder_record_conflict",
                reminder_state_id=state.id,
                observed_sent_count=state.sent_count,
            )

    async def _stop(self, state_id: str, reason: StoppedReason) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ReminderState)
                .where(ReminderState.id == state_id)
                .values(stopped_reason=reason.value, next_send_at=None)
            )
            await session.commit()

    async def _current_status(self, request_id: str) -> Optional[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OutstandingRequest.status).where(OutstandingRequest.id == request_id)
            )
            return result.scalar_one_or_none()
