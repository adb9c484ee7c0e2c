"""Form reminders — chases contacts who have not completed a form.

A FormRequest carries its own reminder bookkeeping, so there is no
separate state row. A due form is claimed with a compare-and-set on
(id, status pending, next_reminder_at <= now, reminders_sent = observed)
that pushes next_reminder_at forward by REMINDER_CLAIM_HOLD_SECONDS,
and the send is then recorded with a second compare-and-set on
reminders_sent. A failed send leaves the hold in place.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from core.constants import FormRequestStatus
from core.exceptions import DeliveryError
from core.utils import utcnow_naive
from db.models.form_request import FormRequest
from reminders.delivery import MessageDelivery, send_with_timeout
from reminders.scheduler import SENT, SKIPPED, ReminderRunResult
from reminders.templates import FormReminderRenderer, render_template

logger = structlog.get_logger(__name__)


class FormReminderScheduler:
    """Runs one pass over pending forms with a due reminder."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        delivery: MessageDelivery,
        renderer: Optional[FormReminderRenderer] = None,
        clock: Callable[[], datetime] = utcnow_naive,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.delivery = delivery
        self.renderer = renderer or FormReminderRenderer()
        self.clock = clock
        self.settings = settings or get_settings()

    async def run_once(self) -> ReminderRunResult:
        now = self.clock()
        due = await self._load_due(now)
        result = ReminderRunResult(checked=len(due))

        if not due:
            logger.info("form_reminder_due_none")
            return result
        logger.info("form_reminder_due_found", count=len(due))

        for form in due:
            with structlog.contextvars.bound_contextvars(form_request_id=form.id):
                try:
                    outcome = await self._process(form, now)
                except Exception as exc:
                    logger.error("form_reminder_send_failed", error=str(exc))
                    result.errors.append(f"FormRequest {form.id}: {exc}")
                    continue

            if outcome == SENT:
                result.sent += 1
            else:
                result.skipped += 1

        logger.info(
            "form_reminder_run_completed",
            checked=result.checked,
            sent=result.sent,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    async def claim(self, form_id: str, observed_sent: int, now: datetime) -> bool:
        """Take the form for this execution; False when another one has it."""
        hold_until = now + timedelta(seconds=self.settings.REMINDER_CLAIM_HOLD_SECONDS)
        async with self.session_factory() as session:
            result = await session.execute(
                update(FormRequest)
                .where(FormRequest.id == form_id)
                .where(FormRequest.status == FormRequestStatus.PENDING.value)
                .where(FormRequest.next_reminder_at <= now)
                .where(FormRequest.reminders_sent == observed_sent)
                .values(next_reminder_at=hold_until)
            )
            await session.commit()
            return result.rowcount == 1

    # ─── Internals ─────────────────────────────────────────

    async def _load_due(self, now: datetime) -> list[FormRequest]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(FormRequest)
                .where(FormRequest.status == FormRequestStatus.PENDING.value)
                .where(FormRequest.reminders_enabled == True)     # noqa: E712
                .where(FormRequest.next_reminder_at <= now)
                .where(FormRequest.reminders_sent < FormRequest.reminders_max_count)
                .order_by(FormRequest.next_reminder_at)
                .limit(self.settings.REMINDER_BATCH_SIZE)
            )
            return list(result.scalars().all())

    async def _process(self, form: FormRequest, now: datetime) -> str:
        if form.reminders_sent >= form.reminders_max_count:
            await self._finish(form.id)
            return SKIPPED

        if not await self.claim(form.id, form.reminders_sent, now):
            logger.info("form_reminder_skipped_claimed")
            return SKIPPED

        contact = form.contact
        recipient = contact.email if contact else ""
        if not recipient:
            raise DeliveryError("Form request has no recipient")

        reminder_number = form.reminders_sent + 1
        rendered = self.renderer.render(
            form_name=form.form_name,
            reminder_number=reminder_number,
            max_count=form.reminders_max_count,
            task_name=form.task_name,
            sender_name=form.sender_name,
            deadline=form.deadline_date,
        )
        personalization = {"First Name": contact.first_name, "Email": recipient}
        subject = render_template(rendered.subject, personalization).rendered
        body = render_template(rendered.body, personalization).rendered

        message_id = await send_with_timeout(
            self.delivery, recipient, subject, body,
            self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
        await self._record_sent(form, now)

        logger.info(
            "form_reminder_sent",
            reminder_number=reminder_number,
            message_id=message_id,
        )
        return SENT

    async def _record_sent(self, form: FormRequest, now: datetime) -> None:
        frequency_hours = (
            form.reminder_frequency_hours or self.settings.REMINDER_DEFAULT_FREQUENCY_HOURS
        )
        sent = form.reminders_sent + 1
        next_at = (
            now + timedelta(hours=frequency_hours)
            if sent < form.reminders_max_count
            else None
        )

        async with self.session_factory() as session:
            result = await session.execute(
                update(FormRequest)
                .where(FormRequest.id == form.id)
                .where(FormRequest.reminders_sent == form.reminders_sent)
                .values(reminders_sent=sent, next_reminder_at=next_at)
            )
            await session.commit()

        if result.rowcount != 1:
            logger.warning("form_reminder_record_conflict", observed_sent=form.reminders_sent)

    async def _finish(self, form_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(FormRequest)
                .where(FormRequest.id == form_id)
                .values(next_reminder_at=None)
            )
            await session.commit()
