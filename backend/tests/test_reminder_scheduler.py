"""Tests for the reminder scheduler state machine."""

from datetime import datetime, timedelta

import pytest

from conftest import FakeDelivery
from core.constants import RequestStatus, StoppedReason
from db.models import ReminderState
from reminders.scheduler import SKIPPED, ReminderScheduler
from reminders.templates import ReminderTemplateRenderer


def _scheduler(session_factory, delivery, clock):
    return ReminderScheduler(
        session_factory=session_factory,
        renderer=ReminderTemplateRenderer(),
        delivery=delivery,
        clock=clock,
    )


async def _reload(session_factory, state_id) -> ReminderState:
    async with session_factory() as session:
        return await session.get(ReminderState, state_id)


def _assert_stop_invariant(state: ReminderState):
    assert (state.stopped_reason is None) == (state.next_send_at is not None)


@pytest.mark.integration
class TestReminderSends:

    async def test_first_follow_up(self, session_factory, delivery, clock, make_reminder):
        state, _ = await make_reminder(sent_count=0, max_count=3, frequency_hours=72)

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert (result.checked, result.sent, result.skipped, result.errors) == (1, 1, 0, [])
        assert len(delivery.sent) == 1
        sent = delivery.sent[0]
        assert sent["to"] == "ada@example.com"
        assert sent["subject"] == "Reminder: Q3 bank statements"
        assert sent["body"].startswith("Dear Ada,")
        assert "(1 of 3)" in sent["body"]
        assert "Please upload your Q3 bank statements." in sent["body"]
        assert sent["html_body"].startswith("<div")

        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 1
        assert reloaded.reminder_number == 2
        assert reloaded.last_sent_at == clock()
        assert reloaded.next_send_at == clock() + timedelta(hours=72)
        assert reloaded.stopped_reason is None

    async def test_last_allowed_send_stops_sequence(
        self, session_factory, delivery, clock, make_reminder
    ):
        state, _ = await make_reminder(sent_count=2, max_count=3, frequency_hours=72)

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.sent == 1
        assert "final reminder" in delivery.sent[0]["body"]
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 3
        assert reloaded.stopped_reason == StoppedReason.MAX_REACHED.value
        assert reloaded.next_send_at is None
        _assert_stop_invariant(reloaded)

    async def test_missing_frequency_uses_default(
        self, session_factory, delivery, clock, make_reminder, settings
    ):
        state, _ = await make_reminder(frequency_hours=None)

        await _scheduler(session_factory, delivery, clock).run_once()

        reloaded = await _reload(session_factory, state.id)
        assert reloaded.next_send_at == clock() + timedelta(
            hours=settings.REMINDER_DEFAULT_FREQUENCY_HOURS
        )

    async def test_missing_first_name_greets_generically(
        self, session_factory, delivery, clock, make_reminder
    ):
        await make_reminder(first_name=None)

        await _scheduler(session_factory, delivery, clock).run_once()

        assert delivery.sent[0]["body"].startswith("Hello,")

    async def test_deadline_is_quoted(self, session_factory, delivery, clock, make_reminder):
        await make_reminder(deadline_date=datetime(2026, 10, 30))

        await _scheduler(session_factory, delivery, clock).run_once()

        assert "Please respond by Friday, October 30, 2026." in delivery.sent[0]["body"]

    async def test_not_yet_due_is_not_checked(
        self, session_factory, delivery, clock, make_reminder
    ):
        await make_reminder(next_send_at=clock() + timedelta(hours=1))

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.checked == 0
        assert delivery.sent == []

    async def test_sequence_runs_to_completion(
        self, session_factory, delivery, clock, make_reminder
    ):
        state, _ = await make_reminder(max_count=2, frequency_hours=24)
        scheduler = _scheduler(session_factory, delivery, clock)

        await scheduler.run_once()
        clock.advance(hours=24)
        await scheduler.run_once()
        clock.advance(hours=24)
        third = await scheduler.run_once()

        assert len(delivery.sent) == 2
        assert third.checked == 0
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 2
        assert reloaded.stopped_reason == StoppedReason.MAX_REACHED.value


@pytest.mark.integration
class TestStopConditions:

    async def test_replied_request_stops_without_sending(
        self, session_factory, delivery, clock, make_reminder
    ):
        state, _ = await make_reminder(status=RequestStatus.REPLIED.value)

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.skipped == 1
        assert delivery.sent == []
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.stopped_reason == StoppedReason.REPLIED.value
        assert reloaded.next_send_at is None
        assert reloaded.sent_count == 0

    async def test_reply_after_load_stops_without_sending(
        self, session_factory, db_session, delivery, clock, make_reminder
    ):
        state, request = await make_reminder(status=RequestStatus.NO_REPLY.value)
        scheduler = _scheduler(session_factory, delivery, clock)
        [(loaded_state, loaded_request)] = await scheduler._load_due(clock())

        # The contact replies between the load and the send
        request.status = RequestStatus.REPLIED.value
        db_session.add(request)
        await db_session.commit()

        assert loaded_request.status == RequestStatus.NO_REPLY.value
        outcome = await scheduler._process(loaded_state, loaded_request, clock())

        assert outcome == SKIPPED
        assert delivery.sent == []
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.stopped_reason == StoppedReason.REPLIED.value
        assert reloaded.sent_count == 0
        _assert_stop_invariant(reloaded)

    async def test_zero_max_count_stops_immediately(
        self, session_factory, delivery, clock, make_reminder
    ):
        state, _ = await make_reminder(max_count=0)

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.skipped == 1
        assert delivery.sent == []
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.stopped_reason == StoppedReason.MAX_REACHED.value
        _assert_stop_invariant(reloaded)

    async def test_already_at_max_stops(self, session_factory, delivery, clock, make_reminder):
        state, _ = await make_reminder(sent_count=3, max_count=3)

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.skipped == 1
        assert delivery.sent == []
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 3
        assert reloaded.stopped_reason == StoppedReason.MAX_REACHED.value

    async def test_disabled_request_is_not_polled(
        self, session_factory, db_session, delivery, clock, make_reminder
    ):
        _, request = await make_reminder()
        request.reminders_approved = False
        db_session.add(request)
        await db_session.commit()

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.checked == 0
        assert delivery.sent == []


@pytest.mark.integration
class TestClaims:

    async def test_only_one_claim_wins(self, session_factory, delivery, clock, make_reminder):
        state, _ = await make_reminder(sent_count=0)
        first = _scheduler(session_factory, delivery, clock)
        second = _scheduler(session_factory, FakeDelivery(), clock)

        assert await first.claim(state.id, 0, clock()) is True
        assert await second.claim(state.id, 0, clock()) is False

        reloaded = await _reload(session_factory, state.id)
        assert reloaded.next_send_at == clock() + timedelta(seconds=300)
        assert reloaded.sent_count == 0

    async def test_stale_scheduler_sends_nothing(
        self, session_factory, delivery, clock, make_reminder
    ):
        state, request = await make_reminder(sent_count=0)
        late_delivery = FakeDelivery()

        await _scheduler(session_factory, delivery, clock).run_once()
        # A second execution still holding the pre-send view of the row
        outcome = await _scheduler(session_factory, late_delivery, clock)._process(
            state, request, clock()
        )

        assert outcome == SKIPPED
        assert len(delivery.sent) == 1
        assert late_delivery.sent == []
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 1

    async def test_delivery_failure_keeps_hold_and_retries(
        self, session_factory, clock, make_reminder
    ):
        state, _ = await make_reminder(sent_count=0)
        failing = FakeDelivery(fail=True)

        result = await _scheduler(session_factory, failing, clock).run_once()

        assert result.sent == 0
        assert len(result.errors) == 1
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 0
        assert reloaded.stopped_reason is None
        assert reloaded.next_send_at == clock() + timedelta(seconds=300)

        # Inside the hold nothing is due; after it the state is retried
        failing.fail = False
        assert (await _scheduler(session_factory, failing, clock).run_once()).checked == 0
        clock.advance(seconds=301)
        retry = await _scheduler(session_factory, failing, clock).run_once()
        assert retry.sent == 1

    async def test_missing_original_message_is_an_error(
        self, session_factory, delivery, clock, make_reminder
    ):
        state, request = await make_reminder(with_message=False)

        result = await _scheduler(session_factory, delivery, clock).run_once()

        assert result.errors == [f"Request {request.id}: no original message"]
        assert delivery.sent == []
        reloaded = await _reload(session_factory, state.id)
        assert reloaded.sent_count == 0
        _assert_stop_invariant(reloaded)
