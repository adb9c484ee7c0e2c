"""Tests for log context binding."""

import pytest
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars

from app.config import get_settings
from core.logging_config import scheduler_context, service_fields, shared_processors


@pytest.fixture(autouse=True)
def _clean_context():
    clear_contextvars()
    yield
    clear_contextvars()


@pytest.mark.unit
class TestSchedulerContext:

    def test_binds_tick_and_id(self):
        with scheduler_context("trigger-evaluator") as tick_id:
            bound = get_contextvars()
            assert bound["tick"] == "trigger-evaluator"
            assert bound["tick_id"] == tick_id
            assert len(tick_id) == 12

        assert get_contextvars() == {}

    def test_drops_leftover_context(self):
        bind_contextvars(reminder_state_id="left-over")

        with scheduler_context("reminders"):
            assert "reminder_state_id" not in get_contextvars()

    def test_each_pass_gets_its_own_id(self):
        with scheduler_context("reminders") as first:
            pass
        with scheduler_context("reminders") as second:
            pass
        assert first != second

    def test_item_binding_nests_inside_tick(self):
        with scheduler_context("trigger-evaluator"):
            with structlog.contextvars.bound_contextvars(rule_id="rule-1"):
                assert get_contextvars()["rule_id"] == "rule-1"
                assert get_contextvars()["tick"] == "trigger-evaluator"
            assert "rule_id" not in get_contextvars()


@pytest.mark.unit
class TestProcessors:

    def test_service_fields(self):
        settings = get_settings()
        add_fields = service_fields("worker")

        event = add_fields(None, "info", {"event": "reminder_sent"})

        assert event["service"] == settings.APP_NAME
        assert event["process"] == "worker"
        assert event["environment"] == settings.ENVIRONMENT

    def test_service_fields_keep_explicit_values(self):
        event = service_fields("api")(None, "info", {"event": "x", "process": "beat"})
        assert event["process"] == "beat"

    def test_context_is_merged_first(self):
        processors = shared_processors("api")
        assert processors[0] is structlog.contextvars.merge_contextvars

        with scheduler_context("reminders") as tick_id:
            with structlog.contextvars.bound_contextvars(form_request_id="form-9"):
                event = {"event": "form_reminder_sent"}
                for processor in processors[:2]:
                    event = processor(None, "info", event)

        assert event["tick"] == "reminders"
        assert event["tick_id"] == tick_id
        assert event["form_request_id"] == "form-9"
        assert event["process"] == "api"
