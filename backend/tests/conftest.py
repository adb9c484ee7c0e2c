"""Shared pytest fixtures for the cadence scheduler test suite.

Provides:
- File-backed async SQLite database per test (several sessions from one
  factory must see each other's commits)
- Session factory and a plain session for seeding rows
- Controllable clock
- Fakes for the publisher, condition evaluator and delivery collaborators
- FastAPI test client (httpx.AsyncClient)
"""

import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from app.config import get_settings  # noqa: E402
from core.constants import FormRequestStatus, MessageDirection, RequestStatus  # noqa: E402
from core.exceptions import DeliveryError  # noqa: E402
from db.session import create_db_engine, create_session_factory, init_db  # noqa: E402
from reminders.delivery import MessageDelivery  # noqa: E402
from services.run_dispatcher import DispatchPublisher  # noqa: E402
from triggers.base import ConditionResult  # noqa: E402
from triggers.evaluator_client import ConditionEvaluator  # noqa: E402

TENANT_ID = "tenant-1"


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'cadence.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding and inspecting rows."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return get_settings()


# ---------------------------------------------------------------------------
# Clock and collaborator fakes
# ---------------------------------------------------------------------------

class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePublisher(DispatchPublisher):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: list[dict] = []

    async def publish_dispatch(self, rule_id, run_id, tenant_id, trigger_context):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.published.append(
            {
                "rule_id": rule_id,
                "run_id": run_id,
                "tenant_id": tenant_id,
                "trigger_context": trigger_context.to_dict(),
            }
        )


class FakeConditionEvaluator(ConditionEvaluator):
    """Returns ``result`` (or raises ``error``) and counts calls."""

    def __init__(self, result: Optional[ConditionResult] = None, error: Optional[Exception] = None):
        self.result = result or ConditionResult(matched=False)
        self.error = error
        self.calls = 0

    async def evaluate(self, condition, tenant_id):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeDelivery(MessageDelivery):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    async def send_message(self, to, subject, body, html_body=None):
        if self.fail:
            raise DeliveryError("SMTP delivery failed: connection refused", recipient=to)
        self.sent.append({"to": to, "subject": subject, "body": body, "html_body": html_body})
        return f"<msg-{len(self.sent)}@test>"


@pytest.fixture
def clock():
    # Monday 2026-10-12 09:02 in New York
    return FixedClock(datetime(2026, 10, 12, 13, 2))


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def delivery():
    return FakeDelivery()


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_reminder(db_session, clock):
    """Seed a contact, request, original message and reminder state."""
    from db.models import Contact, Message, OutstandingRequest, ReminderState

    async def _make(
        *,
        sent_count: int = 0,
        max_count: Optional[int] = 3,
        frequency_hours: Optional[int] = 72,
        status: str = RequestStatus.NO_REPLY.value,
        next_send_at: Optional[datetime] = None,
        with_message: bool = True,
        first_name: Optional[str] = "Ada",
        deadline_date: Optional[datetime] = None,
    ):
        contact = Contact(tenant_id=TENANT_ID, email="ada@example.com", first_name=first_name)
        db_session.add(contact)
        await db_session.flush()

        request = OutstandingRequest(
            tenant_id=TENANT_ID,
            contact_id=contact.id,
            campaign_name="Q3 statements",
            status=status,
            reminders_enabled=True,
            reminders_approved=True,
            reminders_max_count=max_count,
            reminders_frequency_hours=frequency_hours,
            deadline_date=deadline_date,
        )
        db_session.add(request)
        await db_session.flush()

        if with_message:
            db_session.add(
                Message(
                    request_id=request.id,
                    direction=MessageDirection.OUTBOUND.value,
                    subject="Q3 bank statements",
                    body="Please upload your Q3 bank statements.",
                    sent_at=clock() - timedelta(days=3),
                )
            )

        state = ReminderState(
            request_id=request.id,
            next_send_at=next_send_at or clock() - timedelta(minutes=1),
            sent_count=sent_count,
            reminder_number=sent_count + 1,
        )
        db_session.add(state)
        await db_session.commit()
        return state, request

    return _make


@pytest.fixture
def make_form_request(db_session, clock):
    """Seed a contact and a pending form request with reminders on."""
    from db.models import Contact, FormRequest

    async def _make(
        *,
        reminders_sent: int = 0,
        max_count: int = 3,
        frequency_hours: int = 48,
        status: str = FormRequestStatus.PENDING.value,
        enabled: bool = True,
        next_reminder_at: Optional[datetime] = None,
        email: str = "ada@example.com",
    ):
        contact = Contact(tenant_id=TENANT_ID, email=email, first_name="Ada")
        db_session.add(contact)
        await db_session.flush()

        form = FormRequest(
            tenant_id=TENANT_ID,
            contact_id=contact.id,
            form_name="Expense report",
            task_name="October close",
            sender_name="Grace Hopper",
            status=status,
            reminders_enabled=enabled,
            reminders_max_count=max_count,
            reminders_sent=reminders_sent,
            reminder_frequency_hours=frequency_hours,
            next_reminder_at=next_reminder_at or clock() - timedelta(minutes=1),
        )
        db_session.add(form)
        await db_session.commit()
        return form

    return _make


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory):
    """FastAPI app wired to the test database."""
    from app.dependencies import get_session_factory
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
