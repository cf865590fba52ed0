"""
conftest.py — Shared Test Fixtures for ReplyDesk

Provides an in-memory SQLite database, a FastAPI TestClient with the DB
dependency overridden, factory fixtures for the core records, and fakes
for the mail, calendar, classifier and notifier collaborators.

Business Rules:
- All tests run against isolated in-memory DB (no prod data risk)
- No test talks to Google, Anthropic or Slack; collaborators are fakes
- Time is injected through FakeClock, never read from the wall clock
  inside the code under test

Called by: all test files via pytest autodiscovery
Depends on: replydesk.models (Base), replydesk.database (get_db)
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"  # Must be set before importing replydesk modules
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = ""
os.environ["SLACK_NOTIFICATION_URL"] = ""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from replydesk.config import Settings
from replydesk.models import (
    Base,
    EmailDirection,
    EmailRecord,
    ProcessingStatus,
    ResponseStatus,
    ScheduledResponse,
    User,
)
from replydesk.schemas.calendar import CreatedEvent
from replydesk.schemas.classification import ClassificationResult, ContactInfo, ReplyDecision
from replydesk.schemas.mail import InboundMessage
from replydesk.schemas.slots import TimeSlot

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default, turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# Monday 2026-03-02 08:00 UTC
T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
ACCOUNT = "sam@replydesk.test"


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory(db_session: Session):
    """Stand-in for SessionLocal: hands out the test session, close() disabled."""
    original_close = db_session.close
    db_session.close = lambda: None
    yield lambda: db_session
    db_session.close = original_close


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        default_timezone="UTC",
        slack_notification_url="",
        admin_api_key="",
    )


@pytest.fixture()
def clock():
    return FakeClock(T0)


@pytest.fixture()
def test_user(db_session: Session) -> User:
    user = User(email=ACCOUNT, name="Sam Seller", access_token="test-token", is_active=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def make_message():
    """Factory: InboundMessage addressed to the test account."""
    counter = {"n": 0}

    def _make(**overrides) -> InboundMessage:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "provider_message_id": f"msg-{n}",
            "thread_id": f"thread-{n}",
            "message_id_header": f"<msg-{n}@mail.acme.test>",
            "sender": "Jane Doe <jane@acme.test>",
            "recipient": ACCOUNT,
            "subject": "Product demo",
            "body": "Hi, could we book a demo of your product next week?",
            "received_at": T0 - timedelta(minutes=10),
        }
        fields.update(overrides)
        return InboundMessage(**fields)

    return _make


@pytest.fixture()
def make_email_record(db_session: Session, test_user: User):
    counter = {"n": 0}

    def _make(**overrides) -> EmailRecord:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "user_id": test_user.id,
            "provider_message_id": f"rec-{n}",
            "thread_id": f"rec-thread-{n}",
            "message_id_header": f"<rec-{n}@mail.acme.test>",
            "sender": "Jane Doe <jane@acme.test>",
            "recipient": ACCOUNT,
            "subject": "Product demo",
            "body": "Can we see a demo?",
            "received_at": T0 - timedelta(hours=1),
            "direction": EmailDirection.INBOUND,
            "processing_status": ProcessingStatus.COMPLETED,
        }
        fields.update(overrides)
        record = EmailRecord(**fields)
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _make


@pytest.fixture()
def make_response(db_session: Session, test_user: User, make_email_record):
    """Factory: ScheduledResponse row written directly (bypasses the state machine)."""

    def _make(email_record: EmailRecord | None = None, **overrides) -> ScheduledResponse:
        record = email_record or make_email_record()
        fields = {
            "user_id": test_user.id,
            "email_record_id": record.id,
            "recipient_email": "jane@acme.test",
            "recipient_name": "Jane Doe",
            "subject": "Re: Product demo",
            "body": "Hi Jane, here are some times.",
            "proposed_slots": [s.model_dump(mode="json") for s in sample_slots()],
            "scheduled_at": T0,
            "status": ResponseStatus.SCHEDULED,
            "created_at": T0 - timedelta(hours=1),
        }
        fields.update(overrides)
        response = ScheduledResponse(**fields)
        db_session.add(response)
        db_session.commit()
        db_session.refresh(response)
        return response

    return _make


@pytest.fixture()
def fake_mail():
    return FakeMailClient()


@pytest.fixture()
def fake_calendar():
    return FakeCalendarClient()


@pytest.fixture()
def fake_classifier():
    return FakeClassifier()


@pytest.fixture()
def fake_notifier():
    return FakeNotifier()


@pytest.fixture()
def client(db_session: Session) -> TestClient:
    """FastAPI TestClient using the test session. Lifespan is not run."""
    from replydesk.database import get_db
    from replydesk.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    if hasattr(app.state, "job_manager"):
        del app.state.job_manager


# ── Helpers and fakes ────────────────────────────────────────────────


def sample_slots() -> list[TimeSlot]:
    """Three slots on Tue/Wed/Thu of the test week, 10:00 UTC."""
    return [
        TimeSlot(
            start=T0 + timedelta(days=d, hours=2),
            end=T0 + timedelta(days=d, hours=2, minutes=30),
            label=f"Slot {d}",
        )
        for d in (1, 2, 3)
    ]


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeMailClient:
    def __init__(self):
        self.inbox: list[InboundMessage] = []
        self.sent = []
        self.list_calls = []
        self.fail_with: Exception | None = None

    async def list_messages(self, since: datetime, limit: int) -> list[InboundMessage]:
        self.list_calls.append((since, limit))
        return [m for m in self.inbox if m.received_at >= since][:limit]

    async def send_reply(self, reply) -> str:
        if self.fail_with:
            raise self.fail_with
        self.sent.append(reply)
        return f"sent-{len(self.sent)}"


class FakeCalendarClient:
    def __init__(self):
        self.busy = []
        self.created = []

    async def free_busy(self, start: datetime, end: datetime):
        return list(self.busy)

    async def create_event(self, request) -> CreatedEvent:
        self.created.append(request)
        return CreatedEvent(event_id=f"evt-{len(self.created)}", calendar_id="primary")


class FakeClassifier:
    """Scripted classifier. Defaults to an actionable demo request with three slots."""

    def __init__(self):
        self.result = ClassificationResult(
            is_demo_request=True,
            confidence=0.9,
            reasoning="asks for a demo",
            contact=ContactInfo(name="Jane Doe", email="jane@acme.test", company="Acme"),
            response_subject="Re: Product demo",
            response_body="Hi Jane, here are some times that work.",
            proposed_slots=sample_slots(),
        )
        self.decision = ReplyDecision(should_create_event=False, reason="unclear")
        self.classify_calls = []
        self.decide_calls = []
        self.fail_with: Exception | None = None

    async def classify(self, message) -> ClassificationResult:
        self.classify_calls.append(message)
        if self.fail_with:
            raise self.fail_with
        return self.result

    async def decide_reply(self, message, proposed_slots) -> ReplyDecision:
        self.decide_calls.append((message, proposed_slots))
        return self.decision


class FakeNotifier:
    def __init__(self):
        self.calls = []

    async def response_created(self, message, contact, response_id, subject, body, scheduled_at, slots):
        self.calls.append(response_id)
        return True


@pytest.fixture()
def slots() -> list[TimeSlot]:
    return sample_slots()
