import pytest
import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from reminder_scheduler.config.settings import Settings
from reminder_scheduler.db.models import (
    Appointment,
    Base,
    Meeting,
    NotificationLog,
    Task,
    User,
    UserSettings,
)
from reminder_scheduler.providers.reminder_data_provider import ReminderDataProvider
from reminder_scheduler.services.notifications.dedup import ProcessingGuardSet
from reminder_scheduler.utils.datetime_utils import to_naive_utc


# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed tick time used across the suite
NOW = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """
    Deterministic clock. ``sleep`` records the requested delay and advances
    time instantly; once ``max_sleeps`` is reached it parks forever so a
    periodic loop can be observed and then cancelled.
    """

    def __init__(self, start: datetime = NOW, max_sleeps: Optional[int] = None):
        self.current = start
        self.sleeps: List[float] = []
        self.max_sleeps = max_sleeps
        self.parked = asyncio.Event()

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)
        if self.max_sleeps is not None and len(self.sleeps) >= self.max_sleeps:
            self.parked.set()
            await asyncio.Event().wait()
        await asyncio.sleep(0)


class RecordingTransport:
    """In-memory stand-in for the SMTP transport."""

    def __init__(self):
        self.sent: List[dict] = []
        self.send_error: Optional[Exception] = None
        self.validate_error: Optional[Exception] = None
        self.verify_error: Optional[Exception] = None
        self.verify_calls = 0

    def validate(self) -> None:
        if self.validate_error is not None:
            raise self.validate_error

    async def verify(self) -> None:
        self.verify_calls += 1
        if self.verify_error is not None:
            raise self.verify_error

    async def send_message(self, to: str, subject: str, text: str, html: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        APP_NAME="Tiger App",
        DATABASE_URL=TEST_DATABASE_URL,
        EMAIL_HOST="smtp.example.com",
        EMAIL_PORT=465,
        EMAIL_USER="mailer@example.com",
        EMAIL_PASS="secret",
        EMAIL_FROM='"Tiger App" <notifications@example.com>',
        EMAIL_VERIFY_ON_STARTUP=True,
        CLIENT_URL="http://localhost:3000/",
        PRODUCTION_CLIENT_URL="https://app.example.com",
    )


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def provider(session_factory) -> ReminderDataProvider:
    return ReminderDataProvider(session_factory=session_factory)


@pytest.fixture
def guard_set() -> ProcessingGuardSet:
    return ProcessingGuardSet()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_clock():
    def factory(start: datetime = NOW, max_sleeps: Optional[int] = None) -> FakeClock:
        return FakeClock(start=start, max_sleeps=max_sleeps)

    return factory


# Test data factories
async def _persist(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def sample_user(db_session: AsyncSession) -> User:
    """Create a user with no settings row."""
    return await _persist(
        db_session, User(email="alice@example.com", name="Alice")
    )


@pytest.fixture
def make_user(db_session: AsyncSession):
    async def factory(email: str, name: Optional[str] = None) -> User:
        return await _persist(db_session, User(email=email, name=name))

    return factory


@pytest.fixture
def make_user_settings(db_session: AsyncSession):
    async def factory(user: User, **overrides) -> UserSettings:
        values = {
            "timezone": "UTC",
            "show_notifications": True,
            "notifications_enabled": True,
            "email_notifications_enabled": True,
        }
        values.update(overrides)
        return await _persist(db_session, UserSettings(user_id=user.id, **values))

    return factory


@pytest.fixture
def make_task(db_session: AsyncSession, sample_user: User):
    async def factory(due_in: timedelta, **overrides) -> Task:
        values = {
            "user_id": sample_user.id,
            "title": "Submit quarterly report",
            "due_date": to_naive_utc(NOW + due_in),
            "completed": False,
            "priority": "high",
            "is_recurring": False,
        }
        values.update(overrides)
        return await _persist(db_session, Task(**values))

    return factory


@pytest.fixture
def make_meeting(db_session: AsyncSession, sample_user: User):
    async def factory(starts_in: timedelta, **overrides) -> Meeting:
        start = to_naive_utc(NOW + starts_in)
        values = {
            "user_id": sample_user.id,
            "title": "Sprint planning",
            "start_time": start,
            "end_time": start + timedelta(hours=1),
            "location": None,
            "is_recurring": False,
        }
        values.update(overrides)
        return await _persist(db_session, Meeting(**values))

    return factory


@pytest.fixture
def make_appointment(db_session: AsyncSession, sample_user: User):
    async def factory(starts_in: timedelta, **overrides) -> Appointment:
        start = to_naive_utc(NOW + starts_in)
        values = {
            "user_id": sample_user.id,
            "title": "Dentist",
            "start_time": start,
            "end_time": start + timedelta(minutes=30),
            "location": "12 Main Street",
            "is_recurring": False,
        }
        values.update(overrides)
        return await _persist(db_session, Appointment(**values))

    return factory


@pytest.fixture
def make_log_entry(db_session: AsyncSession):
    async def factory(item_id: int, item_type: str, sent_at: datetime) -> NotificationLog:
        return await _persist(
            db_session,
            NotificationLog(
                item_id=item_id, item_type=item_type, sent_at=to_naive_utc(sent_at)
            ),
        )

    return factory
