"""Pytest configuration and fixtures."""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"

from medreminder.database import Base
from medreminder.models import Channel, MedicineReminder, Occurrence, User
from medreminder.store import ReminderStore, UserDirectory

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # a Monday


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeSender:
    """Channel sender double that records calls."""

    def __init__(
        self,
        channel: Channel,
        result: dict[str, Any] | None = None,
        raises: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.channel = channel
        self.result = result if result is not None else {"success": True}
        self.raises = raises
        self.delay = delay
        self.calls: list[tuple[User, Any]] = []

    async def send(self, user, payload) -> dict[str, Any]:
        self.calls.append((user, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises:
            raise self.raises
        return self.result


@pytest.fixture
def engine():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(session_factory) -> ReminderStore:
    return ReminderStore(session_factory)


@pytest.fixture
def users(session_factory) -> UserDirectory:
    return UserDirectory(session_factory)


@pytest.fixture
def make_user(session_factory):
    """Create and persist a user, returned detached."""

    def _make_user(**kwargs) -> User:
        defaults = {
            "name": "Test Patient",
            "email": "patient@example.com",
            "phone": "+15550100",
            "push_token": "3f2a9c1e-7b44-4e0a-9d8e-5a6b7c8d9e0f",
        }
        user = User(**{**defaults, **kwargs})
        with session_factory() as session:
            session.add(user)
            session.commit()
        return user

    return _make_user


@pytest.fixture
def make_reminder(session_factory, store: ReminderStore):
    """Create and persist a reminder, optionally with occurrences.

    The reminder is reloaded through the store so it comes back detached
    with its collections loaded, as the engine sees it.
    """

    def _make_reminder(user: User, occurrence_times: list[datetime] | None = None, **kwargs) -> MedicineReminder:
        defaults = {
            "medicine_name": "Amoxicillin",
            "dosage_amount": "500",
            "dosage_unit": "mg",
            "with_food": "after",
            "notes": "Finish the full course",
            "recurrence_rule": {"times": ["08:00", "20:00"]},
            "channels": ["push", "email"],
            "active": True,
        }
        reminder = MedicineReminder(user_id=user.id, **{**defaults, **kwargs})
        for scheduled_time in occurrence_times or []:
            reminder.occurrences.append(Occurrence(scheduled_time=scheduled_time, notified=False))
        with session_factory() as session:
            session.add(reminder)
            session.commit()
            reminder_id = reminder.id
        return store.get(reminder_id)

    return _make_reminder
