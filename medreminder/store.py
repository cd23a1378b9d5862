"""Reminder store and user directory backed by the database.

Each call opens its own short-lived session. Returned objects are detached
but fully loaded (occurrences and history are eagerly selected), so they
can be handed across task boundaries and saved back later.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medreminder.database import SessionLocal
from medreminder.exceptions import StoreUnavailable
from medreminder.models.reminder import MedicineReminder, Occurrence
from medreminder.models.user import User

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@contextmanager
def _session_scope(session_factory: SessionFactory, operation: str) -> Iterator[Session]:
    """Yield a session, committing on success and mapping DB errors to StoreUnavailable."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Store operation '{operation}' failed: {e}")
        raise StoreUnavailable(f"{operation} failed: {e}") from e
    finally:
        session.close()


class ReminderStore:
    """Durable reminders with their occurrences and adherence history."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self.session_factory = session_factory or SessionLocal

    def get(self, reminder_id: int) -> MedicineReminder | None:
        with _session_scope(self.session_factory, "get") as db:
            return db.get(MedicineReminder, reminder_id)

    def find_due(
        self, window_start: datetime, window_end: datetime
    ) -> list[tuple[MedicineReminder, Occurrence]]:
        """Active reminders with un-notified occurrences inside [start, end].

        Returns one (reminder, occurrence) pair per due occurrence, ordered by
        scheduled time.
        """
        with _session_scope(self.session_factory, "find_due") as db:
            rows = db.execute(
                select(Occurrence.id, Occurrence.reminder_id)
                .join(MedicineReminder, MedicineReminder.id == Occurrence.reminder_id)
                .where(MedicineReminder.active == True)  # noqa: E712
                .where(Occurrence.notified == False)  # noqa: E712
                .where(Occurrence.scheduled_time >= window_start)
                .where(Occurrence.scheduled_time <= window_end)
                .order_by(Occurrence.scheduled_time, Occurrence.id)
            ).all()
            if not rows:
                return []

            reminder_ids = sorted({reminder_id for _, reminder_id in rows})
            reminders = {
                reminder.id: reminder
                for reminder in db.scalars(
                    select(MedicineReminder).where(MedicineReminder.id.in_(reminder_ids))
                )
            }

            due = []
            for occurrence_id, reminder_id in rows:
                reminder = reminders[reminder_id]
                occurrence = next(o for o in reminder.occurrences if o.id == occurrence_id)
                due.append((reminder, occurrence))
            return due

    def save(self, reminder: MedicineReminder) -> MedicineReminder:
        """Persist a reminder and its children in one transaction."""
        with _session_scope(self.session_factory, "save") as db:
            db.add(reminder)
        return reminder

    def mark_notified(self, occurrence: Occurrence, at: datetime) -> bool:
        """Conditionally flip an occurrence to notified.

        This single UPDATE is the only write of the notified flag. Returns
        False when the row was already notified, i.e. another writer got
        there first.
        """
        with _session_scope(self.session_factory, "mark_notified") as db:
            result = db.execute(
                update(Occurrence)
                .where(Occurrence.id == occurrence.id)
                .where(Occurrence.notified == False)  # noqa: E712
                .values(notified=True, notified_at=at)
            )
            claimed = result.rowcount == 1

        if not occurrence.notified:
            occurrence.mark_notified(at)
        return claimed

    def list_active(self, user_id: int | None = None) -> list[MedicineReminder]:
        with _session_scope(self.session_factory, "list_active") as db:
            query = select(MedicineReminder).where(MedicineReminder.active == True)  # noqa: E712
            if user_id is not None:
                query = query.where(MedicineReminder.user_id == user_id)
            return list(db.scalars(query.order_by(MedicineReminder.id)))

    def deactivate(self, reminder_id: int) -> bool:
        """Soft-delete a reminder so scans and generation ignore it."""
        with _session_scope(self.session_factory, "deactivate") as db:
            result = db.execute(
                update(MedicineReminder)
                .where(MedicineReminder.id == reminder_id)
                .values(active=False)
            )
            return result.rowcount == 1


class UserDirectory:
    """Read-only access to user contact details and preferences."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self.session_factory = session_factory or SessionLocal

    def get(self, user_id: int) -> User | None:
        with _session_scope(self.session_factory, "get_user") as db:
            return db.get(User, user_id)

    def list_report_recipients(self) -> list[User]:
        """Users who have not explicitly disabled adherence reports."""
        with _session_scope(self.session_factory, "list_report_recipients") as db:
            return list(
                db.scalars(
                    select(User)
                    .where(or_(User.adherence_reports.is_(None), User.adherence_reports == True))  # noqa: E712
                    .order_by(User.id)
                )
            )
