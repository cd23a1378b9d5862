"""Medicine reminder model with its occurrences and adherence history."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from medreminder.database import Base, UTCDateTime, utcnow


class Channel(str, Enum):
    """Notification transport."""

    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"


class WithFood(str, Enum):
    """When to take a dose relative to a meal."""

    BEFORE = "before"
    AFTER = "after"
    WITH = "with"
    ANY = "any"


class AdherenceStatus(str, Enum):
    """Outcome of a dose once its occurrence has passed."""

    TAKEN = "taken"
    MISSED = "missed"
    PENDING = "pending"


class MedicineReminder(Base):
    """A user's recurring medication reminder.

    Owns a rolling horizon of upcoming occurrences and an append-only
    adherence history used for reporting.
    """

    __tablename__ = "medicine_reminders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    medicine_name: Mapped[str] = mapped_column(String(255), nullable=False)
    dosage_amount: Mapped[str] = mapped_column(String(50), nullable=False)
    dosage_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    with_food: Mapped[str] = mapped_column(String(10), default=WithFood.ANY.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recurrence_rule: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    channels: Mapped[list[str]] = mapped_column(JSON, default=lambda: [Channel.PUSH.value])
    active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="reminders")  # noqa: F821
    occurrences: Mapped[list["Occurrence"]] = relationship(
        back_populates="reminder",
        cascade="all, delete-orphan",
        order_by="Occurrence.scheduled_time",
        lazy="selectin",
    )
    history: Mapped[list["AdherenceRecord"]] = relationship(
        back_populates="reminder",
        cascade="all, delete-orphan",
        order_by="AdherenceRecord.scheduled_time",
        lazy="selectin",
    )

    __table_args__ = (Index("idx_medicine_reminders_user_active", "user_id", "active"),)

    @property
    def dosage(self) -> str:
        return f"{self.dosage_amount} {self.dosage_unit}"

    @property
    def food_instructions(self) -> str | None:
        if self.with_food == WithFood.ANY.value:
            return None
        if self.with_food == WithFood.WITH.value:
            return "Take with a meal"
        return f"Take {self.with_food} a meal"

    def enabled_channels(self) -> list[Channel]:
        """Channels enabled on this reminder, in a stable order."""
        enabled = set(self.channels or [])
        return [channel for channel in Channel if channel.value in enabled]

    def __repr__(self) -> str:
        return f"<MedicineReminder(id={self.id}, medicine='{self.medicine_name}', active={self.active})>"


class Occurrence(Base):
    """One planned firing of a reminder."""

    __tablename__ = "reminder_occurrences"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    reminder_id: Mapped[int] = mapped_column(
        ForeignKey("medicine_reminders.id", ondelete="CASCADE"), nullable=False
    )
    scheduled_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    notified: Mapped[bool] = mapped_column(default=False, nullable=False)
    notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    reminder: Mapped[MedicineReminder] = relationship(back_populates="occurrences")

    __table_args__ = (
        UniqueConstraint("reminder_id", "scheduled_time", name="uq_occurrence_reminder_time"),
        Index("idx_occurrences_due", "notified", "scheduled_time"),
    )

    @validates("notified")
    def _validate_notified(self, key: str, value: bool) -> bool:
        if self.notified and not value:
            raise ValueError("An occurrence cannot return to pending once notified")
        return value

    @property
    def key(self) -> str:
        """Stable identifier, independent of the database id."""
        reminder_id = self.reminder_id if self.reminder_id is not None else self.reminder.id
        return f"{reminder_id}:{int(self.scheduled_time.timestamp())}"

    def mark_notified(self, at: datetime) -> None:
        """Apply the pending -> notified transition."""
        if self.notified:
            raise ValueError(f"Occurrence {self.key} is already notified")
        self.notified = True
        self.notified_at = at

    def __repr__(self) -> str:
        return f"<Occurrence(reminder_id={self.reminder_id}, at={self.scheduled_time}, notified={self.notified})>"


class AdherenceRecord(Base):
    """What happened to a dose after its occurrence passed."""

    __tablename__ = "adherence_records"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    reminder_id: Mapped[int] = mapped_column(
        ForeignKey("medicine_reminders.id", ondelete="CASCADE"), nullable=False
    )
    scheduled_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=AdherenceStatus.PENDING.value)
    actual_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reminder: Mapped[MedicineReminder] = relationship(back_populates="history")

    __table_args__ = (
        UniqueConstraint("reminder_id", "scheduled_time", name="uq_adherence_reminder_time"),
    )

    def __repr__(self) -> str:
        return f"<AdherenceRecord(reminder_id={self.reminder_id}, at={self.scheduled_time}, status='{self.status}')>"
