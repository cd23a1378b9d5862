"""User model."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medreminder.database import Base, UTCDateTime, utcnow


def _channel_name(channel) -> str:
    return getattr(channel, "value", channel)


class User(Base):
    """Patient contact details and notification preferences.

    Preferences are nullable: anything not explicitly disabled counts as
    enabled.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    push_token: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notify_push: Mapped[bool | None] = mapped_column(nullable=True)
    notify_email: Mapped[bool | None] = mapped_column(nullable=True)
    notify_sms: Mapped[bool | None] = mapped_column(nullable=True)
    adherence_reports: Mapped[bool | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    reminders: Mapped[list["MedicineReminder"]] = relationship(back_populates="user")  # noqa: F821

    def allows(self, channel: str) -> bool:
        """Whether the user has not opted out of a notification channel."""
        return getattr(self, f"notify_{_channel_name(channel)}") is not False

    def contact_for(self, channel: str) -> str | None:
        """Address a channel needs to reach this user, if on file."""
        return {
            "push": self.push_token,
            "email": self.email,
            "sms": self.phone,
        }[_channel_name(channel)]

    @property
    def wants_adherence_reports(self) -> bool:
        return self.adherence_reports is not False

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}')>"
