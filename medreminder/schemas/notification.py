"""Notification payload and dispatch outcome schemas."""

from datetime import datetime
from enum import Enum

import pytz
from pydantic import BaseModel

from medreminder.models.reminder import Channel


class NotificationPayload(BaseModel):
    """Everything a channel needs to render one medication reminder."""

    occurrence_key: str
    reminder_id: int
    title: str = "Medicine Reminder"
    medicine_name: str
    dosage: str
    with_food: str
    food_instructions: str | None = None
    notes: str | None = None
    scheduled_time: datetime
    timezone: str = "UTC"

    @property
    def local_time(self) -> datetime:
        """Scheduled time on the recipient's wall clock."""
        return self.scheduled_time.astimezone(pytz.timezone(self.timezone))

    @property
    def body(self) -> str:
        text = f"Time to take your {self.medicine_name} ({self.dosage})."
        if self.food_instructions:
            text += f" {self.food_instructions}."
        return text


class ChannelStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


class ChannelResult(BaseModel):
    status: ChannelStatus
    reason: str | None = None


class DispatchOutcome(BaseModel):
    """Per-channel result of dispatching one occurrence."""

    reminder_id: int
    occurrence_key: str
    channels: dict[Channel, ChannelResult] = {}
    marked_notified: bool = False
    error: str | None = None

    @property
    def delivered(self) -> list[Channel]:
        return [c for c, r in self.channels.items() if r.status == ChannelStatus.DELIVERED]

    @property
    def failed(self) -> list[Channel]:
        return [c for c, r in self.channels.items() if r.status == ChannelStatus.FAILED]

    @property
    def skipped(self) -> list[Channel]:
        return [c for c, r in self.channels.items() if r.status == ChannelStatus.SKIPPED]
