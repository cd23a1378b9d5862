"""Error taxonomy of the reminder engine."""


class MedReminderError(Exception):
    """Base class for reminder engine errors."""


class InvalidScheduleError(MedReminderError):
    """A recurrence rule cannot produce any occurrence in the horizon."""

    def __init__(self, reminder_id: int | None, reason: str) -> None:
        self.reminder_id = reminder_id
        self.reason = reason
        super().__init__(f"Invalid schedule for reminder {reminder_id}: {reason}")


class StoreUnavailable(MedReminderError):
    """The reminder store or user directory could not be reached."""


class ChannelSendFailure(MedReminderError):
    """A single notification channel failed to deliver."""

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} send failed: {reason}")


class ReportDeliveryError(MedReminderError):
    """An adherence report could not be handed to the user."""
