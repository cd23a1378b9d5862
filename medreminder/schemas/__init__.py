"""Pydantic schemas."""

from medreminder.schemas.notification import (
    ChannelResult,
    ChannelStatus,
    DispatchOutcome,
    NotificationPayload,
)
from medreminder.schemas.recurrence import RecurrenceRule
from medreminder.schemas.report import AdherenceReport, MedicationAdherence, ReportPeriod

__all__ = [
    "AdherenceReport",
    "ChannelResult",
    "ChannelStatus",
    "DispatchOutcome",
    "MedicationAdherence",
    "NotificationPayload",
    "RecurrenceRule",
    "ReportPeriod",
]
