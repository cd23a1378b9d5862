"""Adherence report schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ReportPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class MedicationAdherence(BaseModel):
    """Adherence for one medication over the reporting period."""

    reminder_id: int
    medicine_name: str
    taken_count: int = 0
    missed_count: int = 0
    pending_count: int = 0
    total_count: int = 0
    adherence_rate: int = 0


class AdherenceReport(BaseModel):
    user_id: int
    period: ReportPeriod
    period_start: datetime
    period_end: datetime
    medications: list[MedicationAdherence] = []
    taken_count: int = 0
    missed_count: int = 0
    pending_count: int = 0
    total_count: int = 0
    overall_rate: int = 0
