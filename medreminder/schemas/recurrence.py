"""Recurrence rule schema."""

from datetime import date

import pytz
from pydantic import BaseModel, Field, field_validator, model_validator


class RecurrenceRule(BaseModel):
    """Times of day, optionally restricted to weekdays and a date range.

    ``times`` entries are either ``"HH:MM"`` or a named timing slot such as
    ``"morning"``; slots are resolved against ``config.yaml``.
    """

    times: list[str] = Field(min_length=1)
    days_of_week: list[int] | None = None  # 0 = Monday
    start_date: date | None = None
    end_date: date | None = None
    timezone: str = "UTC"

    @field_validator("days_of_week")
    @classmethod
    def _validate_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if not value or any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week must hold weekday numbers 0-6")
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @model_validator(mode="after")
    def _validate_range(self) -> "RecurrenceRule":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date is before start_date")
        return self
