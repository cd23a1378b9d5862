"""Celery tasks for the reminder engine."""

from medreminder.tasks.reminder_tasks import (
    deactivate_reminder,
    generate_reminder_occurrences,
    refresh_occurrence_horizons,
    scan_due_reminders,
)
from medreminder.tasks.report_tasks import send_daily_adherence_reports, send_weekly_adherence_reports

__all__ = [
    "deactivate_reminder",
    "generate_reminder_occurrences",
    "refresh_occurrence_horizons",
    "scan_due_reminders",
    "send_daily_adherence_reports",
    "send_weekly_adherence_reports",
]
