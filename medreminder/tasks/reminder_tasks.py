"""Reminder scanning and occurrence generation tasks."""

import logging

from medreminder.celery_app import app
from medreminder.engine import get_engine

logger = logging.getLogger(__name__)


@app.task
def scan_due_reminders() -> dict | None:
    """Dispatch occurrences falling inside the lookahead window.

    Runs every scan period. Returns None when the tick was skipped because
    the previous one is still in flight.
    """
    return get_engine().scan_due()


@app.task
def refresh_occurrence_horizons() -> dict | None:
    """Archive elapsed occurrences and refill the horizon of every active reminder."""
    return get_engine().refresh_horizons()


@app.task
def generate_reminder_occurrences(reminder_id: int) -> dict:
    """Generate occurrences for a reminder that was just created or rescheduled.

    Args:
        reminder_id: ID of the reminder

    Returns:
        dict with success status; on an invalid schedule, ``error`` explains
        why so the caller can tell the reminder's owner
    """
    result = get_engine().generate_occurrences(reminder_id)
    if not result["success"]:
        logger.warning(f"Occurrence generation for reminder {reminder_id} failed: {result.get('error')}")
    return result


@app.task
def deactivate_reminder(reminder_id: int) -> dict:
    """Stop scanning and generating for a reminder."""
    deactivated = get_engine().deactivate(reminder_id)
    return {"success": deactivated, "reminder_id": reminder_id}
