"""Celery tasks for adherence reports."""

import logging

from medreminder.celery_app import app
from medreminder.engine import get_engine
from medreminder.schemas.report import ReportPeriod

logger = logging.getLogger(__name__)


def _send_reports(period: ReportPeriod) -> dict | None:
    result = get_engine().send_adherence_reports(period)
    if result is not None and not result["success"]:
        logger.warning(f"{period.value.capitalize()} adherence reports not sent: {result.get('error')}")
    return result


@app.task
def send_daily_adherence_reports() -> dict | None:
    """Send the last 24 hours' adherence report to every opted-in user."""
    return _send_reports(ReportPeriod.DAILY)


@app.task
def send_weekly_adherence_reports() -> dict | None:
    """Send the last 7 days' adherence report to every opted-in user."""
    return _send_reports(ReportPeriod.WEEKLY)
