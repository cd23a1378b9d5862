"""Celery application configuration."""

import logging

from alembic import command
from alembic.config import Config
from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_init, worker_process_init, worker_process_shutdown
from prometheus_client import start_http_server

from medreminder.config import Settings, get_settings, parse_time_of_day

logger = logging.getLogger(__name__)

SCHEDULER_QUEUE = "scheduler"


def build_beat_schedule(settings: Settings) -> dict:
    """Periodic triggers: due-window scan, horizon refresh, daily and weekly reports."""
    daily_hour, daily_minute = parse_time_of_day(settings.daily_report_time)
    weekly_hour, weekly_minute = parse_time_of_day(settings.weekly_report_time)

    return {
        "scan-due-reminders": {
            "task": "medreminder.tasks.reminder_tasks.scan_due_reminders",
            "schedule": settings.scan_period_seconds,
            # A tick that is still queued when the next is due is stale
            "options": {"expires": settings.scan_period_seconds},
        },
        "refresh-occurrence-horizons": {
            "task": "medreminder.tasks.reminder_tasks.refresh_occurrence_horizons",
            "schedule": settings.horizon_refresh_seconds,
        },
        "send-daily-adherence-reports": {
            "task": "medreminder.tasks.report_tasks.send_daily_adherence_reports",
            "schedule": crontab(hour=daily_hour, minute=daily_minute),
        },
        "send-weekly-adherence-reports": {
            "task": "medreminder.tasks.report_tasks.send_weekly_adherence_reports",
            "schedule": crontab(
                hour=weekly_hour,
                minute=weekly_minute,
                day_of_week=settings.weekly_report_day,
            ),
        },
    }


settings = get_settings()

app = Celery(
    "medreminder",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["medreminder.tasks.reminder_tasks", "medreminder.tasks.report_tasks"],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.scheduler_timezone,
    enable_utc=True,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Result expiration
    result_expires=3600,  # 1 hour
    # Periodic triggers go to their own queue, served by a single-concurrency worker
    task_routes={
        "medreminder.tasks.reminder_tasks.scan_due_reminders": {"queue": SCHEDULER_QUEUE},
        "medreminder.tasks.reminder_tasks.refresh_occurrence_horizons": {"queue": SCHEDULER_QUEUE},
        "medreminder.tasks.report_tasks.*": {"queue": SCHEDULER_QUEUE},
    },
    beat_schedule=build_beat_schedule(settings),
)


@worker_init.connect
def run_migrations(**kwargs) -> None:
    """Run alembic migrations before the worker starts consuming."""
    if settings.is_testing:
        logger.info("Skipping migrations in test mode")
        return

    try:
        command.upgrade(Config("alembic.ini"), "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Failed to run migrations: {e}")
        raise


@worker_process_init.connect
def start_engine(**kwargs) -> None:
    """Build the reminder engine once per worker process."""
    from medreminder.engine import get_engine

    get_engine()
    if settings.metrics_port:
        try:
            start_http_server(settings.metrics_port)
            logger.info(f"Serving metrics on port {settings.metrics_port}")
        except OSError as e:
            logger.warning(f"Metrics port {settings.metrics_port} unavailable in this process: {e}")


@worker_process_shutdown.connect
def stop_engine(**kwargs) -> None:
    from medreminder.engine import shutdown_engine

    shutdown_engine()
