"""Reminder engine: the service object the periodic tasks drive.

One engine is built per worker process and started explicitly. It owns the
configuration, the collaborators, and the single-flight guards of the scan
and report triggers. Nothing is started on import.
"""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

from medreminder.clock import Clock, SystemClock
from medreminder.config import AppConfig, Settings, get_app_config, get_settings
from medreminder.exceptions import InvalidScheduleError, StoreUnavailable
from medreminder.models.reminder import Channel
from medreminder.schemas.report import ReportPeriod
from medreminder.services.adherence import AdherenceAggregator
from medreminder.services.dispatch import DispatchCoordinator
from medreminder.services.notifications import ChannelSender, EmailSender, build_channel_senders
from medreminder.services.occurrences import OccurrenceGenerator
from medreminder.services.reports import EmailReportDelivery, ReportDelivery, ReportScheduler
from medreminder.services.scanner import DueWindowScanner
from medreminder.store import ReminderStore, UserDirectory

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run an async coroutine in a sync context."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class ReminderEngine:
    """Explicit lifecycle wrapper around scanning, generation and reporting."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        senders: dict[Channel, ChannelSender] | None = None,
        report_delivery: ReportDelivery | None = None,
        app_config: AppConfig | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self._session_factory = session_factory
        self._senders = senders
        self._report_delivery = report_delivery
        self._app_config = app_config
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Build collaborators and begin accepting ticks."""
        if self._running:
            return

        settings = self.settings
        app_config = self._app_config or get_app_config()
        senders = self._senders if self._senders is not None else build_channel_senders(settings)

        self.store = ReminderStore(self._session_factory)
        self.users = UserDirectory(self._session_factory)
        self.generator = OccurrenceGenerator(
            self.store,
            clock=self.clock,
            app_config=app_config,
            missed_grace=timedelta(minutes=settings.missed_grace_minutes),
        )
        self.coordinator = DispatchCoordinator(
            self.store,
            self.users,
            senders,
            clock=self.clock,
            channel_timeout=settings.channel_timeout_seconds,
        )
        self.scanner = DueWindowScanner(
            self.store,
            self.coordinator,
            clock=self.clock,
            lookahead=timedelta(minutes=settings.lookahead_minutes),
        )
        self.aggregator = AdherenceAggregator(self.store, clock=self.clock)

        delivery = self._report_delivery
        if delivery is None:
            email_sender = senders.get(Channel.EMAIL)
            if not isinstance(email_sender, EmailSender):
                email_sender = EmailSender(settings)
            delivery = EmailReportDelivery(email_sender, app_config)
        self.reports = ReportScheduler(self.users, self.aggregator, delivery)

        self._running = True
        logger.info(
            f"Reminder engine started: lookahead={settings.lookahead_minutes}m, "
            f"horizon={settings.occurrence_horizon_days}d, channels={[c.value for c in senders]}"
        )

    def stop(self) -> None:
        """Stop accepting ticks. An in-flight dispatch is not interrupted."""
        if not self._running:
            return
        self._running = False
        logger.info("Reminder engine stopped")

    def _check_running(self, action: str) -> bool:
        if not self._running:
            logger.warning(f"Reminder engine is stopped, ignoring {action}")
        return self._running

    def scan_due(self) -> dict | None:
        """Run one due-window scan tick."""
        if not self._check_running("scan"):
            return None
        return run_async(self.scanner.tick())

    def send_adherence_reports(self, period: ReportPeriod | str) -> dict | None:
        """Run one report trigger firing for the given period."""
        if not self._check_running(f"{period} reports"):
            return None
        return run_async(self.reports.run(period))

    def generate_occurrences(self, reminder_id: int) -> dict:
        """Fill the horizon for one reminder after it is created or rescheduled."""
        if not self._check_running("occurrence generation"):
            return {"success": False, "error": "engine stopped"}

        try:
            reminder = self.store.get(reminder_id)
            if reminder is None:
                return {"success": False, "error": "Reminder not found"}
            result = self.generator.refresh(reminder, self.settings.occurrence_horizon_days)
        except InvalidScheduleError as e:
            logger.warning(str(e))
            return {"success": False, "error": e.reason, "reminder_id": reminder_id}
        except StoreUnavailable as e:
            return {"success": False, "error": str(e), "reminder_id": reminder_id}

        return {"success": True, **result}

    def refresh_horizons(self) -> dict | None:
        """Archive elapsed occurrences and top up the horizon of every active reminder."""
        if not self._check_running("horizon refresh"):
            return None

        try:
            reminders = self.store.list_active()
        except StoreUnavailable as e:
            logger.error(f"Horizon refresh skipped: {e}")
            return {"success": False, "error": str(e)}

        generated = 0
        archived = 0
        invalid = 0
        for reminder in reminders:
            try:
                result = self.generator.refresh(reminder, self.settings.occurrence_horizon_days)
            except InvalidScheduleError as e:
                invalid += 1
                logger.warning(str(e))
                continue
            except StoreUnavailable as e:
                logger.error(f"Could not refresh reminder {reminder.id}: {e}")
                continue
            generated += result["generated"]
            archived += result["archived"]

        logger.info(
            f"Refreshed {len(reminders)} reminders: {generated} occurrences generated, "
            f"{archived} archived, {invalid} invalid schedules"
        )
        return {
            "success": True,
            "reminders": len(reminders),
            "generated": generated,
            "archived": archived,
            "invalid": invalid,
        }

    def deactivate(self, reminder_id: int) -> bool:
        """Soft-delete a reminder; future scans and generation skip it."""
        if not self._check_running("deactivation"):
            return False
        deactivated = self.store.deactivate(reminder_id)
        if deactivated:
            logger.info(f"Deactivated reminder {reminder_id}")
        return deactivated


_engine: ReminderEngine | None = None


def get_engine() -> ReminderEngine:
    """Get the process-wide engine, starting it on first use."""
    global _engine
    if _engine is None:
        _engine = ReminderEngine()
        _engine.start()
    return _engine


def shutdown_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.stop()
        _engine = None
