"""Adherence aggregation service.

Folds each active reminder's adherence history into per-medication and
overall statistics for a reporting period.
"""

import logging
import math
from datetime import timedelta

from medreminder.clock import Clock, SystemClock
from medreminder.models.reminder import AdherenceStatus
from medreminder.schemas.report import AdherenceReport, MedicationAdherence, ReportPeriod
from medreminder.store import ReminderStore

logger = logging.getLogger(__name__)

PERIOD_LENGTHS = {
    ReportPeriod.DAILY: timedelta(days=1),
    ReportPeriod.WEEKLY: timedelta(days=7),
}


def adherence_rate(taken: int, total: int) -> int:
    """Whole-number percentage of doses taken, rounding halves up; 0 when nothing was due."""
    if total == 0:
        return 0
    return math.floor(100 * taken / total + 0.5)


class AdherenceAggregator:
    """Service for computing adherence reports. Reads only."""

    def __init__(self, store: ReminderStore, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    def aggregate(self, user_id: int, period: ReportPeriod | str) -> AdherenceReport:
        """Build an adherence report for a user.

        Args:
            user_id: User to report on
            period: "daily" (last 24 hours) or "weekly" (last 7 days)

        Returns:
            AdherenceReport; reminders with no history in the period appear
            with zero counts and a 0 rate

        Raises:
            ValueError: If the period is not recognised
            StoreUnavailable: If reminders cannot be read
        """
        period = ReportPeriod(period)
        now = self.clock.now()
        period_start = now - PERIOD_LENGTHS[period]

        report = AdherenceReport(
            user_id=user_id,
            period=period,
            period_start=period_start,
            period_end=now,
        )

        for reminder in self.store.list_active(user_id=user_id):
            entries = [r for r in reminder.history if r.scheduled_time >= period_start]
            taken = sum(1 for r in entries if r.status == AdherenceStatus.TAKEN.value)
            missed = sum(1 for r in entries if r.status == AdherenceStatus.MISSED.value)
            pending = sum(1 for r in entries if r.status == AdherenceStatus.PENDING.value)

            report.medications.append(
                MedicationAdherence(
                    reminder_id=reminder.id,
                    medicine_name=reminder.medicine_name,
                    taken_count=taken,
                    missed_count=missed,
                    pending_count=pending,
                    total_count=len(entries),
                    adherence_rate=adherence_rate(taken, len(entries)),
                )
            )

        report.taken_count = sum(m.taken_count for m in report.medications)
        report.missed_count = sum(m.missed_count for m in report.medications)
        report.pending_count = sum(m.pending_count for m in report.medications)
        report.total_count = sum(m.total_count for m in report.medications)
        report.overall_rate = adherence_rate(report.taken_count, report.total_count)

        logger.info(
            f"Aggregated {period.value} adherence for user {user_id}: "
            f"{report.taken_count}/{report.total_count} taken across {len(report.medications)} medications"
        )
        return report
