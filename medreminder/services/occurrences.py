"""Occurrence generation service.

Expands a reminder's recurrence rule into a bounded horizon of concrete
occurrences and retires occurrences whose window has closed into the
adherence history.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

import pytz
from pydantic import ValidationError

from medreminder.clock import Clock, SystemClock
from medreminder.config import AppConfig, get_app_config, parse_time_of_day
from medreminder.exceptions import InvalidScheduleError
from medreminder.models.reminder import AdherenceRecord, AdherenceStatus, MedicineReminder, Occurrence
from medreminder.schemas.recurrence import RecurrenceRule
from medreminder.store import ReminderStore

logger = logging.getLogger(__name__)


class OccurrenceGenerator:
    """Service for keeping a reminder's occurrence horizon filled."""

    def __init__(
        self,
        store: ReminderStore,
        clock: Clock | None = None,
        app_config: AppConfig | None = None,
        missed_grace: timedelta = timedelta(minutes=60),
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.app_config = app_config or get_app_config()
        self.missed_grace = missed_grace

    def _parse_rule(self, reminder: MedicineReminder) -> tuple[RecurrenceRule, list[time]]:
        try:
            rule = RecurrenceRule.model_validate(reminder.recurrence_rule or {})
        except ValidationError as e:
            raise InvalidScheduleError(reminder.id, f"malformed recurrence rule: {e}") from e

        slots = self.app_config.timing_slots
        times_of_day = set()
        for entry in rule.times:
            value = slots.get(entry, entry)
            try:
                hour, minute = parse_time_of_day(value)
            except ValueError as e:
                raise InvalidScheduleError(reminder.id, str(e)) from e
            times_of_day.add(time(hour=hour, minute=minute))

        return rule, sorted(times_of_day)

    def expand(
        self, reminder: MedicineReminder, start: datetime, end: datetime
    ) -> list[datetime]:
        """All times the rule fires in the half-open interval (start, end], in UTC.

        Raises:
            InvalidScheduleError: If the rule itself is malformed
        """
        rule, times_of_day = self._parse_rule(reminder)
        tz = pytz.timezone(rule.timezone)

        first_day = start.astimezone(tz).date()
        last_day = end.astimezone(tz).date()

        fire_times = []
        day = first_day
        while day <= last_day:
            if self._fires_on(rule, day):
                for time_of_day in times_of_day:
                    local = tz.localize(datetime.combine(day, time_of_day))
                    scheduled = local.astimezone(timezone.utc)
                    if start < scheduled <= end:
                        fire_times.append(scheduled)
            day += timedelta(days=1)

        return sorted(set(fire_times))

    @staticmethod
    def _fires_on(rule: RecurrenceRule, day: date) -> bool:
        if rule.start_date and day < rule.start_date:
            return False
        if rule.end_date and day > rule.end_date:
            return False
        if rule.days_of_week is not None and day.weekday() not in rule.days_of_week:
            return False
        return True

    def _drop_stale(self, reminder: MedicineReminder, now: datetime) -> list[Occurrence]:
        """Remove pending future occurrences the current rule no longer produces.

        Notified occurrences and ones already due are left alone.
        """
        pending = [o for o in reminder.occurrences if not o.notified and o.scheduled_time > now]
        if not pending:
            return []

        latest = max(o.scheduled_time for o in pending)
        valid = set(self.expand(reminder, now, latest))
        stale = [o for o in pending if o.scheduled_time not in valid]
        for occurrence in stale:
            reminder.occurrences.remove(occurrence)

        if stale:
            logger.info(
                f"Dropped {len(stale)} pending occurrences of reminder {reminder.id} "
                f"that its schedule no longer produces"
            )
        return stale

    def generate(self, reminder: MedicineReminder, horizon_days: int = 7) -> list[Occurrence]:
        """Bring the reminder's occurrences in line with its rule up to ``horizon_days`` ahead.

        Pending future occurrences the rule no longer produces (the schedule
        changed) are dropped first. The horizon is then filled from now
        onwards, never repeating a scheduled time the reminder already has,
        so an unchanged schedule is only extended past its latest occurrence.

        Args:
            reminder: Reminder to extend
            horizon_days: How far ahead to plan

        Returns:
            The newly created occurrences (empty if the horizon is already full)

        Raises:
            InvalidScheduleError: If the rule yields no occurrence in the horizon.
                The reminder is left unchanged.
        """
        if not reminder.active:
            logger.info(f"Skipping occurrence generation for inactive reminder {reminder.id}")
            return []

        now = self.clock.now()
        horizon_end = now + timedelta(days=horizon_days)

        in_horizon = self.expand(reminder, now, horizon_end)
        if not in_horizon:
            raise InvalidScheduleError(
                reminder.id, f"rule yields no occurrences in the next {horizon_days} days"
            )

        dropped = self._drop_stale(reminder, now)
        existing = {o.scheduled_time for o in reminder.occurrences}
        new_times = [t for t in in_horizon if t not in existing]
        if not new_times:
            if dropped:
                self.store.save(reminder)
            logger.info(f"Occurrence horizon for reminder {reminder.id} already filled")
            return []

        new_occurrences = [Occurrence(scheduled_time=t, notified=False) for t in new_times]
        reminder.occurrences.extend(new_occurrences)
        self.store.save(reminder)

        logger.info(
            f"Generated {len(new_occurrences)} occurrences for reminder {reminder.id} "
            f"({reminder.medicine_name}) through {new_times[-1].isoformat()}"
        )
        return new_occurrences

    def archive_elapsed(self, reminder: MedicineReminder) -> list[AdherenceRecord]:
        """Move occurrences whose window has closed into the history as pending.

        Does not persist; callers save the reminder.
        """
        cutoff = self.clock.now() - self.missed_grace
        recorded = {r.scheduled_time for r in reminder.history}

        elapsed = [o for o in reminder.occurrences if o.scheduled_time < cutoff]
        if not elapsed:
            return []

        records = []
        for occurrence in elapsed:
            reminder.occurrences.remove(occurrence)
            if occurrence.scheduled_time in recorded:
                continue
            record = AdherenceRecord(
                scheduled_time=occurrence.scheduled_time,
                status=AdherenceStatus.PENDING.value,
            )
            reminder.history.append(record)
            records.append(record)

        logger.info(
            f"Archived {len(elapsed)} elapsed occurrences for reminder {reminder.id} "
            f"({len(records)} new history entries)"
        )
        return records

    def refresh(self, reminder: MedicineReminder, horizon_days: int = 7) -> dict:
        """Retire elapsed occurrences and top the horizon back up."""
        archived = self.archive_elapsed(reminder)
        try:
            generated = self.generate(reminder, horizon_days)
        except InvalidScheduleError:
            if archived:
                self.store.save(reminder)
            raise

        if archived and not generated:
            self.store.save(reminder)

        return {"reminder_id": reminder.id, "archived": len(archived), "generated": len(generated)}
