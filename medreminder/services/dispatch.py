"""Dispatch coordinator: fans one due occurrence out to its notification channels."""

import asyncio
import logging
from typing import Any

import pytz

from medreminder.clock import Clock, SystemClock
from medreminder.exceptions import ChannelSendFailure, StoreUnavailable
from medreminder.metrics import channel_attempts_total, occurrences_notified_total
from medreminder.models.reminder import Channel, MedicineReminder, Occurrence
from medreminder.models.user import User
from medreminder.schemas.notification import (
    ChannelResult,
    ChannelStatus,
    DispatchOutcome,
    NotificationPayload,
)
from medreminder.services.notifications import ChannelSender
from medreminder.store import ReminderStore, UserDirectory

logger = logging.getLogger(__name__)


def build_payload(
    reminder: MedicineReminder, occurrence: Occurrence, user: User | None = None
) -> NotificationPayload:
    """Snapshot of what a channel needs, with the time rendered for the owner's timezone."""
    tz_name = "UTC"
    if user is not None and user.timezone:
        try:
            pytz.timezone(user.timezone)
            tz_name = user.timezone
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown timezone {user.timezone!r} for user {user.id}, rendering in UTC")
    return NotificationPayload(
        occurrence_key=occurrence.key,
        reminder_id=reminder.id,
        medicine_name=reminder.medicine_name,
        dosage=reminder.dosage,
        with_food=reminder.with_food,
        food_instructions=reminder.food_instructions,
        notes=reminder.notes,
        scheduled_time=occurrence.scheduled_time,
        timezone=tz_name,
    )


class DispatchCoordinator:
    """Sends one occurrence on every eligible channel, then marks it notified.

    Channel sends run concurrently and are awaited together; a failing or
    timed-out channel is recorded without affecting its siblings. The
    occurrence is marked notified once every attempt has settled, whatever
    the outcome, so a dead channel cannot cause a re-notification storm.
    ``dispatch`` reports problems in its return value and never raises.
    """

    def __init__(
        self,
        store: ReminderStore,
        users: UserDirectory,
        senders: dict[Channel, ChannelSender],
        clock: Clock | None = None,
        channel_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.users = users
        self.senders = senders
        self.clock = clock or SystemClock()
        self.channel_timeout = channel_timeout

    def _plan(self, reminder: MedicineReminder, user: User) -> tuple[list[Channel], dict[Channel, ChannelResult]]:
        """Split the reminder's channels into ones to attempt and ones skipped."""
        attempt = []
        skipped = {}
        for channel in reminder.enabled_channels():
            if not user.allows(channel):
                skipped[channel] = ChannelResult(status=ChannelStatus.SKIPPED, reason="opted out")
            elif not user.contact_for(channel):
                skipped[channel] = ChannelResult(status=ChannelStatus.SKIPPED, reason="no contact on file")
            elif channel not in self.senders:
                skipped[channel] = ChannelResult(status=ChannelStatus.SKIPPED, reason="no sender configured")
            else:
                attempt.append(channel)
        return attempt, skipped

    async def _send_one(self, channel: Channel, user: User, payload: NotificationPayload) -> ChannelResult:
        sender = self.senders[channel]
        try:
            result: dict[str, Any] = await asyncio.wait_for(
                sender.send(user, payload), timeout=self.channel_timeout
            )
        except asyncio.TimeoutError as e:
            raise ChannelSendFailure(channel.value, f"timed out after {self.channel_timeout}s") from e
        except Exception as e:
            raise ChannelSendFailure(channel.value, f"sender raised {type(e).__name__}: {e}") from e

        if not result.get("success"):
            raise ChannelSendFailure(channel.value, result.get("error") or "unknown error")
        return ChannelResult(status=ChannelStatus.DELIVERED)

    async def _fan_out(
        self, channels: list[Channel], user: User, payload: NotificationPayload
    ) -> dict[Channel, ChannelResult]:
        settled = await asyncio.gather(
            *(self._send_one(channel, user, payload) for channel in channels),
            return_exceptions=True,
        )

        results = {}
        for channel, result in zip(channels, settled):
            if isinstance(result, ChannelResult):
                results[channel] = result
                continue
            reason = result.reason if isinstance(result, ChannelSendFailure) else repr(result)
            logger.warning(f"Channel {channel.value} failed for occurrence {payload.occurrence_key}: {reason}")
            results[channel] = ChannelResult(status=ChannelStatus.FAILED, reason=reason)
        return results

    def _mark_notified(self, occurrence: Occurrence, outcome: DispatchOutcome) -> None:
        try:
            claimed = self.store.mark_notified(occurrence, self.clock.now())
        except StoreUnavailable as e:
            logger.error(f"Could not mark occurrence {outcome.occurrence_key} notified: {e}")
            outcome.error = str(e)
            return

        outcome.marked_notified = True
        if claimed:
            occurrences_notified_total.inc()
        else:
            logger.warning(f"Occurrence {outcome.occurrence_key} was already marked notified")

    async def dispatch(self, reminder: MedicineReminder, occurrence: Occurrence) -> DispatchOutcome:
        """Notify the reminder's owner about one occurrence.

        Args:
            reminder: Owning reminder
            occurrence: Due occurrence

        Returns:
            DispatchOutcome with a result per channel and whether the
            occurrence was marked notified
        """
        outcome = DispatchOutcome(reminder_id=reminder.id, occurrence_key=occurrence.key)

        try:
            if occurrence.notified:
                logger.info(f"Occurrence {outcome.occurrence_key} already notified, not dispatching")
                outcome.marked_notified = True
                return outcome

            try:
                user = self.users.get(reminder.user_id)
            except StoreUnavailable as e:
                # Left unmarked so the next scan retries
                logger.error(f"User lookup failed for reminder {reminder.id}: {e}")
                outcome.error = str(e)
                return outcome

            if user is None:
                logger.warning(f"Owner {reminder.user_id} of reminder {reminder.id} not found")
                outcome.error = "user not found"
                self._mark_notified(occurrence, outcome)
                return outcome

            payload = build_payload(reminder, occurrence, user)
            channels, skipped = self._plan(reminder, user)
            outcome.channels.update(skipped)
            outcome.channels.update(await self._fan_out(channels, user, payload))

            for channel, result in outcome.channels.items():
                channel_attempts_total.labels(channel=channel.value, status=result.status.value).inc()

            self._mark_notified(occurrence, outcome)

            logger.info(
                f"Dispatched {reminder.medicine_name} occurrence {outcome.occurrence_key}: "
                f"delivered={[c.value for c in outcome.delivered]} "
                f"failed={[c.value for c in outcome.failed]} "
                f"skipped={[c.value for c in outcome.skipped]}"
            )
            return outcome

        except Exception as e:
            logger.exception(f"Unexpected error dispatching occurrence {outcome.occurrence_key}")
            outcome.error = str(e)
            return outcome
