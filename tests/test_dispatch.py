"""Tests for the dispatch coordinator."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from medreminder.exceptions import StoreUnavailable
from medreminder.models import Channel
from medreminder.schemas.notification import ChannelStatus, NotificationPayload
from medreminder.services.dispatch import DispatchCoordinator, build_payload
from tests.conftest import NOW, FakeSender


@pytest.fixture
def push():
    return FakeSender(Channel.PUSH)


@pytest.fixture
def email():
    return FakeSender(Channel.EMAIL)


@pytest.fixture
def coordinator(store, users, clock, push, email):
    return DispatchCoordinator(store, users, {Channel.PUSH: push, Channel.EMAIL: email}, clock=clock)


def _due(reminder):
    return reminder, reminder.occurrences[0]


class TestBuildPayload:
    def test_payload_carries_reminder_details(self, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW])
        occurrence = reminder.occurrences[0]

        payload = build_payload(reminder, occurrence)

        assert payload.occurrence_key == f"{reminder.id}:{int(NOW.timestamp())}"
        assert payload.medicine_name == "Amoxicillin"
        assert payload.dosage == "500 mg"
        assert payload.food_instructions == "Take after a meal"
        assert payload.notes == "Finish the full course"
        assert payload.body == "Time to take your Amoxicillin (500 mg). Take after a meal."

    def test_any_food_has_no_instructions(self, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW], with_food="any")

        payload = build_payload(*_due(reminder))

        assert payload.food_instructions is None
        assert payload.body == "Time to take your Amoxicillin (500 mg)."

    def test_time_rendered_in_owner_timezone(self, make_user, make_reminder):
        user = make_user(timezone="America/New_York")
        reminder = make_reminder(user, occurrence_times=[NOW])

        payload = build_payload(*_due(reminder), user)

        assert payload.timezone == "America/New_York"
        # 09:00 UTC is 04:00 EST
        assert payload.local_time.hour == 4

    def test_unknown_timezone_falls_back_to_utc(self, make_user, make_reminder):
        user = make_user(timezone="Mars/Olympus_Mons")
        reminder = make_reminder(user, occurrence_times=[NOW])

        payload = build_payload(*_due(reminder), user)

        assert payload.timezone == "UTC"
        assert payload.local_time.hour == 9


class TestDispatch:
    """Tests for fanning one occurrence out to its channels."""

    @pytest.mark.asyncio
    async def test_all_channels_delivered(self, coordinator, store, push, email, make_user, make_reminder):
        user = make_user()
        reminder = make_reminder(user, occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert set(outcome.delivered) == {Channel.PUSH, Channel.EMAIL}
        assert outcome.failed == []
        assert outcome.marked_notified is True
        assert outcome.error is None
        assert len(push.calls) == 1
        assert len(email.calls) == 1

        sent_user, payload = push.calls[0]
        assert sent_user.id == user.id
        assert isinstance(payload, NotificationPayload)
        assert payload.reminder_id == reminder.id

        assert store.get(reminder.id).occurrences[0].notified is True

    @pytest.mark.asyncio
    async def test_failed_channel_does_not_affect_siblings(self, store, users, clock, push, make_user, make_reminder):
        """A failing email send is recorded; push still goes out and the occurrence is marked."""
        failing_email = FakeSender(Channel.EMAIL, result={"success": False, "error": "mailbox full"})
        coordinator = DispatchCoordinator(
            store, users, {Channel.PUSH: push, Channel.EMAIL: failing_email}, clock=clock
        )
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.delivered == [Channel.PUSH]
        assert outcome.failed == [Channel.EMAIL]
        assert outcome.channels[Channel.EMAIL].reason == "mailbox full"
        assert outcome.marked_notified is True
        assert store.find_due(NOW - timedelta(minutes=1), NOW + timedelta(minutes=5)) == []

    @pytest.mark.asyncio
    async def test_raising_sender_is_isolated(self, store, users, clock, push, make_user, make_reminder):
        exploding = FakeSender(Channel.EMAIL, raises=RuntimeError("connection reset"))
        coordinator = DispatchCoordinator(store, users, {Channel.PUSH: push, Channel.EMAIL: exploding}, clock=clock)
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.delivered == [Channel.PUSH]
        result = outcome.channels[Channel.EMAIL]
        assert result.status == ChannelStatus.FAILED
        assert "RuntimeError" in result.reason
        assert "connection reset" in result.reason
        assert outcome.marked_notified is True

    @pytest.mark.asyncio
    async def test_slow_channel_times_out(self, store, users, clock, push, make_user, make_reminder):
        slow = FakeSender(Channel.EMAIL, delay=1.0)
        coordinator = DispatchCoordinator(
            store, users, {Channel.PUSH: push, Channel.EMAIL: slow}, clock=clock, channel_timeout=0.05
        )
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.delivered == [Channel.PUSH]
        assert outcome.failed == [Channel.EMAIL]
        assert "timed out" in outcome.channels[Channel.EMAIL].reason
        assert outcome.marked_notified is True

    @pytest.mark.asyncio
    async def test_missing_contact_is_skipped_not_failed(self, coordinator, email, make_user, make_reminder):
        reminder = make_reminder(make_user(email=None), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.delivered == [Channel.PUSH]
        assert outcome.skipped == [Channel.EMAIL]
        assert outcome.failed == []
        assert outcome.channels[Channel.EMAIL].reason == "no contact on file"
        assert email.calls == []

    @pytest.mark.asyncio
    async def test_opted_out_channel_is_skipped(self, coordinator, push, make_user, make_reminder):
        reminder = make_reminder(make_user(notify_push=False), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.skipped == [Channel.PUSH]
        assert outcome.channels[Channel.PUSH].reason == "opted out"
        assert outcome.delivered == [Channel.EMAIL]
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_channel_without_sender_is_skipped(self, coordinator, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW], channels=["push", "sms"])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.delivered == [Channel.PUSH]
        assert outcome.channels[Channel.SMS].reason == "no sender configured"

    @pytest.mark.asyncio
    async def test_channels_not_enabled_on_reminder_are_not_tried(self, coordinator, email, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW], channels=["push"])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert list(outcome.channels) == [Channel.PUSH]
        assert email.calls == []

    @pytest.mark.asyncio
    async def test_every_channel_failing_still_marks_notified(self, store, users, clock, make_user, make_reminder):
        down = {"success": False, "error": "service unavailable"}
        coordinator = DispatchCoordinator(
            store,
            users,
            {Channel.PUSH: FakeSender(Channel.PUSH, result=down), Channel.EMAIL: FakeSender(Channel.EMAIL, result=down)},
            clock=clock,
        )
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.delivered == []
        assert set(outcome.failed) == {Channel.PUSH, Channel.EMAIL}
        assert outcome.marked_notified is True

    @pytest.mark.asyncio
    async def test_already_notified_occurrence_is_not_resent(self, coordinator, store, push, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW])
        occurrence = reminder.occurrences[0]
        store.mark_notified(occurrence, NOW)

        outcome = await coordinator.dispatch(reminder, occurrence)

        assert outcome.marked_notified is True
        assert outcome.channels == {}
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_missing_user_marks_notified(self, coordinator, store, push, make_reminder):
        reminder = make_reminder(SimpleNamespace(id=999), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.error == "user not found"
        assert outcome.marked_notified is True
        assert push.calls == []
        assert store.get(reminder.id).occurrences[0].notified is True

    @pytest.mark.asyncio
    async def test_user_directory_down_leaves_occurrence_pending(self, store, clock, push, make_user, make_reminder):
        users = MagicMock()
        users.get.side_effect = StoreUnavailable("directory timeout")
        coordinator = DispatchCoordinator(store, users, {Channel.PUSH: push}, clock=clock)
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.marked_notified is False
        assert "directory timeout" in outcome.error
        assert push.calls == []
        assert len(store.find_due(NOW, NOW + timedelta(minutes=5))) == 1

    @pytest.mark.asyncio
    async def test_mark_failure_is_reported_not_raised(self, coordinator, store, push, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        with patch.object(store, "mark_notified", side_effect=StoreUnavailable("write failed")):
            outcome = await coordinator.dispatch(*_due(reminder))

        assert len(push.calls) == 1
        assert outcome.marked_notified is False
        assert outcome.error == "write failed"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_captured(self, coordinator, make_user, make_reminder):
        reminder = make_reminder(make_user(), occurrence_times=[NOW])

        with patch("medreminder.services.dispatch.build_payload", side_effect=KeyError("boom")):
            outcome = await coordinator.dispatch(*_due(reminder))

        assert outcome.marked_notified is False
        assert "boom" in outcome.error
