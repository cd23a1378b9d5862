"""Tests for notification channel senders."""

import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest

from medreminder.config import Settings
from medreminder.models import Channel, User
from medreminder.schemas.notification import NotificationPayload
from medreminder.services.notifications import (
    EmailSender,
    PushNotificationSender,
    SmsSender,
    _reminder_text,
    build_channel_senders,
)

TOPIC = "3f2a9c1e-7b44-4e0a-9d8e-5a6b7c8d9e0f"


@pytest.fixture
def payload():
    return NotificationPayload(
        occurrence_key="42:1772481600",
        reminder_id=42,
        medicine_name="Amoxicillin",
        dosage="500 mg",
        with_food="after",
        food_instructions="Take after a meal",
        notes="Finish the full course",
        scheduled_time=datetime(2026, 3, 2, 20, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def user():
    return User(id=7, name="Alice", email="alice@example.com", phone="+15550100", push_token=TOPIC)


@pytest.fixture
def settings():
    return Settings(
        ntfy_server="https://ntfy.example.com/",
        pwa_base_url="https://app.example.com",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_username="mailer",
        smtp_password="secret",
        email_from="reminders@example.com",
        twilio_account_sid="AC123",
        twilio_auth_token="token",
        twilio_from_number="+15559999",
    )


class TestPushNotificationSender:
    """Tests for ntfy push delivery."""

    def test_get_notification_url(self, settings):
        """The user's push token is the ntfy topic."""
        sender = PushNotificationSender(settings)
        assert sender._get_notification_url(TOPIC) == f"https://ntfy.example.com/{TOPIC}"

    def test_get_reminder_url(self, settings):
        sender = PushNotificationSender(settings)
        assert sender._get_reminder_url(123) == "https://app.example.com/reminders/123"

    @pytest.mark.asyncio
    async def test_send_success(self, settings, user, payload):
        sender = PushNotificationSender(settings)
        mock_response = MagicMock()

        with patch.object(httpx.AsyncClient, "post", return_value=mock_response) as mock_post:
            result = await sender.send(user, payload)

        assert result["success"] is True
        assert result["reminder_url"] == "https://app.example.com/reminders/42"

        mock_post.assert_called_once()
        call = mock_post.call_args
        assert call.args[0] == f"https://ntfy.example.com/{TOPIC}"
        assert call.kwargs["content"] == "Time to take your Amoxicillin (500 mg). Take after a meal."
        assert call.kwargs["headers"]["Title"] == "Medicine Reminder"
        assert call.kwargs["headers"]["X-Occurrence"] == "42:1772481600"

    @pytest.mark.asyncio
    async def test_send_failure(self, settings, user, payload):
        """Test push failure handling."""
        sender = PushNotificationSender(settings)

        with patch.object(
            httpx.AsyncClient,
            "post",
            side_effect=httpx.HTTPError("Connection failed"),
        ):
            result = await sender.send(user, payload)

        assert result["success"] is False
        assert "Connection failed" in result["error"]

    @pytest.mark.asyncio
    async def test_missing_push_token(self, settings, payload):
        sender = PushNotificationSender(settings)
        user = User(id=8, name="Bob", push_token=None)

        with patch.object(httpx.AsyncClient, "post") as mock_post:
            result = await sender.send(user, payload)

        assert result["success"] is False
        mock_post.assert_not_called()


class TestEmailSender:
    """Tests for SMTP delivery."""

    def test_text_body_shows_local_time(self, payload):
        text = _reminder_text(payload.model_copy(update={"timezone": "Europe/Berlin"}))

        assert "Scheduled time: 2026-03-02 21:00 CET" in text

    @pytest.mark.asyncio
    async def test_send_success(self, settings, user, payload):
        sender = EmailSender(settings)

        with patch("medreminder.services.notifications.smtplib.SMTP") as mock_smtp:
            result = await sender.send(user, payload)

        assert result["success"] is True
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=settings.channel_timeout_seconds)
        server = mock_smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")

        from_addr, to_addrs, message = server.sendmail.call_args.args
        assert from_addr == "reminders@example.com"
        assert to_addrs == ["alice@example.com"]
        assert "Subject: Medicine Reminder: Amoxicillin" in message

    @pytest.mark.asyncio
    async def test_smtp_error_is_reported(self, settings, user, payload):
        sender = EmailSender(settings)

        with patch(
            "medreminder.services.notifications.smtplib.SMTP",
            side_effect=smtplib.SMTPConnectError(421, "try later"),
        ):
            result = await sender.send(user, payload)

        assert result["success"] is False
        assert "try later" in result["error"]

    @pytest.mark.asyncio
    async def test_unconfigured_smtp(self, user, payload):
        sender = EmailSender(Settings(smtp_host=None))

        with patch("medreminder.services.notifications.smtplib.SMTP") as mock_smtp:
            result = await sender.send(user, payload)

        assert result == {"success": False, "error": "SMTP is not configured"}
        mock_smtp.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_email_address(self, settings, payload):
        sender = EmailSender(settings)

        result = await sender.send(User(id=8, name="Bob", email=None), payload)

        assert result["success"] is False


class TestSmsSender:
    """Tests for Twilio SMS delivery."""

    def test_format_message(self, payload):
        message = SmsSender._format_message(payload)

        assert message == (
            "Reminder: time to take your Amoxicillin (500 mg). Take after a meal. Scheduled: 20:00 UTC"
        )

    def test_format_message_uses_recipient_timezone(self, payload):
        local = payload.model_copy(update={"timezone": "America/New_York"})

        assert SmsSender._format_message(local).endswith("Scheduled: 15:00 EST")

    @pytest.mark.asyncio
    async def test_send_success(self, settings, user, payload):
        sender = SmsSender(settings)

        with patch.object(httpx.AsyncClient, "post", return_value=MagicMock()) as mock_post:
            result = await sender.send(user, payload)

        assert result["success"] is True
        call = mock_post.call_args
        assert call.args[0] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert call.kwargs["data"]["To"] == "+15550100"
        assert call.kwargs["data"]["From"] == "+15559999"
        assert call.kwargs["auth"] == ("AC123", "token")

    @pytest.mark.asyncio
    async def test_send_failure(self, settings, user, payload):
        sender = SmsSender(settings)

        with patch.object(httpx.AsyncClient, "post", side_effect=httpx.ConnectTimeout("timed out")):
            result = await sender.send(user, payload)

        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_unconfigured_twilio(self, user, payload):
        sender = SmsSender(Settings(twilio_account_sid=None, twilio_auth_token=None))

        result = await sender.send(user, payload)

        assert result == {"success": False, "error": "Twilio is not configured"}

    @pytest.mark.asyncio
    async def test_missing_phone(self, settings, payload):
        result = await SmsSender(settings).send(User(id=8, name="Bob", phone=None), payload)

        assert result["success"] is False


def test_build_channel_senders(settings):
    senders = build_channel_senders(settings)

    assert isinstance(senders[Channel.PUSH], PushNotificationSender)
    assert isinstance(senders[Channel.EMAIL], EmailSender)
    assert isinstance(senders[Channel.SMS], SmsSender)
    assert all(sender.channel == channel for channel, sender in senders.items())
