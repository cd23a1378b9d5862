"""Notification channel senders: push via ntfy, email via SMTP, SMS via Twilio.

Every sender shares one contract: ``await send(user, payload)`` returns a
dict with a ``success`` flag and, on failure, an ``error`` string. Senders
catch their own transport errors and never raise into the caller.
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

import httpx

from medreminder.config import Settings, get_settings
from medreminder.models.reminder import Channel
from medreminder.models.user import User
from medreminder.schemas.notification import NotificationPayload

logger = logging.getLogger(__name__)


class ChannelSender(Protocol):
    channel: Channel

    async def send(self, user: User, payload: NotificationPayload) -> dict[str, Any]: ...


class PushNotificationSender:
    """Sends push notifications via ntfy; a user's push token is their ntfy topic."""

    channel = Channel.PUSH

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.server = self.settings.ntfy_server.rstrip("/")
        self.pwa_base_url = self.settings.pwa_base_url.rstrip("/")
        self.timeout = self.settings.channel_timeout_seconds

    def _get_notification_url(self, topic: str) -> str:
        """Get the full ntfy URL for publishing."""
        return f"{self.server}/{topic}"

    def _get_reminder_url(self, reminder_id: int) -> str:
        """Get the PWA URL for a specific reminder."""
        return f"{self.pwa_base_url}/reminders/{reminder_id}"

    async def send(self, user: User, payload: NotificationPayload) -> dict[str, Any]:
        """Send a medication reminder as a push notification.

        Args:
            user: Recipient; must have a push token
            payload: Reminder content

        Returns:
            dict with success status and any error info
        """
        if not user.push_token:
            return {"success": False, "error": "No push token on file"}

        reminder_url = self._get_reminder_url(payload.reminder_id)
        headers = {
            "Title": payload.title,
            "Priority": "high",
            "Tags": "pill",
            "Click": reminder_url,
            "Actions": f"view, Open, {reminder_url}",
            "X-Occurrence": payload.occurrence_key,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self._get_notification_url(user.push_token),
                    content=payload.body,
                    headers=headers,
                )
                response.raise_for_status()

                logger.info(f"Sent push notification for occurrence {payload.occurrence_key}")
                return {"success": True, "reminder_url": reminder_url}

        except httpx.HTTPError as e:
            logger.error(f"Failed to send push notification for occurrence {payload.occurrence_key}: {e}")
            return {"success": False, "error": str(e)}


class EmailSender:
    """Sends email through SMTP. The blocking SMTP session runs in a worker thread."""

    channel = Channel.EMAIL

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.timeout = self.settings.channel_timeout_seconds

    def _deliver(self, to_email: str, subject: str, text: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.email_from
        msg["To"] = to_email
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=self.timeout) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_username and self.settings.smtp_password:
                server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.sendmail(self.settings.email_from, [to_email], msg.as_string())

    async def send_email(self, to_email: str, subject: str, text: str, html: str) -> dict[str, Any]:
        """Send an arbitrary multipart email.

        Returns:
            dict with success status and any error info
        """
        if not self.settings.smtp_host:
            return {"success": False, "error": "SMTP is not configured"}

        try:
            await asyncio.to_thread(self._deliver, to_email, subject, text, html)
            logger.info(f"Sent email '{subject}'")
            return {"success": True}

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email '{subject}': {e}")
            return {"success": False, "error": str(e)}

    async def send(self, user: User, payload: NotificationPayload) -> dict[str, Any]:
        if not user.email:
            return {"success": False, "error": "No email address on file"}

        subject = f"Medicine Reminder: {payload.medicine_name}"
        return await self.send_email(
            user.email, subject, _reminder_text(payload), _reminder_html(payload)
        )


class SmsSender:
    """Sends SMS through Twilio's REST API."""

    channel = Channel.SMS

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.timeout = self.settings.channel_timeout_seconds

    def _get_messages_url(self) -> str:
        base = self.settings.twilio_api_base.rstrip("/")
        return f"{base}/2010-04-01/Accounts/{self.settings.twilio_account_sid}/Messages.json"

    @staticmethod
    def _format_message(payload: NotificationPayload) -> str:
        message = f"Reminder: time to take your {payload.medicine_name} ({payload.dosage})."
        if payload.food_instructions:
            message += f" {payload.food_instructions}."
        message += f" Scheduled: {payload.local_time.strftime('%H:%M %Z')}"
        return message

    async def send(self, user: User, payload: NotificationPayload) -> dict[str, Any]:
        if not user.phone:
            return {"success": False, "error": "No phone number on file"}
        if not (self.settings.twilio_account_sid and self.settings.twilio_auth_token):
            return {"success": False, "error": "Twilio is not configured"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self._get_messages_url(),
                    data={
                        "To": user.phone,
                        "From": self.settings.twilio_from_number or "",
                        "Body": self._format_message(payload),
                    },
                    auth=(self.settings.twilio_account_sid, self.settings.twilio_auth_token),
                )
                response.raise_for_status()

                logger.info(f"Sent SMS for occurrence {payload.occurrence_key}")
                return {"success": True}

        except httpx.HTTPError as e:
            logger.error(f"Failed to send SMS for occurrence {payload.occurrence_key}: {e}")
            return {"success": False, "error": str(e)}


def _reminder_text(payload: NotificationPayload) -> str:
    lines = [
        "Time to take your medication!",
        "",
        f"Medicine: {payload.medicine_name}",
        f"Dosage: {payload.dosage}",
        f"Scheduled time: {payload.local_time.strftime('%Y-%m-%d %H:%M %Z')}",
    ]
    if payload.food_instructions:
        lines.append(f"Food instructions: {payload.food_instructions}")
    if payload.notes:
        lines.append(f"Notes: {payload.notes}")
    return "\n".join(lines)


def _reminder_html(payload: NotificationPayload) -> str:
    extra = ""
    if payload.food_instructions:
        extra += f"<p><strong>Food instructions:</strong> {payload.food_instructions}</p>"
    if payload.notes:
        extra += f"<p><strong>Notes:</strong> {payload.notes}</p>"
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #2563eb;">Medicine Reminder</h2>
        <p><strong>Medicine:</strong> {payload.medicine_name}</p>
        <p><strong>Dosage:</strong> {payload.dosage}</p>
        <p><strong>Scheduled time:</strong> {payload.local_time.strftime('%Y-%m-%d %H:%M %Z')}</p>
        {extra}
        <p style="color: #6b7280; font-size: 14px;">
            Consistency is key to effective treatment. Log in to mark this dose as taken.
        </p>
    </div>
    """


def build_channel_senders(settings: Settings | None = None) -> dict[Channel, ChannelSender]:
    """Get one sender per supported channel."""
    settings = settings or get_settings()
    return {
        Channel.PUSH: PushNotificationSender(settings),
        Channel.EMAIL: EmailSender(settings),
        Channel.SMS: SmsSender(settings),
    }
