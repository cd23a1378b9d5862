"""Adherence report scheduling and email delivery."""

import logging
from typing import Protocol

from medreminder.config import AppConfig, get_app_config
from medreminder.exceptions import ReportDeliveryError, StoreUnavailable
from medreminder.metrics import reports_delivered_total, reports_failed_total
from medreminder.models.user import User
from medreminder.schemas.report import AdherenceReport, ReportPeriod
from medreminder.services.adherence import AdherenceAggregator
from medreminder.services.notifications import EmailSender
from medreminder.services.scanner import SingleFlight
from medreminder.store import UserDirectory

logger = logging.getLogger(__name__)


class ReportDelivery(Protocol):
    async def deliver(self, user: User, report: AdherenceReport) -> bool: ...


class EmailReportDelivery:
    """Emails adherence reports to users who have an address on file."""

    def __init__(self, email_sender: EmailSender, app_config: AppConfig | None = None) -> None:
        self.email_sender = email_sender
        self.app_config = app_config or get_app_config()

    def _verdict(self, rate: int) -> str:
        thresholds = self.app_config.reports
        if rate >= thresholds.get("excellent_threshold", 80):
            return "Excellent work! Keep up the consistent medication routine."
        if rate >= thresholds.get("fair_threshold", 60):
            return (
                "Your adherence could be improved. Consider more frequent reminders "
                "or talking to your healthcare provider."
            )
        return "Your adherence rate is concerning. Please consult your healthcare provider about your routine."

    def format_text(self, report: AdherenceReport) -> str:
        lines = [
            f"{report.period.value.capitalize()} medication adherence report",
            "",
            f"Overall adherence: {report.overall_rate}%",
            f"Taken: {report.taken_count}  Missed: {report.missed_count}  Pending: {report.pending_count}",
            "",
        ]
        for med in report.medications:
            lines.append(f"- {med.medicine_name}: {med.adherence_rate}% ({med.taken_count}/{med.total_count})")
        lines += ["", self._verdict(report.overall_rate)]
        return "\n".join(lines)

    def format_html(self, report: AdherenceReport) -> str:
        rows = "".join(
            f"<tr><td>{med.medicine_name}</td><td>{med.adherence_rate}%</td>"
            f"<td>{med.taken_count}/{med.total_count}</td></tr>"
            for med in report.medications
        )
        return f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #2563eb;">Your Medication Adherence Report</h2>
            <p><strong>{report.period.value.capitalize()} summary:</strong> {report.overall_rate}% overall</p>
            <p>Taken: {report.taken_count} &middot; Missed: {report.missed_count} &middot; Pending: {report.pending_count}</p>
            <table>{rows}</table>
            <p>{self._verdict(report.overall_rate)}</p>
        </div>
        """

    async def deliver(self, user: User, report: AdherenceReport) -> bool:
        """Email the report.

        Returns:
            False if the user has no email address, True once sent

        Raises:
            ReportDeliveryError: If the email could not be sent
        """
        if not user.email:
            logger.info(f"User {user.id} has no email address, skipping adherence report")
            return False

        subject = f"Your {report.period.value} medication adherence report"
        result = await self.email_sender.send_email(
            user.email, subject, self.format_text(report), self.format_html(report)
        )
        if not result["success"]:
            raise ReportDeliveryError(f"Report email to user {user.id} failed: {result.get('error')}")
        return True


class ReportScheduler:
    """Runs the aggregator for every opted-in user when a report trigger fires.

    Each user is processed in isolation: one user's failure is logged and
    the run moves on to the next user.
    """

    def __init__(
        self,
        users: UserDirectory,
        aggregator: AdherenceAggregator,
        delivery: ReportDelivery,
    ) -> None:
        self.users = users
        self.aggregator = aggregator
        self.delivery = delivery
        self.guards = {period: SingleFlight(f"{period.value}-reports") for period in ReportPeriod}

    async def run(self, period: ReportPeriod | str) -> dict | None:
        """Aggregate and deliver reports for one trigger firing.

        Returns:
            Summary dict, or None if a run for the same period is still going
        """
        period = ReportPeriod(period)
        guard = self.guards[period]
        if not guard.acquire():
            logger.warning(f"Previous {period.value} report run still in progress, skipping")
            return None

        try:
            return await self._run(period)
        finally:
            guard.release()

    async def _run(self, period: ReportPeriod) -> dict:
        logger.info(f"Sending {period.value} adherence reports")
        try:
            recipients = self.users.list_report_recipients()
        except StoreUnavailable as e:
            logger.error(f"Could not list report recipients: {e}")
            return {"success": False, "error": str(e)}

        delivered = 0
        skipped = 0
        failed = 0
        for user in recipients:
            try:
                report = self.aggregator.aggregate(user.id, period)
                if await self.delivery.deliver(user, report):
                    delivered += 1
                    reports_delivered_total.labels(period=period.value).inc()
                else:
                    skipped += 1
            except Exception as e:
                failed += 1
                reports_failed_total.labels(period=period.value).inc()
                logger.error(f"Failed {period.value} adherence report for user {user.id}: {e}")
                continue

        logger.info(
            f"Completed {period.value} adherence reports: {delivered} delivered, "
            f"{skipped} skipped, {failed} failed of {len(recipients)} users"
        )
        return {
            "success": True,
            "users": len(recipients),
            "delivered": delivered,
            "skipped": skipped,
            "failed": failed,
        }
