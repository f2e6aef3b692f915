"""Notification service: templated e-mails over SMTP."""

from __future__ import annotations

import asyncio
import email.mime.multipart
import email.mime.text
import smtplib
from collections.abc import Iterable
from typing import Any, Optional

from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from neatplan.logging_config import get_logger
from neatplan.modules.email import templates
from neatplan.modules.email.models import NotificationType, SMTPConfig, address_of

logger = get_logger(__name__)

SMTP_TIMEOUT = 30


class NotificationService:
    """Sends notification e-mails with an explicit SMTP configuration."""

    def __init__(self, config: SMTPConfig) -> None:
        self._config = config

    @property
    def config(self) -> SMTPConfig:
        return self._config

    @property
    def is_ready(self) -> bool:
        return self._config.enabled and self._config.is_complete

    def _build_message(self, to: str, subject: str, html: str) -> email.mime.multipart.MIMEMultipart:
        msg = email.mime.multipart.MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._config.sender
        msg["To"] = to
        msg.attach(email.mime.text.MIMEText(html, "html", "utf-8"))
        return msg

    def _deliver(self, msg: email.mime.multipart.MIMEMultipart) -> None:
        config = self._config
        smtp_cls = smtplib.SMTP_SSL if config.secure else smtplib.SMTP
        with smtp_cls(config.host, config.port, timeout=SMTP_TIMEOUT) as server:
            if not config.secure and config.use_starttls:
                server.starttls()
            if config.user:
                server.login(config.user, config.password)
            server.sendmail(address_of(msg["From"]), [msg["To"]], msg.as_string())

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=10))
    async def _send_with_retry(self, msg: email.mime.multipart.MIMEMultipart) -> None:
        await asyncio.to_thread(self._deliver, msg)

    async def send_notification(
        self,
        to: str,
        notification_type: NotificationType,
        data: Optional[dict[str, Any]] = None,
        subject: Optional[str] = None,
    ) -> bool:
        """Render and send one notification. Never raises for delivery problems.

        Returns:
            True when the server accepted the message, False when e-mail is
            disabled or unconfigured or every attempt failed.
        """
        notification_type = NotificationType(notification_type)
        if not self.is_ready:
            logger.warning("email_not_configured", type=notification_type.value, to=to)
            return False

        msg = self._build_message(
            to,
            subject or templates.default_subject(notification_type),
            templates.render(notification_type, data or {}),
        )
        try:
            await self._send_with_retry(msg)
        except (RetryError, smtplib.SMTPException, OSError) as exc:
            cause = exc.last_attempt.exception() if isinstance(exc, RetryError) else exc
            logger.error("email_send_failed", type=notification_type.value, to=to, error=str(cause))
            return False

        logger.info("email_sent", type=notification_type.value, to=to, subject=msg["Subject"])
        return True

    async def send_task_reminder(self, to: str, *, user_name: str, task_name: str, room_name: str, due_date: str) -> bool:
        return await self.send_notification(
            to,
            NotificationType.TASK_REMINDER,
            {"user_name": user_name, "task_name": task_name, "room_name": room_name, "due_date": due_date},
        )

    async def send_schedule_update(
        self, to: str, *, user_name: str, change_type: str, description: str, new_date: Optional[str] = None,
    ) -> bool:
        return await self.send_notification(
            to,
            NotificationType.SCHEDULE_UPDATE,
            {"user_name": user_name, "change_type": change_type, "description": description, "new_date": new_date},
        )

    async def send_system_alert(self, to: str, *, user_name: str, alert_type: str, message: str) -> bool:
        return await self.send_notification(
            to,
            NotificationType.SYSTEM_ALERT,
            {"user_name": user_name, "alert_type": alert_type, "message": message},
        )

    async def send_completion_notice(
        self, to: str, *, user_name: str, task_name: str, room_name: str, completed_by: str, completed_at: str,
    ) -> bool:
        return await self.send_notification(
            to,
            NotificationType.COMPLETION_NOTICE,
            {
                "user_name": user_name,
                "task_name": task_name,
                "room_name": room_name,
                "completed_by": completed_by,
                "completed_at": completed_at,
            },
        )

    async def send_test(self, to: str) -> bool:
        return await self.send_system_alert(
            to,
            user_name="Administrator",
            alert_type="SMTP Test",
            message="This is a test message confirming that NeatPlan can send e-mail.",
        )

    async def notify_overdue(self, items: Iterable[Any], recipients: Iterable[str]) -> int:
        """Send one alert per recipient listing newly overdue assignments.

        Returns the number of alerts the server accepted.
        """
        items = list(items)
        recipients = [r for r in recipients if r]
        if not items or not recipients:
            return 0

        lines = "; ".join(
            f"{item.schedule_title} for {item.kind} {item.subject_name} (due {item.next_due:%Y-%m-%d %H:%M} UTC)"
            for item in items
        )
        message = f"{len(items)} cleaning schedule(s) became overdue: {lines}"
        sent = 0
        for recipient in recipients:
            if await self.send_system_alert(
                recipient, user_name="Administrator", alert_type="Overdue schedules", message=message,
            ):
                sent += 1
        logger.info("overdue_alerts_sent", items=len(items), recipients=len(recipients), sent=sent)
        return sent
