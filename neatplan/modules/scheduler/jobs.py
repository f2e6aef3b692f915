"""Maintenance jobs run by the scheduler, the cron endpoint and the CLI."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from neatplan.config import get_settings
from neatplan.logging_config import get_logger
from neatplan.modules.email import NotificationService, SMTPConfigStore
from neatplan.modules.schedules.service import ScheduleService, SweepResult

logger = get_logger(__name__)


async def sweep_and_notify(
    now: Optional[dt.datetime] = None,
    session: Optional[AsyncSession] = None,
    notifier: Optional[NotificationService] = None,
) -> SweepResult:
    """Refresh assignment statuses and alert the configured recipients about new OVERDUE rows."""
    settings = get_settings()
    result = await ScheduleService(session=session).refresh_statuses(now)

    recipients = settings.alert_recipients
    if result.newly_overdue and recipients:
        if notifier is None:
            notifier = NotificationService(SMTPConfigStore(settings.smtp_config_file).resolve(settings))
        await notifier.notify_overdue(result.newly_overdue, recipients)
    elif result.newly_overdue:
        logger.info("overdue_alerts_skipped", reason="no_recipients", overdue=len(result.newly_overdue))
    return result
