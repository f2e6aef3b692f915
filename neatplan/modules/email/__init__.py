"""Notification e-mails."""

from neatplan.modules.email.models import NotificationType, SMTPConfig, SMTPConfigStore
from neatplan.modules.email.service import NotificationService

__all__ = ["NotificationService", "NotificationType", "SMTPConfig", "SMTPConfigStore"]
