"""SMTP configuration and notification types."""

from __future__ import annotations

import json
import re
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from neatplan.errors import InvalidInputError
from neatplan.logging_config import get_logger

if TYPE_CHECKING:
    from neatplan.config import Settings

logger = get_logger(__name__)

PASSWORD_PLACEHOLDER = "••••••••••••"
DEFAULT_FROM = "NeatPlan <noreply@neatplan.com>"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NAMED_ADDRESS_RE = re.compile(r"<([^>]+)>")


def address_of(value: str) -> str:
    """Bare address from ``"Name <a@b.c>"`` or ``"a@b.c"``."""
    match = _NAMED_ADDRESS_RE.search(value)
    return match.group(1) if match else value


def looks_like_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value or ""))


class NotificationType(StrEnum):
    TASK_REMINDER = "task_reminder"
    SCHEDULE_UPDATE = "schedule_update"
    SYSTEM_ALERT = "system_alert"
    COMPLETION_NOTICE = "completion_notice"


class SMTPConfig(BaseModel):
    """Everything needed to reach the outgoing mail server.

    Immutable; build a new one (``model_copy(update=...)``) to change it.
    """

    model_config = ConfigDict(frozen=True)

    host: str = ""
    port: int = Field(default=587, ge=1, le=65535)
    secure: bool = False  # implicit TLS (usually port 465)
    use_starttls: bool = True
    user: str = ""
    password: str = ""
    from_address: str = ""
    enabled: bool = False

    @property
    def is_complete(self) -> bool:
        return bool(self.host and self.user and self.password)

    @property
    def sender(self) -> str:
        return self.from_address or DEFAULT_FROM

    def masked(self) -> dict[str, Any]:
        """Public view with the password replaced by a placeholder."""
        data = self.model_dump()
        data["password"] = PASSWORD_PLACEHOLDER if self.password else ""
        return data


class SMTPConfigStore:
    """JSON file holding the admin-edited SMTP settings."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> SMTPConfig:
        """Stored config, or an empty disabled one if the file is missing or unreadable."""
        if not self.path.exists():
            return SMTPConfig()
        try:
            return SMTPConfig.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("smtp_config_unreadable", path=str(self.path), error=str(exc))
            return SMTPConfig()

    def save(self, config: SMTPConfig) -> SMTPConfig:
        """Validate and persist ``config``.

        A placeholder or empty password keeps the one already on file.

        Raises:
            InvalidInputError: enabled config missing fields or with bad addresses.
        """
        if not config.password or config.password == PASSWORD_PLACEHOLDER:
            config = config.model_copy(update={"password": self.load().password})

        if config.enabled:
            if not (config.host and config.user and config.from_address):
                raise InvalidInputError("Host, user, and from address are required when email is enabled")
            if not config.password:
                raise InvalidInputError("Password is required")
            if not looks_like_email(config.user):
                raise InvalidInputError("Invalid email format for username")
            if not looks_like_email(address_of(config.from_address)):
                raise InvalidInputError("Invalid email format for from address")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        logger.info("smtp_config_saved", path=str(self.path), host=config.host, enabled=config.enabled)
        return config

    def resolve(self, settings: Optional[Settings] = None) -> SMTPConfig:
        """Effective config: environment values where set, the stored file otherwise."""
        if settings is None:
            from neatplan.config import get_settings

            settings = get_settings()
        stored = self.load()
        env = settings.smtp_config()
        return SMTPConfig(
            host=env.host or stored.host,
            port=settings.smtp_port if "smtp_port" in settings.model_fields_set else stored.port,
            secure=env.secure or stored.secure,
            use_starttls=stored.use_starttls,
            user=env.user or stored.user,
            password=env.password or stored.password,
            from_address=env.from_address or stored.from_address,
            enabled=stored.enabled or env.enabled,
        )
