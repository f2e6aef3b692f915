"""Centralized configuration loaded from environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from neatplan.modules.email.models import SMTPConfig


class Settings(BaseSettings):
    """Application-wide settings sourced from .env / environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────
    neatplan_env: str = "development"
    neatplan_log_level: str = "INFO"

    # ── API Server ───────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ── Database ─────────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///data/neatplan.db"

    # ── Maintenance ──────────────────────────────────────────────────
    cron_secret: str = ""
    sweep_interval_minutes: int = 15
    overdue_alert_recipients: str = ""

    # ── Email (SMTP) ─────────────────────────────────────────────────
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = ""
    smtp_config_file: str = "data/smtp-config.json"

    # ── Derived ──────────────────────────────────────────────────────
    @property
    def alert_recipients(self) -> list[str]:
        """Parse comma-separated overdue alert addresses."""
        if not self.overdue_alert_recipients:
            return []
        return [addr.strip() for addr in self.overdue_alert_recipients.split(",") if addr.strip()]

    def smtp_config(self) -> SMTPConfig:
        """Build the SMTP config object from environment values alone."""
        from neatplan.modules.email.models import SMTPConfig

        return SMTPConfig(
            host=self.smtp_host,
            port=self.smtp_port,
            secure=self.smtp_secure,
            user=self.smtp_user,
            password=self.smtp_pass,
            from_address=self.smtp_from,
            enabled=bool(self.smtp_host),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
