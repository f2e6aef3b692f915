"""Tests for notification e-mails and SMTP configuration."""

from __future__ import annotations

import datetime as dt
import json
import smtplib
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError
from tenacity import wait_none

from neatplan.config import Settings
from neatplan.errors import InvalidInputError
from neatplan.modules.email import NotificationService, NotificationType, SMTPConfig, SMTPConfigStore
from neatplan.modules.email import templates
from neatplan.modules.email.models import PASSWORD_PLACEHOLDER, address_of
from neatplan.modules.scheduler.jobs import sweep_and_notify
from neatplan.modules.schedules.service import OverdueItem, SubjectKind

CONFIG = SMTPConfig(
    host="smtp.example.com",
    port=587,
    user="bot@example.com",
    password="secret",
    from_address="NeatPlan <bot@example.com>",
    enabled=True,
)


@pytest.fixture
def smtp_mock():
    """Patch smtplib.SMTP and yield the server object used in the with-block."""
    with patch("neatplan.modules.email.service.smtplib.SMTP") as smtp_cls:
        server = MagicMock()
        smtp_cls.return_value.__enter__.return_value = server
        yield smtp_cls, server


@pytest.fixture
def no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(NotificationService._send_with_retry.retry, "wait", wait_none())


class TestSMTPConfig:
    """Tests for the SMTP configuration object."""

    def test_port_range(self) -> None:
        with pytest.raises(ValidationError):
            SMTPConfig(port=0)
        with pytest.raises(ValidationError):
            SMTPConfig(port=70000)

    def test_immutable(self) -> None:
        with pytest.raises(ValidationError):
            CONFIG.host = "other"

    def test_masked_hides_password(self) -> None:
        assert CONFIG.masked()["password"] == PASSWORD_PLACEHOLDER
        assert SMTPConfig().masked()["password"] == ""

    def test_address_of(self) -> None:
        assert address_of("NeatPlan <bot@example.com>") == "bot@example.com"
        assert address_of("bot@example.com") == "bot@example.com"


class TestSMTPConfigStore:
    """Tests for the admin-edited SMTP config file."""

    def test_missing_file_gives_disabled_config(self, tmp_path: Path) -> None:
        assert SMTPConfigStore(tmp_path / "none.json").load() == SMTPConfig()

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = SMTPConfigStore(tmp_path / "cfg" / "smtp.json")
        store.save(CONFIG)
        assert store.load() == CONFIG
        assert json.loads(store.path.read_text())["host"] == "smtp.example.com"

    def test_placeholder_keeps_stored_password(self, tmp_path: Path) -> None:
        store = SMTPConfigStore(tmp_path / "smtp.json")
        store.save(CONFIG)
        saved = store.save(CONFIG.model_copy(update={"password": PASSWORD_PLACEHOLDER, "port": 2525}))
        assert saved.password == "secret"
        assert store.load().port == 2525

    @pytest.mark.parametrize(
        ("update", "message"),
        [
            ({"host": ""}, "required"),
            ({"user": "not-an-address"}, "username"),
            ({"from_address": "NeatPlan <nope>"}, "from address"),
            ({"password": ""}, "Password"),
        ],
    )
    def test_enabled_config_is_validated(self, tmp_path: Path, update: dict, message: str) -> None:
        store = SMTPConfigStore(tmp_path / "smtp.json")
        with pytest.raises(InvalidInputError, match=message):
            store.save(CONFIG.model_copy(update=update))
        assert not store.path.exists()

    def test_disabled_config_saved_as_is(self, tmp_path: Path) -> None:
        store = SMTPConfigStore(tmp_path / "smtp.json")
        store.save(SMTPConfig(host="", enabled=False))
        assert store.load().enabled is False

    def test_unreadable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "smtp.json"
        path.write_text("{not json")
        assert SMTPConfigStore(path).load() == SMTPConfig()

    def test_environment_wins_over_file(self, tmp_path: Path) -> None:
        store = SMTPConfigStore(tmp_path / "smtp.json")
        store.save(CONFIG.model_copy(update={"port": 2525}))
        settings = Settings(_env_file=None, smtp_host="env.example.com", smtp_pass="env-pw")
        resolved = store.resolve(settings)
        assert resolved.host == "env.example.com"
        assert resolved.password == "env-pw"
        assert resolved.user == "bot@example.com"
        assert resolved.port == 2525
        assert resolved.enabled is True

        explicit_port = store.resolve(Settings(_env_file=None, smtp_port=465))
        assert explicit_port.port == 465
        assert explicit_port.host == "smtp.example.com"


class TestTemplates:
    """Tests for notification bodies."""

    def test_default_subjects(self) -> None:
        assert templates.default_subject(NotificationType.TASK_REMINDER) == "Task Reminder - NeatPlan"
        assert templates.default_subject(NotificationType.COMPLETION_NOTICE) == "Task Completed - NeatPlan"

    def test_values_are_escaped(self) -> None:
        html = templates.render(NotificationType.SYSTEM_ALERT, {"alert_type": "<script>x</script>", "message": "a & b"})
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "a &amp; b" in html

    def test_optional_new_date(self) -> None:
        data = {"user_name": "Ann", "change_type": "Moved", "description": "Kitchen"}
        assert "New Date" not in templates.render(NotificationType.SCHEDULE_UPDATE, data)
        assert "New Date: 2024-04-01" in templates.render(
            NotificationType.SCHEDULE_UPDATE, {**data, "new_date": "2024-04-01"}
        )


class TestNotificationService:
    """Tests for sending notifications."""

    @pytest.mark.asyncio
    async def test_disabled_returns_false(self, smtp_mock) -> None:
        smtp_cls, _ = smtp_mock
        service = NotificationService(CONFIG.model_copy(update={"enabled": False}))
        assert await service.send_system_alert("a@example.com", user_name="A", alert_type="t", message="m") is False
        smtp_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_with_starttls(self, smtp_mock) -> None:
        smtp_cls, server = smtp_mock
        service = NotificationService(CONFIG)
        sent = await service.send_task_reminder(
            "ann@example.com", user_name="Ann", task_name="Mop", room_name="Kitchen", due_date="2024-03-05",
        )
        assert sent is True
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        from_addr, to_addrs, body = server.sendmail.call_args.args
        assert from_addr == "bot@example.com"
        assert to_addrs == ["ann@example.com"]
        assert "Subject: Task Reminder - NeatPlan" in body

    @pytest.mark.asyncio
    async def test_implicit_tls_uses_smtp_ssl(self) -> None:
        with patch("neatplan.modules.email.service.smtplib.SMTP_SSL") as ssl_cls:
            server = MagicMock()
            ssl_cls.return_value.__enter__.return_value = server
            service = NotificationService(CONFIG.model_copy(update={"secure": True, "port": 465}))
            assert await service.send_notification("a@example.com", "completion_notice", {"task_name": "x"})
            ssl_cls.assert_called_once_with("smtp.example.com", 465, timeout=30)
            server.starttls.assert_not_called()

    @pytest.mark.asyncio
    async def test_custom_subject(self, smtp_mock) -> None:
        _, server = smtp_mock
        await NotificationService(CONFIG).send_notification(
            "a@example.com", NotificationType.SYSTEM_ALERT, {}, subject="Heads up",
        )
        assert "Subject: Heads up" in server.sendmail.call_args.args[2]

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self, smtp_mock, no_retry_wait) -> None:
        smtp_cls, server = smtp_mock
        server.sendmail.side_effect = smtplib.SMTPServerDisconnected("gone")
        service = NotificationService(CONFIG)
        assert await service.send_system_alert("a@example.com", user_name="A", alert_type="t", message="m") is False
        assert smtp_cls.call_count == 3

    @pytest.mark.asyncio
    async def test_recovers_on_retry(self, smtp_mock, no_retry_wait) -> None:
        _, server = smtp_mock
        server.sendmail.side_effect = [smtplib.SMTPServerDisconnected("gone"), {}]
        assert await NotificationService(CONFIG).send_system_alert(
            "a@example.com", user_name="A", alert_type="t", message="m",
        ) is True

    @pytest.mark.asyncio
    async def test_notify_overdue_one_alert_per_recipient(self, smtp_mock) -> None:
        _, server = smtp_mock
        items = [
            OverdueItem(SubjectKind.ROOM, "a1", "Kitchen 1", "Kitchen weekly", dt.datetime(2024, 3, 1, tzinfo=dt.UTC)),
            OverdueItem(SubjectKind.EQUIPMENT, "a2", "Scrubber", "Service", dt.datetime(2024, 3, 2, tzinfo=dt.UTC)),
        ]
        sent = await NotificationService(CONFIG).notify_overdue(items, ["ops@example.com", "boss@example.com"])
        assert sent == 2
        body = server.sendmail.call_args.args[2]
        assert "System Alert - NeatPlan" in body

    @pytest.mark.asyncio
    async def test_notify_overdue_nothing_to_do(self, smtp_mock) -> None:
        smtp_cls, _ = smtp_mock
        assert await NotificationService(CONFIG).notify_overdue([], ["ops@example.com"]) == 0
        smtp_cls.assert_not_called()


class TestSweepNotifications:
    """Tests for the sweep job's overdue alerts."""

    @pytest.mark.asyncio
    async def test_alerts_sent_for_new_overdue(self, settings, schedules, clock, weekly_schedule, room) -> None:
        settings.overdue_alert_recipients = "ops@example.com"
        await schedules.assign(SubjectKind.ROOM, room.id, weekly_schedule.id)
        notifier = MagicMock(spec=NotificationService)

        result = await sweep_and_notify(now=clock.now + dt.timedelta(days=9), notifier=notifier)

        assert result.updated == 1
        notifier.notify_overdue.assert_awaited_once()
        items, recipients = notifier.notify_overdue.await_args.args
        assert [i.subject_name for i in items] == ["Kitchen 1"]
        assert recipients == ["ops@example.com"]

    @pytest.mark.asyncio
    async def test_no_recipients_no_alert(self, settings, schedules, clock, weekly_schedule, room) -> None:
        await schedules.assign(SubjectKind.ROOM, room.id, weekly_schedule.id)
        notifier = MagicMock(spec=NotificationService)
        result = await sweep_and_notify(now=clock.now + dt.timedelta(days=9), notifier=notifier)
        assert result.updated == 1
        notifier.notify_overdue.assert_not_called()
