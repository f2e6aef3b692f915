"""Tests for the FastAPI API routes."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

import neatplan.database as db
from neatplan.main import app

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
CLEANER = {"X-User-Id": "cleaner-1", "X-User-Role": "cleaner"}


@pytest.fixture
def client(settings):
    """Client running the full app lifespan against a temporary database."""
    db._engine = None
    db._session_factory = None
    with TestClient(app) as test_client:
        yield test_client
    db._engine = None
    db._session_factory = None


@pytest.fixture
def kitchen(client: TestClient) -> dict:
    room = client.post("/api/rooms", json={"name": "Kitchen", "type": "KITCHEN"}, headers=ADMIN).json()
    schedule = client.post(
        "/api/schedules",
        json={
            "title": "Kitchen weekly",
            "tasks": [{"description": "Wipe counters", "frequency": "weekly"}, {"description": "Mop"}],
        },
        headers=ADMIN,
    ).json()
    return {"room": room, "schedule": schedule}


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAccess:
    """Tests for identity and permission checks."""

    def test_missing_identity(self, client: TestClient) -> None:
        assert client.get("/api/schedules").status_code == 401

    def test_unknown_role(self, client: TestClient) -> None:
        assert client.get("/api/schedules", headers={"X-User-Id": "x", "X-User-Role": "janitor"}).status_code == 401

    def test_cleaner_cannot_manage(self, client: TestClient) -> None:
        response = client.post("/api/schedules", json={"title": "x"}, headers=CLEANER)
        assert response.status_code == 403

    def test_cleaner_can_view(self, client: TestClient) -> None:
        assert client.get("/api/schedules", headers=CLEANER).status_code == 200

    def test_reports_are_admin_only(self, client: TestClient) -> None:
        assert client.get("/api/admin/completion-stats", headers=CLEANER).status_code == 403
        assert client.get("/api/admin/completion-stats", headers=ADMIN).status_code == 200


class TestSchedulesAPI:
    """Tests for schedule endpoints."""

    def test_create_and_fetch(self, client: TestClient, kitchen: dict) -> None:
        schedule = kitchen["schedule"]
        assert schedule["suggested_frequency"] == "WEEKLY"
        assert len(schedule["tasks"]) == 2

        fetched = client.get(f"/api/schedules/{schedule['id']}", headers=CLEANER).json()
        assert fetched["title"] == "Kitchen weekly"

    def test_validation_error_is_400(self, client: TestClient) -> None:
        response = client.post("/api/schedules", json={"title": ""}, headers=ADMIN)
        assert response.status_code == 400

    def test_update_and_delete(self, client: TestClient, kitchen: dict) -> None:
        schedule_id = kitchen["schedule"]["id"]
        response = client.put(f"/api/schedules/{schedule_id}", json={"title": "Kitchen"}, headers=ADMIN)
        assert response.json()["title"] == "Kitchen"
        assert client.delete(f"/api/schedules/{schedule_id}", headers=ADMIN).status_code == 200
        assert client.get(f"/api/schedules/{schedule_id}", headers=ADMIN).status_code == 404

    def test_tasks(self, client: TestClient, kitchen: dict) -> None:
        schedule_id = kitchen["schedule"]["id"]
        task = client.post(
            f"/api/schedules/{schedule_id}/tasks", json={"description": "Fridge"}, headers=ADMIN,
        ).json()
        assert task["position"] == 2
        response = client.put(
            f"/api/schedules/{schedule_id}/tasks/{task['id']}", json={"frequency": "monthly"}, headers=ADMIN,
        )
        assert response.json()["frequency"] == "monthly"
        assert client.delete(f"/api/schedules/{schedule_id}/tasks/{task['id']}", headers=ADMIN).status_code == 200
        assert client.delete(f"/api/schedules/{schedule_id}/tasks/{task['id']}", headers=ADMIN).status_code == 404

    def test_suggest_frequency(self, client: TestClient) -> None:
        response = client.post("/api/schedules/frequency/suggest", json={"text": "Fortnightly"}, headers=ADMIN)
        assert response.json() == {"frequency": "BIWEEKLY", "label": "Bi-weekly"}


class TestAssignmentsAPI:
    """Tests for assigning and completing schedules."""

    def test_assign_complete_cycle(self, client: TestClient, kitchen: dict) -> None:
        room_id = kitchen["room"]["id"]
        response = client.post(
            f"/api/rooms/{room_id}/schedules", json={"schedule_id": kitchen["schedule"]["id"]}, headers=ADMIN,
        )
        assert response.status_code == 201
        assignment = response.json()
        assert assignment["frequency"] == "WEEKLY"
        assert assignment["status"] == "PENDING"
        assert assignment["schedule"]["title"] == "Kitchen weekly"

        done = client.post(
            f"/api/rooms/{room_id}/schedules/{assignment['id']}/complete",
            json={"completed_tasks": ["Wipe counters"]},
            headers=CLEANER,
        )
        assert done.status_code == 200
        body = done.json()
        assert body["completion_log"]["completed_by"] == "cleaner-1"
        assert body["assignment"]["last_completed"] is not None

        listed = client.get(f"/api/rooms/{room_id}/schedules", headers=CLEANER).json()
        assert [a["id"] for a in listed] == [assignment["id"]]
        assert len(client.get("/api/room-schedules", headers=CLEANER).json()) == 1

    def test_duplicate_assignment_conflicts(self, client: TestClient, kitchen: dict) -> None:
        url = f"/api/rooms/{kitchen['room']['id']}/schedules"
        payload = {"schedule_id": kitchen["schedule"]["id"], "frequency": "DAILY"}
        assert client.post(url, json=payload, headers=ADMIN).status_code == 201
        assert client.post(url, json=payload, headers=ADMIN).status_code == 409

    def test_frequency_required(self, client: TestClient, kitchen: dict) -> None:
        bare = client.post("/api/schedules", json={"title": "Bare"}, headers=ADMIN).json()
        response = client.post(
            f"/api/rooms/{kitchen['room']['id']}/schedules", json={"schedule_id": bare["id"]}, headers=ADMIN,
        )
        assert response.status_code == 400
        assert "Frequency is required" in response.json()["detail"]

    def test_complete_for_other_room_rejected(self, client: TestClient, kitchen: dict) -> None:
        other = client.post("/api/rooms", json={"name": "Office"}, headers=ADMIN).json()
        assignment = client.post(
            f"/api/rooms/{kitchen['room']['id']}/schedules",
            json={"schedule_id": kitchen["schedule"]["id"]},
            headers=ADMIN,
        ).json()
        response = client.post(
            f"/api/rooms/{other['id']}/schedules/{assignment['id']}/complete", json={}, headers=CLEANER,
        )
        assert response.status_code == 400

    def test_pause_and_resume_for_other_room_rejected(self, client: TestClient, kitchen: dict) -> None:
        room_id = kitchen["room"]["id"]
        other = client.post("/api/rooms", json={"name": "Office"}, headers=ADMIN).json()
        assignment = client.post(
            f"/api/rooms/{room_id}/schedules", json={"schedule_id": kitchen["schedule"]["id"]}, headers=ADMIN,
        ).json()

        for action in ("pause", "resume"):
            response = client.post(f"/api/rooms/{other['id']}/schedules/{assignment['id']}/{action}", headers=ADMIN)
            assert response.status_code == 400
        wrong_kind = client.post(f"/api/equipment/{room_id}/schedules/{assignment['id']}/pause", headers=ADMIN)
        assert wrong_kind.status_code == 404

        listed = client.get(f"/api/rooms/{room_id}/schedules", headers=ADMIN).json()
        assert listed[0]["status"] == "PENDING"

    def test_unknown_room(self, client: TestClient) -> None:
        assert client.get("/api/rooms/missing/schedules", headers=CLEANER).status_code == 404

    def test_equipment_pause_and_resume(self, client: TestClient, kitchen: dict) -> None:
        equipment = client.post("/api/equipment", json={"name": "Scrubber"}, headers=ADMIN).json()
        assignment = client.post(
            f"/api/equipment/{equipment['id']}/schedules",
            json={"schedule_id": kitchen["schedule"]["id"], "frequency": "MONTHLY"},
            headers=ADMIN,
        ).json()
        base = f"/api/equipment/{equipment['id']}/schedules/{assignment['id']}"
        assert client.post(f"{base}/pause", headers=ADMIN).json()["status"] == "PAUSED"
        assert client.post(f"{base}/resume", headers=ADMIN).json()["status"] == "PENDING"
        assert client.delete(base, headers=ADMIN).status_code == 200
        assert client.get("/api/equipment-schedules", headers=ADMIN).json() == []

    def test_duplicate_equipment_name(self, client: TestClient) -> None:
        assert client.post("/api/equipment", json={"name": "Scrubber"}, headers=ADMIN).status_code == 201
        assert client.post("/api/equipment", json={"name": "Scrubber"}, headers=ADMIN).status_code == 409


class TestMaintenanceAPI:
    """Tests for the cron sweep endpoint."""

    def test_requires_secret(self, client: TestClient) -> None:
        assert client.post("/api/cron/check-schedules").status_code == 401
        assert client.post("/api/cron/check-schedules", headers={"X-Cron-Secret": "wrong"}).status_code == 401

    def test_runs_sweep(self, client: TestClient) -> None:
        response = client.post("/api/cron/check-schedules", headers={"X-Cron-Secret": "test-cron-secret"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["updated"] == 0

    def test_no_secret_configured(self, client: TestClient, settings) -> None:
        settings.cron_secret = ""
        assert client.post("/api/cron/check-schedules", headers={"X-Cron-Secret": ""}).status_code == 401


class TestDashboardAPI:
    def test_cleaner_dashboard(self, client: TestClient, kitchen: dict) -> None:
        client.post(
            f"/api/rooms/{kitchen['room']['id']}/schedules",
            json={"schedule_id": kitchen["schedule"]["id"]},
            headers=ADMIN,
        )
        board = client.get("/api/cleaner/dashboard", headers=CLEANER).json()
        assert board["stats"]["total_active_rooms"] == 1
        assert board["rooms"][0]["name"] == "Kitchen"

    def test_recent_activity(self, client: TestClient) -> None:
        feed = client.get("/api/admin/recent-activity", headers=ADMIN).json()
        assert feed["activities"] == []


class TestSmtpAPI:
    """Tests for SMTP settings endpoints."""

    def test_save_and_read_masked(self, client: TestClient) -> None:
        payload = {
            "host": "smtp.example.com",
            "port": 587,
            "user": "bot@example.com",
            "password": "secret",
            "from_address": "bot@example.com",
            "enabled": True,
        }
        assert client.post("/api/admin/smtp-config", json=payload, headers=ADMIN).status_code == 200
        config = client.get("/api/admin/smtp-config", headers=ADMIN).json()
        assert config["host"] == "smtp.example.com"
        assert config["password"] != "secret"

    def test_invalid_config_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/admin/smtp-config", json={"enabled": True, "host": "smtp.example.com"}, headers=ADMIN,
        )
        assert response.status_code == 400

    def test_cleaner_cannot_touch_smtp(self, client: TestClient) -> None:
        assert client.get("/api/admin/smtp-config", headers=CLEANER).status_code == 403

    def test_smtp_test_requires_config(self, client: TestClient) -> None:
        assert client.post("/api/admin/smtp-test", json={"to": "a@example.com"}, headers=ADMIN).status_code == 400

    def test_smtp_test_sends(self, client: TestClient) -> None:
        client.post(
            "/api/admin/smtp-config",
            json={"host": "smtp.example.com", "user": "bot@example.com", "password": "pw", "enabled": False},
            headers=ADMIN,
        )
        with patch(
            "neatplan.api.routes.NotificationService.send_test", new=AsyncMock(return_value=True),
        ) as send_test:
            response = client.post("/api/admin/smtp-test", json={"to": "a@example.com"}, headers=ADMIN)
        assert response.status_code == 200
        send_test.assert_awaited_once_with("a@example.com")


class TestCleanerRoomAPI:
    def test_room_view(self, client: TestClient, kitchen: dict) -> None:
        room_id = kitchen["room"]["id"]
        client.post(f"/api/rooms/{room_id}/schedules", json={"schedule_id": kitchen["schedule"]["id"]}, headers=ADMIN)

        view = client.get(f"/api/cleaner/rooms/{room_id}", headers=CLEANER).json()
        assert view["name"] == "Kitchen"
        assert view["schedules"][0]["completed_today"] is False
        assert [t["description"] for t in view["schedules"][0]["tasks"]] == ["Wipe counters", "Mop"]

    def test_unknown_room(self, client: TestClient) -> None:
        assert client.get("/api/cleaner/rooms/missing", headers=CLEANER).status_code == 404


class TestManualSweepAPI:
    def test_admin_only(self, client: TestClient) -> None:
        assert client.post("/api/admin/check-schedules", headers=CLEANER).status_code == 403
        response = client.post("/api/admin/check-schedules", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["success"] is True


class TestNotificationsAPI:
    """Tests for sending notification e-mails on request."""

    @pytest.fixture
    def smtp_ready(self, client: TestClient) -> None:
        client.post(
            "/api/admin/smtp-config",
            json={
                "host": "smtp.example.com",
                "user": "bot@example.com",
                "password": "pw",
                "from_address": "bot@example.com",
                "enabled": True,
            },
            headers=ADMIN,
        )

    def test_requires_identity(self, client: TestClient) -> None:
        response = client.post("/api/notifications/email", json={"type": "system_alert", "recipient_email": "a@b.c"})
        assert response.status_code == 401

    def test_not_configured(self, client: TestClient) -> None:
        response = client.post(
            "/api/notifications/email",
            json={"type": "system_alert", "recipient_email": "ops@example.com"},
            headers=CLEANER,
        )
        assert response.status_code == 200
        assert response.json() == {"message": "Email service not configured", "sent": False}

    def test_unknown_type_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/notifications/email", json={"type": "newsletter", "recipient_email": "ops@example.com"}, headers=ADMIN,
        )
        assert response.status_code == 400

    def test_task_reminder_dispatched(self, client: TestClient, smtp_ready) -> None:
        with patch(
            "neatplan.api.routes.NotificationService.send_task_reminder", new=AsyncMock(return_value=True),
        ) as reminder:
            response = client.post(
                "/api/notifications/email",
                json={
                    "type": "task_reminder",
                    "recipient_email": "ann@example.com",
                    "data": {"user_name": "Ann", "task_name": "Mop", "room_name": "Kitchen", "due_date": "2024-03-05"},
                },
                headers=CLEANER,
            )
        assert response.json()["sent"] is True
        reminder.assert_awaited_once_with(
            "ann@example.com", user_name="Ann", task_name="Mop", room_name="Kitchen", due_date="2024-03-05",
        )

    def test_completion_notice_defaults_user_name(self, client: TestClient, smtp_ready) -> None:
        with patch(
            "neatplan.api.routes.NotificationService.send_completion_notice", new=AsyncMock(return_value=False),
        ) as notice:
            response = client.post(
                "/api/notifications/email",
                json={"type": "completion_notice", "recipient_email": "boss@example.com", "data": {"task_name": "Mop"}},
                headers=ADMIN,
            )
        body = response.json()
        assert body["sent"] is False
        assert body["message"] == "Failed to send email"
        assert notice.await_args.kwargs["user_name"] == "User"
