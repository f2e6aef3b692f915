"""API route definitions for NeatPlan."""

from __future__ import annotations

import datetime as dt
import hmac
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from neatplan import __version__
from neatplan.config import get_settings
from neatplan.logging_config import get_logger
from neatplan.modules.email import NotificationService, NotificationType, SMTPConfig, SMTPConfigStore
from neatplan.modules.facilities.models import EquipmentIn, EquipmentRead, RoomIn, RoomRead
from neatplan.modules.facilities.service import FacilityService
from neatplan.modules.scheduler.jobs import sweep_and_notify
from neatplan.modules.schedules import engine
from neatplan.modules.schedules.models import (
    AssignmentRead,
    CompletionResult,
    ScheduleFrequency,
    ScheduleRead,
    ScheduleTaskIn,
    ScheduleTaskRead,
)
from neatplan.modules.schedules.service import ScheduleService, SubjectKind
from neatplan.security.rbac import Permission, Role, UserIdentity

logger = get_logger(__name__)

router = APIRouter()


# ── Request / Response Models ────────────────────────────────────────

class ScheduleCreate(BaseModel):
    title: str = Field(..., min_length=1)
    detected_frequency: Optional[str] = None
    suggested_frequency: Optional[ScheduleFrequency] = None
    tasks: list[ScheduleTaskIn] = Field(default_factory=list)


class ScheduleUpdate(BaseModel):
    title: Optional[str] = None
    detected_frequency: Optional[str] = None
    suggested_frequency: Optional[ScheduleFrequency] = None


class TaskUpdate(BaseModel):
    description: Optional[str] = None
    frequency: Optional[str] = None
    additional_notes: Optional[str] = None


class FrequencySuggestRequest(BaseModel):
    """Free-text frequency and/or tasks from a document analysis."""

    text: Optional[str] = None
    tasks: list[ScheduleTaskIn] = Field(default_factory=list)


class AssignRequest(BaseModel):
    schedule_id: str
    frequency: Optional[ScheduleFrequency] = None


class CompleteRequest(BaseModel):
    completed_tasks: list[Any] = Field(default_factory=list)
    notes: Optional[str] = None


class SmtpTestRequest(BaseModel):
    to: str


class EmailNotificationRequest(BaseModel):
    type: NotificationType
    recipient_email: str = Field(..., min_length=3)
    data: dict[str, Any] = Field(default_factory=dict)


# ── Identity ─────────────────────────────────────────────────────────

async def current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> UserIdentity:
    """Identity forwarded by the authenticating proxy."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        role = Role((x_user_role or Role.CLEANER).lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_user_role}") from None
    return UserIdentity(user_id=x_user_id, role=role)


def require(permission: Permission):
    """Dependency that admits only users holding ``permission``."""

    async def _check(user: UserIdentity = Depends(current_user)) -> UserIdentity:
        try:
            user.require_permission(permission)
        except PermissionError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        return user

    return _check


def _smtp_store() -> SMTPConfigStore:
    return SMTPConfigStore(get_settings().smtp_config_file)


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health_check() -> dict[str, Any]:
    return {"status": "healthy", "version": __version__}


# ── Schedules ────────────────────────────────────────────────────────

@router.get("/schedules", response_model=list[ScheduleRead])
async def list_schedules(_: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
    return await ScheduleService().list_schedules()


@router.post("/schedules", response_model=ScheduleRead, status_code=201)
async def create_schedule(
    request: ScheduleCreate,
    _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> Any:
    return await ScheduleService().create_schedule(
        title=request.title,
        tasks=request.tasks,
        detected_frequency=request.detected_frequency,
        suggested_frequency=request.suggested_frequency,
    )


@router.post("/schedules/frequency/suggest")
async def suggest_frequency(
    request: FrequencySuggestRequest,
    _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> dict[str, Any]:
    """What frequency an import with this wording and these tasks would get."""
    suggestion = engine.suggest_frequency(request.text, request.tasks)
    return {"frequency": suggestion.value, "label": engine.frequency_label(suggestion)}


@router.get("/schedules/{schedule_id}", response_model=ScheduleRead)
async def get_schedule(schedule_id: str, _: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
    schedule = await ScheduleService().get_schedule(schedule_id)
    if schedule is None:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.put("/schedules/{schedule_id}", response_model=ScheduleRead)
async def update_schedule(
    schedule_id: str,
    request: ScheduleUpdate,
    _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> Any:
    return await ScheduleService().update_schedule(schedule_id, **request.model_dump(exclude_unset=True))


@router.delete("/schedules/{schedule_id}")
async def delete_schedule(
    schedule_id: str, _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> dict[str, str]:
    if not await ScheduleService().delete_schedule(schedule_id):
        raise HTTPException(status_code=404, detail="Schedule not found")
    return {"status": "deleted"}


@router.post("/schedules/{schedule_id}/tasks", response_model=ScheduleTaskRead, status_code=201)
async def add_task(
    schedule_id: str,
    request: ScheduleTaskIn,
    _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> Any:
    return await ScheduleService().add_task(
        schedule_id, request.description, request.frequency, request.additional_notes,
    )


@router.put("/schedules/{schedule_id}/tasks/{task_id}", response_model=ScheduleTaskRead)
async def update_task(
    schedule_id: str,
    task_id: str,
    request: TaskUpdate,
    _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> Any:
    return await ScheduleService().update_task(schedule_id, task_id, **request.model_dump(exclude_unset=True))


@router.delete("/schedules/{schedule_id}/tasks/{task_id}")
async def remove_task(
    schedule_id: str, task_id: str, _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
) -> dict[str, str]:
    if not await ScheduleService().remove_task(schedule_id, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


# ── Rooms ────────────────────────────────────────────────────────────

@router.get("/rooms", response_model=list[RoomRead])
async def list_rooms(_: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
    return await FacilityService().list_rooms()


@router.post("/rooms", response_model=RoomRead, status_code=201)
async def create_room(request: RoomIn, _: UserIdentity = Depends(require(Permission.MANAGE_FACILITIES))) -> Any:
    return await FacilityService().create_room(request)


@router.get("/rooms/{room_id}", response_model=RoomRead)
async def get_room(room_id: str, _: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
    room = await FacilityService().get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@router.put("/rooms/{room_id}", response_model=RoomRead)
async def update_room(
    room_id: str, request: RoomIn, _: UserIdentity = Depends(require(Permission.MANAGE_FACILITIES)),
) -> Any:
    return await FacilityService().update_room(room_id, request)


@router.delete("/rooms/{room_id}")
async def delete_room(room_id: str, _: UserIdentity = Depends(require(Permission.MANAGE_FACILITIES))) -> dict[str, str]:
    if not await FacilityService().delete_room(room_id):
        raise HTTPException(status_code=404, detail="Room not found")
    return {"status": "deleted"}


# ── Equipment ────────────────────────────────────────────────────────

@router.get("/equipment", response_model=list[EquipmentRead])
async def list_equipment(_: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
    return await FacilityService().list_equipment()


@router.post("/equipment", response_model=EquipmentRead, status_code=201)
async def create_equipment(
    request: EquipmentIn, _: UserIdentity = Depends(require(Permission.MANAGE_FACILITIES)),
) -> Any:
    return await FacilityService().create_equipment(request)


@router.get("/equipment/{equipment_id}", response_model=EquipmentRead)
async def get_equipment(equipment_id: str, _: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
    equipment = await FacilityService().get_equipment(equipment_id)
    if equipment is None:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return equipment


@router.put("/equipment/{equipment_id}", response_model=EquipmentRead)
async def update_equipment(
    equipment_id: str, request: EquipmentIn, _: UserIdentity = Depends(require(Permission.MANAGE_FACILITIES)),
) -> Any:
    return await FacilityService().update_equipment(equipment_id, request)


@router.delete("/equipment/{equipment_id}")
async def delete_equipment(
    equipment_id: str, _: UserIdentity = Depends(require(Permission.MANAGE_FACILITIES)),
) -> dict[str, str]:
    if not await FacilityService().delete_equipment(equipment_id):
        raise HTTPException(status_code=404, detail="Equipment not found")
    return {"status": "deleted"}


# ── Assignments ──────────────────────────────────────────────────────
# Rooms and equipment expose the same assignment routes.

async def _require_subject(kind: SubjectKind, subject_id: str) -> None:
    facilities = FacilityService()
    found = (
        await facilities.get_room(subject_id)
        if kind == SubjectKind.ROOM
        else await facilities.get_equipment(subject_id)
    )
    if found is None:
        raise HTTPException(status_code=404, detail=f"{kind.value.capitalize()} not found")


def _assignment_routes(prefix: str, kind: SubjectKind) -> None:
    tag = f"{kind.value}-schedules"

    @router.get(f"{prefix}/{{subject_id}}/schedules", response_model=list[AssignmentRead], name=f"list_{tag}")
    async def list_subject_assignments(
        subject_id: str, _: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES)),
    ) -> Any:
        await _require_subject(kind, subject_id)
        service = ScheduleService()
        await service.refresh_statuses()
        return await service.list_assignments(kind, subject_id)

    @router.post(
        f"{prefix}/{{subject_id}}/schedules",
        response_model=AssignmentRead,
        status_code=201,
        name=f"assign_{tag}",
    )
    async def assign_schedule(
        subject_id: str,
        request: AssignRequest,
        _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
    ) -> Any:
        return await ScheduleService().assign(kind, subject_id, request.schedule_id, request.frequency)

    @router.delete(f"{prefix}/{{subject_id}}/schedules/{{assignment_id}}", name=f"unassign_{tag}")
    async def unassign_schedule(
        subject_id: str,
        assignment_id: str,
        _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
    ) -> dict[str, str]:
        service = ScheduleService()
        assignment = await service.get_assignment(kind, assignment_id)
        if assignment is None or assignment.subject_id != subject_id:
            raise HTTPException(status_code=404, detail="Assignment not found")
        await service.unassign(kind, assignment_id)
        return {"status": "deleted"}

    @router.post(
        f"{prefix}/{{subject_id}}/schedules/{{assignment_id}}/complete",
        response_model=CompletionResult,
        name=f"complete_{tag}",
    )
    async def complete_schedule(
        subject_id: str,
        assignment_id: str,
        request: CompleteRequest,
        user: UserIdentity = Depends(require(Permission.COMPLETE_SCHEDULES)),
    ) -> Any:
        outcome = await ScheduleService().complete_assignment(
            kind,
            assignment_id,
            completed_tasks=request.completed_tasks,
            notes=request.notes,
            completed_by=user.user_id,
            subject_id=subject_id,
        )
        return CompletionResult.model_validate(outcome)

    @router.post(
        f"{prefix}/{{subject_id}}/schedules/{{assignment_id}}/pause",
        response_model=AssignmentRead,
        name=f"pause_{tag}",
    )
    async def pause_schedule(
        subject_id: str,
        assignment_id: str,
        _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
    ) -> Any:
        return await ScheduleService().pause(kind, assignment_id, subject_id=subject_id)

    @router.post(
        f"{prefix}/{{subject_id}}/schedules/{{assignment_id}}/resume",
        response_model=AssignmentRead,
        name=f"resume_{tag}",
    )
    async def resume_schedule(
        subject_id: str,
        assignment_id: str,
        _: UserIdentity = Depends(require(Permission.MANAGE_SCHEDULES)),
    ) -> Any:
        return await ScheduleService().resume(kind, assignment_id, subject_id=subject_id)

    @router.get(f"/{tag}", response_model=list[AssignmentRead], name=f"all_{tag}")
    async def list_all_assignments(_: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> Any:
        service = ScheduleService()
        await service.refresh_statuses()
        return await service.list_assignments(kind)


_assignment_routes("/rooms", SubjectKind.ROOM)
_assignment_routes("/equipment", SubjectKind.EQUIPMENT)


# ── Maintenance ──────────────────────────────────────────────────────

@router.post("/cron/check-schedules")
async def cron_check_schedules(x_cron_secret: Optional[str] = Header(None)) -> dict[str, Any]:
    """Sweep entry point for an external cron. Needs the shared secret."""
    secret = get_settings().cron_secret
    if not secret or not x_cron_secret or not hmac.compare_digest(secret, x_cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")
    result = await sweep_and_notify()
    return {"success": True, **result.as_dict()}


@router.post("/admin/check-schedules")
async def admin_check_schedules(
    user: UserIdentity = Depends(require(Permission.RUN_MAINTENANCE)),
) -> dict[str, Any]:
    """Run the overdue sweep now, on behalf of a signed-in admin."""
    logger.info("manual_sweep_requested", user_id=user.user_id)
    result = await sweep_and_notify()
    return {"success": True, **result.as_dict()}


# ── Notifications ────────────────────────────────────────────────────

async def _dispatch_notification(
    notifier: NotificationService, kind: NotificationType, to: str, data: dict[str, Any], user_name: str,
) -> bool:
    if kind == NotificationType.TASK_REMINDER:
        return await notifier.send_task_reminder(
            to,
            user_name=user_name,
            task_name=data.get("task_name", ""),
            room_name=data.get("room_name", ""),
            due_date=data.get("due_date", ""),
        )
    if kind == NotificationType.SCHEDULE_UPDATE:
        return await notifier.send_schedule_update(
            to,
            user_name=user_name,
            change_type=data.get("change_type", ""),
            description=data.get("description", ""),
            new_date=data.get("new_date"),
        )
    if kind == NotificationType.SYSTEM_ALERT:
        return await notifier.send_system_alert(
            to, user_name=user_name, alert_type=data.get("alert_type", ""), message=data.get("message", ""),
        )
    return await notifier.send_completion_notice(
        to,
        user_name=user_name,
        task_name=data.get("task_name", ""),
        room_name=data.get("room_name", ""),
        completed_by=data.get("completed_by", ""),
        completed_at=data.get("completed_at", ""),
    )


@router.post("/notifications/email")
async def send_email_notification(
    request: EmailNotificationRequest, user: UserIdentity = Depends(current_user),
) -> dict[str, Any]:
    """Send one templated notification e-mail."""
    notifier = NotificationService(_smtp_store().resolve(get_settings()))
    if not notifier.is_ready:
        logger.warning("email_not_configured", type=request.type.value)
        return {"message": "Email service not configured", "sent": False}

    user_name = request.data.get("user_name") or user.display_name or "User"
    sent = await _dispatch_notification(notifier, request.type, request.recipient_email, request.data, user_name)
    return {
        "message": "Email sent successfully" if sent else "Failed to send email",
        "sent": sent,
        "type": request.type.value,
        "recipient": request.recipient_email,
    }


# ── Cleaner ──────────────────────────────────────────────────────────

@router.get("/cleaner/dashboard")
async def cleaner_dashboard(_: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> dict[str, Any]:
    return await ScheduleService().cleaner_dashboard()


@router.get("/cleaner/rooms/{room_id}")
async def cleaner_room(room_id: str, _: UserIdentity = Depends(require(Permission.VIEW_SCHEDULES))) -> dict[str, Any]:
    return await ScheduleService().cleaner_room(room_id)


# ── Admin ────────────────────────────────────────────────────────────

@router.get("/admin/completion-stats")
async def completion_stats(
    days: int = Query(7, ge=1, le=90),
    _: UserIdentity = Depends(require(Permission.VIEW_REPORTS)),
) -> dict[str, Any]:
    return await ScheduleService().completion_stats(days=days)


@router.get("/admin/recent-activity")
async def recent_activity(
    limit: int = Query(10, ge=1, le=100),
    _: UserIdentity = Depends(require(Permission.VIEW_REPORTS)),
) -> dict[str, Any]:
    return await ScheduleService().recent_activity(limit=limit)


@router.get("/admin/smtp-config")
async def get_smtp_config(_: UserIdentity = Depends(require(Permission.MANAGE_SETTINGS))) -> dict[str, Any]:
    return _smtp_store().resolve(get_settings()).masked()


@router.post("/admin/smtp-config")
async def save_smtp_config(
    request: SMTPConfig, _: UserIdentity = Depends(require(Permission.MANAGE_SETTINGS)),
) -> dict[str, Any]:
    saved = _smtp_store().save(request)
    return {"message": "SMTP configuration saved successfully", "config": saved.masked()}


@router.post("/admin/smtp-test")
async def smtp_test(
    request: SmtpTestRequest, _: UserIdentity = Depends(require(Permission.MANAGE_SETTINGS)),
) -> dict[str, Any]:
    config = _smtp_store().resolve(get_settings())
    if not config.is_complete:
        raise HTTPException(status_code=400, detail="SMTP is not configured")
    # a test send is allowed before e-mail is switched on
    sent = await NotificationService(config.model_copy(update={"enabled": True})).send_test(request.to)
    if not sent:
        raise HTTPException(status_code=502, detail="Failed to send test e-mail")
    return {"success": True, "sent_at": dt.datetime.now(dt.UTC).isoformat()}
