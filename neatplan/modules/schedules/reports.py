"""Read-side shaping for the cleaner dashboard and the admin reports."""

from __future__ import annotations

import datetime as dt
from collections import Counter, defaultdict
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from neatplan.modules.schedules.engine import ensure_utc
from neatplan.modules.schedules.models import ScheduleStatus

if TYPE_CHECKING:
    from neatplan.modules.schedules.service import SubjectKind

ACTIVE_STATUSES = (ScheduleStatus.PENDING, ScheduleStatus.OVERDUE, ScheduleStatus.COMPLETED)

# Most urgent first.
PRIORITIES = ("OVERDUE", "DUE_TODAY", "COMPLETED", "UPCOMING")

_MINUTES_PER_TASK = 5
_MIN_MINUTES = 15

_SCHEDULE_TYPES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("deep clean", "deep-clean"), "Deep Clean"),
    (("maintenance", "repair"), "Maintenance"),
    (("inspection", "check"), "Inspection"),
)

_FREQUENCY_TYPES: tuple[tuple[str, str], ...] = (
    ("daily", "Daily Clean"),
    ("weekly", "Weekly Clean"),
    ("monthly", "Monthly Clean"),
    ("quarterly", "Quarterly Clean"),
)


def day_bounds(now: dt.datetime) -> tuple[dt.datetime, dt.datetime]:
    """Start of the UTC day containing ``now`` and the start of the next."""
    start = ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + dt.timedelta(days=1)


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}min"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}min" if rest else f"{hours}h"


def estimated_minutes(task_count: int) -> int:
    return max(_MIN_MINUTES, task_count * _MINUTES_PER_TASK)


def estimated_duration(task_count: int) -> str:
    """Rough time a schedule takes; an empty checklist is budgeted at 30 minutes."""
    if task_count == 0:
        return "30min"
    return format_duration(estimated_minutes(task_count))


def schedule_type(title: str, frequency: str) -> str:
    """Classify a schedule for display from its title, falling back to its frequency."""
    lowered = title.lower()
    for keywords, label in _SCHEDULE_TYPES:
        if any(keyword in lowered for keyword in keywords):
            return label
    for keyword, label in _FREQUENCY_TYPES:
        if keyword in lowered or frequency == keyword.upper():
            return label
    return "Standard Clean"


def room_priority(assignments: list[Any], now: dt.datetime) -> str:
    statuses = Counter(a.status for a in assignments)
    if statuses[ScheduleStatus.OVERDUE]:
        return "OVERDUE"
    today = ensure_utc(now).date()
    if any(
        a.status == ScheduleStatus.PENDING and ensure_utc(a.next_due).date() == today
        for a in assignments
    ):
        return "DUE_TODAY"
    if statuses[ScheduleStatus.COMPLETED]:
        return "COMPLETED"
    return "UPCOMING"


def _schedule_entry(assignment: Any) -> dict[str, Any]:
    schedule = assignment.schedule
    return {
        "id": assignment.id,
        "title": schedule.title,
        "frequency": assignment.frequency,
        "next_due": ensure_utc(assignment.next_due).isoformat(),
        "status": assignment.status,
        "tasks_count": len(schedule.tasks),
        "estimated_duration": estimated_duration(len(schedule.tasks)),
        "schedule_type": schedule_type(schedule.title, assignment.frequency),
    }


def build_cleaner_dashboard(assignments: Iterable[Any], completed_today: int, now: dt.datetime) -> dict[str, Any]:
    """Group active room assignments per room and rank the rooms by urgency."""
    per_room: dict[str, list[Any]] = defaultdict(list)
    for assignment in assignments:
        per_room[assignment.room_id].append(assignment)

    order = {ScheduleStatus.OVERDUE: 0, ScheduleStatus.PENDING: 1, ScheduleStatus.COMPLETED: 2}

    rooms = []
    for room_assignments in per_room.values():
        room_assignments.sort(key=lambda a: (order[ScheduleStatus(a.status)], ensure_utc(a.next_due)))
        room = room_assignments[0].room
        statuses = Counter(a.status for a in room_assignments)
        task_counts = [len(a.schedule.tasks) for a in room_assignments]
        rooms.append({
            "id": room.id,
            "name": room.name,
            "type": room.type,
            "floor": room.floor or "Unknown Floor",
            "priority": room_priority(room_assignments, now),
            "next_due": min(ensure_utc(a.next_due) for a in room_assignments).isoformat(),
            "summary": {
                "total_schedules": len(room_assignments),
                "total_tasks": sum(task_counts),
                "estimated_duration": format_duration(sum(estimated_minutes(n) for n in task_counts)),
                "overdue_count": statuses[ScheduleStatus.OVERDUE],
                "pending_count": statuses[ScheduleStatus.PENDING],
                "completed_count": statuses[ScheduleStatus.COMPLETED],
            },
            "schedules": [_schedule_entry(a) for a in room_assignments],
        })

    rooms.sort(key=lambda r: (PRIORITIES.index(r["priority"]), r["name"]))
    priorities = Counter(r["priority"] for r in rooms)
    return {
        "rooms": rooms,
        "stats": {
            "total_tasks": sum(r["summary"]["total_tasks"] for r in rooms),
            "completed_today": completed_today,
            "due_today_rooms": priorities["DUE_TODAY"],
            "overdue_rooms": priorities["OVERDUE"],
            "completed_rooms": priorities["COMPLETED"],
            "pending_rooms": priorities["UPCOMING"] + priorities["DUE_TODAY"],
            "total_active_rooms": len(rooms),
        },
    }


def completed_on_day(assignment: Any, now: dt.datetime) -> bool:
    if assignment.last_completed is None:
        return False
    day_start, day_end = day_bounds(now)
    return day_start <= ensure_utc(assignment.last_completed) < day_end


def build_cleaner_room(room: Any, assignments: Iterable[Any], now: dt.datetime) -> dict[str, Any]:
    """One room's checklist for a cleaner; work already done today goes last."""
    schedules = []
    for assignment in sorted(assignments, key=lambda a: ensure_utc(a.next_due)):
        entry = _schedule_entry(assignment)
        entry["completed_today"] = completed_on_day(assignment, now)
        entry["tasks"] = [
            {
                "id": task.id,
                "description": task.description,
                "frequency": task.frequency,
                "additional_notes": task.additional_notes,
            }
            for task in assignment.schedule.tasks
        ]
        schedules.append(entry)
    schedules.sort(key=lambda entry: entry["completed_today"])

    return {
        "id": room.id,
        "name": room.name,
        "type": room.type,
        "floor": room.floor or "Unknown Floor",
        "description": room.description,
        "schedules": schedules,
    }


def daily_counts(stamps: Iterable[dt.datetime], window_start: dt.datetime, days: int) -> dict[str, list]:
    """Bucket completion timestamps into ``days`` UTC days starting at ``window_start``."""
    per_day = Counter(ensure_utc(stamp).date() for stamp in stamps)
    labels = [(window_start + dt.timedelta(days=offset)).date() for offset in range(days)]
    return {
        "days": [day.isoformat() for day in labels],
        "counts": [per_day[day] for day in labels],
    }


def activity_entry(kind: "SubjectKind", log: Any) -> dict[str, Any]:
    """One line of the admin activity feed."""
    assignment = log.assignment
    subject = assignment.subject
    title = assignment.schedule.title
    if kind == "room":
        headline = f'Room "{subject.name}" cleaned'
        extra = {"room_name": subject.name, "room_type": subject.type, "floor": subject.floor}
    else:
        headline = f'Equipment "{subject.name}" serviced'
        extra = {"equipment_name": subject.name, "equipment_type": subject.type, "location": subject.location}
    return {
        "id": log.id,
        "type": f"{kind}_completion",
        "title": headline,
        "description": f"{title} completed",
        "timestamp": ensure_utc(log.completed_at).isoformat(),
        "completed_by": log.completed_by,
        "metadata": {
            **extra,
            "schedule_title": title,
            "completed_tasks": len(log.completed_tasks or []),
            "notes": log.notes,
        },
    }
