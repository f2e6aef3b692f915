"""Schedule service: checklists, assignments, completions and the overdue sweep.

Room and equipment assignments are structurally identical, so every
assignment operation takes a ``SubjectKind`` and works on the matching pair
of tables. All date and status decisions are delegated to
``neatplan.modules.schedules.engine``.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from neatplan.database import session_scope
from neatplan.errors import (
    AssignmentExistsError,
    AssignmentMismatchError,
    FrequencyRequiredError,
    InvalidInputError,
    NotFoundError,
)
from neatplan.logging_config import get_logger
from neatplan.modules.facilities.models import Equipment, Room
from neatplan.modules.schedules import engine, reports
from neatplan.modules.schedules.models import (
    EquipmentSchedule,
    EquipmentScheduleCompletionLog,
    RoomSchedule,
    RoomScheduleCompletionLog,
    Schedule,
    ScheduleStatus,
    ScheduleTask,
    ScheduleTaskIn,
)

logger = get_logger(__name__)

Clock = Callable[[], dt.datetime]
TaskInput = Union[ScheduleTaskIn, Mapping[str, Any]]

_SCHEDULE_FIELDS = {"title", "detected_frequency", "suggested_frequency"}
_TASK_FIELDS = {"description", "frequency", "additional_notes"}


class SubjectKind(StrEnum):
    """What an assignment binds a schedule to."""

    ROOM = "room"
    EQUIPMENT = "equipment"


@dataclass(frozen=True)
class _KindTables:
    subject: type
    assignment: type
    log: type
    subject_fk: str
    subject_attr: str


_TABLES: dict[SubjectKind, _KindTables] = {
    SubjectKind.ROOM: _KindTables(Room, RoomSchedule, RoomScheduleCompletionLog, "room_id", "room"),
    SubjectKind.EQUIPMENT: _KindTables(
        Equipment, EquipmentSchedule, EquipmentScheduleCompletionLog, "equipment_id", "equipment",
    ),
}


@dataclass
class CompletionOutcome:
    """The log row appended and the assignment as updated by a completion."""

    completion_log: Any
    assignment: Any


@dataclass
class OverdueItem:
    kind: SubjectKind
    assignment_id: str
    subject_name: str
    schedule_title: str
    next_due: dt.datetime


@dataclass
class SweepResult:
    """Summary of one refresh_statuses pass."""

    now: dt.datetime
    examined: int = 0
    updated: int = 0
    transitions: Counter = field(default_factory=Counter)
    by_kind: Counter = field(default_factory=Counter)
    newly_overdue: list[OverdueItem] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "now": self.now.isoformat(),
            "examined": self.examined,
            "updated": self.updated,
            "transitions": dict(self.transitions),
            "by_kind": dict(self.by_kind),
            "newly_overdue": len(self.newly_overdue),
        }


def _utc(value: dt.datetime) -> dt.datetime:
    return engine.ensure_utc(value).astimezone(dt.UTC)


class ScheduleService:
    """Persistence-backed operations around the schedule cycle engine."""

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize the schedule service.

        Args:
            session: Optional database session. Without one every call runs in
                its own transactional scope.
            clock: Returns "now". Defaults to the UTC system clock; tests pin it.
        """
        self._session = session
        self._clock = clock or (lambda: dt.datetime.now(dt.UTC))

    def _now(self, now: Optional[dt.datetime] = None) -> dt.datetime:
        return _utc(now if now is not None else self._clock())

    # ── Schedules ───────────────────────────────────────────────────

    async def create_schedule(
        self,
        title: str,
        tasks: Optional[Iterable[TaskInput]] = None,
        detected_frequency: Optional[str] = None,
        suggested_frequency: Optional[engine.FrequencyLike] = None,
    ) -> Schedule:
        """Create a schedule with its tasks.

        Without an explicit suggestion, one is inferred from the detected
        wording or from the task frequencies. A schedule with no frequency
        information at all gets no suggestion.
        """
        if not title or not title.strip():
            raise InvalidInputError("Title is required")
        task_inputs = [ScheduleTaskIn.model_validate(task) for task in tasks or ()]

        if suggested_frequency is not None:
            suggestion: Optional[engine.ScheduleFrequency] = engine.coerce_frequency(suggested_frequency)
        elif detected_frequency or any(task.frequency for task in task_inputs):
            suggestion = engine.suggest_frequency(detected_frequency, task_inputs)
        else:
            suggestion = None

        async with session_scope(self._session) as session:
            schedule = Schedule(
                title=title.strip(),
                detected_frequency=detected_frequency,
                suggested_frequency=suggestion.value if suggestion else None,
                tasks=[
                    ScheduleTask(
                        description=task.description,
                        frequency=task.frequency,
                        additional_notes=task.additional_notes,
                        position=position,
                    )
                    for position, task in enumerate(task_inputs)
                ],
            )
            session.add(schedule)
            await session.flush()

        logger.info(
            "schedule_created",
            schedule_id=schedule.id,
            title=schedule.title,
            tasks=len(task_inputs),
            detected_frequency=detected_frequency,
            suggested_frequency=schedule.suggested_frequency,
        )
        return schedule

    async def list_schedules(self) -> list[Schedule]:
        async with session_scope(self._session) as session:
            result = await session.execute(select(Schedule).order_by(Schedule.title))
            return list(result.scalars().all())

    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        async with session_scope(self._session) as session:
            return await session.get(Schedule, schedule_id)

    async def update_schedule(self, schedule_id: str, **fields: Any) -> Schedule:
        """Update title, detected or suggested frequency."""
        unknown = set(fields) - _SCHEDULE_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown schedule fields: {', '.join(sorted(unknown))}")
        if "title" in fields and not (fields["title"] or "").strip():
            raise InvalidInputError("Title is required")
        if fields.get("suggested_frequency") is not None:
            fields["suggested_frequency"] = engine.coerce_frequency(fields["suggested_frequency"]).value

        async with session_scope(self._session) as session:
            schedule = await self._require(session, Schedule, schedule_id, "Schedule")
            for name, value in fields.items():
                setattr(schedule, name, value.strip() if name == "title" else value)
            await session.flush()

        logger.info("schedule_updated", schedule_id=schedule_id, fields=sorted(fields))
        return schedule

    async def delete_schedule(self, schedule_id: str) -> bool:
        """Delete a schedule, its tasks, assignments and their logs."""
        async with session_scope(self._session) as session:
            schedule = await session.get(Schedule, schedule_id)
            if schedule is None:
                return False
            await session.delete(schedule)
        logger.info("schedule_deleted", schedule_id=schedule_id)
        return True

    # ── Tasks ───────────────────────────────────────────────────────

    async def add_task(
        self,
        schedule_id: str,
        description: str,
        frequency: Optional[str] = None,
        additional_notes: Optional[str] = None,
    ) -> ScheduleTask:
        if not description or not description.strip():
            raise InvalidInputError("Description is required")
        async with session_scope(self._session) as session:
            await self._require(session, Schedule, schedule_id, "Schedule")
            position = await session.scalar(
                select(func.coalesce(func.max(ScheduleTask.position) + 1, 0)).where(
                    ScheduleTask.schedule_id == schedule_id
                )
            )
            task = ScheduleTask(
                schedule_id=schedule_id,
                description=description.strip(),
                frequency=frequency,
                additional_notes=additional_notes,
                position=position,
            )
            session.add(task)
            await session.flush()
        logger.info("schedule_task_added", schedule_id=schedule_id, task_id=task.id)
        return task

    async def update_task(self, schedule_id: str, task_id: str, **fields: Any) -> ScheduleTask:
        unknown = set(fields) - _TASK_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "description" in fields and not (fields["description"] or "").strip():
            raise InvalidInputError("Description is required")

        async with session_scope(self._session) as session:
            task = await self._get_task(session, schedule_id, task_id)
            for name, value in fields.items():
                setattr(task, name, value)
            await session.flush()
        logger.info("schedule_task_updated", schedule_id=schedule_id, task_id=task_id)
        return task

    async def remove_task(self, schedule_id: str, task_id: str) -> bool:
        async with session_scope(self._session) as session:
            try:
                task = await self._get_task(session, schedule_id, task_id)
            except NotFoundError:
                return False
            await session.delete(task)
        logger.info("schedule_task_removed", schedule_id=schedule_id, task_id=task_id)
        return True

    # ── Assignments ─────────────────────────────────────────────────

    async def assign(
        self,
        kind: SubjectKind,
        subject_id: str,
        schedule_id: str,
        frequency: Optional[engine.FrequencyLike] = None,
        now: Optional[dt.datetime] = None,
    ) -> Any:
        """Bind a schedule to a room or piece of equipment.

        An explicit ``frequency`` wins over the schedule's suggestion.

        Raises:
            NotFoundError: unknown schedule or subject.
            FrequencyRequiredError: no frequency given and none suggested.
            AssignmentExistsError: the pair is already assigned.
            UnsupportedFrequencyError: frequency outside the enum.
        """
        tables = _TABLES[SubjectKind(kind)]
        now = self._now(now)

        async with session_scope(self._session) as session:
            schedule = await self._require(session, Schedule, schedule_id, "Schedule")
            subject = await self._require(session, tables.subject, subject_id, kind.value.capitalize())

            chosen = frequency or schedule.suggested_frequency
            if not chosen:
                raise FrequencyRequiredError(
                    "Frequency is required. No frequency provided and schedule has no suggested frequency."
                )
            chosen = engine.coerce_frequency(chosen)

            existing = await session.scalar(
                select(tables.assignment.id).where(
                    getattr(tables.assignment, tables.subject_fk) == subject_id,
                    tables.assignment.schedule_id == schedule_id,
                )
            )
            if existing is not None:
                raise AssignmentExistsError(f"This schedule is already assigned to this {kind.value}")

            assignment = tables.assignment(
                **{tables.subject_attr: subject},
                schedule=schedule,
                frequency=chosen.value,
                start_date=now,
                next_due=engine.calculate_next_due_date(chosen, now),
                status=ScheduleStatus.PENDING.value,
            )
            session.add(assignment)
            await session.flush()

        logger.info(
            "schedule_assigned",
            kind=kind.value,
            assignment_id=assignment.id,
            subject_id=subject_id,
            schedule_id=schedule_id,
            frequency=chosen.value,
            explicit_frequency=frequency is not None,
            next_due=assignment.next_due.isoformat(),
        )
        return assignment

    async def list_assignments(self, kind: SubjectKind, subject_id: Optional[str] = None) -> list[Any]:
        """Assignments of one kind, soonest due first."""
        tables = _TABLES[SubjectKind(kind)]
        stmt = select(tables.assignment).order_by(tables.assignment.next_due)
        if subject_id is not None:
            stmt = stmt.where(getattr(tables.assignment, tables.subject_fk) == subject_id)
        async with session_scope(self._session) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_due(
        self, within: dt.timedelta, now: Optional[dt.datetime] = None,
    ) -> list[tuple[SubjectKind, Any]]:
        """Active assignments of both kinds due before ``now + within``, soonest first."""
        now = self._now(now)
        horizon = now + within
        due: list[tuple[SubjectKind, Any]] = []
        async with session_scope(self._session) as session:
            for kind, tables in _TABLES.items():
                model = tables.assignment
                rows = await session.execute(
                    select(model).where(
                        model.status != ScheduleStatus.PAUSED.value,
                        model.next_due <= horizon,
                    )
                )
                due.extend((kind, assignment) for assignment in rows.scalars())
        due.sort(key=lambda pair: _utc(pair[1].next_due))
        return due

    async def get_assignment(self, kind: SubjectKind, assignment_id: str) -> Optional[Any]:
        tables = _TABLES[SubjectKind(kind)]
        async with session_scope(self._session) as session:
            return await session.get(tables.assignment, assignment_id)

    async def unassign(self, kind: SubjectKind, assignment_id: str) -> bool:
        tables = _TABLES[SubjectKind(kind)]
        async with session_scope(self._session) as session:
            assignment = await session.get(tables.assignment, assignment_id)
            if assignment is None:
                return False
            await session.delete(assignment)
        logger.info("schedule_unassigned", kind=kind.value, assignment_id=assignment_id)
        return True

    async def pause(self, kind: SubjectKind, assignment_id: str, subject_id: Optional[str] = None) -> Any:
        """Take an assignment out of the cycle until resumed."""
        async with session_scope(self._session) as session:
            assignment = await self._owned_assignment(session, kind, assignment_id, subject_id)
            assignment.status = ScheduleStatus.PAUSED.value
        logger.info("assignment_paused", kind=kind.value, assignment_id=assignment_id)
        return assignment

    async def resume(
        self,
        kind: SubjectKind,
        assignment_id: str,
        subject_id: Optional[str] = None,
        now: Optional[dt.datetime] = None,
    ) -> Any:
        """Put a paused assignment back in the cycle with a freshly derived status."""
        now = self._now(now)
        async with session_scope(self._session) as session:
            assignment = await self._owned_assignment(session, kind, assignment_id, subject_id)
            if assignment.status == ScheduleStatus.PAUSED:
                assignment.status = ScheduleStatus.PENDING.value
                # a resumed assignment that was due long ago is OVERDUE right away
                if engine.is_overdue(assignment.next_due, now):
                    assignment.status = ScheduleStatus.OVERDUE.value
        logger.info("assignment_resumed", kind=kind.value, assignment_id=assignment_id, status=assignment.status)
        return assignment

    async def complete_assignment(
        self,
        kind: SubjectKind,
        assignment_id: str,
        completed_tasks: Optional[list[Any]] = None,
        notes: Optional[str] = None,
        completed_by: Optional[str] = None,
        subject_id: Optional[str] = None,
        now: Optional[dt.datetime] = None,
    ) -> CompletionOutcome:
        """Record a completion and start the next cycle.

        Appends one completion log and moves the assignment to
        ``status=PENDING``, ``last_completed=now`` and
        ``next_due=now + interval`` in a single transaction; if either write
        fails neither is kept.

        Raises:
            NotFoundError: unknown assignment.
            AssignmentMismatchError: ``subject_id`` given and not the owner.
        """
        tables = _TABLES[SubjectKind(kind)]
        completed_tasks = list(completed_tasks or [])
        now = self._now(now)

        async with session_scope(self._session) as session:
            assignment = await self._owned_assignment(session, kind, assignment_id, subject_id)

            # computed before any write so a bad frequency aborts cleanly
            next_due = engine.calculate_next_due_date(assignment.frequency, now)

            log = tables.log(
                assignment_id=assignment.id,
                completed_at=now,
                completed_tasks=completed_tasks,
                notes=notes or f"Completed {len(completed_tasks)} tasks for {assignment.schedule.title}",
                completed_by=completed_by,
            )
            session.add(log)

            previous_status = assignment.status
            assignment.last_completed = now
            assignment.next_due = next_due
            assignment.status = ScheduleStatus.PENDING.value
            await session.flush()

        logger.info(
            "assignment_completed",
            kind=kind.value,
            assignment_id=assignment_id,
            previous_status=previous_status,
            tasks=len(completed_tasks),
            completed_by=completed_by,
            next_due=next_due.isoformat(),
        )
        return CompletionOutcome(completion_log=log, assignment=assignment)

    # ── Sweep ───────────────────────────────────────────────────────

    async def refresh_statuses(self, now: Optional[dt.datetime] = None) -> SweepResult:
        """Recompute the status of every assignment that could have changed.

        Rows not yet due and already PENDING are skipped by the query; PAUSED
        rows are never touched. Re-running with the same ``now`` changes
        nothing.
        """
        now = self._now(now)
        result = SweepResult(now=now)

        async with session_scope(self._session) as session:
            for kind, tables in _TABLES.items():
                model = tables.assignment
                rows = await session.execute(
                    select(model).where(
                        model.status != ScheduleStatus.PAUSED.value,
                        or_(model.next_due <= now, model.status != ScheduleStatus.PENDING.value),
                    )
                )
                for assignment in rows.scalars():
                    result.examined += 1
                    new_status = engine.derive_status(assignment, now)
                    if new_status == assignment.status:
                        continue
                    result.transitions[f"{assignment.status}->{new_status.value}"] += 1
                    result.by_kind[kind.value] += 1
                    result.updated += 1
                    if new_status == ScheduleStatus.OVERDUE:
                        result.newly_overdue.append(
                            OverdueItem(
                                kind=kind,
                                assignment_id=assignment.id,
                                subject_name=getattr(assignment.subject, "name", ""),
                                schedule_title=assignment.schedule.title,
                                next_due=_utc(assignment.next_due),
                            )
                        )
                    assignment.status = new_status.value
            await session.flush()

        if result.updated:
            logger.info("schedule_statuses_refreshed", **result.as_dict())
        else:
            logger.debug("schedule_statuses_unchanged", examined=result.examined)
        return result

    # ── Reporting ───────────────────────────────────────────────────

    async def cleaner_dashboard(self, now: Optional[dt.datetime] = None) -> dict[str, Any]:
        """Rooms with active work, most urgent first, plus today's totals."""
        now = self._now(now)
        await self.refresh_statuses(now)
        day_start, day_end = reports.day_bounds(now)

        async with session_scope(self._session) as session:
            rows = await session.execute(
                select(RoomSchedule).where(
                    RoomSchedule.status.in_([s.value for s in reports.ACTIVE_STATUSES])
                )
            )
            assignments = list(rows.scalars().all())
            completed_today = await session.scalar(
                select(func.count(RoomScheduleCompletionLog.id)).where(
                    RoomScheduleCompletionLog.completed_at >= day_start,
                    RoomScheduleCompletionLog.completed_at < day_end,
                )
            )

        return reports.build_cleaner_dashboard(assignments, completed_today or 0, now)

    async def cleaner_room(self, room_id: str, now: Optional[dt.datetime] = None) -> dict[str, Any]:
        """A room's open work plus whatever was already completed today."""
        now = self._now(now)
        await self.refresh_statuses(now)
        day_start, _ = reports.day_bounds(now)

        async with session_scope(self._session) as session:
            room = await self._require(session, Room, room_id, "Room")
            rows = await session.execute(
                select(RoomSchedule).where(
                    RoomSchedule.room_id == room_id,
                    or_(
                        RoomSchedule.status.in_([ScheduleStatus.PENDING.value, ScheduleStatus.OVERDUE.value]),
                        RoomSchedule.last_completed >= day_start,
                    ),
                )
            )
            assignments = list(rows.scalars().all())

        return reports.build_cleaner_room(room, assignments, now)

    async def completion_stats(self, days: int = 7, now: Optional[dt.datetime] = None) -> dict[str, list]:
        """Completions per UTC day (rooms and equipment together), oldest first."""
        if days < 1:
            raise InvalidInputError("days must be at least 1")
        now = self._now(now)
        today, _ = reports.day_bounds(now)
        window_start = today - dt.timedelta(days=days - 1)

        async with session_scope(self._session) as session:
            stamps: list[dt.datetime] = []
            for tables in _TABLES.values():
                rows = await session.execute(
                    select(tables.log.completed_at).where(tables.log.completed_at >= window_start)
                )
                stamps.extend(_utc(stamp) for stamp in rows.scalars())

        return reports.daily_counts(stamps, window_start, days)

    async def recent_activity(self, limit: int = 10) -> dict[str, Any]:
        """Newest completions across rooms and equipment."""
        async with session_scope(self._session) as session:
            logs: dict[SubjectKind, list[Any]] = {}
            for kind, tables in _TABLES.items():
                rows = await session.execute(
                    select(tables.log).order_by(tables.log.completed_at.desc()).limit(limit)
                )
                logs[kind] = list(rows.scalars().all())

        activities = [reports.activity_entry(kind, log) for kind, entries in logs.items() for log in entries]
        activities.sort(key=lambda entry: entry["timestamp"], reverse=True)
        return {
            "activities": activities[:limit],
            "summary": {
                "total_room_completions": len(logs[SubjectKind.ROOM]),
                "total_equipment_completions": len(logs[SubjectKind.EQUIPMENT]),
            },
        }

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def _require(session: AsyncSession, model: type, key: str, label: str) -> Any:
        instance = await session.get(model, key)
        if instance is None:
            raise NotFoundError(f"{label} '{key}' not found")
        return instance

    async def _owned_assignment(
        self, session: AsyncSession, kind: SubjectKind, assignment_id: str, subject_id: Optional[str],
    ) -> Any:
        """Load an assignment, checking it belongs to ``subject_id`` when one is given."""
        tables = _TABLES[SubjectKind(kind)]
        assignment = await self._require(session, tables.assignment, assignment_id, "Assignment")
        if subject_id is not None and assignment.subject_id != subject_id:
            raise AssignmentMismatchError(f"Schedule does not belong to this {kind.value}")
        return assignment

    @staticmethod
    async def _get_task(session: AsyncSession, schedule_id: str, task_id: str) -> ScheduleTask:
        task = await session.get(ScheduleTask, task_id)
        if task is None or task.schedule_id != schedule_id:
            raise NotFoundError(f"Task '{task_id}' not found in schedule '{schedule_id}'")
        return task
