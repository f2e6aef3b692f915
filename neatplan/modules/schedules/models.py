"""Database models and Pydantic schemas for cleaning schedules."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from neatplan.database import Base, UTCDateTime, utcnow


class ScheduleFrequency(StrEnum):
    """Recurrence interval of an assignment."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    CUSTOM = "CUSTOM"


class ScheduleStatus(StrEnum):
    """Where an assignment is in its cycle."""

    PENDING = "PENDING"
    OVERDUE = "OVERDUE"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"


class Schedule(Base):
    """A named cleaning checklist."""

    __tablename__ = "schedules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    title = Column(String(256), nullable=False)
    detected_frequency = Column(String(256), nullable=True)  # free text from document analysis
    suggested_frequency = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    tasks = relationship(
        "ScheduleTask",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleTask.position",
        lazy="selectin",
    )
    room_assignments = relationship(
        "RoomSchedule", back_populates="schedule", cascade="all, delete-orphan",
    )
    equipment_assignments = relationship(
        "EquipmentSchedule", back_populates="schedule", cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Schedule(id={self.id}, title={self.title}, suggested={self.suggested_frequency})>"


class ScheduleTask(Base):
    """One checklist line belonging to a schedule."""

    __tablename__ = "schedule_tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    schedule_id = Column(
        String(36), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    description = Column(Text, nullable=False)
    frequency = Column(String(256), nullable=True)  # per-task override, free text
    additional_notes = Column(Text, nullable=True)
    position = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    schedule = relationship("Schedule", back_populates="tasks")


class _AssignmentColumns:
    """Columns shared by room and equipment assignments."""

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    frequency = Column(String(16), nullable=False)
    start_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    next_due = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(16), default=ScheduleStatus.PENDING.value, nullable=False, index=True)
    last_completed = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class RoomSchedule(_AssignmentColumns, Base):
    """A schedule bound to a room."""

    __tablename__ = "room_schedules"

    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    schedule_id = Column(String(36), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)

    room = relationship("Room", back_populates="schedules", lazy="selectin")
    schedule = relationship("Schedule", back_populates="room_assignments", lazy="selectin")
    completion_logs = relationship(
        "RoomScheduleCompletionLog", back_populates="assignment", cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("room_id", "schedule_id"),
        Index("ix_room_schedules_status_next_due", "status", "next_due"),
    )

    @property
    def subject_id(self) -> str:
        return self.room_id

    @property
    def subject(self):
        return self.room

    def __repr__(self) -> str:
        return (
            f"<RoomSchedule(id={self.id}, room={self.room_id}, schedule={self.schedule_id}, "
            f"status={self.status}, next_due={self.next_due})>"
        )


class EquipmentSchedule(_AssignmentColumns, Base):
    """A schedule bound to a piece of equipment."""

    __tablename__ = "equipment_schedules"

    equipment_id = Column(String(36), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False)
    schedule_id = Column(String(36), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)

    equipment = relationship("Equipment", back_populates="schedules", lazy="selectin")
    schedule = relationship("Schedule", back_populates="equipment_assignments", lazy="selectin")
    completion_logs = relationship(
        "EquipmentScheduleCompletionLog", back_populates="assignment", cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("equipment_id", "schedule_id"),
        Index("ix_equipment_schedules_status_next_due", "status", "next_due"),
    )

    @property
    def subject_id(self) -> str:
        return self.equipment_id

    @property
    def subject(self):
        return self.equipment

    def __repr__(self) -> str:
        return (
            f"<EquipmentSchedule(id={self.id}, equipment={self.equipment_id}, "
            f"schedule={self.schedule_id}, status={self.status}, next_due={self.next_due})>"
        )


class _CompletionLogColumns:
    """Append-only audit of one completion."""

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    completed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    completed_tasks = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    completed_by = Column(String(128), nullable=True)


class RoomScheduleCompletionLog(_CompletionLogColumns, Base):
    __tablename__ = "room_schedule_completion_logs"

    assignment_id = Column(
        String(36), ForeignKey("room_schedules.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assignment = relationship("RoomSchedule", back_populates="completion_logs", lazy="selectin")


class EquipmentScheduleCompletionLog(_CompletionLogColumns, Base):
    __tablename__ = "equipment_schedule_completion_logs"

    assignment_id = Column(
        String(36), ForeignKey("equipment_schedules.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assignment = relationship("EquipmentSchedule", back_populates="completion_logs", lazy="selectin")


# =============================================================================
# Pydantic read models
# =============================================================================


class ScheduleTaskIn(BaseModel):
    """Checklist line as submitted by an admin or a document import."""

    description: str = Field(..., min_length=1)
    frequency: Optional[str] = None
    additional_notes: Optional[str] = None


class ScheduleTaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    schedule_id: str
    description: str
    frequency: Optional[str] = None
    additional_notes: Optional[str] = None
    position: int = 0


class ScheduleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    detected_frequency: Optional[str] = None
    suggested_frequency: Optional[ScheduleFrequency] = None
    tasks: list[ScheduleTaskRead] = Field(default_factory=list)
    created_at: UTCDateTime
    updated_at: UTCDateTime


class ScheduleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    tasks: list[ScheduleTaskRead] = Field(default_factory=list)


class AssignmentRead(BaseModel):
    """Room or equipment assignment as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    subject_id: str
    schedule_id: str
    frequency: ScheduleFrequency
    status: ScheduleStatus
    start_date: UTCDateTime
    next_due: UTCDateTime
    last_completed: Optional[UTCDateTime] = None
    schedule: Optional[ScheduleSummary] = None


class CompletionLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    assignment_id: str
    completed_at: UTCDateTime
    completed_tasks: list[Any] = Field(default_factory=list)
    notes: Optional[str] = None
    completed_by: Optional[str] = None


class CompletionResult(BaseModel):
    """Outcome of completing an assignment."""

    model_config = ConfigDict(from_attributes=True)

    completion_log: CompletionLogRead
    assignment: AssignmentRead


# Room and Equipment are referenced by name above; make sure they are mapped.
import neatplan.modules.facilities.models  # noqa: E402,F401
