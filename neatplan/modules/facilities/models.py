"""Rooms and equipment: the things cleaning schedules are assigned to."""

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from neatplan.database import Base, UTCDateTime, utcnow


class RoomType(StrEnum):
    """Kinds of rooms."""
    OFFICE = "OFFICE"
    MEETING_ROOM = "MEETING_ROOM"
    BATHROOM = "BATHROOM"
    KITCHEN = "KITCHEN"
    LOBBY = "LOBBY"
    STORAGE = "STORAGE"
    BEDROOM = "BEDROOM"
    LOUNGE = "LOUNGE"
    OTHER = "OTHER"


class Room(Base):
    """A room that gets cleaned on one or more schedules."""

    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(256), nullable=False, index=True)
    description = Column(Text, nullable=True)
    floor = Column(String(64), nullable=True)
    type = Column(String(32), default=RoomType.OTHER.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    schedules = relationship("RoomSchedule", back_populates="room", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Room(id={self.id}, name={self.name}, floor={self.floor}, type={self.type})>"


class Equipment(Base):
    """A serviceable piece of equipment (vacuum, scrubber, coffee machine...)."""

    __tablename__ = "equipment"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(256), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    location = Column(String(256), nullable=True)
    type = Column(String(64), default="OTHER", nullable=False)
    model = Column(String(128), nullable=True)
    serial_number = Column(String(128), nullable=True)
    purchase_date = Column(DateTime(timezone=True), nullable=True)
    warranty_expiry = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    schedules = relationship("EquipmentSchedule", back_populates="equipment", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Equipment(id={self.id}, name={self.name}, type={self.type})>"


class RoomIn(BaseModel):
    """Room create/update payload."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    floor: Optional[str] = None
    type: RoomType = RoomType.OTHER


class RoomRead(RoomIn):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: UTCDateTime


class EquipmentIn(BaseModel):
    """Equipment create/update payload."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    type: str = "OTHER"
    model: Optional[str] = None
    serial_number: Optional[str] = None
    purchase_date: Optional[dt.datetime] = None
    warranty_expiry: Optional[dt.datetime] = None


class EquipmentRead(EquipmentIn):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: UTCDateTime
