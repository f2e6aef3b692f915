"""Facility service: rooms and equipment."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from neatplan.database import session_scope
from neatplan.errors import DuplicateNameError, NotFoundError
from neatplan.logging_config import get_logger
from neatplan.modules.facilities.models import Equipment, EquipmentIn, Room, RoomIn
from neatplan.modules.schedules import models as _schedule_models  # noqa: F401  (maps RoomSchedule/EquipmentSchedule)

logger = get_logger(__name__)


class FacilityService:
    """Rooms and equipment CRUD."""

    def __init__(self, session: Optional[AsyncSession] = None) -> None:
        self._session = session

    # ── Rooms ───────────────────────────────────────────────────────

    async def create_room(self, data: RoomIn) -> Room:
        async with session_scope(self._session) as session:
            room = Room(
                name=data.name,
                description=data.description,
                floor=data.floor,
                type=data.type.value,
            )
            session.add(room)
            await session.flush()
        logger.info("room_created", room_id=room.id, name=room.name)
        return room

    async def list_rooms(self) -> list[Room]:
        async with session_scope(self._session) as session:
            result = await session.execute(select(Room).order_by(Room.name))
            return list(result.scalars().all())

    async def get_room(self, room_id: str) -> Optional[Room]:
        async with session_scope(self._session) as session:
            return await session.get(Room, room_id)

    async def update_room(self, room_id: str, data: RoomIn) -> Room:
        async with session_scope(self._session) as session:
            room = await session.get(Room, room_id)
            if room is None:
                raise NotFoundError(f"Room '{room_id}' not found")
            room.name = data.name
            room.description = data.description
            room.floor = data.floor
            room.type = data.type.value
        logger.info("room_updated", room_id=room_id)
        return room

    async def delete_room(self, room_id: str) -> bool:
        """Delete a room together with its assignments. False if it did not exist."""
        async with session_scope(self._session) as session:
            room = await session.get(Room, room_id)
            if room is None:
                return False
            await session.delete(room)
        logger.info("room_deleted", room_id=room_id)
        return True

    # ── Equipment ───────────────────────────────────────────────────

    async def create_equipment(self, data: EquipmentIn) -> Equipment:
        async with session_scope(self._session) as session:
            await self._ensure_unique_equipment_name(session, data.name)
            equipment = Equipment(**data.model_dump())
            session.add(equipment)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateNameError(f"Equipment with name '{data.name}' already exists") from exc
        logger.info("equipment_created", equipment_id=equipment.id, name=equipment.name)
        return equipment

    async def list_equipment(self) -> list[Equipment]:
        async with session_scope(self._session) as session:
            result = await session.execute(select(Equipment).order_by(Equipment.name))
            return list(result.scalars().all())

    async def get_equipment(self, equipment_id: str) -> Optional[Equipment]:
        async with session_scope(self._session) as session:
            return await session.get(Equipment, equipment_id)

    async def update_equipment(self, equipment_id: str, data: EquipmentIn) -> Equipment:
        async with session_scope(self._session) as session:
            equipment = await session.get(Equipment, equipment_id)
            if equipment is None:
                raise NotFoundError(f"Equipment '{equipment_id}' not found")
            if data.name != equipment.name:
                await self._ensure_unique_equipment_name(session, data.name)
            for field, value in data.model_dump().items():
                setattr(equipment, field, value)
        logger.info("equipment_updated", equipment_id=equipment_id)
        return equipment

    async def delete_equipment(self, equipment_id: str) -> bool:
        async with session_scope(self._session) as session:
            equipment = await session.get(Equipment, equipment_id)
            if equipment is None:
                return False
            await session.delete(equipment)
        logger.info("equipment_deleted", equipment_id=equipment_id)
        return True

    @staticmethod
    async def _ensure_unique_equipment_name(session: AsyncSession, name: str) -> None:
        result = await session.execute(select(Equipment.id).where(Equipment.name == name))
        if result.scalar_one_or_none() is not None:
            raise DuplicateNameError(f"Equipment with name '{name}' already exists")
