"""Shared test fixtures and configuration."""

from __future__ import annotations

import datetime as dt
import os
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("NEATPLAN_ENV", "test")
os.environ.setdefault("NEATPLAN_LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import neatplan.config as config_module
import neatplan.database as db
from neatplan.config import Settings
from neatplan.database import Base
from neatplan.modules.facilities.models import EquipmentIn, RoomIn
from neatplan.modules.facilities.service import FacilityService
from neatplan.modules.schedules.service import ScheduleService

T0 = dt.datetime(2024, 3, 1, 9, 0, tzinfo=dt.UTC)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test settings installed as the process-wide singleton."""
    test_settings = Settings(
        _env_file=None,
        neatplan_env="test",
        neatplan_log_level="WARNING",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'neatplan.db'}",
        cron_secret="test-cron-secret",
        smtp_config_file=str(tmp_path / "smtp-config.json"),
    )
    previous = config_module._settings
    config_module._settings = test_settings
    yield test_settings
    config_module._settings = previous


@pytest_asyncio.fixture
async def db_engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database shared by every session the services open."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", db._enable_sqlite_foreign_keys)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db._engine = engine
    db._session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield engine

    db._engine = None
    db._session_factory = None
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """A session the test owns; nothing is committed."""
    async with db.get_session_factory()() as session:
        yield session
        await session.rollback()


class FakeClock:
    """Settable clock for services under test."""

    def __init__(self, now: dt.datetime = T0) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def schedules(db_engine: AsyncEngine, clock: FakeClock) -> ScheduleService:
    return ScheduleService(clock=clock)


@pytest.fixture
def facilities(db_engine: AsyncEngine) -> FacilityService:
    return FacilityService()


@pytest_asyncio.fixture
async def room(facilities: FacilityService):
    return await facilities.create_room(RoomIn(name="Kitchen 1", floor="Ground", type="KITCHEN"))


@pytest_asyncio.fixture
async def equipment(facilities: FacilityService):
    return await facilities.create_equipment(EquipmentIn(name="Floor scrubber", location="Basement"))


@pytest_asyncio.fixture
async def weekly_schedule(schedules: ScheduleService):
    return await schedules.create_schedule(
        "Kitchen weekly",
        tasks=[
            {"description": "Wipe counters", "frequency": "weekly"},
            {"description": "Mop floor", "frequency": "weekly"},
            {"description": "Descale kettle", "frequency": "monthly"},
        ],
    )

