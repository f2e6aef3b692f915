"""NeatPlan application entry point.

Quick Start:
    $ neatplan serve           # Start the API server
    $ neatplan check-schedules # Run one overdue sweep

Environment:
    NEATPLAN_ENV               # development/production (default: development)
    NEATPLAN_LOG_LEVEL         # DEBUG/INFO/WARNING/ERROR (default: INFO)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from neatplan import __version__
from neatplan.api.routes import router
from neatplan.config import get_settings
from neatplan.database import close_db, init_db
from neatplan.errors import ScheduleServiceError
from neatplan.logging_config import get_logger, setup_logging
from neatplan.modules.scheduler.jobs import sweep_and_notify
from neatplan.modules.scheduler.service import SchedulerService
from neatplan.modules.schedules.engine import UnsupportedFrequencyError

setup_logging()
logger = get_logger(__name__)

_scheduler: Optional[SchedulerService] = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    global _scheduler
    settings = get_settings()
    logger.info("neatplan_starting", version=__version__, env=settings.neatplan_env)

    await init_db()

    _scheduler = SchedulerService()
    _scheduler.schedule_interval(
        "overdue_sweep",
        sweep_and_notify,
        minutes=settings.sweep_interval_minutes,
        run_immediately=True,
    )
    await _scheduler.start()
    logger.info("neatplan_ready", sweep_interval_minutes=settings.sweep_interval_minutes)

    yield

    logger.info("neatplan_shutting_down")
    await _scheduler.stop()
    _scheduler = None
    await close_db()
    logger.info("neatplan_stopped")


app = FastAPI(
    title="NeatPlan",
    description="Cleaning schedule tracking for rooms and equipment",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ScheduleServiceError)
async def _service_error(request: Request, exc: ScheduleServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(UnsupportedFrequencyError)
async def _frequency_error(request: Request, exc: UnsupportedFrequencyError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": _error_details(exc)})


def _error_details(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


app.include_router(router, prefix="/api")


def run() -> None:
    """Start the API server."""
    settings = get_settings()
    uvicorn.run(
        "neatplan.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.neatplan_env == "development",
        log_level=settings.neatplan_log_level.lower(),
    )


if __name__ == "__main__":
    run()
