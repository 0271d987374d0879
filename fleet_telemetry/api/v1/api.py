# fleet_telemetry/api/v1/api.py
from fastapi import APIRouter

from fleet_telemetry.api.routes import (
    jobs,
    live_sessions,
    placements,
    rollups,
    telemetry,
    timelines,
)

api_router = APIRouter()

api_router.include_router(
    telemetry.router,
    prefix="/telemetry",
    tags=["telemetry"],
)
api_router.include_router(
    live_sessions.router,
    prefix="/live-sessions",
    tags=["live_sessions"],
)
api_router.include_router(
    timelines.router,
    prefix="/timelines",
    tags=["timelines"],
)
api_router.include_router(
    rollups.router,
    prefix="/rollups",
    tags=["rollups"],
)
api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["jobs"],
)
api_router.include_router(
    placements.router,
    prefix="/placements",
    tags=["placements"],
)
