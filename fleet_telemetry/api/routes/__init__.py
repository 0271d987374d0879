from fleet_telemetry.api.routes import telemetry
from fleet_telemetry.api.routes import live_sessions
from fleet_telemetry.api.routes import timelines
from fleet_telemetry.api.routes import rollups
from fleet_telemetry.api.routes import jobs
from fleet_telemetry.api.routes import placements

__all__ = [
    "telemetry",
    "live_sessions",
    "timelines",
    "rollups",
    "jobs",
    "placements",
]
