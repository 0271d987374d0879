# fleet_telemetry/crud/__init__.py
from fleet_telemetry.crud.live_session import live_session
from fleet_telemetry.crud.timeline import timeline
from fleet_telemetry.crud.advertiser_rollup import advertiser_rollup
from fleet_telemetry.crud.campaign_placement import campaign_placement

__all__ = [
    "live_session",
    "timeline",
    "advertiser_rollup",
    "campaign_placement",
]
