# fleet_telemetry/models/__init__.py
from fleet_telemetry.models.live_session import LiveSession
from fleet_telemetry.models.timeline import Timeline
from fleet_telemetry.models.advertiser_rollup import AdvertiserRollup
from fleet_telemetry.models.campaign_placement import CampaignPlacement

__all__ = [
    "LiveSession",
    "Timeline",
    "AdvertiserRollup",
    "CampaignPlacement",
]
