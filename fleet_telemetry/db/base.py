from fleet_telemetry.db.base_class import Base  # noqa

from fleet_telemetry.models.live_session import LiveSession  # noqa
from fleet_telemetry.models.timeline import Timeline  # noqa
from fleet_telemetry.models.advertiser_rollup import AdvertiserRollup  # noqa
from fleet_telemetry.models.campaign_placement import CampaignPlacement  # noqa

__all__ = [
    "Base",
    "LiveSession",
    "Timeline",
    "AdvertiserRollup",
    "CampaignPlacement",
]
