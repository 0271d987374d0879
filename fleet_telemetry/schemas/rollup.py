# fleet_telemetry/schemas/rollup.py
from datetime import date, datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class RollupTotals(BaseModel):
    total_ad_plays: int = 0
    total_ad_impressions: int = 0
    total_ad_play_time: float = 0.0
    total_qr_scans: int = 0
    total_vehicles: int = 0
    total_ads: int = 0
    average_completion_rate: float = 0.0
    qr_conversion_rate: float = 0.0


class CampaignBreakdown(BaseModel):
    ad_id: str
    ad_title: str = ""
    ad_plays: int = 0
    ad_impressions: int = 0
    ad_play_time: float = 0.0
    qr_scans: int = 0
    average_completion_rate: float = 0.0
    qr_conversion_rate: float = 0.0
    vehicles: List[str] = Field(default_factory=list)


class VehicleBreakdown(BaseModel):
    vehicle_id: str
    ad_plays: int = 0
    ad_impressions: int = 0
    ad_play_time: float = 0.0
    qr_scans: int = 0
    days_active: int = 0
    qr_conversion_rate: float = 0.0


class AdvertiserRollupRead(BaseModel):
    advertiser_id: str
    window_start: date
    window_end: date
    totals: RollupTotals
    campaigns: List[CampaignBreakdown] = Field(default_factory=list)
    vehicles: List[VehicleBreakdown] = Field(default_factory=list)
    skipped_vehicles: List[str] = Field(default_factory=list)
    computed_at: datetime
    # False when computed on demand for a window other than the stored one
    persisted: bool = True

    model_config = ConfigDict(from_attributes=True)
