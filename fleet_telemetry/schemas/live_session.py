# fleet_telemetry/schemas/live_session.py
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ComplianceStatus(str, Enum):
    PENDING = "PENDING"
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"


class GeoPoint(BaseModel):
    lat: float
    lng: float
    timestamp: datetime
    speed: float = 0.0
    heading: float = 0.0
    accuracy: float = 0.0
    address: Optional[str] = None


class DeviceInfo(BaseModel):
    device_name: Optional[str] = None
    device_type: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    platform: Optional[str] = None
    brand: Optional[str] = None
    model_name: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    screen_scale: Optional[float] = None


class SlotState(BaseModel):
    """One physical screen mounted on the vehicle."""

    slot_number: int = Field(..., ge=1, le=5)
    device_id: Optional[str] = None
    is_online: bool = False
    last_seen: Optional[datetime] = None
    device_info: Optional[DeviceInfo] = None


class OfflinePeriod(BaseModel):
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_hours: float = 0.0


class HoursState(BaseModel):
    target_hours: float = 8.0
    accrued_hours: float = 0.0
    session_start: Optional[datetime] = None
    last_accrual_at: Optional[datetime] = None
    compliance_status: ComplianceStatus = ComplianceStatus.PENDING
    offline_periods: List[OfflinePeriod] = Field(default_factory=list)


class HourlyBucket(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    ad_plays: int = 0
    ad_impressions: int = 0
    ad_play_time: float = 0.0
    qr_scans: int = 0
    distance_km: float = 0.0
    online_minutes: float = 0.0
    average_speed: float = 0.0
    max_speed: float = 0.0
    location_count: int = 0


def empty_hourly_buckets() -> List[HourlyBucket]:
    return [HourlyBucket(hour=h) for h in range(24)]


class AdPlayback(BaseModel):
    ad_id: str
    ad_title: str = ""
    slot_number: int = Field(..., ge=1, le=5)
    ad_duration: float = 0.0
    view_time: float = 0.0
    completion_rate: float = 0.0
    start_time: datetime
    end_time: Optional[datetime] = None
    impressions: int = 1


class QrScan(BaseModel):
    ad_id: str
    ad_title: str = ""
    slot_number: int = Field(..., ge=1, le=5)
    scan_timestamp: datetime
    converted: bool = False
    conversion_type: Optional[str] = None
    conversion_value: float = 0.0
    qr_code_url: Optional[str] = None
    redirect_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


class AdPerformance(BaseModel):
    ad_id: str
    ad_title: str = ""
    play_count: int = 0
    impressions: int = 0
    total_view_time: float = 0.0
    total_duration: float = 0.0
    average_view_time: float = 0.0
    completion_rate: float = 0.0
    first_played: Optional[datetime] = None
    last_played: Optional[datetime] = None


class AdScanSummary(BaseModel):
    ad_id: str
    ad_title: str = ""
    scan_count: int = 0
    first_scanned: Optional[datetime] = None
    last_scanned: Optional[datetime] = None


class DailyCounters(BaseModel):
    total_ad_plays: int = 0
    total_ad_impressions: int = 0
    total_ad_play_time: float = 0.0
    total_qr_scans: int = 0
    total_distance_km: float = 0.0


class LiveSessionState(BaseModel):
    """
    Today's in-flight tracking document for one vehicle.

    Persisted as JSON on the live_sessions row; every mutation goes through
    fleet_telemetry.services.live_session.
    """

    vehicle_id: str
    group_id: Optional[str] = None
    day: date
    timezone: str

    slots: List[SlotState] = Field(default_factory=list)
    hours: HoursState = Field(default_factory=HoursState)
    counters: DailyCounters = Field(default_factory=DailyCounters)

    hourly_buckets: List[HourlyBucket] = Field(default_factory=empty_hourly_buckets)
    location_history: List[GeoPoint] = Field(default_factory=list)
    ad_playbacks: List[AdPlayback] = Field(default_factory=list)
    qr_scans: List[QrScan] = Field(default_factory=list)

    ad_performance: List[AdPerformance] = Field(default_factory=list)
    qr_scans_by_ad: List[AdScanSummary] = Field(default_factory=list)

    current_ad: Optional[AdPlayback] = None
    current_location: Optional[GeoPoint] = None
    last_seen: Optional[datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def is_online(self) -> bool:
        return any(slot.is_online for slot in self.slots)

    def get_slot(self, slot_number: int) -> Optional[SlotState]:
        for slot in self.slots:
            if slot.slot_number == slot_number:
                return slot
        return None

    def bucket(self, hour: int) -> HourlyBucket:
        for bucket in self.hourly_buckets:
            if bucket.hour == hour:
                return bucket
        bucket = HourlyBucket(hour=hour)
        self.hourly_buckets.append(bucket)
        self.hourly_buckets.sort(key=lambda b: b.hour)
        return bucket


# ----------------------------------------------------------------------
# Read schemas (live dashboards)
# ----------------------------------------------------------------------


class LiveSessionSnapshotRead(BaseModel):
    vehicle_id: str
    group_id: Optional[str] = None
    day: date
    timezone: str
    is_online: bool
    accrued_hours: float
    target_hours: float
    hours_remaining: float
    compliance_status: ComplianceStatus
    ticker_state: str
    current_ad: Optional[AdPlayback] = None
    current_location: Optional[GeoPoint] = None
    last_seen: Optional[datetime] = None
    slots: List[SlotState] = Field(default_factory=list)
    counters: DailyCounters = Field(default_factory=DailyCounters)

    model_config = ConfigDict(from_attributes=True)
