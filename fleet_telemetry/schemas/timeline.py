# fleet_telemetry/schemas/timeline.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fleet_telemetry.schemas.live_session import (
    AdPerformance,
    AdPlayback,
    AdScanSummary,
    ComplianceStatus,
    GeoPoint,
    HourlyBucket,
    HoursState,
    QrScan,
    SlotState,
    empty_hourly_buckets,
)

UPDATE_SOURCE_CRON = "cron"
UPDATE_SOURCE_MANUAL = "manual"

UPDATE_TYPE_CREATE = "create"
UPDATE_TYPE_MERGE = "merge"


class DailySummary(BaseModel):
    average_speed: float = 0.0
    max_speed: float = 0.0
    ad_completion_rate: float = 0.0
    peak_hours: List[int] = Field(default_factory=list)
    unique_ads_played: int = 0
    total_interactions: int = 0


class DailyRecord(BaseModel):
    """Frozen copy of one LiveSession for one date, plus archival metadata."""

    # fields that change on every fold even when the data does not
    ARCHIVE_METADATA_FIELDS: ClassVar[FrozenSet[str]] = frozenset(
        {
            "archived_at",
            "last_archive_update",
            "update_count",
            "last_update_source",
            "last_update_type",
            "session_version",
        }
    )

    day: date
    timezone: str
    group_id: Optional[str] = None

    total_ad_plays: int = 0
    total_ad_impressions: int = 0
    total_ad_play_time: float = 0.0
    total_qr_scans: int = 0
    total_distance_km: float = 0.0
    total_hours_online: float = 0.0

    hours: HoursState = Field(default_factory=HoursState)
    slots: List[SlotState] = Field(default_factory=list)

    hourly_buckets: List[HourlyBucket] = Field(default_factory=empty_hourly_buckets)
    location_history: List[GeoPoint] = Field(default_factory=list)
    ad_playbacks: List[AdPlayback] = Field(default_factory=list)
    qr_scans: List[QrScan] = Field(default_factory=list)
    ad_performance: List[AdPerformance] = Field(default_factory=list)
    qr_scans_by_ad: List[AdScanSummary] = Field(default_factory=list)

    daily_summary: DailySummary = Field(default_factory=DailySummary)

    archived_at: datetime
    last_archive_update: datetime
    update_count: int = 1
    last_update_source: str = UPDATE_SOURCE_CRON
    last_update_type: str = UPDATE_TYPE_CREATE
    session_version: int = 0

    @property
    def is_compliant(self) -> bool:
        return self.hours.compliance_status == ComplianceStatus.COMPLIANT

    def content(self) -> Dict[str, Any]:
        """Record data without the archival bookkeeping."""
        return self.model_dump(mode="json", exclude=set(self.ARCHIVE_METADATA_FIELDS))


class LifetimeTotals(BaseModel):
    total_ad_plays: int = 0
    total_ad_impressions: int = 0
    total_ad_play_time: float = 0.0
    total_qr_scans: int = 0
    total_distance_km: float = 0.0
    total_hours_online: float = 0.0
    total_days: int = 0
    compliant_days: int = 0
    average_daily_hours: float = 0.0
    compliance_rate: float = 0.0


class TimelineDocument(BaseModel):
    """In-memory view of a timelines row."""

    vehicle_id: str
    group_id: Optional[str] = None
    daily_records: List[DailyRecord] = Field(default_factory=list)
    lifetime_totals: LifetimeTotals = Field(default_factory=LifetimeTotals)

    created_at: Optional[datetime] = None
    last_archive_update: Optional[datetime] = None
    total_updates: int = 0
    last_update_source: Optional[str] = None
    last_update_type: Optional[str] = None

    def record_for(self, day: date) -> Optional[DailyRecord]:
        for record in self.daily_records:
            if record.day == day:
                return record
        return None


# ----------------------------------------------------------------------
# Read schemas
# ----------------------------------------------------------------------


class TimelinePage(BaseModel):
    vehicle_id: str
    group_id: Optional[str] = None
    lifetime_totals: LifetimeTotals
    total_records: int
    skip: int
    limit: int
    records: List[DailyRecord] = Field(default_factory=list)


class UpdateTrackingRead(BaseModel):
    vehicle_id: str
    created_at: Optional[datetime] = None
    last_archive_update: Optional[datetime] = None
    total_updates: int = 0
    last_update_source: Optional[str] = None
    last_update_type: Optional[str] = None

    latest_record_day: Optional[date] = None
    latest_record_update_count: int = 0
    last_location_at: Optional[datetime] = None
    last_playback_at: Optional[datetime] = None
    last_scan_at: Optional[datetime] = None

    # no archive update in the last 24h
    is_stale: bool = False

    model_config = ConfigDict(from_attributes=True)
