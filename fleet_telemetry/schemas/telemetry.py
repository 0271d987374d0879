# fleet_telemetry/schemas/telemetry.py
from __future__ import annotations

import math
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from fleet_telemetry.schemas.live_session import DeviceInfo

# one playback never outlasts a day
MAX_PLAYBACK_SECONDS = 86400.0


class _VehicleEvent(BaseModel):
    vehicle_id: str = Field(..., min_length=1, max_length=64)
    group_id: Optional[str] = Field(None, max_length=64)
    timestamp: Optional[datetime] = None

    @field_validator("vehicle_id")
    @classmethod
    def _strip_vehicle_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("vehicle_id must not be blank")
        return v


class LocationEvent(_VehicleEvent):
    kind: Literal["location"] = "location"
    slot_number: Optional[int] = Field(None, ge=1, le=5)
    lat: float
    lng: float
    speed: float = 0.0
    heading: float = 0.0
    accuracy: float = 0.0
    address: Optional[str] = None

    @field_validator("lat")
    @classmethod
    def _check_lat(cls, v: float) -> float:
        if not math.isfinite(v) or not -90.0 <= v <= 90.0:
            raise ValueError("latitude out of range")
        return v

    @field_validator("lng")
    @classmethod
    def _check_lng(cls, v: float) -> float:
        if not math.isfinite(v) or not -180.0 <= v <= 180.0:
            raise ValueError("longitude out of range")
        return v

    @field_validator("speed", "heading", "accuracy")
    @classmethod
    def _finite_or_zero(cls, v: float) -> float:
        return v if math.isfinite(v) else 0.0


class AdPlaybackEvent(_VehicleEvent):
    kind: Literal["ad_playback"] = "ad_playback"
    slot_number: int = Field(..., ge=1, le=5)
    ad_id: str = Field(..., min_length=1)
    ad_title: str = ""
    ad_duration: float = Field(..., ge=0, le=MAX_PLAYBACK_SECONDS, allow_inf_nan=False)
    view_time: float = Field(0.0, ge=0, le=MAX_PLAYBACK_SECONDS, allow_inf_nan=False)
    start_time: Optional[datetime] = None


class QrScanPayload(BaseModel):
    scan_timestamp: Optional[datetime] = None
    converted: bool = False
    conversion_type: Optional[str] = None
    conversion_value: float = 0.0
    qr_code_url: Optional[str] = None
    redirect_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


class QrScanEvent(_VehicleEvent):
    kind: Literal["qr_scan"] = "qr_scan"
    slot_number: int = Field(..., ge=1, le=5)
    ad_id: str = Field(..., min_length=1)
    ad_title: str = ""
    payload: QrScanPayload = Field(default_factory=QrScanPayload)


class StatusEvent(_VehicleEvent):
    kind: Literal["status"] = "status"
    slot_number: int = Field(..., ge=1, le=5)
    is_online: bool
    device_id: Optional[str] = None
    device_info: Optional[DeviceInfo] = None


TelemetryEvent = Annotated[
    Union[LocationEvent, AdPlaybackEvent, QrScanEvent, StatusEvent],
    Field(discriminator="kind"),
]

telemetry_event_adapter: TypeAdapter[TelemetryEvent] = TypeAdapter(TelemetryEvent)


class TelemetryBatch(BaseModel):
    # raw dicts: each one is validated on its own so one bad event does not
    # reject the whole batch
    events: List[Dict[str, Any]] = Field(default_factory=list)


class IngestResult(BaseModel):
    accepted: int = 0
    # valid but already recorded (duplicate timestamp / playback / scan)
    ignored: int = 0
    rejected: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
