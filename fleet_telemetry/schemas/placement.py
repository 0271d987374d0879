# fleet_telemetry/schemas/placement.py
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CampaignPlacementBase(BaseModel):
    advertiser_id: str = Field(..., min_length=1, max_length=64)
    ad_id: str = Field(..., min_length=1, max_length=64)
    ad_title: Optional[str] = Field(None, max_length=255)
    vehicle_id: str = Field(..., min_length=1, max_length=64)
    start_date: date
    end_date: date
    is_active: bool = True
    is_paid: bool = True


class CampaignPlacementCreate(CampaignPlacementBase):
    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class CampaignPlacementUpdate(BaseModel):
    ad_title: Optional[str] = Field(None, max_length=255)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    is_paid: Optional[bool] = None


class CampaignPlacementRead(CampaignPlacementBase):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
