# fleet_telemetry/crud/campaign_placement.py
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.crud.base import CRUDBase
from fleet_telemetry.models.campaign_placement import CampaignPlacement
from fleet_telemetry.schemas.placement import (
    CampaignPlacementCreate,
    CampaignPlacementUpdate,
)


class CRUDCampaignPlacement(
    CRUDBase[CampaignPlacement, CampaignPlacementCreate, CampaignPlacementUpdate]
):
    async def get_multi_filtered(
        self,
        db: AsyncSession,
        *,
        skip: int = 0,
        limit: int = 100,
        advertiser_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
    ) -> List[CampaignPlacement]:
        stmt = select(CampaignPlacement)
        if advertiser_id is not None:
            stmt = stmt.where(CampaignPlacement.advertiser_id == advertiser_id)
        if vehicle_id is not None:
            stmt = stmt.where(CampaignPlacement.vehicle_id == vehicle_id)
        stmt = stmt.order_by(CampaignPlacement.id).offset(skip).limit(limit)
        res = await db.execute(stmt)
        return list(res.scalars().all())

    async def active_paid_in_window(
        self,
        db: AsyncSession,
        *,
        start_date: date,
        end_date: date,
        advertiser_id: Optional[str] = None,
    ) -> List[CampaignPlacement]:
        """Active, paid placements whose run overlaps [start_date, end_date]."""
        stmt = select(CampaignPlacement).where(
            CampaignPlacement.is_active.is_(True),
            CampaignPlacement.is_paid.is_(True),
            CampaignPlacement.start_date <= end_date,
            CampaignPlacement.end_date >= start_date,
        )
        if advertiser_id is not None:
            stmt = stmt.where(CampaignPlacement.advertiser_id == advertiser_id)
        stmt = stmt.order_by(CampaignPlacement.advertiser_id, CampaignPlacement.id)
        res = await db.execute(stmt)
        return list(res.scalars().all())

    async def advertisers_in_window(
        self, db: AsyncSession, *, start_date: date, end_date: date
    ) -> List[str]:
        rows = await self.active_paid_in_window(db, start_date=start_date, end_date=end_date)
        return sorted({p.advertiser_id for p in rows})


campaign_placement = CRUDCampaignPlacement(CampaignPlacement)
