# fleet_telemetry/api/routes/rollups.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.api.deps import get_db_session, get_rollup_job
from fleet_telemetry.schemas.rollup import AdvertiserRollupRead
from fleet_telemetry.services.rollup import RollupJob

router = APIRouter()


@router.get("/{advertiser_id}", response_model=AdvertiserRollupRead)
async def get_advertiser_rollup(
    advertiser_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db_session),
    rollup_job: RollupJob = Depends(get_rollup_job),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must not be before start_date",
        )

    rollup = await rollup_job.read(
        db, advertiser_id, start_date=start_date, end_date=end_date
    )
    if rollup is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Rollup not found",
        )
    return rollup
