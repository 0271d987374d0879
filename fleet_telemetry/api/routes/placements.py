# fleet_telemetry/api/routes/placements.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.api.deps import get_db_session
from fleet_telemetry.crud import campaign_placement as crud_placement
from fleet_telemetry.schemas.placement import (
    CampaignPlacementCreate,
    CampaignPlacementRead,
    CampaignPlacementUpdate,
)

router = APIRouter()


@router.get("/", response_model=List[CampaignPlacementRead])
async def list_placements(
    advertiser_id: Optional[str] = None,
    vehicle_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db_session),
):
    return await crud_placement.get_multi_filtered(
        db,
        skip=skip,
        limit=limit,
        advertiser_id=advertiser_id,
        vehicle_id=vehicle_id,
    )


@router.post(
    "/",
    response_model=CampaignPlacementRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_placement(
    placement_in: CampaignPlacementCreate,
    db: AsyncSession = Depends(get_db_session),
):
    return await crud_placement.create(db, placement_in)


@router.get("/{placement_id}", response_model=CampaignPlacementRead)
async def get_placement(
    placement_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    db_placement = await crud_placement.get(db, placement_id)
    if not db_placement:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Placement not found",
        )
    return db_placement


@router.put("/{placement_id}", response_model=CampaignPlacementRead)
async def update_placement(
    placement_id: int,
    placement_in: CampaignPlacementUpdate,
    db: AsyncSession = Depends(get_db_session),
):
    db_placement = await crud_placement.get(db, placement_id)
    if not db_placement:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Placement not found",
        )

    start = placement_in.start_date or db_placement.start_date
    end = placement_in.end_date or db_placement.end_date
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must not be before start_date",
        )
    return await crud_placement.update(db, db_placement, placement_in)


@router.delete("/{placement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_placement(
    placement_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    db_placement = await crud_placement.remove(db, placement_id)
    if not db_placement:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Placement not found",
        )
    return None
