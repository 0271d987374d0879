# fleet_telemetry/api/routes/live_sessions.py
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.api.deps import get_db_session
from fleet_telemetry.crud import live_session as crud_live_session
from fleet_telemetry.schemas.live_session import LiveSessionSnapshotRead
from fleet_telemetry.services.hours_ticker import classify
from fleet_telemetry.services.live_session import snapshot_of

router = APIRouter()


@router.get("/", response_model=List[LiveSessionSnapshotRead])
async def list_live_sessions(
    online_only: bool = False,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db_session),
):
    now = datetime.now(timezone.utc)
    rows = await crud_live_session.list_latest(
        db, online_only=online_only, skip=skip, limit=limit
    )
    out = []
    for row in rows:
        state = crud_live_session.load_state(row)
        out.append(snapshot_of(state, classify(state, now).value, now))
    return out


@router.get("/{vehicle_id}", response_model=LiveSessionSnapshotRead)
async def get_live_session(
    vehicle_id: str,
    db: AsyncSession = Depends(get_db_session),
):
    row = await crud_live_session.get_latest(db, vehicle_id)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Live session not found",
        )
    state = crud_live_session.load_state(row)
    now = datetime.now(timezone.utc)
    return snapshot_of(state, classify(state, now).value, now)
