# fleet_telemetry/api/routes/timelines.py
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.api.deps import get_db_session
from fleet_telemetry.crud import timeline as crud_timeline
from fleet_telemetry.schemas.timeline import (
    DailyRecord,
    TimelinePage,
    UpdateTrackingRead,
)
from fleet_telemetry.services.timezone_resolver import ensure_utc

router = APIRouter()

STALE_AFTER = timedelta(hours=24)


async def _document_or_404(db: AsyncSession, vehicle_id: str):
    doc = await crud_timeline.get_document(db, vehicle_id)
    if doc is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Timeline not found",
        )
    return doc


@router.get("/{vehicle_id}", response_model=TimelinePage)
async def get_timeline(
    vehicle_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(30, ge=1, le=366),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await _document_or_404(db, vehicle_id)

    records = doc.daily_records
    if start_date is not None:
        records = [r for r in records if r.day >= start_date]
    if end_date is not None:
        records = [r for r in records if r.day <= end_date]

    return TimelinePage(
        vehicle_id=doc.vehicle_id,
        group_id=doc.group_id,
        lifetime_totals=doc.lifetime_totals,
        total_records=len(records),
        skip=skip,
        limit=limit,
        records=records[skip : skip + limit],
    )


@router.get("/{vehicle_id}/days/{day}", response_model=DailyRecord)
async def get_daily_record(
    vehicle_id: str,
    day: date,
    db: AsyncSession = Depends(get_db_session),
):
    doc = await _document_or_404(db, vehicle_id)
    record = doc.record_for(day)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Daily record not found",
        )
    return record


@router.get("/{vehicle_id}/update-tracking", response_model=UpdateTrackingRead)
async def get_update_tracking(
    vehicle_id: str,
    db: AsyncSession = Depends(get_db_session),
):
    doc = await _document_or_404(db, vehicle_id)
    latest = doc.daily_records[-1] if doc.daily_records else None

    now = datetime.now(timezone.utc)
    last_update = doc.last_archive_update
    if last_update is not None:
        last_update = ensure_utc(last_update)
    is_stale = last_update is None or now - last_update > STALE_AFTER

    return UpdateTrackingRead(
        vehicle_id=doc.vehicle_id,
        created_at=doc.created_at,
        last_archive_update=last_update,
        total_updates=doc.total_updates,
        last_update_source=doc.last_update_source,
        last_update_type=doc.last_update_type,
        latest_record_day=latest.day if latest else None,
        latest_record_update_count=latest.update_count if latest else 0,
        last_location_at=(
            latest.location_history[-1].timestamp
            if latest and latest.location_history
            else None
        ),
        last_playback_at=(
            latest.ad_playbacks[-1].start_time if latest and latest.ad_playbacks else None
        ),
        last_scan_at=(
            latest.qr_scans[-1].scan_timestamp if latest and latest.qr_scans else None
        ),
        is_stale=is_stale,
    )
