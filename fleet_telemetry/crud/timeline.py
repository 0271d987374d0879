# fleet_telemetry/crud/timeline.py
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.models.timeline import Timeline
from fleet_telemetry.schemas.timeline import (
    DailyRecord,
    LifetimeTotals,
    TimelineDocument,
)


class CRUDTimeline:
    """
    Store for the per-vehicle durable timeline.

    Rows are never deleted; only the archival job writes them.
    """

    async def get(self, db: AsyncSession, vehicle_id: str) -> Optional[Timeline]:
        stmt = select(Timeline).where(Timeline.vehicle_id == vehicle_id)
        res = await db.execute(stmt)
        return res.scalar_one_or_none()

    @staticmethod
    def to_document(row: Timeline) -> TimelineDocument:
        return TimelineDocument(
            vehicle_id=row.vehicle_id,
            group_id=row.group_id,
            daily_records=[DailyRecord.model_validate(r) for r in (row.daily_records or [])],
            lifetime_totals=LifetimeTotals.model_validate(row.lifetime_totals or {}),
            created_at=row.created_at,
            last_archive_update=row.last_archive_update,
            total_updates=row.total_updates or 0,
            last_update_source=row.last_update_source,
            last_update_type=row.last_update_type,
        )

    async def get_document(
        self, db: AsyncSession, vehicle_id: str
    ) -> Optional[TimelineDocument]:
        row = await self.get(db, vehicle_id)
        if row is None:
            return None
        return self.to_document(row)

    async def save_document(
        self,
        db: AsyncSession,
        row: Optional[Timeline],
        doc: TimelineDocument,
    ) -> Timeline:
        if row is None:
            row = Timeline(vehicle_id=doc.vehicle_id)
            if doc.created_at is not None:
                row.created_at = doc.created_at

        records = doc.daily_records
        row.group_id = doc.group_id
        row.daily_records = [r.model_dump(mode="json") for r in records]
        row.lifetime_totals = doc.lifetime_totals.model_dump(mode="json")
        row.first_day = records[0].day if records else None
        row.last_day = records[-1].day if records else None
        row.last_archive_update = doc.last_archive_update
        row.total_updates = doc.total_updates
        row.last_update_source = doc.last_update_source
        row.last_update_type = doc.last_update_type

        db.add(row)
        await db.commit()
        return row


timeline = CRUDTimeline()
