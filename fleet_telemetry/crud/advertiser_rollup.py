# fleet_telemetry/crud/advertiser_rollup.py
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.models.advertiser_rollup import AdvertiserRollup
from fleet_telemetry.schemas.rollup import AdvertiserRollupRead


class CRUDAdvertiserRollup:
    async def get(self, db: AsyncSession, advertiser_id: str) -> Optional[AdvertiserRollup]:
        stmt = select(AdvertiserRollup).where(AdvertiserRollup.advertiser_id == advertiser_id)
        res = await db.execute(stmt)
        return res.scalar_one_or_none()

    async def replace(self, db: AsyncSession, data: AdvertiserRollupRead) -> AdvertiserRollup:
        """Overwrite the stored rollup of one advertiser with a fresh one."""
        row = await self.get(db, data.advertiser_id)
        if row is None:
            row = AdvertiserRollup(advertiser_id=data.advertiser_id)

        payload = data.model_dump(mode="json")
        row.window_start = data.window_start
        row.window_end = data.window_end
        row.totals = payload["totals"]
        row.campaigns = payload["campaigns"]
        row.vehicles = payload["vehicles"]
        row.skipped_vehicles = payload["skipped_vehicles"]
        row.computed_at = data.computed_at

        db.add(row)
        await db.commit()
        return row

    @staticmethod
    def to_read(row: AdvertiserRollup) -> AdvertiserRollupRead:
        return AdvertiserRollupRead(
            advertiser_id=row.advertiser_id,
            window_start=row.window_start,
            window_end=row.window_end,
            totals=row.totals,
            campaigns=row.campaigns,
            vehicles=row.vehicles,
            skipped_vehicles=row.skipped_vehicles,
            computed_at=row.computed_at,
            persisted=True,
        )


advertiser_rollup = CRUDAdvertiserRollup()
