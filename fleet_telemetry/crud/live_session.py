# fleet_telemetry/crud/live_session.py
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.models.live_session import LiveSession
from fleet_telemetry.schemas.live_session import LiveSessionState


class CRUDLiveSession:
    """
    Store for live_sessions rows.

    `save` commits; a concurrent writer that bumped `version_id` first makes
    the commit raise StaleDataError, which the caller handles.
    """

    @staticmethod
    def load_state(row: LiveSession) -> LiveSessionState:
        return LiveSessionState.model_validate(row.state)

    async def get(self, db: AsyncSession, id: int) -> Optional[LiveSession]:
        stmt = select(LiveSession).where(LiveSession.id == id)
        res = await db.execute(stmt)
        return res.scalar_one_or_none()

    async def get_for_day(
        self, db: AsyncSession, vehicle_id: str, day: date
    ) -> Optional[LiveSession]:
        stmt = select(LiveSession).where(
            LiveSession.vehicle_id == vehicle_id,
            LiveSession.day == day,
        )
        res = await db.execute(stmt)
        return res.scalar_one_or_none()

    async def get_latest(self, db: AsyncSession, vehicle_id: str) -> Optional[LiveSession]:
        stmt = (
            select(LiveSession)
            .where(LiveSession.vehicle_id == vehicle_id)
            .order_by(LiveSession.day.desc())
            .limit(1)
        )
        res = await db.execute(stmt)
        return res.scalar_one_or_none()

    async def list_latest(
        self,
        db: AsyncSession,
        *,
        online_only: bool = False,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[LiveSession]:
        """Most recent session of every vehicle."""
        latest = (
            select(
                LiveSession.vehicle_id.label("vehicle_id"),
                func.max(LiveSession.day).label("day"),
            )
            .group_by(LiveSession.vehicle_id)
            .subquery()
        )
        stmt = select(LiveSession).join(
            latest,
            (LiveSession.vehicle_id == latest.c.vehicle_id)
            & (LiveSession.day == latest.c.day),
        )
        if online_only:
            stmt = stmt.where(LiveSession.is_online.is_(True))
        stmt = stmt.order_by(LiveSession.vehicle_id).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        res = await db.execute(stmt)
        return list(res.scalars().all())

    async def list_since(self, db: AsyncSession, since: date) -> List[LiveSession]:
        stmt = (
            select(LiveSession)
            .where(LiveSession.day >= since)
            .order_by(LiveSession.vehicle_id, LiveSession.day)
        )
        res = await db.execute(stmt)
        return list(res.scalars().all())

    def add(self, db: AsyncSession, state: LiveSessionState) -> LiveSession:
        """Stage a new row for `state`; persisted by the next `save`."""
        row = LiveSession(
            vehicle_id=state.vehicle_id,
            group_id=state.group_id,
            day=state.day,
            timezone=state.timezone,
            is_online=state.is_online,
            accrued_hours=state.hours.accrued_hours,
            state=state.model_dump(mode="json"),
        )
        db.add(row)
        return row

    async def save(
        self,
        db: AsyncSession,
        row: LiveSession,
        state: LiveSessionState,
        *,
        now: Optional[datetime] = None,
    ) -> LiveSession:
        row.state = state.model_dump(mode="json")
        row.group_id = state.group_id
        row.timezone = state.timezone
        row.is_online = state.is_online
        row.accrued_hours = state.hours.accrued_hours
        if now is not None:
            row.updated_at = now
        db.add(row)
        await db.commit()
        return row


live_session = CRUDLiveSession()
