# fleet_telemetry/services/hours_ticker.py
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.crud import live_session as crud_live_session
from fleet_telemetry.schemas.jobs import JobRunReport
from fleet_telemetry.schemas.live_session import LiveSessionState
from fleet_telemetry.services.ingestion import TelemetryIngestor, ingestor as default_ingestor
from fleet_telemetry.services.live_session import accrue_hours, carry_forward
from fleet_telemetry.services.timezone_resolver import (
    ensure_utc,
    local_date,
    resolve_timezone,
    utcnow,
)

logger = logging.getLogger("fleet.hours_ticker")


class TickerState(str, Enum):
    OFFLINE = "OFFLINE"
    ACCRUING = "ACCRUING"
    CAPPED = "CAPPED"
    NEW_DAY_PENDING = "NEW_DAY_PENDING"


def classify(state: LiveSessionState, now: datetime, tz: Optional[ZoneInfo] = None) -> TickerState:
    if not state.is_online:
        return TickerState.OFFLINE
    tz = tz or resolve_timezone(state.current_location)
    if local_date(now, tz) > state.day:
        return TickerState.NEW_DAY_PENDING
    if state.hours.accrued_hours >= state.hours.target_hours:
        return TickerState.CAPPED
    return TickerState.ACCRUING


class HoursAccrualTicker:
    """
    Credits online time to every online vehicle's session, every
    HOURS_TICK_SECONDS, and rolls sessions over at local midnight.

    Writes go through the ingestor so they are serialized with device events
    for the same vehicle.
    """

    name = "hours-tick"

    def __init__(self, ingestor: TelemetryIngestor = default_ingestor) -> None:
        self.ingestor = ingestor
        self._running = False
        self.last_report: Optional[JobRunReport] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self, now: Optional[datetime] = None) -> JobRunReport:
        now = ensure_utc(now) if now is not None else utcnow()
        report = JobRunReport(job=self.name, started_at=now)
        if self._running:
            logger.info("Hours tick still running, skipping")
            report.skipped = True
            return report

        self._running = True
        try:
            async with self.ingestor.session_factory() as db:
                rows = await crud_live_session.list_latest(db, online_only=True)
                vehicle_ids = [row.vehicle_id for row in rows]

            for vehicle_id in vehicle_ids:
                try:
                    outcome = await self.tick_vehicle(vehicle_id, now)
                except Exception:
                    logger.exception("Hours tick failed for vehicle %s", vehicle_id)
                    report.failed += 1
                    report.errors.append(vehicle_id)
                    continue
                if outcome is None:
                    report.failed += 1
                    report.errors.append(vehicle_id)
                    continue
                report.processed += 1
                report.details[outcome.value] = report.details.get(outcome.value, 0) + 1
        finally:
            self._running = False

        report.finished_at = utcnow()
        self.last_report = report
        logger.debug(
            "Hours tick done (processed=%s failed=%s details=%s)",
            report.processed,
            report.failed,
            report.details,
        )
        return report

    async def tick_vehicle(self, vehicle_id: str, now: datetime) -> Optional[TickerState]:
        async def _op(db: AsyncSession) -> TickerState:
            row = await crud_live_session.get_latest(db, vehicle_id)
            if row is None:
                return TickerState.OFFLINE
            state = crud_live_session.load_state(row)
            tz = resolve_timezone(state.current_location)
            current = classify(state, now, tz)

            if current == TickerState.OFFLINE:
                return current

            if current == TickerState.NEW_DAY_PENDING:
                today = local_date(now, tz)
                # the old day keeps its online time up to its own midnight
                accrue_hours(state, now, tz)
                await crud_live_session.save(db, row, state, now=now)
                fresh = carry_forward(state, today, now, tz)
                new_row = crud_live_session.add(db, fresh)
                await crud_live_session.save(db, new_row, fresh, now=now)
                logger.info(
                    "Rolled over vehicle %s from %s to %s",
                    vehicle_id,
                    state.day,
                    today,
                )
                return current

            credited = accrue_hours(state, now, tz)
            await crud_live_session.save(db, row, state, now=now)
            if credited > 0 and state.hours.accrued_hours >= state.hours.target_hours:
                logger.info(
                    "Vehicle %s reached %.1f compliance hours for %s",
                    vehicle_id,
                    state.hours.target_hours,
                    state.day,
                )
            return current

        return await self.ingestor.run_serialized(vehicle_id, _op, action="hours tick")


hours_ticker = HoursAccrualTicker()
