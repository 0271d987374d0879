# fleet_telemetry/services/rollup.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.core.config import Settings, settings
from fleet_telemetry.crud import advertiser_rollup as crud_advertiser_rollup
from fleet_telemetry.crud import campaign_placement as crud_campaign_placement
from fleet_telemetry.crud import timeline as crud_timeline
from fleet_telemetry.db.session import AsyncSessionLocal
from fleet_telemetry.models.campaign_placement import CampaignPlacement
from fleet_telemetry.schemas.jobs import JobRunReport
from fleet_telemetry.schemas.rollup import (
    AdvertiserRollupRead,
    CampaignBreakdown,
    RollupTotals,
    VehicleBreakdown,
)
from fleet_telemetry.schemas.timeline import DailyRecord
from fleet_telemetry.services.timezone_resolver import (
    ensure_utc,
    local_date,
    resolve_timezone,
    utcnow,
)

logger = logging.getLogger("fleet.rollup")


def conversion_rate(scans: int, impressions: int) -> float:
    if impressions <= 0:
        return 0.0
    return scans / impressions * 100.0


@dataclass
class _Tally:
    plays: int = 0
    impressions: int = 0
    play_time: float = 0.0
    scans: int = 0
    # impression-weighted completion: sum(rate * impressions)
    weighted_completion: float = 0.0
    days: Set[date] = field(default_factory=set)
    vehicles: Set[str] = field(default_factory=set)

    @property
    def completion(self) -> float:
        if self.impressions <= 0:
            return 0.0
        return self.weighted_completion / self.impressions


@dataclass(frozen=True)
class PlacementRun:
    vehicle_id: str
    ad_id: str
    ad_title: str
    start_date: date
    end_date: date

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    @classmethod
    def from_model(cls, p: CampaignPlacement) -> "PlacementRun":
        return cls(
            vehicle_id=p.vehicle_id,
            ad_id=p.ad_id,
            ad_title=p.ad_title or "",
            start_date=p.start_date,
            end_date=p.end_date,
        )


def default_window(now: datetime, days: int) -> Tuple[date, date]:
    end = local_date(now, resolve_timezone(None))
    return end - timedelta(days=max(days, 1) - 1), end


def summarize_advertiser(
    advertiser_id: str,
    window_start: date,
    window_end: date,
    runs: Iterable[PlacementRun],
    records_by_vehicle: Dict[str, List[DailyRecord]],
    computed_at: datetime,
    skipped_vehicles: Iterable[str] = (),
) -> AdvertiserRollupRead:
    """
    Sum the per-ad accumulators of every in-window daily record, counting an
    ad only on the vehicles (and days) the advertiser placed it.
    """
    runs = list(runs)
    campaigns: Dict[str, _Tally] = {}
    vehicles: Dict[str, _Tally] = {}
    titles: Dict[str, str] = {}

    for run in runs:
        campaigns.setdefault(run.ad_id, _Tally())
        vehicles.setdefault(run.vehicle_id, _Tally())
        if run.ad_title:
            titles.setdefault(run.ad_id, run.ad_title)

    for vehicle_id, records in records_by_vehicle.items():
        vehicle_runs = [r for r in runs if r.vehicle_id == vehicle_id]
        for record in records:
            if not window_start <= record.day <= window_end:
                continue
            placed = {r.ad_id for r in vehicle_runs if r.covers(record.day)}
            if not placed:
                continue

            for perf in record.ad_performance:
                if perf.ad_id not in placed:
                    continue
                titles.setdefault(perf.ad_id, perf.ad_title)
                for tally in (campaigns[perf.ad_id], vehicles[vehicle_id]):
                    tally.plays += perf.play_count
                    tally.impressions += perf.impressions
                    tally.play_time += perf.total_view_time
                    tally.weighted_completion += perf.completion_rate * perf.impressions
                    if perf.play_count:
                        tally.days.add(record.day)
                campaigns[perf.ad_id].vehicles.add(vehicle_id)

            for scans in record.qr_scans_by_ad:
                if scans.ad_id not in placed:
                    continue
                titles.setdefault(scans.ad_id, scans.ad_title)
                campaigns[scans.ad_id].scans += scans.scan_count
                vehicles[vehicle_id].scans += scans.scan_count

    total = _Tally()
    for tally in campaigns.values():
        total.plays += tally.plays
        total.impressions += tally.impressions
        total.play_time += tally.play_time
        total.scans += tally.scans
        total.weighted_completion += tally.weighted_completion

    return AdvertiserRollupRead(
        advertiser_id=advertiser_id,
        window_start=window_start,
        window_end=window_end,
        totals=RollupTotals(
            total_ad_plays=total.plays,
            total_ad_impressions=total.impressions,
            total_ad_play_time=total.play_time,
            total_qr_scans=total.scans,
            total_vehicles=len(vehicles),
            total_ads=len(campaigns),
            average_completion_rate=total.completion,
            qr_conversion_rate=conversion_rate(total.scans, total.impressions),
        ),
        campaigns=[
            CampaignBreakdown(
                ad_id=ad_id,
                ad_title=titles.get(ad_id, ""),
                ad_plays=t.plays,
                ad_impressions=t.impressions,
                ad_play_time=t.play_time,
                qr_scans=t.scans,
                average_completion_rate=t.completion,
                qr_conversion_rate=conversion_rate(t.scans, t.impressions),
                vehicles=sorted(t.vehicles),
            )
            for ad_id, t in sorted(campaigns.items())
        ],
        vehicles=[
            VehicleBreakdown(
                vehicle_id=vehicle_id,
                ad_plays=t.plays,
                ad_impressions=t.impressions,
                ad_play_time=t.play_time,
                qr_scans=t.scans,
                days_active=len(t.days),
                qr_conversion_rate=conversion_rate(t.scans, t.impressions),
            )
            for vehicle_id, t in sorted(vehicles.items())
        ],
        skipped_vehicles=sorted(set(skipped_vehicles)),
        computed_at=ensure_utc(computed_at),
    )


class RollupJob:
    """Per-advertiser totals over the trailing ROLLUP_WINDOW_DAYS."""

    name = "rollup"

    def __init__(
        self,
        settings: Settings = settings,
        session_factory=AsyncSessionLocal,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self._running = False
        self.last_report: Optional[JobRunReport] = None

    @property
    def running(self) -> bool:
        return self._running

    async def compute(
        self,
        db: AsyncSession,
        advertiser_id: str,
        window_start: date,
        window_end: date,
        now: datetime,
    ) -> AdvertiserRollupRead:
        placements = await crud_campaign_placement.active_paid_in_window(
            db,
            start_date=window_start,
            end_date=window_end,
            advertiser_id=advertiser_id,
        )
        runs = [PlacementRun.from_model(p) for p in placements]

        records_by_vehicle: Dict[str, List[DailyRecord]] = {}
        skipped: List[str] = []
        for vehicle_id in sorted({r.vehicle_id for r in runs}):
            try:
                doc = await crud_timeline.get_document(db, vehicle_id)
            except Exception:
                logger.exception(
                    "Rollup: skipping vehicle %s for advertiser %s",
                    vehicle_id,
                    advertiser_id,
                )
                skipped.append(vehicle_id)
                continue
            if doc is None:
                continue
            records_by_vehicle[vehicle_id] = [
                r for r in doc.daily_records if window_start <= r.day <= window_end
            ]

        return summarize_advertiser(
            advertiser_id,
            window_start,
            window_end,
            runs,
            records_by_vehicle,
            computed_at=now,
            skipped_vehicles=skipped,
        )

    async def run_once(self, now: Optional[datetime] = None) -> JobRunReport:
        now = ensure_utc(now) if now is not None else utcnow()
        report = JobRunReport(job=self.name, started_at=now)
        if self._running:
            logger.info("Rollup still running, skipping")
            report.skipped = True
            return report

        self._running = True
        try:
            window_start, window_end = default_window(now, self.settings.ROLLUP_WINDOW_DAYS)
            async with self.session_factory() as db:
                advertisers = await crud_campaign_placement.advertisers_in_window(
                    db, start_date=window_start, end_date=window_end
                )
            logger.info(
                "Rollup starting (advertisers=%s window=%s..%s)",
                len(advertisers),
                window_start,
                window_end,
            )

            for advertiser_id in advertisers:
                try:
                    async with self.session_factory() as db:
                        rollup = await self.compute(
                            db, advertiser_id, window_start, window_end, now
                        )
                        await crud_advertiser_rollup.replace(db, rollup)
                except Exception:
                    logger.exception("Rollup failed for advertiser %s", advertiser_id)
                    report.failed += 1
                    report.errors.append(advertiser_id)
                    continue
                report.processed += 1
        finally:
            self._running = False

        report.finished_at = utcnow()
        self.last_report = report
        logger.info("Rollup done (processed=%s failed=%s)", report.processed, report.failed)
        return report

    async def read(
        self,
        db: AsyncSession,
        advertiser_id: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> Optional[AdvertiserRollupRead]:
        """
        Stored rollup, or one computed on the fly (never persisted) when a
        different window is asked for or nothing has been stored yet.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        stored = await crud_advertiser_rollup.get(db, advertiser_id)

        if start_date is None and end_date is None:
            if stored is not None:
                return crud_advertiser_rollup.to_read(stored)
            start_date, end_date = default_window(now, self.settings.ROLLUP_WINDOW_DAYS)
        else:
            default_start, default_end = default_window(now, self.settings.ROLLUP_WINDOW_DAYS)
            start_date = start_date or default_start
            end_date = end_date or default_end
            if (
                stored is not None
                and stored.window_start == start_date
                and stored.window_end == end_date
            ):
                return crud_advertiser_rollup.to_read(stored)

        rollup = await self.compute(db, advertiser_id, start_date, end_date, now)
        if not rollup.campaigns and not rollup.vehicles:
            return None
        return rollup.model_copy(update={"persisted": False})


rollup_job = RollupJob()
