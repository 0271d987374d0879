# fleet_telemetry/services/archival.py
"""
Folds live sessions into the per-vehicle timeline.

One algorithm: snapshot -> DailyRecord -> upsert by date -> recompute
lifetime totals. Upserting the same snapshot twice leaves the record data
and the totals unchanged; only the archival bookkeeping moves.
"""
from __future__ import annotations

import bisect
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Hashable, Iterable, List, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.core.config import Settings, settings
from fleet_telemetry.crud import live_session as crud_live_session
from fleet_telemetry.crud import timeline as crud_timeline
from fleet_telemetry.db.session import AsyncSessionLocal
from fleet_telemetry.models.live_session import LiveSession
from fleet_telemetry.schemas.jobs import JobRunReport
from fleet_telemetry.schemas.live_session import LiveSessionState
from fleet_telemetry.schemas.timeline import (
    UPDATE_SOURCE_CRON,
    UPDATE_TYPE_CREATE,
    UPDATE_TYPE_MERGE,
    DailyRecord,
    DailySummary,
    LifetimeTotals,
    TimelineDocument,
)
from fleet_telemetry.services.live_session import (
    AD_PLAYBACK_CAP,
    LOCATION_HISTORY_CAP,
    completion_rate,
)
from fleet_telemetry.services.timezone_resolver import (
    ensure_utc,
    local_date,
    resolve_timezone,
    utcnow,
)

logger = logging.getLogger("fleet.archival")

T = TypeVar("T")

PEAK_HOURS_COUNT = 3


# ----------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------


def summarize_day(record: DailyRecord) -> DailySummary:
    located = sum(b.location_count for b in record.hourly_buckets)
    average_speed = 0.0
    if located:
        average_speed = (
            sum(b.average_speed * b.location_count for b in record.hourly_buckets) / located
        )
    max_speed = max((b.max_speed for b in record.hourly_buckets), default=0.0)

    total_view = sum(p.total_view_time for p in record.ad_performance)
    total_duration = sum(p.total_duration for p in record.ad_performance)

    activity = [
        (b.ad_plays + b.qr_scans, b.hour)
        for b in record.hourly_buckets
        if b.ad_plays + b.qr_scans > 0
    ]
    activity.sort(key=lambda item: (-item[0], item[1]))
    peak_hours = sorted(hour for _, hour in activity[:PEAK_HOURS_COUNT])

    return DailySummary(
        average_speed=average_speed,
        max_speed=max_speed,
        ad_completion_rate=completion_rate(total_view, total_duration),
        peak_hours=peak_hours,
        unique_ads_played=len(record.ad_performance),
        total_interactions=record.total_qr_scans,
    )


def build_daily_record(
    state: LiveSessionState,
    session_version: int,
    now: datetime,
    source: str = UPDATE_SOURCE_CRON,
) -> DailyRecord:
    """Deep copy of `state` as a new record for its date."""
    snapshot = state.model_copy(deep=True)
    now = ensure_utc(now)
    record = DailyRecord(
        day=snapshot.day,
        timezone=snapshot.timezone,
        group_id=snapshot.group_id,
        total_ad_plays=snapshot.counters.total_ad_plays,
        total_ad_impressions=snapshot.counters.total_ad_impressions,
        total_ad_play_time=snapshot.counters.total_ad_play_time,
        total_qr_scans=snapshot.counters.total_qr_scans,
        total_distance_km=snapshot.counters.total_distance_km,
        total_hours_online=snapshot.hours.accrued_hours,
        hours=snapshot.hours,
        slots=snapshot.slots,
        hourly_buckets=snapshot.hourly_buckets,
        location_history=snapshot.location_history,
        ad_playbacks=snapshot.ad_playbacks,
        qr_scans=snapshot.qr_scans,
        ad_performance=snapshot.ad_performance,
        qr_scans_by_ad=snapshot.qr_scans_by_ad,
        archived_at=now,
        last_archive_update=now,
        update_count=1,
        last_update_source=source,
        last_update_type=UPDATE_TYPE_CREATE,
        session_version=session_version,
    )
    record.daily_summary = summarize_day(record)
    return record


def _union(
    existing: Iterable[T],
    incoming: Iterable[T],
    key: Callable[[T], Hashable],
    order: Callable[[T], tuple],
    cap: Optional[int] = None,
) -> List[T]:
    merged: Dict[Hashable, T] = {}
    for item in existing:
        merged[key(item)] = item
    for item in incoming:
        merged[key(item)] = item
    items = sorted(merged.values(), key=order)
    if cap is not None and len(items) > cap:
        items = items[len(items) - cap :]
    return items


def _overwrite(
    existing: Iterable[T],
    incoming: Iterable[T],
    key: Callable[[T], Hashable],
) -> List[T]:
    merged: Dict[Hashable, T] = {key(item): item for item in existing}
    for item in incoming:
        merged[key(item)] = item
    return list(merged.values())


def merge_daily_records(
    existing: DailyRecord,
    snapshot: DailyRecord,
    now: datetime,
    source: str = UPDATE_SOURCE_CRON,
) -> DailyRecord:
    merged = existing.model_copy(deep=True)
    incoming = snapshot.model_copy(deep=True)

    merged.location_history = _union(
        merged.location_history,
        incoming.location_history,
        key=lambda p: p.timestamp,
        order=lambda p: (p.timestamp,),
        cap=LOCATION_HISTORY_CAP,
    )
    merged.ad_playbacks = _union(
        merged.ad_playbacks,
        incoming.ad_playbacks,
        key=lambda p: (p.ad_id, p.start_time),
        order=lambda p: (p.start_time, p.ad_id),
        cap=AD_PLAYBACK_CAP,
    )
    merged.qr_scans = _union(
        merged.qr_scans,
        incoming.qr_scans,
        key=lambda s: (s.ad_id, s.scan_timestamp),
        order=lambda s: (s.scan_timestamp, s.ad_id),
    )

    merged.ad_performance = _overwrite(
        merged.ad_performance, incoming.ad_performance, key=lambda p: p.ad_id
    )
    merged.qr_scans_by_ad = _overwrite(
        merged.qr_scans_by_ad, incoming.qr_scans_by_ad, key=lambda s: s.ad_id
    )
    merged.hourly_buckets = sorted(
        _overwrite(merged.hourly_buckets, incoming.hourly_buckets, key=lambda b: b.hour),
        key=lambda b: b.hour,
    )

    merged.total_ad_plays = max(merged.total_ad_plays, incoming.total_ad_plays)
    merged.total_ad_impressions = max(merged.total_ad_impressions, incoming.total_ad_impressions)
    merged.total_ad_play_time = max(merged.total_ad_play_time, incoming.total_ad_play_time)
    merged.total_qr_scans = max(merged.total_qr_scans, incoming.total_qr_scans)
    merged.total_distance_km = max(merged.total_distance_km, incoming.total_distance_km)
    merged.total_hours_online = max(merged.total_hours_online, incoming.total_hours_online)

    # a stale snapshot never rolls the compliance hours back
    if incoming.hours.accrued_hours >= merged.hours.accrued_hours:
        merged.hours = incoming.hours
    merged.slots = incoming.slots
    merged.timezone = incoming.timezone
    merged.group_id = incoming.group_id or merged.group_id

    merged.daily_summary = summarize_day(merged)

    merged.last_archive_update = ensure_utc(now)
    merged.update_count = existing.update_count + 1
    merged.last_update_source = source
    merged.last_update_type = UPDATE_TYPE_MERGE
    merged.session_version = snapshot.session_version
    return merged


# ----------------------------------------------------------------------
# Timeline
# ----------------------------------------------------------------------


def compute_lifetime_totals(records: Iterable[DailyRecord]) -> LifetimeTotals:
    totals = LifetimeTotals()
    for record in records:
        totals.total_ad_plays += record.total_ad_plays
        totals.total_ad_impressions += record.total_ad_impressions
        totals.total_ad_play_time += record.total_ad_play_time
        totals.total_qr_scans += record.total_qr_scans
        totals.total_distance_km += record.total_distance_km
        totals.total_hours_online += record.total_hours_online
        totals.total_days += 1
        if record.is_compliant:
            totals.compliant_days += 1

    if totals.total_days:
        totals.average_daily_hours = totals.total_hours_online / totals.total_days
        totals.compliance_rate = totals.compliant_days / totals.total_days * 100.0
    return totals


def upsert_daily_record(
    doc: TimelineDocument,
    record: DailyRecord,
    now: datetime,
    source: str = UPDATE_SOURCE_CRON,
) -> str:
    """
    Insert `record` in date order or merge it into the record of the same
    date, then recompute the lifetime totals. Returns the update type.
    """
    now = ensure_utc(now)
    existing = doc.record_for(record.day)
    if existing is not None:
        merged = merge_daily_records(existing, record, now, source)
        index = doc.daily_records.index(existing)
        doc.daily_records[index] = merged
        update_type = UPDATE_TYPE_MERGE
    else:
        bisect.insort(doc.daily_records, record, key=lambda r: r.day)
        update_type = UPDATE_TYPE_CREATE

    doc.lifetime_totals = compute_lifetime_totals(doc.daily_records)
    if doc.created_at is None:
        doc.created_at = now
    doc.group_id = record.group_id or doc.group_id
    doc.last_archive_update = now
    doc.total_updates += 1
    doc.last_update_source = source
    doc.last_update_type = update_type
    return update_type


# ----------------------------------------------------------------------
# Job
# ----------------------------------------------------------------------


class ArchivalJob:
    name = "archive"

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

    async def run_once(
        self,
        now: Optional[datetime] = None,
        source: str = UPDATE_SOURCE_CRON,
    ) -> JobRunReport:
        now = ensure_utc(now) if now is not None else utcnow()
        report = JobRunReport(job=self.name, started_at=now)
        if self._running:
            logger.info("Archival still running, skipping")
            report.skipped = True
            return report

        self._running = True
        try:
            since = (now - timedelta(days=self.settings.ARCHIVE_LOOKBACK_DAYS)).date()
            async with self.session_factory() as db:
                rows = await crud_live_session.list_since(db, since)
                session_ids = [row.id for row in rows]

            logger.info("Archival starting (sessions=%s since=%s source=%s)", len(session_ids), since, source)

            for session_id in session_ids:
                try:
                    async with self.session_factory() as db:
                        outcome = await self.archive_session(db, session_id, now, source)
                except Exception:
                    logger.exception("Archival failed for live session id=%s", session_id)
                    report.failed += 1
                    report.errors.append(str(session_id))
                    continue
                report.processed += 1
                report.details[outcome] = report.details.get(outcome, 0) + 1
        finally:
            self._running = False

        report.finished_at = utcnow()
        self.last_report = report
        logger.info(
            "Archival done (processed=%s failed=%s details=%s)",
            report.processed,
            report.failed,
            report.details,
        )
        return report

    async def archive_session(
        self,
        db: AsyncSession,
        session_id: int,
        now: datetime,
        source: str = UPDATE_SOURCE_CRON,
    ) -> str:
        row: Optional[LiveSession] = await crud_live_session.get(db, session_id)
        if row is None:
            return "missing"

        state = crud_live_session.load_state(row)
        tz = resolve_timezone(state.current_location)
        today = local_date(now, tz)

        timeline_row = await crud_timeline.get(db, row.vehicle_id)
        if timeline_row is not None:
            doc = crud_timeline.to_document(timeline_row)
        else:
            doc = TimelineDocument(vehicle_id=row.vehicle_id, group_id=state.group_id)

        existing = doc.record_for(state.day)
        if (
            state.day < today
            and existing is not None
            and existing.session_version == row.version_id
        ):
            # final fold of a past day already applied
            return "unchanged"

        record = build_daily_record(state, row.version_id, now, source)
        update_type = upsert_daily_record(doc, record, now, source)
        await crud_timeline.save_document(db, timeline_row, doc)
        logger.debug(
            "Archived vehicle=%s day=%s version=%s (%s)",
            row.vehicle_id,
            state.day,
            row.version_id,
            update_type,
        )
        return update_type


archival_job = ArchivalJob()
