import asyncio
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from fleet_telemetry.core.config import Settings
from fleet_telemetry.crud import live_session as crud_live_session
from fleet_telemetry.db.session import AsyncSessionLocal
from fleet_telemetry.models.live_session import LiveSession
from fleet_telemetry.schemas.live_session import ComplianceStatus
from fleet_telemetry.schemas.telemetry import QrScanPayload
from fleet_telemetry.services.ingestion import TelemetryIngestor

MANILA = ZoneInfo("Asia/Manila")

DAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=MANILA)


def make_ingestor(**overrides):
    return TelemetryIngestor(Settings(**overrides), AsyncSessionLocal)


async def load(vehicle_id):
    async with AsyncSessionLocal() as db:
        row = await crud_live_session.get_latest(db, vehicle_id)
        return row, crud_live_session.load_state(row)


@pytest.mark.asyncio
async def test_events_are_persisted_on_the_local_day(fresh_db):
    ingestor = make_ingestor()

    assert await ingestor.set_online("VH-1", 1, True, now=NOW) is True
    assert await ingestor.report_location(
        "VH-1", 14.5995, 120.9842, speed=30, slot_number=1, group_id="G-1", now=NOW
    )
    assert await ingestor.report_ad_playback(
        "VH-1", 1, "AD-1", 30, 30, ad_title="Coffee", now=NOW
    )
    assert await ingestor.report_qr_scan(
        "VH-1", 1, "AD-1", QrScanPayload(converted=True), now=NOW
    )

    row, state = await load("VH-1")
    assert row.day == DAY
    assert row.timezone == "Asia/Manila"
    assert row.is_online is True
    assert row.group_id == "G-1"
    assert state.current_location.lat == pytest.approx(14.5995)
    assert state.current_ad.ad_id == "AD-1"
    assert state.counters.total_qr_scans == 1
    assert state.qr_scans[0].converted is True
    assert state.get_slot(1).last_seen is not None


@pytest.mark.asyncio
async def test_invalid_and_duplicate_events_report_false(fresh_db):
    ingestor = make_ingestor()

    assert await ingestor.report_location("VH-1", 95.0, 120.0, now=NOW) is False
    assert await ingestor.report_ad_playback("VH-1", 1, "", 30, 30, now=NOW) is False

    start = NOW - timedelta(minutes=1)
    assert await ingestor.report_ad_playback("VH-1", 1, "AD-1", 30, 30, start_time=start, now=NOW)
    assert (
        await ingestor.report_ad_playback("VH-1", 1, "AD-1", 30, 30, start_time=start, now=NOW)
        is False
    )

    _, state = await load("VH-1")
    assert state.counters.total_ad_plays == 1
    assert state.location_history == []


@pytest.mark.asyncio
async def test_concurrent_calls_for_one_vehicle_lose_no_update(fresh_db):
    ingestor = make_ingestor()
    await ingestor.set_online("VH-1", 1, True, now=NOW)

    results = await asyncio.gather(
        *[
            ingestor.report_ad_playback(
                "VH-1", 1, f"AD-{i % 3}", 15, 15,
                start_time=NOW + timedelta(seconds=i), now=NOW,
            )
            for i in range(20)
        ]
    )

    assert results == [True] * 20
    _, state = await load("VH-1")
    assert state.counters.total_ad_plays == 20
    assert sum(p.play_count for p in state.ad_performance) == 20

    async with AsyncSessionLocal() as db:
        rows = (await db.execute(select(LiveSession))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_retry_gives_up_after_the_configured_attempts(fresh_db):
    ingestor = make_ingestor(INGEST_MAX_RETRIES=2, INGEST_RETRY_BACKOFF_SECONDS=0)
    calls = []

    async def always_conflicts(db):
        calls.append(1)
        raise StaleDataError("row version changed")

    assert await ingestor.run_serialized("VH-1", always_conflicts) is None
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_returns_the_result_once_the_conflict_clears(fresh_db):
    ingestor = make_ingestor(INGEST_MAX_RETRIES=3, INGEST_RETRY_BACKOFF_SECONDS=0)
    calls = []

    async def conflicts_once(db):
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("row version changed")
        return "applied"

    assert await ingestor.run_serialized("VH-1", conflicts_once) == "applied"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_stale_row_version_is_rejected(fresh_db):
    ingestor = make_ingestor()
    await ingestor.set_online("VH-1", 1, True, now=NOW)

    async with AsyncSessionLocal() as first, AsyncSessionLocal() as second:
        row_a = await crud_live_session.get_latest(first, "VH-1")
        row_b = await crud_live_session.get_latest(second, "VH-1")

        state_a = crud_live_session.load_state(row_a)
        state_a.counters.total_qr_scans = 1
        await crud_live_session.save(first, row_a, state_a)

        state_b = crud_live_session.load_state(row_b)
        state_b.counters.total_qr_scans = 2
        with pytest.raises(StaleDataError):
            await crud_live_session.save(second, row_b, state_b)

    _, state = await load("VH-1")
    assert state.counters.total_qr_scans == 1


@pytest.mark.asyncio
async def test_offline_then_online_keeps_accrued_hours(fresh_db):
    ingestor = make_ingestor()
    eight = datetime(2026, 3, 2, 8, 0, tzinfo=MANILA)

    await ingestor.set_online("VH-1", 1, True, now=eight)
    await ingestor.set_online("VH-1", 1, False, now=eight + timedelta(hours=2))
    await ingestor.set_online("VH-1", 1, True, now=eight + timedelta(hours=6))

    _, state = await load("VH-1")
    assert state.hours.accrued_hours == pytest.approx(2.0)
    assert state.hours.compliance_status == ComplianceStatus.NON_COMPLIANT
    assert state.hours.offline_periods[0].duration_hours == pytest.approx(4.0)


@pytest.mark.asyncio
async def test_batch_counts_accepted_ignored_and_rejected(fresh_db):
    ingestor = make_ingestor()
    ts = NOW.isoformat()
    events = [
        {"kind": "location", "vehicle_id": "VH-1", "lat": 14.6, "lng": 121.0, "timestamp": ts},
        {"kind": "location", "vehicle_id": "VH-1", "lat": 14.6, "lng": 121.0, "timestamp": ts},
        {"kind": "location", "vehicle_id": "VH-1", "lat": 200, "lng": 121.0},
        {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1",
         "ad_duration": 30, "view_time": 20, "start_time": ts},
        {"kind": "qr_scan", "vehicle_id": "VH-1", "slot_number": 9, "ad_id": "AD-1"},
        {"kind": "status", "vehicle_id": "VH-1", "slot_number": 2, "is_online": True},
        {"kind": "teleport", "vehicle_id": "VH-1"},
    ]

    result = await ingestor.ingest_batch(events, now=NOW)

    assert result.accepted == 3
    assert result.ignored == 1
    assert result.rejected == 3
    assert result.failed == 0
    assert len(result.errors) == 3
    assert result.errors[0].startswith("event 2:")


@pytest.mark.asyncio
async def test_unbounded_playback_times_are_rejected_and_the_batch_goes_on(fresh_db):
    ingestor = make_ingestor()
    events = [
        {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1",
         "ad_duration": 30, "view_time": 1e20},
        {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1",
         "ad_duration": 90000, "view_time": 10},
        {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-2",
         "ad_duration": 30, "view_time": 30},
    ]

    result = await ingestor.ingest_batch(events, now=NOW)

    assert result.rejected == 2
    assert result.accepted == 1
    assert result.errors[0].startswith("event 0:")
    assert "view_time" in result.errors[0]
    assert "ad_duration" in result.errors[1]
    _, state = await load("VH-1")
    assert [p.ad_id for p in state.ad_playbacks] == ["AD-2"]

    # direct callers are held to the same bounds
    assert await ingestor.report_ad_playback("VH-1", 1, "AD-3", 30, float("inf"), now=NOW) is False
    assert await ingestor.report_ad_playback("VH-1", 1, "AD-3", float("nan"), 5, now=NOW) is False


@pytest.mark.asyncio
async def test_batch_counts_an_event_that_blows_up_as_failed(fresh_db, monkeypatch):
    ingestor = make_ingestor()

    async def broken_qr_scan(*args, **kwargs):
        raise OverflowError("date value out of range")

    monkeypatch.setattr(ingestor, "report_qr_scan", broken_qr_scan)
    events = [
        {"kind": "qr_scan", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1"},
        {"kind": "status", "vehicle_id": "VH-1", "slot_number": 1, "is_online": True},
    ]

    result = await ingestor.ingest_batch(events, now=NOW)

    assert result.failed == 1
    assert result.accepted == 1
    assert result.errors == ["event 0: OverflowError"]
    _, state = await load("VH-1")
    assert state.is_online
