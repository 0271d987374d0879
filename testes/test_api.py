from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fleet_telemetry.api.deps import get_ingestor, get_rollup_job, get_scheduler
from fleet_telemetry.core.config import Settings
from fleet_telemetry.db.session import AsyncSessionLocal
from fleet_telemetry.main import app
from fleet_telemetry.services.archival import ArchivalJob
from fleet_telemetry.services.hours_ticker import HoursAccrualTicker
from fleet_telemetry.services.ingestion import TelemetryIngestor
from fleet_telemetry.services.rollup import RollupJob
from fleet_telemetry.services.scheduler import JobScheduler


@pytest_asyncio.fixture
async def client(fresh_db):
    settings = Settings()
    ingestor = TelemetryIngestor(settings, AsyncSessionLocal)
    rollup = RollupJob(settings, AsyncSessionLocal)
    scheduler = JobScheduler(
        settings,
        HoursAccrualTicker(ingestor),
        ArchivalJob(settings, AsyncSessionLocal),
        rollup,
    )
    app.dependency_overrides[get_ingestor] = lambda: ingestor
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_rollup_job] = lambda: rollup

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def post_events(ac, events):
    resp = await ac.post("/api/v1/telemetry/events", json={"events": events})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_batch_ingestion_and_live_session(client):
    result = await post_events(
        client,
        [
            {"kind": "status", "vehicle_id": "VH-1", "slot_number": 1, "is_online": True,
             "device_id": "TAB-1"},
            {"kind": "location", "vehicle_id": "VH-1", "lat": 14.5995, "lng": 120.9842,
             "speed": 25},
            {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1",
             "ad_title": "Coffee", "ad_duration": 30, "view_time": 30},
            {"kind": "location", "vehicle_id": "VH-1", "lat": "north", "lng": 120.9},
        ],
    )
    assert result["accepted"] == 3
    assert result["rejected"] == 1
    assert len(result["errors"]) == 1

    # a bare list is accepted too
    result = await client.post(
        "/api/v1/telemetry/events",
        json=[{"kind": "qr_scan", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1"}],
    )
    assert result.json()["accepted"] == 1

    resp = await client.get("/api/v1/live-sessions/VH-1")
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["vehicle_id"] == "VH-1"
    assert data["is_online"] is True
    assert data["timezone"] == "Asia/Manila"
    assert data["target_hours"] == 8.0
    assert data["hours_remaining"] == pytest.approx(8.0 - data["accrued_hours"])
    assert data["current_ad"]["ad_id"] == "AD-1"
    assert data["current_location"]["lat"] == pytest.approx(14.5995)
    assert data["slots"][0]["device_id"] == "TAB-1"
    assert data["counters"]["total_qr_scans"] == 1
    assert data["ticker_state"] == "ACCRUING"

    listed = await client.get("/api/v1/live-sessions/", params={"online_only": True})
    assert [s["vehicle_id"] for s in listed.json()] == ["VH-1"]

    resp_404 = await client.get("/api/v1/live-sessions/VH-404")
    assert resp_404.status_code == 404


@pytest.mark.asyncio
async def test_archive_trigger_and_timeline_reads(client):
    await post_events(
        client,
        [
            {"kind": "status", "vehicle_id": "VH-1", "slot_number": 1, "is_online": True},
            {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1",
             "ad_duration": 20, "view_time": 10},
        ],
    )

    resp = await client.post("/api/v1/jobs/archive")
    assert resp.status_code == 200, resp.text
    report = resp.json()
    assert report["job"] == "archive"
    assert report["processed"] == 1
    assert report["details"] == {"create": 1}

    resp = await client.get("/api/v1/timelines/VH-1")
    assert resp.status_code == 200, resp.text
    page = resp.json()
    assert page["total_records"] == 1
    assert page["lifetime_totals"]["total_ad_plays"] == 1
    record = page["records"][0]
    assert record["update_count"] == 1
    assert record["last_update_source"] == "manual"
    assert record["daily_summary"]["ad_completion_rate"] == pytest.approx(50.0)

    day = record["day"]
    resp = await client.get(f"/api/v1/timelines/VH-1/days/{day}")
    assert resp.status_code == 200
    assert resp.json()["day"] == day
    resp = await client.get("/api/v1/timelines/VH-1/days/2001-01-01")
    assert resp.status_code == 404

    resp = await client.get("/api/v1/timelines/VH-1/update-tracking")
    assert resp.status_code == 200, resp.text
    tracking = resp.json()
    assert tracking["total_updates"] == 1
    assert tracking["last_update_source"] == "manual"
    assert tracking["last_update_type"] == "create"
    assert tracking["latest_record_day"] == day
    assert tracking["last_playback_at"] is not None
    assert tracking["is_stale"] is False

    assert (await client.get("/api/v1/timelines/VH-404")).status_code == 404


@pytest.mark.asyncio
async def test_placements_crud(client):
    today = datetime.now(timezone.utc).date()
    payload = {
        "advertiser_id": "ADV-1",
        "ad_id": "AD-1",
        "ad_title": "Coffee",
        "vehicle_id": "VH-1",
        "start_date": str(today),
        "end_date": str(today + timedelta(days=30)),
    }
    resp_create = await client.post("/api/v1/placements/", json=payload)
    assert resp_create.status_code == 201, resp_create.text
    placement = resp_create.json()
    assert placement["is_active"] is True
    assert placement["is_paid"] is True
    placement_id = placement["id"]

    resp_list = await client.get("/api/v1/placements/", params={"advertiser_id": "ADV-1"})
    assert [p["id"] for p in resp_list.json()] == [placement_id]
    resp_other = await client.get("/api/v1/placements/", params={"vehicle_id": "VH-2"})
    assert resp_other.json() == []

    resp_update = await client.put(
        f"/api/v1/placements/{placement_id}", json={"is_paid": False}
    )
    assert resp_update.status_code == 200
    assert resp_update.json()["is_paid"] is False

    resp_bad = await client.put(
        f"/api/v1/placements/{placement_id}",
        json={"end_date": str(today - timedelta(days=1))},
    )
    assert resp_bad.status_code == 422

    bad_window = dict(payload, end_date=str(today - timedelta(days=1)))
    assert (await client.post("/api/v1/placements/", json=bad_window)).status_code == 422

    resp_delete = await client.delete(f"/api/v1/placements/{placement_id}")
    assert resp_delete.status_code == 204
    assert (await client.get(f"/api/v1/placements/{placement_id}")).status_code == 404


@pytest.mark.asyncio
async def test_rollup_trigger_and_read(client):
    today = datetime.now(timezone.utc).date()
    resp = await client.post(
        "/api/v1/placements/",
        json={
            "advertiser_id": "ADV-1",
            "ad_id": "AD-1",
            "vehicle_id": "VH-1",
            "start_date": str(today - timedelta(days=3)),
            "end_date": str(today + timedelta(days=3)),
        },
    )
    assert resp.status_code == 201, resp.text

    await post_events(
        client,
        [
            {"kind": "ad_playback", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1",
             "ad_duration": 30, "view_time": 30},
            {"kind": "qr_scan", "vehicle_id": "VH-1", "slot_number": 1, "ad_id": "AD-1"},
        ],
    )
    assert (await client.post("/api/v1/jobs/archive")).status_code == 200

    resp = await client.post("/api/v1/jobs/rollup")
    assert resp.status_code == 200, resp.text
    assert resp.json()["processed"] == 1

    resp = await client.get("/api/v1/rollups/ADV-1")
    assert resp.status_code == 200, resp.text
    rollup = resp.json()
    assert rollup["persisted"] is True
    assert rollup["totals"]["total_ad_plays"] == 1
    assert rollup["totals"]["qr_conversion_rate"] == pytest.approx(100.0)
    assert rollup["vehicles"][0]["vehicle_id"] == "VH-1"

    assert (await client.get("/api/v1/rollups/ADV-404")).status_code == 404
    resp_bad = await client.get(
        "/api/v1/rollups/ADV-1",
        params={"start_date": str(today), "end_date": str(today - timedelta(days=1))},
    )
    assert resp_bad.status_code == 422


@pytest.mark.asyncio
async def test_jobs_status(client):
    resp = await client.post("/api/v1/jobs/hours-tick")
    assert resp.status_code == 200
    assert resp.json()["job"] == "hours-tick"

    resp = await client.get("/api/v1/jobs/status")
    assert resp.status_code == 200
    jobs = {j["job"]: j for j in resp.json()["jobs"]}
    assert set(jobs) == {"hours-tick", "archive", "rollup"}
    assert jobs["hours-tick"]["last_run"]["processed"] == 0
    assert jobs["archive"]["last_run"] is None
    assert resp.json()["enabled"] is False


@pytest.mark.asyncio
async def test_live_session_from_a_past_day_reads_as_a_fresh_day(client):
    ingestor = TelemetryIngestor(Settings(), AsyncSessionLocal)
    two_days_ago = datetime.now(timezone.utc) - timedelta(days=2)
    await ingestor.set_online("VH-1", 1, True, now=two_days_ago - timedelta(hours=3))
    await ingestor.set_online("VH-1", 1, False, now=two_days_ago)

    resp = await client.get("/api/v1/live-sessions/VH-1")
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["accrued_hours"] == 0.0
    assert data["hours_remaining"] == 8.0
    assert data["compliance_status"] == "PENDING"

    listed = await client.get("/api/v1/live-sessions/")
    assert listed.json()[0]["compliance_status"] == "PENDING"
