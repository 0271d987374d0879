from datetime import date, datetime, timedelta, timezone

import pytest

from fleet_telemetry.services.archival import build_daily_record
from fleet_telemetry.services.live_session import apply_ad_playback, apply_qr_scan, new_session
from fleet_telemetry.services.rollup import (
    PlacementRun,
    conversion_rate,
    default_window,
    summarize_advertiser,
)

START = date(2026, 3, 1)
END = date(2026, 3, 7)
NOW = datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc)


def record(tz, vehicle_id, day, plays=(), scans=()):
    """plays: (ad_id, view_time, duration); scans: ad ids."""
    state = new_session(vehicle_id, day, "Asia/Manila")
    base = datetime(day.year, day.month, day.day, 9, tzinfo=tz)
    for i, (ad_id, view, duration) in enumerate(plays):
        apply_ad_playback(
            state, slot_number=1, ad_id=ad_id, ad_duration=duration, view_time=view,
            start_time=base + timedelta(minutes=i), tz=tz,
        )
    for i, ad_id in enumerate(scans):
        apply_qr_scan(
            state, slot_number=1, ad_id=ad_id,
            scan_timestamp=base + timedelta(minutes=i, seconds=30), tz=tz,
        )
    return build_daily_record(state, 1, NOW)


def run(vehicle_id, ad_id, start=START, end=END):
    return PlacementRun(vehicle_id=vehicle_id, ad_id=ad_id, ad_title="", start_date=start, end_date=end)


def test_conversion_rate_is_zero_without_impressions():
    assert conversion_rate(0, 0) == 0.0
    assert conversion_rate(5, 0) == 0.0
    assert conversion_rate(1, 4) == 25.0


def test_completion_rate_is_weighted_by_impressions(tz):
    day = date(2026, 3, 3)
    records = {
        # AD-1: one play at 100%
        "VH-1": [record(tz, "VH-1", day, plays=[("AD-1", 30, 30)])],
        # AD-1: three plays at 50%
        "VH-2": [record(tz, "VH-2", day, plays=[("AD-1", 15, 30)] * 3)],
    }
    rollup = summarize_advertiser(
        "ADV-1", START, END, [run("VH-1", "AD-1"), run("VH-2", "AD-1")], records, NOW
    )

    assert rollup.totals.total_ad_impressions == 4
    # (100 * 1 + 50 * 3) / 4, not the plain mean of 75
    assert rollup.totals.average_completion_rate == pytest.approx(62.5)
    assert rollup.campaigns[0].vehicles == ["VH-1", "VH-2"]


def test_only_placed_ads_inside_the_run_are_counted(tz):
    placed_day = date(2026, 3, 4)
    outside_run = date(2026, 3, 2)
    records = {
        "VH-1": [
            record(
                tz, "VH-1", placed_day,
                plays=[("AD-1", 30, 30), ("AD-1", 30, 30), ("OTHER", 30, 30)],
                scans=["AD-1", "OTHER"],
            ),
            record(tz, "VH-1", outside_run, plays=[("AD-1", 30, 30)], scans=["AD-1"]),
        ],
        # no placement on this vehicle
        "VH-9": [record(tz, "VH-9", placed_day, plays=[("AD-1", 30, 30)])],
    }
    runs = [run("VH-1", "AD-1", start=date(2026, 3, 3), end=END)]

    rollup = summarize_advertiser("ADV-1", START, END, runs, records, NOW)

    assert rollup.totals.total_ad_plays == 2
    assert rollup.totals.total_qr_scans == 1
    assert rollup.totals.qr_conversion_rate == pytest.approx(50.0)
    assert rollup.totals.total_ads == 1
    assert rollup.totals.total_vehicles == 1
    assert [c.ad_id for c in rollup.campaigns] == ["AD-1"]
    assert [v.vehicle_id for v in rollup.vehicles] == ["VH-1"]
    assert rollup.vehicles[0].days_active == 1


def test_records_outside_the_window_are_ignored(tz):
    records = {"VH-1": [record(tz, "VH-1", END + timedelta(days=1), plays=[("AD-1", 30, 30)])]}
    rollup = summarize_advertiser("ADV-1", START, END, [run("VH-1", "AD-1")], records, NOW)

    assert rollup.totals.total_ad_plays == 0
    assert rollup.totals.qr_conversion_rate == 0.0
    assert rollup.totals.average_completion_rate == 0.0
    # the placement is still listed, with zeroes
    assert rollup.campaigns[0].ad_plays == 0


def test_default_window_ends_on_the_local_date():
    # 2026-03-07 17:00 UTC is already 2026-03-08 in Manila
    start, end = default_window(datetime(2026, 3, 7, 17, 0, tzinfo=timezone.utc), 7)
    assert end == date(2026, 3, 8)
    assert start == date(2026, 3, 2)
