from datetime import date, datetime, timedelta, timezone

import pytest

from fleet_telemetry.schemas.live_session import ComplianceStatus
from fleet_telemetry.schemas.timeline import (
    UPDATE_SOURCE_MANUAL,
    UPDATE_TYPE_CREATE,
    UPDATE_TYPE_MERGE,
    TimelineDocument,
)
from fleet_telemetry.services.archival import (
    build_daily_record,
    compute_lifetime_totals,
    merge_daily_records,
    summarize_day,
    upsert_daily_record,
)
from fleet_telemetry.services.live_session import (
    accrue_hours,
    apply_ad_playback,
    apply_qr_scan,
    new_session,
    set_slot_online,
)

DAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def at(tz, hour, minute=0, day=DAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)


def play(state, tz, ad_id, hour, minute=0, view=30.0, duration=30.0):
    return apply_ad_playback(
        state, slot_number=1, ad_id=ad_id, ad_duration=duration, view_time=view,
        start_time=at(tz, hour, minute, day=state.day), tz=tz,
    )


def test_merge_unions_playbacks_by_ad_and_start_time(tz):
    first = new_session("VH-1", DAY, "Asia/Manila")
    play(first, tz, "AD-1", 9)
    play(first, tz, "AD-2", 9, 5)
    play(first, tz, "AD-3", 9, 10)
    existing = build_daily_record(first, 1, NOW)

    # a later snapshot that lost the first two plays but saw a new one
    second = new_session("VH-1", DAY, "Asia/Manila")
    play(second, tz, "AD-3", 9, 10)
    play(second, tz, "AD-4", 9, 15)
    snapshot = build_daily_record(second, 2, NOW + timedelta(minutes=5))

    merged = merge_daily_records(existing, snapshot, NOW + timedelta(minutes=5))

    assert [p.ad_id for p in merged.ad_playbacks] == ["AD-1", "AD-2", "AD-3", "AD-4"]
    # counters never go backwards
    assert merged.total_ad_plays == 3
    assert {p.ad_id for p in merged.ad_performance} == {"AD-1", "AD-2", "AD-3", "AD-4"}
    assert merged.update_count == 2
    assert merged.last_update_type == UPDATE_TYPE_MERGE
    assert merged.session_version == 2
    assert merged.daily_summary.unique_ads_played == 4


def test_merge_keeps_the_larger_hours_state(tz):
    ahead = new_session("VH-1", DAY, "Asia/Manila")
    set_slot_online(ahead, 1, True, at(tz, 8), tz)
    accrue_hours(ahead, at(tz, 11), tz)
    behind = ahead.model_copy(deep=True)
    behind.hours.accrued_hours = 1.0

    merged = merge_daily_records(
        build_daily_record(ahead, 3, NOW), build_daily_record(behind, 4, NOW), NOW
    )
    assert merged.hours.accrued_hours == pytest.approx(3.0)


def test_upserting_the_same_snapshot_twice_is_idempotent(tz):
    state = new_session("VH-1", DAY, "Asia/Manila", group_id="G-1")
    play(state, tz, "AD-1", 10)
    apply_qr_scan(state, slot_number=1, ad_id="AD-1", scan_timestamp=at(tz, 10, 2), tz=tz)
    set_slot_online(state, 1, True, at(tz, 8), tz)
    accrue_hours(state, at(tz, 10, 30), tz)

    doc = TimelineDocument(vehicle_id="VH-1")
    assert upsert_daily_record(doc, build_daily_record(state, 5, NOW), NOW) == UPDATE_TYPE_CREATE
    content = doc.daily_records[0].content()
    totals = doc.lifetime_totals.model_dump()

    later = NOW + timedelta(minutes=5)
    update_type = upsert_daily_record(
        doc, build_daily_record(state, 5, later), later, UPDATE_SOURCE_MANUAL
    )

    assert update_type == UPDATE_TYPE_MERGE
    assert len(doc.daily_records) == 1
    assert doc.daily_records[0].content() == content
    assert doc.lifetime_totals.model_dump() == totals
    assert doc.daily_records[0].update_count == 2
    assert doc.total_updates == 2
    assert doc.last_update_source == UPDATE_SOURCE_MANUAL
    assert doc.group_id == "G-1"


def test_records_stay_in_date_order_and_totals_are_sums(tz):
    doc = TimelineDocument(vehicle_id="VH-1")
    days = [DAY, DAY - timedelta(days=2), DAY - timedelta(days=1)]
    for offset, day in enumerate(days):
        state = new_session("VH-1", day, "Asia/Manila")
        for i in range(offset + 1):
            play(state, tz, f"AD-{i}", 9, i)
        set_slot_online(state, 1, True, at(tz, 6, day=day), tz)
        # only the first day reaches the target
        accrue_hours(state, at(tz, 15 if offset == 0 else 8, day=day), tz)
        upsert_daily_record(doc, build_daily_record(state, 1, NOW), NOW)

    assert [r.day for r in doc.daily_records] == sorted(days)
    totals = doc.lifetime_totals
    assert totals.total_days == 3
    assert totals.total_ad_plays == 1 + 2 + 3
    assert totals.total_hours_online == pytest.approx(8.0 + 2.0 + 2.0)
    assert totals.average_daily_hours == pytest.approx(4.0)
    assert totals.compliant_days == 1
    assert totals.compliance_rate == pytest.approx(100.0 / 3)
    assert totals == compute_lifetime_totals(doc.daily_records)


def test_compliance_rate_for_one_of_two_days(tz):
    records = []
    for day, until in [(DAY - timedelta(days=1), 16), (DAY, 12)]:
        state = new_session("VH-1", day, "Asia/Manila")
        set_slot_online(state, 1, True, at(tz, 8, day=day), tz)
        accrue_hours(state, at(tz, until, day=day), tz)
        records.append(build_daily_record(state, 1, NOW))

    assert records[0].hours.compliance_status == ComplianceStatus.COMPLIANT
    totals = compute_lifetime_totals(records)
    assert totals.compliance_rate == pytest.approx(50.0)
    assert totals.average_daily_hours == pytest.approx(6.0)


def test_daily_summary(tz):
    state = new_session("VH-1", DAY, "Asia/Manila")
    play(state, tz, "AD-1", 9, view=15.0)
    play(state, tz, "AD-1", 9, 5, view=30.0)
    play(state, tz, "AD-2", 14, view=30.0, duration=60.0)
    play(state, tz, "AD-2", 17, view=60.0, duration=60.0)
    apply_qr_scan(state, slot_number=1, ad_id="AD-2", scan_timestamp=at(tz, 17, 1), tz=tz)
    play(state, tz, "AD-1", 20, view=30.0)

    summary = summarize_day(build_daily_record(state, 1, NOW))

    assert summary.peak_hours == [9, 14, 17]
    assert summary.unique_ads_played == 2
    assert summary.total_interactions == 1
    # (15 + 30 + 30 + 30 + 60) / (30 + 30 + 60 + 60 + 30)
    assert summary.ad_completion_rate == pytest.approx(165 / 210 * 100)
