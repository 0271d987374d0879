# fleet_telemetry/services/live_session.py
"""
In-memory mutations of a LiveSessionState.

Nothing here touches the database: the ingestion service loads a session,
applies one of these functions under the vehicle lock and persists the result.
"""
from __future__ import annotations

import bisect
import logging
import math
from datetime import date, datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from fleet_telemetry.core.config import settings
from fleet_telemetry.schemas.live_session import (
    AdPerformance,
    AdPlayback,
    AdScanSummary,
    ComplianceStatus,
    DeviceInfo,
    GeoPoint,
    HoursState,
    LiveSessionSnapshotRead,
    LiveSessionState,
    OfflinePeriod,
    QrScan,
    SlotState,
)
from fleet_telemetry.schemas.telemetry import MAX_PLAYBACK_SECONDS, QrScanPayload
from fleet_telemetry.services.timezone_resolver import (
    elapsed_hours,
    ensure_utc,
    get_zone,
    local_date,
    local_hour,
    start_of_local_day,
)

logger = logging.getLogger("fleet.live_session")

LOCATION_HISTORY_CAP = 960
AD_PLAYBACK_CAP = 800

EARTH_RADIUS_KM = 6371.0

# summing 30 s deltas in floating point lands a hair below the target
HOURS_EPSILON = 1e-6


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------


def new_session(
    vehicle_id: str,
    day: date,
    tz_name: str,
    *,
    group_id: Optional[str] = None,
    target_hours: Optional[float] = None,
) -> LiveSessionState:
    if target_hours is None:
        target_hours = settings.TARGET_HOURS
    return LiveSessionState(
        vehicle_id=vehicle_id,
        group_id=group_id,
        day=day,
        timezone=tz_name,
        hours=HoursState(target_hours=target_hours),
    )


def carry_forward(
    previous: LiveSessionState,
    day: date,
    now: datetime,
    tz: ZoneInfo,
) -> LiveSessionState:
    """
    Start a new day from the vehicle's most recent session.

    Slots (with their online flags), the current location and the target
    carry over; counters, buckets and event logs start empty. An online
    vehicle accrues from local midnight, or from its last accrual if that is
    later.
    """
    now = ensure_utc(now)
    state = new_session(
        previous.vehicle_id,
        day,
        str(tz),
        group_id=previous.group_id,
        target_hours=previous.hours.target_hours,
    )
    state.slots = [slot.model_copy(deep=True) for slot in previous.slots]
    if previous.current_location is not None:
        state.current_location = previous.current_location.model_copy()
    state.last_seen = previous.last_seen

    if state.is_online:
        clock = start_of_local_day(day, tz)
        if previous.hours.last_accrual_at is not None:
            clock = max(clock, ensure_utc(previous.hours.last_accrual_at))
        clock = min(clock, now)
        state.hours.session_start = clock
        state.hours.last_accrual_at = clock
    return state


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def is_valid_coordinate(lat, lng) -> bool:
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def finite_or_zero(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def is_playback_seconds(value) -> bool:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and 0.0 <= value <= MAX_PLAYBACK_SECONDS


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def completion_rate(view_time: float, duration: float) -> float:
    if duration <= 0:
        return 0.0
    return min(100.0, view_time / duration * 100.0)


def trim_front(items: List, cap: int) -> None:
    overflow = len(items) - cap
    if overflow > 0:
        del items[:overflow]


def hours_remaining(state: LiveSessionState) -> float:
    return max(0.0, state.hours.target_hours - state.hours.accrued_hours)


def touch_slot(state: LiveSessionState, slot_number: Optional[int], now: datetime) -> None:
    now = ensure_utc(now)
    state.last_seen = now if state.last_seen is None else max(state.last_seen, now)
    if slot_number is None:
        return
    slot = state.get_slot(slot_number)
    if slot is not None:
        slot.last_seen = now


# ----------------------------------------------------------------------
# Event mutations
# ----------------------------------------------------------------------


def apply_location(state: LiveSessionState, point: GeoPoint, tz: ZoneInfo) -> bool:
    """
    Record a GPS point. Returns False when the point was dropped (bad
    coordinates or a timestamp already recorded).
    """
    if not is_valid_coordinate(point.lat, point.lng):
        logger.warning(
            "Dropping location with invalid coordinates (vehicle=%s lat=%r lng=%r)",
            state.vehicle_id,
            point.lat,
            point.lng,
        )
        return False

    ts = ensure_utc(point.timestamp)
    point = point.model_copy(
        update={
            "timestamp": ts,
            "speed": finite_or_zero(point.speed),
            "heading": finite_or_zero(point.heading),
            "accuracy": finite_or_zero(point.accuracy),
        }
    )
    history = state.location_history

    if any(p.timestamp == ts for p in history):
        logger.debug("Duplicate location ignored (vehicle=%s ts=%s)", state.vehicle_id, ts)
        return False

    latest = history[-1] if history else None
    is_newest = latest is None or ts > latest.timestamp

    # out-of-order points are kept for the trail but add no distance
    distance = 0.0
    if is_newest and latest is not None:
        distance = haversine_km(latest.lat, latest.lng, point.lat, point.lng)

    bisect.insort(history, point, key=lambda p: p.timestamp)
    trim_front(history, LOCATION_HISTORY_CAP)

    bucket = state.bucket(local_hour(ts, tz))
    bucket.location_count += 1
    bucket.distance_km += distance
    bucket.average_speed += (point.speed - bucket.average_speed) / bucket.location_count
    bucket.max_speed = max(bucket.max_speed, point.speed)

    state.counters.total_distance_km += distance
    if is_newest:
        state.current_location = point
    return True


def apply_ad_playback(
    state: LiveSessionState,
    *,
    slot_number: int,
    ad_id: str,
    ad_duration: float,
    view_time: float,
    start_time: datetime,
    tz: ZoneInfo,
    ad_title: str = "",
) -> Optional[AdPlayback]:
    if not ad_id:
        logger.warning("Dropping ad playback without ad_id (vehicle=%s)", state.vehicle_id)
        return None

    start = ensure_utc(start_time)
    for existing in state.ad_playbacks:
        if existing.ad_id == ad_id and existing.start_time == start:
            logger.debug(
                "Duplicate playback ignored (vehicle=%s ad=%s start=%s)",
                state.vehicle_id,
                ad_id,
                start,
            )
            return None

    if not (is_playback_seconds(ad_duration) and is_playback_seconds(view_time)):
        logger.warning(
            "Dropping ad playback with out-of-range times (vehicle=%s ad=%s duration=%r view=%r)",
            state.vehicle_id,
            ad_id,
            ad_duration,
            view_time,
        )
        return None
    ad_duration = max(float(ad_duration), 0.0)
    view_time = max(float(view_time), 0.0)

    playback = AdPlayback(
        ad_id=ad_id,
        ad_title=ad_title or "",
        slot_number=slot_number,
        ad_duration=ad_duration,
        view_time=view_time,
        completion_rate=completion_rate(view_time, ad_duration),
        start_time=start,
        end_time=start + timedelta(seconds=view_time),
    )

    bisect.insort(state.ad_playbacks, playback, key=lambda p: p.start_time)
    trim_front(state.ad_playbacks, AD_PLAYBACK_CAP)

    counters = state.counters
    counters.total_ad_plays += 1
    counters.total_ad_impressions += playback.impressions
    counters.total_ad_play_time += view_time

    _accumulate_ad_performance(state, playback)

    bucket = state.bucket(local_hour(start, tz))
    bucket.ad_plays += 1
    bucket.ad_impressions += playback.impressions
    bucket.ad_play_time += view_time

    if state.current_ad is None or start >= state.current_ad.start_time:
        state.current_ad = playback
    return playback


def _accumulate_ad_performance(state: LiveSessionState, playback: AdPlayback) -> None:
    perf = next((p for p in state.ad_performance if p.ad_id == playback.ad_id), None)
    if perf is None:
        perf = AdPerformance(ad_id=playback.ad_id, ad_title=playback.ad_title)
        state.ad_performance.append(perf)
    elif playback.ad_title:
        perf.ad_title = playback.ad_title

    perf.play_count += 1
    perf.impressions += playback.impressions
    perf.total_view_time += playback.view_time
    perf.total_duration += playback.ad_duration
    perf.average_view_time = perf.total_view_time / perf.play_count
    perf.completion_rate = completion_rate(perf.total_view_time, perf.total_duration)

    start = playback.start_time
    if perf.first_played is None or start < perf.first_played:
        perf.first_played = start
    if perf.last_played is None or start > perf.last_played:
        perf.last_played = start


def apply_qr_scan(
    state: LiveSessionState,
    *,
    slot_number: int,
    ad_id: str,
    scan_timestamp: datetime,
    tz: ZoneInfo,
    ad_title: str = "",
    payload: Optional[QrScanPayload] = None,
) -> Optional[QrScan]:
    if not ad_id:
        logger.warning("Dropping QR scan without ad_id (vehicle=%s)", state.vehicle_id)
        return None

    ts = ensure_utc(scan_timestamp)
    for existing in state.qr_scans:
        if existing.ad_id == ad_id and existing.scan_timestamp == ts:
            logger.debug("Duplicate QR scan ignored (vehicle=%s ad=%s)", state.vehicle_id, ad_id)
            return None

    extra = payload.model_dump(exclude={"scan_timestamp"}) if payload else {}
    scan = QrScan(
        ad_id=ad_id,
        ad_title=ad_title or "",
        slot_number=slot_number,
        scan_timestamp=ts,
        **extra,
    )
    bisect.insort(state.qr_scans, scan, key=lambda s: s.scan_timestamp)

    state.counters.total_qr_scans += 1

    summary = next((s for s in state.qr_scans_by_ad if s.ad_id == ad_id), None)
    if summary is None:
        summary = AdScanSummary(ad_id=ad_id, ad_title=scan.ad_title)
        state.qr_scans_by_ad.append(summary)
    elif scan.ad_title:
        summary.ad_title = scan.ad_title
    summary.scan_count += 1
    if summary.first_scanned is None or ts < summary.first_scanned:
        summary.first_scanned = ts
    if summary.last_scanned is None or ts > summary.last_scanned:
        summary.last_scanned = ts

    state.bucket(local_hour(ts, tz)).qr_scans += 1
    return scan


# ----------------------------------------------------------------------
# Online status & compliance hours
# ----------------------------------------------------------------------


def accrue_hours(state: LiveSessionState, now: datetime, tz: ZoneInfo) -> float:
    """
    Credit the time since the last accrual, capped at the target and at the
    end of the session's local day. Returns the hours actually credited.
    """
    hours = state.hours
    now = ensure_utc(now)
    if hours.last_accrual_at is None:
        hours.last_accrual_at = now
        return 0.0

    last = ensure_utc(hours.last_accrual_at)
    start = max(last, start_of_local_day(state.day, tz))
    upto = min(now, start_of_local_day(state.day + timedelta(days=1), tz))
    delta = elapsed_hours(start, upto)
    hours.last_accrual_at = max(last, upto)
    if delta <= 0:
        return 0.0

    before = hours.accrued_hours
    accrued = min(hours.target_hours, before + delta)
    if hours.target_hours - accrued < HOURS_EPSILON:
        accrued = hours.target_hours
    hours.accrued_hours = accrued
    if accrued >= hours.target_hours:
        hours.compliance_status = ComplianceStatus.COMPLIANT
    else:
        hours.compliance_status = ComplianceStatus.NON_COMPLIANT

    # the slice ends at upto, credit the hour it ends in
    state.bucket(local_hour(upto - timedelta(microseconds=1), tz)).online_minutes += delta * 60.0
    return accrued - before


def set_slot_online(
    state: LiveSessionState,
    slot_number: int,
    online: bool,
    now: datetime,
    tz: ZoneInfo,
    *,
    device_id: Optional[str] = None,
    device_info: Optional[DeviceInfo] = None,
) -> bool:
    """
    Toggle one screen. Returns True when the vehicle-level online flag
    or the slot flag changed.

    Going offline credits the hours up to now and opens an offline period;
    coming back closes it and restarts the accrual clock, so offline time is
    never counted and accrued hours never go down.
    """
    now = ensure_utc(now)
    slot = state.get_slot(slot_number)
    if slot is None:
        slot = SlotState(slot_number=slot_number)
        state.slots.append(slot)
        state.slots.sort(key=lambda s: s.slot_number)
    if device_id:
        slot.device_id = device_id
    if device_info is not None:
        slot.device_info = device_info

    was_online = state.is_online
    changed = slot.is_online != online
    slot.is_online = online
    if online:
        touch_slot(state, slot_number, now)
    if not changed:
        return False

    hours = state.hours
    if was_online and not state.is_online:
        accrue_hours(state, now, tz)
        hours.offline_periods.append(OfflinePeriod(start_time=now))
        hours.last_accrual_at = None
        logger.info("Vehicle %s went offline at %s", state.vehicle_id, now.isoformat())
    elif not was_online and state.is_online:
        _close_offline_period(hours, now)
        hours.last_accrual_at = now
        if hours.session_start is None:
            hours.session_start = now
        logger.info("Vehicle %s came online at %s", state.vehicle_id, now.isoformat())
    return True


def _close_offline_period(hours: HoursState, now: datetime) -> None:
    for period in reversed(hours.offline_periods):
        if period.end_time is None:
            period.end_time = now
            period.duration_hours = elapsed_hours(period.start_time, now)
            return


# ----------------------------------------------------------------------
# Read model
# ----------------------------------------------------------------------


def snapshot_of(
    state: LiveSessionState,
    ticker_state: str,
    now: Optional[datetime] = None,
) -> LiveSessionSnapshotRead:
    """
    Build the API view of a session. A row whose local day is already over
    has not been rolled forward yet, so it reports a fresh day: nothing
    accrued and the compliance still pending.
    """
    accrued = state.hours.accrued_hours
    remaining = hours_remaining(state)
    compliance = state.hours.compliance_status
    if now is not None:
        tz = get_zone(state.timezone)
        if local_date(now, tz) > state.day:
            accrued = 0.0
            remaining = state.hours.target_hours
            compliance = ComplianceStatus.PENDING

    return LiveSessionSnapshotRead(
        vehicle_id=state.vehicle_id,
        group_id=state.group_id,
        day=state.day,
        timezone=state.timezone,
        is_online=state.is_online,
        accrued_hours=accrued,
        target_hours=state.hours.target_hours,
        hours_remaining=remaining,
        compliance_status=compliance,
        ticker_state=ticker_state,
        current_ad=state.current_ad,
        current_location=state.current_location,
        last_seen=state.last_seen,
        slots=state.slots,
        counters=state.counters,
    )
