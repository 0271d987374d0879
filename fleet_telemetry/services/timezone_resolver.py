# fleet_telemetry/services/timezone_resolver.py
"""
Vehicle timezone and local-day helpers.

All timestamps stored by the service are timezone-aware UTC; local dates are
only derived here, from the vehicle's last known position.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fleet_telemetry.core.config import settings

logger = logging.getLogger("fleet.timezone")

# (lat_min, lat_max, lng_min, lng_max, zone)
REGION_ZONES: Tuple[Tuple[float, float, float, float, str], ...] = (
    (4.0, 21.0, 116.0, 127.0, "Asia/Manila"),
)


@lru_cache(maxsize=64)
def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def zone_for_point(lat: float, lng: float) -> Optional[str]:
    for lat_min, lat_max, lng_min, lng_max, zone in REGION_ZONES:
        if lat_min <= lat <= lat_max and lng_min <= lng <= lng_max:
            return zone
    return None


def resolve_timezone(point=None, default: Optional[str] = None) -> ZoneInfo:
    """
    Timezone of a vehicle given its last known point (anything with
    .lat/.lng). No point, or a point outside every known region, resolves
    to the configured default.
    """
    fallback = default or settings.DEFAULT_TIMEZONE
    if point is None:
        return get_zone(fallback)
    zone = zone_for_point(point.lat, point.lng)
    return get_zone(zone or fallback)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime) -> datetime:
    # naive datetimes are taken as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    return ensure_utc(moment).astimezone(tz).date()


def local_hour(moment: datetime, tz: ZoneInfo) -> int:
    return ensure_utc(moment).astimezone(tz).hour


def start_of_local_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def elapsed_hours(start: Optional[datetime], end: datetime) -> float:
    if start is None:
        return 0.0
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(seconds, 0.0) / 3600.0
