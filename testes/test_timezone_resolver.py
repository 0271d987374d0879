from datetime import date, datetime, timezone
from types import SimpleNamespace

from fleet_telemetry.services.timezone_resolver import (
    elapsed_hours,
    local_date,
    local_hour,
    resolve_timezone,
    start_of_local_day,
)


def test_point_inside_philippines_resolves_to_manila():
    tz = resolve_timezone(SimpleNamespace(lat=14.5995, lng=120.9842))
    assert str(tz) == "Asia/Manila"


def test_unknown_region_and_missing_point_fall_back_to_default():
    assert str(resolve_timezone(None)) == "Asia/Manila"
    assert str(resolve_timezone(SimpleNamespace(lat=48.85, lng=2.35))) == "Asia/Manila"
    assert str(resolve_timezone(None, default="Europe/Paris")) == "Europe/Paris"


def test_unknown_zone_name_falls_back_to_utc():
    assert str(resolve_timezone(None, default="Mars/Olympus_Mons")) == "UTC"


def test_local_date_crosses_midnight_before_utc(tz):
    # 16:30 UTC is already 00:30 the next day in Manila
    moment = datetime(2026, 3, 2, 16, 30, tzinfo=timezone.utc)
    assert local_date(moment, tz) == date(2026, 3, 3)
    assert local_hour(moment, tz) == 0


def test_naive_datetimes_are_utc(tz):
    assert local_hour(datetime(2026, 3, 2, 1, 0), tz) == 9


def test_start_of_local_day_and_elapsed(tz):
    start = start_of_local_day(date(2026, 3, 2), tz)
    assert start == datetime(2026, 3, 1, 16, 0, tzinfo=timezone.utc)
    assert elapsed_hours(start, datetime(2026, 3, 1, 17, 30, tzinfo=timezone.utc)) == 1.5
    assert elapsed_hours(None, start) == 0.0
    # never negative
    assert elapsed_hours(start, datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)) == 0.0
