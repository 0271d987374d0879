# fleet_telemetry/services/ingestion.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Optional,
    Tuple,
    TypeVar,
)
from zoneinfo import ZoneInfo

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from fleet_telemetry.core.config import Settings, settings
from fleet_telemetry.crud import live_session as crud_live_session
from fleet_telemetry.db.session import AsyncSessionLocal
from fleet_telemetry.models.live_session import LiveSession
from fleet_telemetry.schemas.live_session import DeviceInfo, GeoPoint, LiveSessionState
from fleet_telemetry.schemas.telemetry import (
    AdPlaybackEvent,
    IngestResult,
    LocationEvent,
    QrScanEvent,
    QrScanPayload,
    StatusEvent,
    telemetry_event_adapter,
)
from fleet_telemetry.services.live_session import (
    apply_ad_playback,
    apply_location,
    apply_qr_scan,
    carry_forward,
    is_playback_seconds,
    is_valid_coordinate,
    new_session,
    set_slot_online,
    touch_slot,
)
from fleet_telemetry.services.timezone_resolver import (
    ensure_utc,
    local_date,
    resolve_timezone,
    utcnow,
)

logger = logging.getLogger("fleet.ingestion")

T = TypeVar("T")


class TelemetryIngestor:
    """
    Entry point for every device event.

    Calls for one vehicle are serialized by an asyncio.Lock; the row itself is
    versioned, so a writer from another process that got there first makes
    the save fail with StaleDataError and the mutation is replayed on a fresh
    copy. Each report_* call returns True (applied), False (dropped: invalid
    or duplicate) or None (gave up after the retries).
    """

    def __init__(
        self,
        settings: Settings = settings,
        session_factory=AsyncSessionLocal,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, vehicle_id: str) -> asyncio.Lock:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[vehicle_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Serialized, retried DB work
    # ------------------------------------------------------------------

    async def run_serialized(
        self,
        vehicle_id: str,
        operation: Callable[[AsyncSession], Awaitable[T]],
        *,
        action: str = "update",
    ) -> Optional[T]:
        retries = max(0, self.settings.INGEST_MAX_RETRIES)
        backoff = self.settings.INGEST_RETRY_BACKOFF_SECONDS

        async with self.lock_for(vehicle_id):
            for attempt in range(retries + 1):
                async with self.session_factory() as db:
                    try:
                        return await operation(db)
                    except (StaleDataError, IntegrityError) as exc:
                        await db.rollback()
                        logger.warning(
                            "Conflict on %s for vehicle %s (attempt %s/%s): %s",
                            action,
                            vehicle_id,
                            attempt + 1,
                            retries + 1,
                            exc.__class__.__name__,
                        )
                if attempt < retries:
                    await asyncio.sleep(backoff)

        logger.error(
            "Failed %s for vehicle %s after %s attempts",
            action,
            vehicle_id,
            retries + 1,
        )
        return None

    async def load_current(
        self,
        db: AsyncSession,
        vehicle_id: str,
        now: datetime,
        *,
        group_id: Optional[str] = None,
        hint: Optional[GeoPoint] = None,
    ) -> Tuple[LiveSession, LiveSessionState, ZoneInfo]:
        """
        Session for the vehicle's current local day, creating it (or carrying
        the latest one forward) when missing. New rows are only staged.
        """
        latest = await crud_live_session.get_latest(db, vehicle_id)
        previous = crud_live_session.load_state(latest) if latest is not None else None

        point = hint
        if previous is not None and previous.current_location is not None:
            point = previous.current_location
        tz = resolve_timezone(point)
        today = local_date(now, tz)

        if latest is not None and previous.day >= today:
            row, state = latest, previous
        else:
            if previous is not None:
                state = carry_forward(previous, today, now, tz)
            else:
                state = new_session(vehicle_id, today, str(tz), group_id=group_id)
            row = crud_live_session.add(db, state)
            logger.info("Opened live session (vehicle=%s day=%s tz=%s)", vehicle_id, today, tz)

        if group_id and state.group_id != group_id:
            state.group_id = group_id
        return row, state, tz

    async def mutate(
        self,
        vehicle_id: str,
        mutation: Callable[[LiveSessionState, ZoneInfo], T],
        *,
        now: Optional[datetime] = None,
        group_id: Optional[str] = None,
        hint: Optional[GeoPoint] = None,
        action: str = "update",
    ) -> Optional[T]:
        now = ensure_utc(now) if now is not None else utcnow()

        async def _op(db: AsyncSession) -> T:
            row, state, tz = await self.load_current(
                db, vehicle_id, now, group_id=group_id, hint=hint
            )
            result = mutation(state, tz)
            await crud_live_session.save(db, row, state, now=now)
            return result

        return await self.run_serialized(vehicle_id, _op, action=action)

    # ------------------------------------------------------------------
    # Ingestion contract
    # ------------------------------------------------------------------

    async def report_location(
        self,
        vehicle_id: str,
        lat: float,
        lng: float,
        *,
        speed: float = 0.0,
        heading: float = 0.0,
        accuracy: float = 0.0,
        timestamp: Optional[datetime] = None,
        address: Optional[str] = None,
        slot_number: Optional[int] = None,
        group_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[bool]:
        if not is_valid_coordinate(lat, lng):
            logger.warning(
                "Dropping location with invalid coordinates (vehicle=%s lat=%r lng=%r)",
                vehicle_id,
                lat,
                lng,
            )
            return False

        now = ensure_utc(now) if now is not None else utcnow()
        point = GeoPoint(
            lat=lat,
            lng=lng,
            timestamp=ensure_utc(timestamp) if timestamp is not None else now,
            speed=speed,
            heading=heading,
            accuracy=accuracy,
            address=address,
        )

        def _apply(state: LiveSessionState, tz: ZoneInfo) -> bool:
            accepted = apply_location(state, point, tz)
            touch_slot(state, slot_number, now)
            return accepted

        return await self.mutate(
            vehicle_id, _apply, now=now, group_id=group_id, hint=point, action="location"
        )

    async def report_ad_playback(
        self,
        vehicle_id: str,
        slot_number: int,
        ad_id: str,
        ad_duration: float,
        view_time: float,
        *,
        ad_title: str = "",
        start_time: Optional[datetime] = None,
        group_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[bool]:
        if not ad_id:
            logger.warning("Dropping ad playback without ad_id (vehicle=%s)", vehicle_id)
            return False
        if not (is_playback_seconds(ad_duration) and is_playback_seconds(view_time)):
            logger.warning(
                "Dropping ad playback with out-of-range times (vehicle=%s ad=%s duration=%r view=%r)",
                vehicle_id,
                ad_id,
                ad_duration,
                view_time,
            )
            return False

        now = ensure_utc(now) if now is not None else utcnow()
        start = ensure_utc(start_time) if start_time is not None else now

        def _apply(state: LiveSessionState, tz: ZoneInfo) -> bool:
            playback = apply_ad_playback(
                state,
                slot_number=slot_number,
                ad_id=ad_id,
                ad_title=ad_title,
                ad_duration=ad_duration,
                view_time=view_time,
                start_time=start,
                tz=tz,
            )
            touch_slot(state, slot_number, now)
            return playback is not None

        return await self.mutate(
            vehicle_id, _apply, now=now, group_id=group_id, action="ad_playback"
        )

    async def report_qr_scan(
        self,
        vehicle_id: str,
        slot_number: int,
        ad_id: str,
        payload: Optional[QrScanPayload] = None,
        *,
        ad_title: str = "",
        group_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[bool]:
        if not ad_id:
            logger.warning("Dropping QR scan without ad_id (vehicle=%s)", vehicle_id)
            return False

        now = ensure_utc(now) if now is not None else utcnow()
        payload = payload or QrScanPayload()
        scanned_at = payload.scan_timestamp or now

        def _apply(state: LiveSessionState, tz: ZoneInfo) -> bool:
            scan = apply_qr_scan(
                state,
                slot_number=slot_number,
                ad_id=ad_id,
                ad_title=ad_title,
                scan_timestamp=scanned_at,
                payload=payload,
                tz=tz,
            )
            touch_slot(state, slot_number, now)
            return scan is not None

        return await self.mutate(
            vehicle_id, _apply, now=now, group_id=group_id, action="qr_scan"
        )

    async def set_online(
        self,
        vehicle_id: str,
        slot_number: int,
        online: bool,
        *,
        device_id: Optional[str] = None,
        device_info: Optional[DeviceInfo] = None,
        group_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[bool]:
        now = ensure_utc(now) if now is not None else utcnow()

        def _apply(state: LiveSessionState, tz: ZoneInfo) -> bool:
            set_slot_online(
                state,
                slot_number,
                online,
                now,
                tz,
                device_id=device_id,
                device_info=device_info,
            )
            return True

        return await self.mutate(
            vehicle_id, _apply, now=now, group_id=group_id, action="status"
        )

    # ------------------------------------------------------------------
    # Validated events
    # ------------------------------------------------------------------

    async def ingest(self, event, *, now: Optional[datetime] = None) -> Optional[bool]:
        if isinstance(event, LocationEvent):
            return await self.report_location(
                event.vehicle_id,
                event.lat,
                event.lng,
                speed=event.speed,
                heading=event.heading,
                accuracy=event.accuracy,
                timestamp=event.timestamp,
                address=event.address,
                slot_number=event.slot_number,
                group_id=event.group_id,
                now=now,
            )
        if isinstance(event, AdPlaybackEvent):
            return await self.report_ad_playback(
                event.vehicle_id,
                event.slot_number,
                event.ad_id,
                event.ad_duration,
                event.view_time,
                ad_title=event.ad_title,
                start_time=event.start_time or event.timestamp,
                group_id=event.group_id,
                now=now,
            )
        if isinstance(event, QrScanEvent):
            payload = event.payload
            if payload.scan_timestamp is None and event.timestamp is not None:
                payload = payload.model_copy(update={"scan_timestamp": event.timestamp})
            return await self.report_qr_scan(
                event.vehicle_id,
                event.slot_number,
                event.ad_id,
                payload,
                ad_title=event.ad_title,
                group_id=event.group_id,
                now=now,
            )
        if isinstance(event, StatusEvent):
            return await self.set_online(
                event.vehicle_id,
                event.slot_number,
                event.is_online,
                device_id=event.device_id,
                device_info=event.device_info,
                group_id=event.group_id,
                now=now,
            )
        raise TypeError(f"Unsupported telemetry event: {type(event).__name__}")

    async def ingest_raw(
        self, raw: Dict[str, Any], *, now: Optional[datetime] = None
    ) -> Optional[bool]:
        """Validate one raw event and apply it. Invalid input returns False."""
        try:
            event = telemetry_event_adapter.validate_python(raw)
        except ValidationError as exc:
            logger.warning("Rejected telemetry event: %s", _short_error(exc))
            return False
        return await self.ingest(event, now=now)

    async def ingest_batch(
        self, raw_events: Iterable[Dict[str, Any]], *, now: Optional[datetime] = None
    ) -> IngestResult:
        result = IngestResult()
        for index, raw in enumerate(raw_events):
            try:
                event = telemetry_event_adapter.validate_python(raw)
            except ValidationError as exc:
                message = _short_error(exc)
                logger.warning("Rejected telemetry event #%s: %s", index, message)
                result.rejected += 1
                result.errors.append(f"event {index}: {message}")
                continue

            try:
                outcome = await self.ingest(event, now=now)
            except Exception as exc:
                logger.exception(
                    "Failed to apply telemetry event #%s for vehicle %s", index, event.vehicle_id
                )
                result.failed += 1
                result.errors.append(f"event {index}: {exc.__class__.__name__}")
                continue
            if outcome is None:
                result.failed += 1
            elif outcome:
                result.accepted += 1
            else:
                result.ignored += 1
        return result


def _short_error(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else first.get("msg", "invalid")


ingestor = TelemetryIngestor()
