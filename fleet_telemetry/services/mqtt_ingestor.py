# fleet_telemetry/services/mqtt_ingestor.py
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from asyncio_mqtt import Client, MqttError

from fleet_telemetry.core.config import Settings, settings
from fleet_telemetry.crud import live_session as crud_live_session
from fleet_telemetry.schemas.live_session import LiveSessionState, SlotState
from fleet_telemetry.services.ingestion import TelemetryIngestor, ingestor as default_ingestor
from fleet_telemetry.services.live_session import set_slot_online
from fleet_telemetry.services.timezone_resolver import ensure_utc, utcnow

logger = logging.getLogger("fleet.mqtt_ingestor")

# topic suffix -> event kind
TOPIC_KINDS = {
    "location": "location",
    "playback": "ad_playback",
    "qr": "qr_scan",
    "status": "status",
    "heartbeat": None,
}


def _decode_payload(payload: bytes) -> Optional[Any]:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Failed to decode MQTT payload as UTF-8")
        return None

    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Received non-JSON MQTT payload: %s", text[:200])
        return None


@dataclass(frozen=True)
class VehicleTopicInfo:
    vehicle_id: str
    slot_number: int
    kind: str


class MqttIngestor:
    """
    MQTT consumer for vehicle display devices.

    Topic layout:
        fleet/vehicles/<vehicle_id>/<slot>/<kind>

    kind is one of location, playback, qr, status, heartbeat. Every message
    marks the slot as seen; the offline monitor flips slots that went quiet.
    """

    def __init__(
        self,
        settings: Settings = settings,
        ingestor: TelemetryIngestor = default_ingestor,
        offline_check_interval_seconds: Optional[int] = None,
    ) -> None:
        self.settings = settings
        self.ingestor = ingestor
        self._stopped = False

        if offline_check_interval_seconds is not None:
            self.offline_check_interval_seconds = offline_check_interval_seconds
        else:
            base = self.settings.SLOT_OFFLINE_THRESHOLD_SECONDS // 2 or 5
            self.offline_check_interval_seconds = max(5, min(60, base))

    # ------------------------------------------------------------------
    # Topic parsing
    # ------------------------------------------------------------------

    def parse_topic(self, topic: str) -> Optional[VehicleTopicInfo]:
        prefix = self.settings.MQTT_TOPIC_PREFIX.rstrip("/")
        if not topic.startswith(prefix + "/"):
            return None

        parts = [p for p in topic[len(prefix) :].split("/") if p]
        if len(parts) != 3:
            return None

        vehicle_id, slot, kind = parts
        if kind not in TOPIC_KINDS:
            return None
        try:
            slot_number = int(slot)
        except ValueError:
            return None
        if not 1 <= slot_number <= 5:
            return None
        return VehicleTopicInfo(vehicle_id=vehicle_id, slot_number=slot_number, kind=kind)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(
        self, topic: str, payload: bytes, *, now: Optional[datetime] = None
    ) -> Optional[bool]:
        # asyncio-mqtt may hand over a Topic object
        topic = str(topic)
        logger.debug("MQTT message received: topic=%s", topic)

        ctx = self.parse_topic(topic)
        if ctx is None:
            logger.debug("Ignoring MQTT topic %s", topic)
            return None

        now = ensure_utc(now) if now is not None else utcnow()
        event_kind = TOPIC_KINDS[ctx.kind]

        if event_kind is None:
            return await self.ingestor.set_online(
                ctx.vehicle_id, ctx.slot_number, True, now=now
            )

        data = _decode_payload(payload)
        if not isinstance(data, dict):
            logger.warning("MQTT: dropping %s message without a JSON object body", topic)
            return False

        event: Dict[str, Any] = dict(data)
        event["kind"] = event_kind
        event["vehicle_id"] = ctx.vehicle_id
        if event_kind != "location" or "slot_number" not in event:
            event["slot_number"] = ctx.slot_number

        outcome = await self.ingestor.ingest_raw(event, now=now)
        # any traffic from a slot proves it is alive
        if event_kind != "status":
            await self.ingestor.set_online(ctx.vehicle_id, ctx.slot_number, True, now=now)
        return outcome

    # ------------------------------------------------------------------
    # Offline monitor
    # ------------------------------------------------------------------

    async def check_offline_slots(self, now: Optional[datetime] = None) -> int:
        """Mark offline every online slot silent for longer than the threshold."""
        now = ensure_utc(now) if now is not None else utcnow()

        async with self.ingestor.session_factory() as db:
            rows = await crud_live_session.list_latest(db, online_only=True)
            stale = []
            for row in rows:
                state = crud_live_session.load_state(row)
                for slot in state.slots:
                    if slot.is_online and self._is_silent(slot, now):
                        stale.append((row.vehicle_id, slot.slot_number))

        flipped = 0
        for vehicle_id, slot_number in stale:
            if await self.take_slot_offline(vehicle_id, slot_number, now=now):
                flipped += 1
        return flipped

    async def take_slot_offline(
        self, vehicle_id: str, slot_number: int, *, now: Optional[datetime] = None
    ) -> bool:
        """
        Mark one slot offline if it is still silent once the vehicle lock is
        held. A heartbeat that lands after the scan keeps the slot online.
        """
        now = ensure_utc(now) if now is not None else utcnow()

        def _apply(state: LiveSessionState, tz: ZoneInfo) -> bool:
            slot = state.get_slot(slot_number)
            if slot is None or not slot.is_online or not self._is_silent(slot, now):
                return False
            logger.info(
                "Slot %s of vehicle %s silent since %s, marking offline",
                slot_number,
                vehicle_id,
                slot.last_seen,
            )
            set_slot_online(state, slot_number, False, now, tz)
            return True

        flipped = await self.ingestor.mutate(
            vehicle_id, _apply, now=now, action="offline check"
        )
        return bool(flipped)

    def _is_silent(self, slot: SlotState, now: datetime) -> bool:
        if slot.last_seen is None:
            return True
        silent = (now - ensure_utc(slot.last_seen)).total_seconds()
        return silent > self.settings.SLOT_OFFLINE_THRESHOLD_SECONDS

    async def _offline_monitor_loop(self) -> None:
        interval = self.offline_check_interval_seconds
        logger.info(
            "Starting slot offline monitor: interval=%ss threshold=%ss",
            interval,
            self.settings.SLOT_OFFLINE_THRESHOLD_SECONDS,
        )
        while not self._stopped:
            await asyncio.sleep(interval)
            try:
                await self.check_offline_slots()
            except Exception:
                logger.exception("Error while running slot offline monitor")

    # ------------------------------------------------------------------
    # MQTT loop
    # ------------------------------------------------------------------

    async def _mqtt_loop(self) -> None:
        host = self.settings.MQTT_HOST
        port = self.settings.MQTT_PORT
        topic = self.settings.MQTT_TOPIC

        backoff = 5
        logger.info("Starting MQTT loop: host=%s port=%s topic=%s", host, port, topic)

        while not self._stopped:
            try:
                async with Client(
                    hostname=host,
                    port=port,
                    username=self.settings.MQTT_USERNAME or None,
                    password=self.settings.MQTT_PASSWORD or None,
                ) as client:
                    logger.info("Connected to MQTT broker %s:%s", host, port)
                    await client.subscribe(topic)
                    backoff = 5

                    async with client.unfiltered_messages() as messages:
                        async for message in messages:
                            try:
                                await self.handle_message(message.topic, message.payload)
                            except Exception:
                                logger.exception("Error processing MQTT message")

            except MqttError as e:
                logger.warning(
                    "MQTT connection error: %s. Reconnecting in %s seconds...",
                    e,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)
            except Exception:
                logger.exception("Unexpected error in MQTT ingestor")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)

    async def run(self) -> None:
        tasks = []
        try:
            tasks.append(asyncio.create_task(self._mqtt_loop(), name="mqtt_loop"))
            if self.settings.SLOT_OFFLINE_THRESHOLD_SECONDS > 0:
                tasks.append(
                    asyncio.create_task(self._offline_monitor_loop(), name="offline_monitor")
                )
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            self._stopped = True
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            self._stopped = True

    def stop(self) -> None:
        self._stopped = True
