# fleet_telemetry/main.py
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleet_telemetry import __version__
from fleet_telemetry.api.v1.api import api_router
from fleet_telemetry.core.config import settings
from fleet_telemetry.db.session import init_db
from fleet_telemetry.services.ingestion import ingestor
from fleet_telemetry.services.mqtt_ingestor import MqttIngestor
from fleet_telemetry.services.scheduler import scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fleet.main")

app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_mqtt_task: asyncio.Task | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _mqtt_task

    await init_db()

    if settings.SCHEDULER_ENABLED:
        logger.info("Starting job scheduler (hours tick, archival, rollup)...")
        scheduler.start()

    if settings.MQTT_ENABLED:
        logger.info("Starting MQTT ingestor task...")
        mqtt = MqttIngestor(settings=settings, ingestor=ingestor)
        _mqtt_task = asyncio.create_task(mqtt.run(), name="mqtt_ingestor")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _mqtt_task

    await scheduler.stop()

    if _mqtt_task:
        logger.info("Stopping MQTT ingestor task...")
        _mqtt_task.cancel()
        try:
            await _mqtt_task
        except asyncio.CancelledError:
            logger.info("MQTT ingestor task cancelled")
        _mqtt_task = None


@app.get("/health", tags=["health"])
async def healthcheck():
    return {"status": "ok"}


app.include_router(api_router, prefix="/api/v1")
