# fleet_telemetry/api/deps.py
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_telemetry.db.session import AsyncSessionLocal
from fleet_telemetry.services.ingestion import TelemetryIngestor, ingestor
from fleet_telemetry.services.rollup import RollupJob, rollup_job
from fleet_telemetry.services.scheduler import JobScheduler, scheduler


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def get_ingestor() -> TelemetryIngestor:
    return ingestor


def get_scheduler() -> JobScheduler:
    return scheduler


def get_rollup_job() -> RollupJob:
    return rollup_job
