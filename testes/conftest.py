import os

# must be set before fleet_telemetry is imported: the engine is built at import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./.pytest_fleet.db"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["FLEET_MQTT_ENABLED"] = "false"
os.environ["INGEST_RETRY_BACKOFF_SECONDS"] = "0"

from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from fleet_telemetry.db.session import drop_db, init_db  # noqa: E402

MANILA = ZoneInfo("Asia/Manila")


@pytest.fixture
def tz() -> ZoneInfo:
    return MANILA


@pytest_asyncio.fixture
async def fresh_db():
    await drop_db()
    await init_db()
    yield
