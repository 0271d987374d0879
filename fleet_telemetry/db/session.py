# fleet_telemetry/db/session.py

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from fleet_telemetry.core.config import settings
from fleet_telemetry.db.base import Base


# ----------------------------------------------------------------------
# Async engine using the URL resolved in settings.database_url
# ----------------------------------------------------------------------
_engine_kwargs = {}
if settings.database_url.startswith("sqlite"):
    # aiosqlite connections must not be shared between event loops (tests)
    _engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs,
)

# ----------------------------------------------------------------------
# Async session factory
# ----------------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ----------------------------------------------------------------------
# Database bootstrap (called on startup)
# ----------------------------------------------------------------------
async def init_db() -> None:
    """
    Create the tables from Base.metadata.

    Production deployments run the Alembic migrations instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

