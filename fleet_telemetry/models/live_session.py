# fleet_telemetry/models/live_session.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from fleet_telemetry.db.base_class import Base


class LiveSession(Base):
    """
    Per-vehicle, per-local-day tracking row.

    The nested document (slots, hours, buckets, event logs) lives in `state`;
    `is_online` and `accrued_hours` are denormalized so the ticker and the
    dashboards can filter without decoding JSON.
    """

    __tablename__ = "live_sessions"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "day", name="uq_live_sessions_vehicle_day"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    vehicle_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    group_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # local calendar date of the vehicle's timezone
    day: Mapped[date] = mapped_column(Date, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)

    is_online: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    accrued_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    state: Mapped[dict] = mapped_column(JSON, nullable=False)

    # optimistic concurrency: bumped by SQLAlchemy on every UPDATE
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __mapper_args__ = {"version_id_col": version_id}


Index("ix_live_sessions_day", LiveSession.day)
Index("ix_live_sessions_online", LiveSession.is_online)
