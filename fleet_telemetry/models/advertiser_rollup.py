# fleet_telemetry/models/advertiser_rollup.py
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fleet_telemetry.db.base_class import Base


class AdvertiserRollup(Base):
    __tablename__ = "advertiser_rollups"

    advertiser_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    window_start: Mapped[date] = mapped_column(Date, nullable=False)
    window_end: Mapped[date] = mapped_column(Date, nullable=False)

    # totals / per-campaign / per-vehicle breakdowns, replaced on every run
    totals: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    campaigns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    vehicles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    skipped_vehicles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
