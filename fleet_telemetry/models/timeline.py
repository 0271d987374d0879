# fleet_telemetry/models/timeline.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from fleet_telemetry.db.base_class import Base


class Timeline(Base):
    __tablename__ = "timelines"

    vehicle_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # ascending list of daily records (JSON), at most one per date
    daily_records: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    lifetime_totals: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    first_day: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_day: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    last_archive_update: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    total_updates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_update_source: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    last_update_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}
