# fleet_telemetry/models/campaign_placement.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from fleet_telemetry.db.base_class import Base


class CampaignPlacement(Base):
    """
    Local projection of the campaign registry: which advertiser's ad runs
    on which vehicle, and when.
    """

    __tablename__ = "campaign_placements"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    advertiser_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ad_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ad_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    vehicle_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    # company/internal ads are not paid and never show up in rollups
    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


Index(
    "ix_campaign_placements_window",
    CampaignPlacement.start_date,
    CampaignPlacement.end_date,
)
