"""create live_sessions, timelines, advertiser_rollups, campaign_placements

Revision ID: 20261019120000
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019120000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "live_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("vehicle_id", sa.String(length=64), nullable=False),
        sa.Column("group_id", sa.String(length=64), nullable=True),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("is_online", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("accrued_hours", sa.Float(), nullable=False),
        sa.Column("state", sa.JSON(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("vehicle_id", "day", name="uq_live_sessions_vehicle_day"),
    )
    op.create_index("ix_live_sessions_id", "live_sessions", ["id"], unique=False)
    op.create_index("ix_live_sessions_vehicle_id", "live_sessions", ["vehicle_id"], unique=False)
    op.create_index("ix_live_sessions_day", "live_sessions", ["day"], unique=False)
    op.create_index("ix_live_sessions_online", "live_sessions", ["is_online"], unique=False)

    op.create_table(
        "timelines",
        sa.Column("vehicle_id", sa.String(length=64), nullable=False),
        sa.Column("group_id", sa.String(length=64), nullable=True),
        sa.Column("daily_records", sa.JSON(), nullable=False),
        sa.Column("lifetime_totals", sa.JSON(), nullable=False),
        sa.Column("first_day", sa.Date(), nullable=True),
        sa.Column("last_day", sa.Date(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("last_archive_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_updates", sa.Integer(), nullable=False),
        sa.Column("last_update_source", sa.String(length=16), nullable=True),
        sa.Column("last_update_type", sa.String(length=16), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("vehicle_id"),
    )

    op.create_table(
        "advertiser_rollups",
        sa.Column("advertiser_id", sa.String(length=64), nullable=False),
        sa.Column("window_start", sa.Date(), nullable=False),
        sa.Column("window_end", sa.Date(), nullable=False),
        sa.Column("totals", sa.JSON(), nullable=False),
        sa.Column("campaigns", sa.JSON(), nullable=False),
        sa.Column("vehicles", sa.JSON(), nullable=False),
        sa.Column("skipped_vehicles", sa.JSON(), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("advertiser_id"),
    )

    op.create_table(
        "campaign_placements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("advertiser_id", sa.String(length=64), nullable=False),
        sa.Column("ad_id", sa.String(length=64), nullable=False),
        sa.Column("ad_title", sa.String(length=255), nullable=True),
        sa.Column("vehicle_id", sa.String(length=64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_paid", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_campaign_placements_id", "campaign_placements", ["id"], unique=False)
    op.create_index(
        "ix_campaign_placements_advertiser_id",
        "campaign_placements",
        ["advertiser_id"],
        unique=False,
    )
    op.create_index(
        "ix_campaign_placements_vehicle_id",
        "campaign_placements",
        ["vehicle_id"],
        unique=False,
    )
    op.create_index(
        "ix_campaign_placements_window",
        "campaign_placements",
        ["start_date", "end_date"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_campaign_placements_window", table_name="campaign_placements")
    op.drop_index("ix_campaign_placements_vehicle_id", table_name="campaign_placements")
    op.drop_index("ix_campaign_placements_advertiser_id", table_name="campaign_placements")
    op.drop_index("ix_campaign_placements_id", table_name="campaign_placements")
    op.drop_table("campaign_placements")

    op.drop_table("advertiser_rollups")
    op.drop_table("timelines")

    op.drop_index("ix_live_sessions_online", table_name="live_sessions")
    op.drop_index("ix_live_sessions_day", table_name="live_sessions")
    op.drop_index("ix_live_sessions_vehicle_id", table_name="live_sessions")
    op.drop_index("ix_live_sessions_id", table_name="live_sessions")
    op.drop_table("live_sessions")
