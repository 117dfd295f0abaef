"""Initial schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # REPORT_CONVERSIONS (one row per session_id + keyword_clicked)
    op.create_table(
        "report_conversions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("keyword_clicked", sa.String(500), nullable=False),
        sa.Column("pixel_id", sa.String(100)),
        sa.Column("campaign_id", sa.String(100)),
        sa.Column("network", sa.String(50)),
        sa.Column("click_timestamp", sa.BigInteger),
        sa.Column("click_timestamp_ms", sa.BigInteger),
        sa.Column("ts_click_id", sa.String(500)),
        sa.Column("country_code", sa.String(8)),
        sa.Column("region", sa.String(255)),
        sa.Column("city", sa.String(255)),
        sa.Column("ip", sa.String(64)),
        sa.Column("user_agent", sa.Text),
        sa.Column("conversions", sa.Integer, server_default="0"),
        sa.Column("revenue", sa.Numeric(14, 4), server_default="0"),
        sa.Column("lander_visitors", sa.Integer, server_default="0"),
        sa.Column("lander_searches", sa.Integer, server_default="0"),
        sa.Column("landings", sa.Integer),
        sa.Column("serp_landings", sa.Integer),
        sa.Column("valid", sa.Boolean, server_default=sa.false()),
        sa.Column("invalid_reason", sa.String(255)),
        sa.Column("reported", sa.Integer, server_default="0"),
        sa.Column("payload", postgresql.JSONB().with_variant(sa.JSON(), "sqlite"), server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.UniqueConstraint("session_id", "keyword_clicked", name="uq_report_conversions_key"),
    )
    op.create_index("ix_report_conversions_reported", "report_conversions", ["reported", "valid"])

    # REPORTING_SUBSCRIPTIONS
    op.create_table(
        "reporting_subscriptions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("campaign_id", sa.String(100), unique=True, nullable=False),
        sa.Column("active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
    )

    # PIXELS
    op.create_table(
        "pixels",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("traffic_source", sa.String(50), nullable=False),
        sa.Column("active", sa.Boolean, server_default=sa.true()),
        sa.UniqueConstraint("code", "traffic_source"),
    )

    # AD_ACCOUNTS
    op.create_table(
        "ad_accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("provider_id", sa.String(100)),
    )

    # PIXELS_AD_ACCOUNTS_RELATIONS
    op.create_table(
        "pixels_ad_accounts_relations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("pixel_id", sa.Integer, sa.ForeignKey("pixels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ad_account_id", sa.Integer, sa.ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("pixel_id", "ad_account_id"),
    )

    # USER_ACCOUNTS (token holders)
    op.create_table(
        "user_accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("token", sa.Text, nullable=False),
        sa.Column("fetching", sa.Boolean, server_default=sa.true()),
    )

    # UA_AA_MAP
    op.create_table(
        "ua_aa_map",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ua_id", sa.Integer, sa.ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("aa_id", sa.Integer, sa.ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("ua_id", "aa_id"),
    )


def downgrade() -> None:
    op.drop_table("ua_aa_map")
    op.drop_table("user_accounts")
    op.drop_table("pixels_ad_accounts_relations")
    op.drop_table("ad_accounts")
    op.drop_table("pixels")
    op.drop_table("reporting_subscriptions")
    op.drop_index("ix_report_conversions_reported", table_name="report_conversions")
    op.drop_table("report_conversions")
