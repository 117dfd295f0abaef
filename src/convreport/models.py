"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ReportConversion(Base):
    """Final reporting outcome of one conversion record, one row per (session_id, keyword_clicked)."""

    __tablename__ = "report_conversions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    keyword_clicked: Mapped[str] = mapped_column(String(500), nullable=False)
    pixel_id: Mapped[str | None] = mapped_column(String(100))
    campaign_id: Mapped[str | None] = mapped_column(String(100))
    network: Mapped[str | None] = mapped_column(String(50))
    click_timestamp: Mapped[int | None] = mapped_column(BigInteger)
    click_timestamp_ms: Mapped[int | None] = mapped_column(BigInteger)  # Analytics store expects ms
    ts_click_id: Mapped[str | None] = mapped_column(String(500))
    country_code: Mapped[str | None] = mapped_column(String(8))
    region: Mapped[str | None] = mapped_column(String(255))
    city: Mapped[str | None] = mapped_column(String(255))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    conversions: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    lander_visitors: Mapped[int] = mapped_column(Integer, default=0)
    lander_searches: Mapped[int] = mapped_column(Integer, default=0)
    landings: Mapped[int | None] = mapped_column(Integer)
    serp_landings: Mapped[int | None] = mapped_column(Integer)
    valid: Mapped[bool] = mapped_column(Boolean, default=False)
    invalid_reason: Mapped[str | None] = mapped_column(String(255))
    reported: Mapped[int] = mapped_column(Integer, default=0)  # 0 | 1
    payload: Mapped[dict[str, Any]] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("session_id", "keyword_clicked", name="uq_report_conversions_key"),
        Index("ix_report_conversions_reported", "reported", "valid"),
    )


class ReportingSubscription(Base):
    """Campaign currently subscribed to conversion reporting."""

    __tablename__ = "reporting_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Pixel(Base):
    """Destination pixel for a traffic source."""

    __tablename__ = "pixels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    traffic_source: Mapped[str] = mapped_column(String(50), nullable=False)  # facebook, tiktok
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (UniqueConstraint("code", "traffic_source"),)


class AdAccount(Base):
    """Ad account that owns pixels."""

    __tablename__ = "ad_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_id: Mapped[str | None] = mapped_column(String(100))


class PixelAdAccount(Base):
    """Pixel <-> ad account relation."""

    __tablename__ = "pixels_ad_accounts_relations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pixel_id: Mapped[int] = mapped_column(Integer, ForeignKey("pixels.id", ondelete="CASCADE"), nullable=False)
    ad_account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (UniqueConstraint("pixel_id", "ad_account_id"),)


class UserAccount(Base):
    """User account holding the API token used to report for its ad accounts."""

    __tablename__ = "user_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    fetching: Mapped[bool] = mapped_column(Boolean, default=True)  # False once the token is revoked


class UserAdAccountMap(Base):
    """User account <-> ad account relation."""

    __tablename__ = "ua_aa_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ua_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False)
    aa_id: Mapped[int] = mapped_column(Integer, ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (UniqueConstraint("ua_id", "aa_id"),)
