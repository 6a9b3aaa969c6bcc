"""Campaigns, ad sets and ads mirrored from the Graph API."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.utils.status import EntityStatus


class MetricsMixin:
    """Denormalised performance metrics, overwritten on every sync."""

    spend: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    clicks: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    ctr: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    conversions: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    cost_per_conversion: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    facebook_created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    facebook_updated_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )


class Campaign(MetricsMixin, Base):
    __tablename__ = "campaigns"
    __table_args__ = (UniqueConstraint("ad_account_id", "facebook_campaign_id", name="uq_campaigns_account_fb_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_campaign_id: Mapped[str | None] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=EntityStatus.PAUSED.value)
    objective: Mapped[str | None] = mapped_column(String(50))
    budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    ad_account = relationship("AdAccount", back_populates="campaigns")
    ad_sets = relationship("AdSet", back_populates="campaign", cascade="all, delete-orphan", passive_deletes=True)


class AdSet(MetricsMixin, Base):
    __tablename__ = "ad_sets"
    __table_args__ = (UniqueConstraint("campaign_id", "facebook_ad_set_id", name="uq_ad_sets_campaign_fb_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_ad_set_id: Mapped[str | None] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=EntityStatus.PAUSED.value)
    budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    targeting: Mapped[dict] = mapped_column(JSONB, default=dict)

    campaign = relationship("Campaign", back_populates="ad_sets")
    ads = relationship("Ad", back_populates="ad_set", cascade="all, delete-orphan", passive_deletes=True)


class Ad(MetricsMixin, Base):
    __tablename__ = "ads"
    __table_args__ = (UniqueConstraint("ad_set_id", "facebook_ad_id", name="uq_ads_ad_set_fb_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_set_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ad_sets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_ad_id: Mapped[str | None] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=EntityStatus.PAUSED.value)
    creative: Mapped[dict] = mapped_column(JSONB, default=dict)

    ad_set = relationship("AdSet", back_populates="ads")
