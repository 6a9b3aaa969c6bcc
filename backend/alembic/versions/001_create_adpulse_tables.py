"""create users, ad_accounts, campaigns, ad_sets and ads tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _metrics_columns() -> list[sa.Column]:
    return [
        sa.Column("spend", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("impressions", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("clicks", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("ctr", sa.Float, nullable=False, server_default="0"),
        sa.Column("conversions", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("cost_per_conversion", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("facebook_created_time", sa.DateTime(timezone=True)),
        sa.Column("facebook_updated_time", sa.DateTime(timezone=True)),
        sa.Column("last_synced_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("name", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)

    op.create_table(
        "ad_accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("facebook_account_id", sa.String(50), index=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False, server_default="USD"),
        sa.Column("timezone_name", sa.String(100), nullable=False, server_default="UTC"),
        sa.Column("access_token", sa.Text),
        sa.Column("token_expiry", sa.DateTime(timezone=True)),
        sa.Column("token_scopes", JSONB, nullable=False, server_default="[]"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default="IDLE"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True)),
        sa.Column("sync_error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "facebook_account_id", name="uq_ad_accounts_user_fb_account"),
    )
    # Cron picks accounts by status and last sync time
    op.create_index("idx_ad_accounts_status_synced", "ad_accounts", ["status", "last_synced_at"])

    op.create_table(
        "campaigns",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("ad_account_id", UUID(as_uuid=True), sa.ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("facebook_campaign_id", sa.String(50), index=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="PAUSED"),
        sa.Column("objective", sa.String(50)),
        sa.Column("budget", sa.Numeric(14, 2)),
        *_metrics_columns(),
        sa.UniqueConstraint("ad_account_id", "facebook_campaign_id", name="uq_campaigns_account_fb_id"),
    )

    op.create_table(
        "ad_sets",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("facebook_ad_set_id", sa.String(50), index=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="PAUSED"),
        sa.Column("budget", sa.Numeric(14, 2)),
        sa.Column("targeting", JSONB, nullable=False, server_default="{}"),
        *_metrics_columns(),
        sa.UniqueConstraint("campaign_id", "facebook_ad_set_id", name="uq_ad_sets_campaign_fb_id"),
    )

    op.create_table(
        "ads",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("ad_set_id", UUID(as_uuid=True), sa.ForeignKey("ad_sets.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("facebook_ad_id", sa.String(50), index=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="PAUSED"),
        sa.Column("creative", JSONB, nullable=False, server_default="{}"),
        *_metrics_columns(),
        sa.UniqueConstraint("ad_set_id", "facebook_ad_id", name="uq_ads_ad_set_fb_id"),
    )


def downgrade() -> None:
    op.drop_table("ads")
    op.drop_table("ad_sets")
    op.drop_table("campaigns")
    op.drop_index("idx_ad_accounts_status_synced", table_name="ad_accounts")
    op.drop_table("ad_accounts")
    op.drop_index("ix_users_external_id", table_name="users")
    op.drop_table("users")
