"""Ad account model: the token store and per-account sync bookkeeping."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.utils.status import AccountStatus, SyncStatus


class AdAccount(Base):
    """A Facebook ad account owned by one user.

    ``status`` describes the stored credential, not the remote account:
    PAUSED means the token is known to be expired or revoked and the user has
    to reconnect.
    """

    __tablename__ = "ad_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "facebook_account_id", name="uq_ad_accounts_user_fb_account"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    facebook_account_id: Mapped[str | None] = mapped_column(String(50), index=True)  # without "act_"
    name: Mapped[str] = mapped_column(String(300), nullable=False, default="Ad Account")
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    timezone_name: Mapped[str] = mapped_column(String(100), default="UTC")

    # Credential (encrypted when TOKEN_ENCRYPTION_KEY is configured)
    access_token: Mapped[str | None] = mapped_column(Text)
    token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    token_scopes: Mapped[list] = mapped_column(JSONB, default=list)
    status: Mapped[str] = mapped_column(String(20), default=AccountStatus.ACTIVE.value, nullable=False)

    # Sync bookkeeping
    sync_status: Mapped[str] = mapped_column(String(20), default=SyncStatus.IDLE.value, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sync_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    # relationships
    user = relationship("User", back_populates="ad_accounts")
    campaigns = relationship(
        "Campaign", back_populates="ad_account", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def act_id(self) -> str | None:
        """Remote id in the ``act_<id>`` form the Graph API expects."""
        if not self.facebook_account_id:
            return None
        return f"act_{self.facebook_account_id}"
