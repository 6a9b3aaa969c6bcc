from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.utils.status import WRITABLE_STATUSES, EntityStatus


class AccessTokenRequest(BaseModel):
    access_token: str = Field(min_length=1, validation_alias=AliasChoices("accessToken", "access_token"))


class StatusUpdateRequest(BaseModel):
    status: EntityStatus

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("status")
    @classmethod
    def _writable(cls, value: EntityStatus) -> EntityStatus:
        if value not in WRITABLE_STATUSES:
            allowed = ", ".join(sorted(s.value for s in WRITABLE_STATUSES))
            raise ValueError(f"status must be one of {allowed}")
        return value


class AdAccountResponse(BaseModel):
    id: UUID
    facebook_account_id: str | None
    name: str
    currency: str | None
    timezone_name: str | None
    status: str
    sync_status: str
    sync_error: str | None = None
    token_expiry: datetime | None
    last_synced_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class _EntityResponse(BaseModel):
    id: UUID
    name: str
    status: str
    spend: Decimal
    impressions: int
    clicks: int
    ctr: float
    conversions: int
    cost_per_conversion: Decimal
    facebook_created_time: datetime | None = None
    facebook_updated_time: datetime | None = None
    last_synced_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CampaignResponse(_EntityResponse):
    ad_account_id: UUID
    facebook_campaign_id: str | None
    objective: str | None = None
    budget: Decimal | None = None


class AdSetResponse(_EntityResponse):
    campaign_id: UUID
    facebook_ad_set_id: str | None
    budget: Decimal | None = None
    targeting: dict | None = None


class AdResponse(_EntityResponse):
    ad_set_id: UUID
    facebook_ad_id: str | None
    creative: dict | None = None
