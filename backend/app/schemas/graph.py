"""Typed shapes of the Graph API payloads we consume.

Every response is validated here at the boundary so that a malformed payload
fails loudly instead of turning into ``None`` arithmetic further down.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, Field

# Graph API sends numbers as strings, but tolerate raw JSON numbers too
Numeric = str | int | float | None


class Paging(BaseModel):
    next: str | None = None


class GraphErrorBody(BaseModel):
    message: str = "Unknown Facebook API error"
    type: str | None = None
    code: int | None = None
    error_subcode: int | None = None
    fbtrace_id: str | None = None


# -- debug_token ------------------------------------------------------------

class DebugTokenError(BaseModel):
    message: str | None = None
    code: int | None = None
    subcode: int | None = None


class DebugTokenData(BaseModel):
    is_valid: bool = False
    app_id: str | None = None
    user_id: str | None = None
    expires_at: int | None = None  # epoch seconds, 0 = never
    scopes: list[str] = Field(default_factory=list)
    error: DebugTokenError | None = None


class DebugTokenResponse(BaseModel):
    data: DebugTokenData


class TokenValidation(BaseModel):
    is_valid: bool
    app_id: str | None = None
    user_id: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = Field(default_factory=list)
    error_message: str | None = None

    @classmethod
    def from_debug_token(cls, data: DebugTokenData) -> "TokenValidation":
        expires_at = None
        if data.expires_at:
            expires_at = datetime.fromtimestamp(data.expires_at, tz=timezone.utc)
        error_message = None
        if not data.is_valid:
            error_message = (data.error.message if data.error else None) or "Invalid access token"
        return cls(
            is_valid=data.is_valid,
            app_id=data.app_id,
            user_id=data.user_id,
            expires_at=expires_at,
            scopes=data.scopes,
            error_message=error_message,
        )


class LongLivedToken(BaseModel):
    access_token: str
    token_type: str | None = None
    expires_in: int | None = None


# -- Accounts / campaigns / ad sets / ads --------------------------------------

class RemoteAdAccount(BaseModel):
    id: str  # act_123
    name: str = "Unknown"
    account_status: int | None = None
    currency: str = "USD"
    timezone_name: str = "UTC"

    @property
    def facebook_account_id(self) -> str:
        return self.id.removeprefix("act_")


class RemoteCampaign(BaseModel):
    id: str
    name: str = ""
    status: str | None = None
    effective_status: str | None = None
    objective: str | None = None
    daily_budget: Numeric = None  # minor units (cents)
    lifetime_budget: Numeric = None
    created_time: str | None = None
    updated_time: str | None = None


class RemoteAdSet(BaseModel):
    id: str
    name: str = ""
    status: str | None = None
    effective_status: str | None = None
    daily_budget: Numeric = None
    lifetime_budget: Numeric = None
    targeting: dict = Field(default_factory=dict)
    created_time: str | None = None
    updated_time: str | None = None


class RemoteAd(BaseModel):
    id: str
    name: str = ""
    status: str | None = None
    effective_status: str | None = None
    creative: dict = Field(default_factory=dict)
    created_time: str | None = None
    updated_time: str | None = None


class CreatedObject(BaseModel):
    id: str


class SuccessResponse(BaseModel):
    success: bool = False


# -- Insights -------------------------------------------------------------------

CONVERSION_ACTION_TYPES = frozenset({
    "lead",
    "purchase",
    "complete_registration",
    "offsite_conversion.fb_pixel_lead",
    "offsite_conversion.fb_pixel_purchase",
    "offsite_conversion.fb_pixel_complete_registration",
    "onsite_conversion.lead_grouped",
})


class InsightAction(BaseModel):
    action_type: str
    value: str | int | float = "0"


class RemoteInsightRow(BaseModel):
    impressions: Numeric = None
    clicks: Numeric = None
    spend: Numeric = None  # major units, decimal string
    reach: Numeric = None
    frequency: Numeric = None
    ctr: Numeric = None
    cpc: Numeric = None
    cpm: Numeric = None
    actions: list[InsightAction] = Field(default_factory=list)


class InsightMetrics(BaseModel):
    spend: Decimal = Decimal("0")
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0
    conversions: int = 0
    cost_per_conversion: Decimal = Decimal("0")

    @classmethod
    def from_row(cls, row: RemoteInsightRow) -> "InsightMetrics":
        spend = parse_decimal(row.spend)
        conversions = sum(
            int(parse_decimal(a.value)) for a in row.actions if a.action_type in CONVERSION_ACTION_TYPES
        )
        cost_per_conversion = (spend / conversions).quantize(Decimal("0.01")) if conversions > 0 else Decimal("0")
        return cls(
            spend=spend,
            impressions=int(parse_decimal(row.impressions)),
            clicks=int(parse_decimal(row.clicks)),
            ctr=float(parse_decimal(row.ctr)),
            conversions=conversions,
            cost_per_conversion=cost_per_conversion,
        )


def parse_decimal(value: str | int | float | None) -> Decimal:
    """Parse a Graph API numeric string; empty means zero, garbage is an error."""
    if value is None or value == "":
        return Decimal("0")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid numeric value from Facebook: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Non-finite numeric value from Facebook: {value!r}")
    if result < 0:
        raise ValueError(f"Negative metric from Facebook: {value!r}")
    return result


def budget_from_cents(value: str | int | None) -> Decimal | None:
    """Budgets are reported in minor currency units."""
    if value is None or value == "":
        return None
    try:
        return (parse_decimal(value) / 100).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValueError(f"Budget out of range from Facebook: {value!r}") from None
