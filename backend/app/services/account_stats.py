"""Per-account dashboard figures, computed from the mirrored campaign rows."""

from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ad_account import AdAccount
from app.models.ads import Campaign
from app.utils.status import EntityStatus

CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS)


def _ratio(numerator, denominator) -> Decimal:
    if not denominator:
        return Decimal("0.00")
    return (Decimal(numerator) / Decimal(denominator)).quantize(CENTS)


def cost_per_click(spend: Decimal, clicks: int) -> Decimal:
    return _ratio(spend, clicks)


def return_on_ad_spend(spend: Decimal, conversions: int) -> Decimal:
    """Conversions per 100 currency units spent."""
    return _ratio(conversions * 100, spend)


async def account_stats(db: AsyncSession, account: AdAccount) -> dict:
    """Totals across every campaign of ``account`` as stored by the last sync."""
    row = (await db.execute(
        select(
            func.count(Campaign.id),
            func.coalesce(func.sum(case((Campaign.status == EntityStatus.ACTIVE.value, 1), else_=0)), 0),
            func.coalesce(func.sum(Campaign.spend), 0),
            func.coalesce(func.sum(Campaign.impressions), 0),
            func.coalesce(func.sum(Campaign.clicks), 0),
            func.coalesce(func.sum(Campaign.conversions), 0),
        ).where(Campaign.ad_account_id == account.id)
    )).one()
    total, active, spend, impressions, clicks, conversions = row
    spend = _money(spend)
    impressions, clicks, conversions = int(impressions), int(clicks), int(conversions)

    return {
        "totalCampaigns": int(total),
        "activeCampaigns": int(active),
        "totalSpent": spend,
        "totalImpressions": impressions,
        "totalClicks": clicks,
        "totalConversions": conversions,
        "averageCtr": _ratio(clicks * 100, impressions),
        "averageCpc": cost_per_click(spend, clicks),
        "averageRoas": return_on_ad_spend(spend, conversions),
        "lastSyncedAt": account.last_synced_at.isoformat() if account.last_synced_at else None,
    }


async def top_campaigns(db: AsyncSession, account: AdAccount, limit: int = 5) -> list[dict]:
    """The ``limit`` campaigns with the highest stored spend."""
    result = await db.execute(
        select(Campaign)
        .where(Campaign.ad_account_id == account.id)
        .order_by(Campaign.spend.desc(), Campaign.name, Campaign.id)
        .limit(limit)
    )
    campaigns = []
    for campaign in result.scalars().all():
        spend = _money(campaign.spend)
        campaigns.append({
            "id": str(campaign.id),
            "facebookCampaignId": campaign.facebook_campaign_id,
            "name": campaign.name,
            "status": campaign.status,
            "spend": spend,
            "impressions": campaign.impressions,
            "clicks": campaign.clicks,
            "conversions": campaign.conversions,
            "ctr": campaign.ctr,
            "costPerConversion": _money(campaign.cost_per_conversion),
            "cpc": cost_per_click(spend, campaign.clicks),
            "roas": return_on_ad_spend(spend, campaign.conversions),
        })
    return campaigns
