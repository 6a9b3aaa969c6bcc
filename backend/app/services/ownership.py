"""Access guard: load a record only through the user that owns its ad account.

A record that exists but belongs to someone else is reported exactly like a
missing one (404), so remote and internal ids cannot be discovered across users.
"""

import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ad_account import AdAccount
from app.models.ads import Ad, AdSet, Campaign


def _parse_id(value, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found") from None


async def get_owned_account(db: AsyncSession, account_id, user_id: uuid.UUID) -> AdAccount:
    result = await db.execute(
        select(AdAccount).where(
            AdAccount.id == _parse_id(account_id, "Ad account"),
            AdAccount.user_id == user_id,
        )
    )
    account = result.scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ad account not found")
    return account


async def get_owned_campaign(db: AsyncSession, campaign_id, user_id: uuid.UUID) -> Campaign:
    result = await db.execute(
        select(Campaign)
        .join(AdAccount, Campaign.ad_account_id == AdAccount.id)
        .where(Campaign.id == _parse_id(campaign_id, "Campaign"), AdAccount.user_id == user_id)
    )
    campaign = result.scalar_one_or_none()
    if not campaign:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return campaign


async def get_owned_ad_set(db: AsyncSession, ad_set_id, user_id: uuid.UUID) -> AdSet:
    result = await db.execute(
        select(AdSet)
        .join(Campaign, AdSet.campaign_id == Campaign.id)
        .join(AdAccount, Campaign.ad_account_id == AdAccount.id)
        .where(AdSet.id == _parse_id(ad_set_id, "Ad set"), AdAccount.user_id == user_id)
    )
    ad_set = result.scalar_one_or_none()
    if not ad_set:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ad set not found")
    return ad_set


async def get_owned_ad(db: AsyncSession, ad_id, user_id: uuid.UUID) -> Ad:
    result = await db.execute(
        select(Ad)
        .join(AdSet, Ad.ad_set_id == AdSet.id)
        .join(Campaign, AdSet.campaign_id == Campaign.id)
        .join(AdAccount, Campaign.ad_account_id == AdAccount.id)
        .where(Ad.id == _parse_id(ad_id, "Ad"), AdAccount.user_id == user_id)
    )
    ad = result.scalar_one_or_none()
    if not ad:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ad not found")
    return ad


async def account_id_for_ad_set(db: AsyncSession, ad_set: AdSet) -> uuid.UUID:
    result = await db.execute(select(Campaign.ad_account_id).where(Campaign.id == ad_set.campaign_id))
    return result.scalar_one()


async def account_id_for_ad(db: AsyncSession, ad: Ad) -> uuid.UUID:
    result = await db.execute(
        select(Campaign.ad_account_id)
        .join(AdSet, AdSet.campaign_id == Campaign.id)
        .where(AdSet.id == ad.ad_set_id)
    )
    return result.scalar_one()
