from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_date_range, get_graph_client_factory
from app.models.ads import Campaign
from app.models.user import User
from app.schemas.facebook import CampaignResponse, StatusUpdateRequest
from app.services.cache import CacheStore, campaigns_key, get_cache_store
from app.services.entity_service import (
    apply_range_metrics,
    commit_and_invalidate,
    delete_entity,
    duplicate_entity,
    set_status,
)
from app.services.ownership import get_owned_account, get_owned_campaign
from app.services.token_service import ClientFactory
from app.utils.dates import date_range_fields
from app.utils.pagination import PaginationParams, paginate

router = APIRouter()


@router.get("")
async def list_campaigns(
    ad_account_id: str = Query(..., alias="adAccountId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    date_range: tuple[date, date] | None = Depends(get_date_range),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    """Campaigns mirrored for one of the user's ad accounts, newest first.

    Without ``dateFrom``/``dateTo`` the metrics are the ones stored by the last
    sync; with a range they are fetched from Facebook for that range.
    """
    account = await get_owned_account(db, ad_account_id, user.id)
    fields = date_range_fields(date_range)

    key = campaigns_key(account.id, f":{page}:{page_size}:{fields['date_from']}:{fields['date_to']}")
    cached = await cache.get(key)
    if cached is not None:
        return cached

    query = (
        select(Campaign)
        .where(Campaign.ad_account_id == account.id)
        .order_by(Campaign.created_at.desc(), Campaign.id)
    )
    result = await paginate(db, query, PaginationParams(page=page, page_size=page_size), CampaignResponse)
    payload = {"success": True, **fields, **result.model_dump()}
    if date_range is not None:
        await apply_range_metrics(
            db, payload["items"], "facebook_campaign_id", account.id, user.id, date_range,
            client_factory=client_factory,
        )
    await cache.set(key, payload)
    return payload


@router.post("/{campaign_id}/duplicate", status_code=201)
async def duplicate_campaign(
    campaign_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache_store),
):
    source = await get_owned_campaign(db, campaign_id, user.id)
    campaign = await duplicate_entity(db, source)
    await commit_and_invalidate(db, cache, source.ad_account_id)
    return {"success": True, "campaign": CampaignResponse.model_validate(campaign).model_dump(mode="json")}


@router.patch("/{campaign_id}/status")
async def update_campaign_status(
    campaign_id: str,
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    """Update a campaign's status on Facebook, then locally."""
    campaign = await get_owned_campaign(db, campaign_id, user.id)
    await set_status(
        db, campaign, campaign.facebook_campaign_id, campaign.ad_account_id, user.id, body.status,
        client_factory=client_factory,
    )
    await commit_and_invalidate(db, cache, campaign.ad_account_id)
    return {"success": True, "id": str(campaign.id), "status": campaign.status}


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    campaign = await get_owned_campaign(db, campaign_id, user.id)
    account_id = campaign.ad_account_id
    await delete_entity(
        db, campaign, campaign.facebook_campaign_id, account_id, user.id, client_factory=client_factory,
    )
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True}
