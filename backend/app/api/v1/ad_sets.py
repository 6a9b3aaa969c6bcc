from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_date_range, get_graph_client_factory
from app.models.ads import AdSet
from app.models.user import User
from app.schemas.facebook import AdSetResponse, StatusUpdateRequest
from app.services.cache import CacheStore, ad_sets_key, get_cache_store
from app.services.entity_service import (
    apply_range_metrics,
    commit_and_invalidate,
    delete_entity,
    duplicate_entity,
    set_status,
)
from app.services.ownership import account_id_for_ad_set, get_owned_ad_set, get_owned_campaign
from app.services.token_service import ClientFactory
from app.utils.dates import date_range_fields
from app.utils.pagination import PaginationParams, paginate

router = APIRouter()


@router.get("")
async def list_ad_sets(
    campaign_id: str = Query(..., alias="campaignId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    date_range: tuple[date, date] | None = Depends(get_date_range),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    campaign = await get_owned_campaign(db, campaign_id, user.id)
    fields = date_range_fields(date_range)

    key = ad_sets_key(
        campaign.ad_account_id, f":{campaign.id}:{page}:{page_size}:{fields['date_from']}:{fields['date_to']}",
    )
    cached = await cache.get(key)
    if cached is not None:
        return cached

    query = (
        select(AdSet)
        .where(AdSet.campaign_id == campaign.id)
        .order_by(AdSet.created_at.desc(), AdSet.id)
    )
    result = await paginate(db, query, PaginationParams(page=page, page_size=page_size), AdSetResponse)
    payload = {"success": True, **fields, **result.model_dump()}
    if date_range is not None:
        await apply_range_metrics(
            db, payload["items"], "facebook_ad_set_id", campaign.ad_account_id, user.id, date_range,
            client_factory=client_factory,
        )
    await cache.set(key, payload)
    return payload


@router.post("/{ad_set_id}/duplicate", status_code=201)
async def duplicate_ad_set(
    ad_set_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache_store),
):
    source = await get_owned_ad_set(db, ad_set_id, user.id)
    account_id = await account_id_for_ad_set(db, source)
    ad_set = await duplicate_entity(db, source)
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True, "adSet": AdSetResponse.model_validate(ad_set).model_dump(mode="json")}


@router.patch("/{ad_set_id}/status")
async def update_ad_set_status(
    ad_set_id: str,
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    ad_set = await get_owned_ad_set(db, ad_set_id, user.id)
    account_id = await account_id_for_ad_set(db, ad_set)
    await set_status(
        db, ad_set, ad_set.facebook_ad_set_id, account_id, user.id, body.status, client_factory=client_factory,
    )
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True, "id": str(ad_set.id), "status": ad_set.status}


@router.delete("/{ad_set_id}")
async def delete_ad_set(
    ad_set_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    ad_set = await get_owned_ad_set(db, ad_set_id, user.id)
    account_id = await account_id_for_ad_set(db, ad_set)
    await delete_entity(
        db, ad_set, ad_set.facebook_ad_set_id, account_id, user.id, client_factory=client_factory,
    )
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True}
