from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_date_range, get_graph_client_factory
from app.models.ads import Ad
from app.models.user import User
from app.schemas.facebook import AdResponse, StatusUpdateRequest
from app.services.cache import CacheStore, ads_key, get_cache_store
from app.services.entity_service import (
    apply_range_metrics,
    commit_and_invalidate,
    delete_entity,
    duplicate_entity,
    set_status,
)
from app.services.ownership import account_id_for_ad, account_id_for_ad_set, get_owned_ad, get_owned_ad_set
from app.services.token_service import ClientFactory
from app.utils.dates import date_range_fields
from app.utils.pagination import PaginationParams, paginate

router = APIRouter()


@router.get("")
async def list_ads(
    ad_set_id: str = Query(..., alias="adSetId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    date_range: tuple[date, date] | None = Depends(get_date_range),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    ad_set = await get_owned_ad_set(db, ad_set_id, user.id)
    account_id = await account_id_for_ad_set(db, ad_set)
    fields = date_range_fields(date_range)

    key = ads_key(account_id, f":{ad_set.id}:{page}:{page_size}:{fields['date_from']}:{fields['date_to']}")
    cached = await cache.get(key)
    if cached is not None:
        return cached

    query = select(Ad).where(Ad.ad_set_id == ad_set.id).order_by(Ad.created_at.desc(), Ad.id)
    result = await paginate(db, query, PaginationParams(page=page, page_size=page_size), AdResponse)
    payload = {"success": True, **fields, **result.model_dump()}
    if date_range is not None:
        await apply_range_metrics(
            db, payload["items"], "facebook_ad_id", account_id, user.id, date_range,
            client_factory=client_factory,
        )
    await cache.set(key, payload)
    return payload


@router.post("/{ad_id}/duplicate", status_code=201)
async def duplicate_ad(
    ad_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache_store),
):
    source = await get_owned_ad(db, ad_id, user.id)
    account_id = await account_id_for_ad(db, source)
    ad = await duplicate_entity(db, source)
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True, "ad": AdResponse.model_validate(ad).model_dump(mode="json")}


@router.patch("/{ad_id}/status")
async def update_ad_status(
    ad_id: str,
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    ad = await get_owned_ad(db, ad_id, user.id)
    account_id = await account_id_for_ad(db, ad)
    await set_status(db, ad, ad.facebook_ad_id, account_id, user.id, body.status, client_factory=client_factory)
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True, "id": str(ad.id), "status": ad.status}


@router.delete("/{ad_id}")
async def delete_ad(
    ad_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    ad = await get_owned_ad(db, ad_id, user.id)
    account_id = await account_id_for_ad(db, ad)
    await delete_entity(db, ad, ad.facebook_ad_id, account_id, user.id, client_factory=client_factory)
    await commit_and_invalidate(db, cache, account_id)
    return {"success": True}
