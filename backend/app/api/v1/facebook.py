"""Facebook connection endpoints: connect, check, validate, sync, disconnect."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_date_range, get_graph_client_factory, get_sync_locks
from app.models.user import User
from app.schemas.facebook import AccessTokenRequest
from app.services.cache import CacheStore, account_prefix, get_cache_store
from app.services.fb_errors import TokenRejectedError
from app.services.retry import RetryExhaustedError, handle_with_retry
from app.services.sync_service import SyncError, SyncLockRegistry, SyncReconciler
from app.services.token_service import ClientFactory, check_connection, connect_account, disconnect_account
from app.utils.errors import APIError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/check-connection")
async def get_connection_status(
    ad_account_id: str = Query(..., alias="adAccountId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
):
    """Report whether the account's stored token is usable right now."""
    status = await check_connection(db, ad_account_id, user.id, client_factory=client_factory)
    return {"success": True, **status}


@router.post("/connect")
async def connect(
    body: AccessTokenRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    cache: CacheStore = Depends(get_cache_store),
):
    result = await connect_account(db, user.id, body.access_token, client_factory=client_factory)
    for account in result["accounts"]:
        await cache.invalidate_prefix(account_prefix(account["id"]))
    return result


@router.post("/validate-token")
async def validate_token(
    body: AccessTokenRequest,
    user: User = Depends(get_current_user),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
):
    """Inspect a token without storing it."""
    client = client_factory(body.access_token)
    try:
        validation = await handle_with_retry(client.validate_token, context="debug_token")
    except TokenRejectedError as e:
        return {"success": True, "isValid": False, "error": e.message}
    except RetryExhaustedError as e:
        raise APIError(502, e.user_message) from e
    return {
        "success": True,
        "isValid": validation.is_valid,
        "appId": validation.app_id,
        "userId": validation.user_id,
        "expiresAt": validation.expires_at.isoformat() if validation.expires_at else None,
        "scopes": validation.scopes,
        "error": validation.error_message,
    }


@router.post("/sync")
async def sync(
    ad_account_id: str = Query(..., alias="adAccountId"),
    force: bool = Query(False),
    date_range: tuple[date, date] | None = Depends(get_date_range),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    locks: SyncLockRegistry = Depends(get_sync_locks),
    cache: CacheStore = Depends(get_cache_store),
):
    """Pull campaigns, ad sets and ads for one account from Facebook."""
    date_from, date_to = (d.isoformat() for d in date_range) if date_range else (None, None)
    reconciler = SyncReconciler(
        db, client_factory=client_factory, locks=locks, cache=cache, date_from=date_from, date_to=date_to,
    )
    try:
        result = await reconciler.sync_all(ad_account_id, user.id, force=force)
    except SyncError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.message, "requiresReconnect": e.requires_reconnect},
        )

    return {
        "success": result.success,
        "campaigns": result.campaigns_synced,
        "adSets": result.ad_sets_synced,
        "ads": result.ads_synced,
        "errors": result.errors,
        "skipped": result.skipped,
        "reason": result.reason,
        "lastSyncedAt": result.last_synced_at.isoformat() if result.last_synced_at else None,
    }


@router.delete("/disconnect")
async def disconnect(
    ad_account_id: str = Query(..., alias="adAccountId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache_store),
):
    await disconnect_account(db, ad_account_id, user.id)
    await db.commit()
    await cache.invalidate_prefix(account_prefix(ad_account_id))
    return {"success": True}
