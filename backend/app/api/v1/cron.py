"""Scheduled jobs triggered by an external cron.

Requests must carry ``Authorization: Bearer <CRON_SECRET>``.  Celery beat runs
the same jobs in-process; see ``app.tasks.facebook_sync``.
"""

import hmac
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.dependencies import get_graph_client_factory, get_sync_locks
from app.services.cache import CacheStore, get_cache_store
from app.services.sync_service import SyncLockRegistry, sync_all_ad_accounts
from app.services.token_service import ClientFactory, refresh_expiring_tokens
from app.utils.errors import APIError

logger = logging.getLogger(__name__)
router = APIRouter()


async def require_cron_secret(authorization: str | None = Header(None)) -> None:
    secret = get_settings().cron_secret
    token = ""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    if not secret or not hmac.compare_digest(token.encode(), secret.encode()):
        logger.warning("Rejected cron request with missing or invalid secret")
        raise APIError(401, "Unauthorized")


@router.get("/sync-facebook")
async def cron_sync_facebook(
    _: None = Depends(require_cron_secret),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
    locks: SyncLockRegistry = Depends(get_sync_locks),
    cache: CacheStore = Depends(get_cache_store),
):
    summary = await sync_all_ad_accounts(db, client_factory=client_factory, locks=locks, cache=cache)
    logger.info("Cron sync completed: %s", summary)
    return {"success": True, **summary}


@router.get("/refresh-tokens")
async def cron_refresh_tokens(
    _: None = Depends(require_cron_secret),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_graph_client_factory),
):
    stats = await refresh_expiring_tokens(db, client_factory=client_factory)
    logger.info(
        "Cron token refresh: %d total, %d refreshed, %d failed, %d skipped",
        stats.total, stats.successful, stats.failed, stats.skipped,
    )
    return {"success": True, **asdict(stats)}
