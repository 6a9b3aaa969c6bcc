"""Celery tasks for periodic Facebook sync and token refresh."""

import asyncio
import logging
import uuid

from app.celery_app import celery_app
from app.database import async_session, engine
from app.services.cache import get_cache_store
from app.services.sync_service import SyncError, SyncReconciler, due_accounts
from app.services.token_service import refresh_expiring_tokens

logger = logging.getLogger(__name__)


def _run(coro_factory):
    """Run an async job on a fresh event loop; pooled connections are bound to the loop."""
    async def _wrapped():
        try:
            return await coro_factory()
        finally:
            await engine.dispose()

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_wrapped())
    finally:
        loop.close()


async def _sync_account(account_id: str, user_id: str) -> dict:
    async with async_session() as db:
        reconciler = SyncReconciler(db, cache=get_cache_store())
        try:
            result = await reconciler.sync_all(account_id, uuid.UUID(user_id))
        except SyncError as e:
            logger.warning("[fb-sync] Account %s failed: %s", account_id, e.message)
            return {"success": False, "error": e.message, "requiresReconnect": e.requires_reconnect}
        return {
            "success": result.success,
            "skipped": result.skipped,
            "campaigns": result.campaigns_synced,
            "adSets": result.ad_sets_synced,
            "ads": result.ads_synced,
            "errors": result.errors,
        }


@celery_app.task(name="app.tasks.facebook_sync.sync_account")
def sync_account(account_id: str, user_id: str):
    """Celery task: sync one ad account."""
    stats = _run(lambda: _sync_account(account_id, user_id))
    logger.info("[fb-sync] Done for account %s: %s", account_id, stats)
    return stats


@celery_app.task(name="app.tasks.facebook_sync.sync_all_accounts")
def sync_all_accounts():
    """Celery beat task: dispatch a sync for every connected account that is due."""
    async def _gather():
        async with async_session() as db:
            return await due_accounts(db)

    due = _run(_gather)
    for account_id, user_id in due:
        sync_account.delay(str(account_id), str(user_id))

    logger.info("[fb-sync] Dispatched sync for %d ad account(s)", len(due))
    return {"accounts_dispatched": len(due)}


@celery_app.task(name="app.tasks.facebook_sync.refresh_tokens")
def refresh_tokens():
    """Celery beat task: refresh tokens that expire soon."""
    async def _refresh():
        async with async_session() as db:
            stats = await refresh_expiring_tokens(db)
            await db.commit()
            return stats

    stats = _run(_refresh)
    logger.info(
        "Token refresh: %d total, %d refreshed, %d failed, %d skipped",
        stats.total, stats.successful, stats.failed, stats.skipped,
    )
    return {
        "total": stats.total,
        "successful": stats.successful,
        "failed": stats.failed,
        "skipped": stats.skipped,
        "failures": [{"account_id": r.account_id, "error": r.error} for r in stats.results if not r.success],
    }
