"""Mirror Facebook campaigns, ad sets and ads into the local database.

One sync run walks campaigns -> ad sets -> ads for a single ad account,
sequentially per parent, upserting by remote id.  A failing child fetch is
recorded in ``errors`` and the run moves on to the next sibling; only a
failure to list campaigns or a rejected token aborts the run.

Account state machine: ``IDLE -> SYNCING -> IDLE | ERROR``.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.ad_account import AdAccount
from app.models.ads import Ad, AdSet, Campaign
from app.schemas.graph import InsightMetrics, RemoteAd, RemoteAdSet, RemoteCampaign, budget_from_cents
from app.services.cache import CacheStore, account_prefix
from app.services.fb_errors import TokenRejectedError
from app.services.graph_api import GraphAPIClient
from app.services.retry import RetryExhaustedError, handle_with_retry
from app.services.token_service import (
    AD_ACCOUNT_NOT_FOUND,
    EXPIRED_MESSAGE,
    ClientFactory,
    TokenError,
    get_valid_token,
    mark_token_revoked,
)
from app.utils.dates import as_utc, parse_remote_time, utcnow
from app.utils.status import AccountStatus, EntityStatus, SyncStatus, map_remote_status

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncError(Exception):
    """A sync run that could not proceed at all."""

    def __init__(self, message: str, status_code: int = 500, requires_reconnect: bool = False):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.requires_reconnect = requires_reconnect


@dataclass
class SyncResult:
    campaigns_synced: int = 0
    ad_sets_synced: int = 0
    ads_synced: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False
    reason: str | None = None
    last_synced_at: datetime | None = None

    @property
    def entities_synced(self) -> int:
        return self.campaigns_synced + self.ad_sets_synced + self.ads_synced

    @property
    def success(self) -> bool:
        return self.skipped or self.entities_synced > 0 or not self.errors


class SyncLockRegistry:
    """Per-account asyncio locks so one process never runs two syncs for an account."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, account_id) -> AsyncIterator[bool]:
        """Hold the account's lock for the block; yields ``False`` without waiting if it is taken.

        The entry is dropped once released, so the registry only holds running syncs.
        """
        key = str(account_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        if lock.locked():
            yield False
            return
        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()
            if self._locks.get(key) is lock and not lock.locked():
                del self._locks[key]


sync_locks = SyncLockRegistry()


def needs_sync(account: AdAccount, force: bool = False, now: datetime | None = None) -> bool:
    if force or account.last_synced_at is None:
        return True
    interval = timedelta(minutes=get_settings().sync_interval_minutes)
    return (now or utcnow()) - as_utc(account.last_synced_at) > interval


class SyncReconciler:
    def __init__(
        self,
        db: AsyncSession,
        *,
        client_factory: ClientFactory = GraphAPIClient,
        locks: SyncLockRegistry | None = None,
        cache: CacheStore | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ):
        self.db = db
        self.client_factory = client_factory
        self.locks = locks if locks is not None else sync_locks
        self.cache = cache
        self.date_from = date_from
        self.date_to = date_to

    async def sync_all(self, account_id, user_id: uuid.UUID, *, force: bool = False) -> SyncResult:
        async with self.locks.hold(account_id) as acquired:
            if not acquired:
                logger.info("[fb-sync] Sync already running for account %s, skipping", account_id)
                return SyncResult(skipped=True, reason="Sync already in progress")
            return await self._run(account_id, user_id, force)

    # -- run -------------------------------------------------------------------

    async def _run(self, account_id, user_id: uuid.UUID, force: bool) -> SyncResult:
        settings = get_settings()
        outcome = await get_valid_token(
            self.db,
            account_id,
            user_id,
            client_factory=self.client_factory,
            allow_recent_skip=not force or settings.skip_validation_on_force,
        )
        if isinstance(outcome, TokenError):
            if outcome.reason != AD_ACCOUNT_NOT_FOUND and outcome.account is not None:
                await self._mark_error(outcome.account, outcome.error)
            raise SyncError(outcome.error, outcome.status_code, outcome.requires_reconnect)

        account = outcome.account
        if not needs_sync(account, force):
            return SyncResult(skipped=True, reason="Recently synced", last_synced_at=as_utc(account.last_synced_at))
        if not account.facebook_account_id:
            raise SyncError("Ad account is not linked to a Facebook ad account", 400)

        logger.info("[fb-sync] Starting sync for account %s (act_%s)", account.id, account.facebook_account_id)
        account.sync_status = SyncStatus.SYNCING.value
        account.sync_error = None
        await self.db.commit()

        account_pk = account.id
        client = self.client_factory(outcome.token)
        result = SyncResult()
        try:
            await self._sync_campaigns(client, account, result)
        except TokenRejectedError as e:
            await mark_token_revoked(self.db, account, e.message)
            await self._mark_error(account, e.user_message)
            raise SyncError(EXPIRED_MESSAGE, 401, requires_reconnect=True) from e
        except RetryExhaustedError as e:
            await self._mark_error(account, e.message)
            raise SyncError(e.user_message, 502) from e
        except Exception as e:
            logger.exception("[fb-sync] Unexpected failure syncing account %s", account_id)
            await self.db.rollback()
            await self.db.execute(
                update(AdAccount)
                .where(AdAccount.id == account_pk)
                .values(sync_status=SyncStatus.ERROR.value, sync_error=str(e)[:1000])
            )
            await self.db.commit()
            raise

        now = utcnow()
        account.last_synced_at = now
        account.sync_error = "; ".join(result.errors) or None
        account.sync_status = SyncStatus.IDLE.value if result.success else SyncStatus.ERROR.value
        await self.db.commit()
        result.last_synced_at = now

        if self.cache is not None:
            await self.cache.invalidate_prefix(account_prefix(account.id))

        logger.info(
            "[fb-sync] Synced %d campaigns, %d ad sets, %d ads for account %s (%d errors)",
            result.campaigns_synced, result.ad_sets_synced, result.ads_synced, account.id, len(result.errors),
        )
        return result

    async def _mark_error(self, account: AdAccount, message: str) -> None:
        account.sync_status = SyncStatus.ERROR.value
        account.sync_error = message
        await self.db.commit()

    # -- fetch helpers ---------------------------------------------------------

    async def _fetch_child(
        self, fetch: Callable[[], Awaitable[T]], label: str, result: SyncResult,
    ) -> T | None:
        """Fetch with retry; failures are collected so siblings still sync."""
        try:
            return await handle_with_retry(fetch, context=label)
        except TokenRejectedError:
            raise
        except RetryExhaustedError as e:
            message = e.message
        except Exception as e:
            logger.exception("[fb-sync] %s failed", label)
            message = str(e) or type(e).__name__
        result.errors.append(f"{label}: {message}")
        logger.warning("[fb-sync] %s failed: %s", label, message)
        return None

    async def _insights(
        self, client: GraphAPIClient, entity_id: str, kind: str, result: SyncResult,
    ) -> InsightMetrics | None:
        """Metrics for one entity; ``None`` means keep whatever is stored."""
        label = f"Insights for {kind} {entity_id}"
        try:
            metrics = await handle_with_retry(
                lambda: client.get_insights(entity_id, self.date_from, self.date_to),
                context=label,
            )
        except TokenRejectedError:
            raise
        except RetryExhaustedError as e:
            result.errors.append(f"{label}: {e.message}")
            return None
        return metrics or InsightMetrics()

    # -- campaigns / ad sets / ads -------------------------------------------

    async def _sync_campaigns(self, client: GraphAPIClient, account: AdAccount, result: SyncResult) -> None:
        remote_campaigns = await handle_with_retry(
            lambda: client.list_campaigns(account.facebook_account_id),
            context=f"campaigns for act_{account.facebook_account_id}",
        )
        logger.info("[fb-sync] Fetched %d campaigns for account %s", len(remote_campaigns), account.id)

        for remote in remote_campaigns:
            metrics = await self._insights(client, remote.id, "campaign", result)
            try:
                campaign = await self._upsert_campaign(account, remote, metrics)
            except (ValueError, ArithmeticError) as e:
                result.errors.append(f"Campaign {remote.id}: {e}")
                continue
            result.campaigns_synced += 1
            await self._sync_ad_sets(client, campaign, result)

    async def _sync_ad_sets(self, client: GraphAPIClient, campaign: Campaign, result: SyncResult) -> None:
        remote_ad_sets = await self._fetch_child(
            lambda: client.list_ad_sets(campaign.facebook_campaign_id),
            f"Ad sets for campaign {campaign.facebook_campaign_id}",
            result,
        )
        if remote_ad_sets is None:
            return

        for remote in remote_ad_sets:
            metrics = await self._insights(client, remote.id, "ad set", result)
            try:
                ad_set = await self._upsert_ad_set(campaign, remote, metrics)
            except (ValueError, ArithmeticError) as e:
                result.errors.append(f"Ad set {remote.id}: {e}")
                continue
            result.ad_sets_synced += 1
            await self._sync_ads(client, ad_set, result)

    async def _sync_ads(self, client: GraphAPIClient, ad_set: AdSet, result: SyncResult) -> None:
        remote_ads = await self._fetch_child(
            lambda: client.list_ads(ad_set.facebook_ad_set_id),
            f"Ads for ad set {ad_set.facebook_ad_set_id}",
            result,
        )
        if remote_ads is None:
            return

        for remote in remote_ads:
            metrics = await self._insights(client, remote.id, "ad", result)
            try:
                await self._upsert_ad(ad_set, remote, metrics)
            except (ValueError, ArithmeticError) as e:
                result.errors.append(f"Ad {remote.id}: {e}")
                continue
            result.ads_synced += 1

    # -- upserts -------------------------------------------------------------

    @staticmethod
    def _prepare(remote) -> tuple[EntityStatus, datetime | None, datetime | None]:
        """Parse the fields that can reject a payload, before the session is touched."""
        return (
            map_remote_status(remote.status or remote.effective_status),
            parse_remote_time(remote.created_time),
            parse_remote_time(remote.updated_time),
        )

    @staticmethod
    def _apply_common(entity, remote, prepared, metrics: InsightMetrics | None) -> None:
        status, created_time, updated_time = prepared
        entity.name = remote.name or entity.name or "Untitled"
        entity.status = status.value
        entity.facebook_created_time = created_time
        entity.facebook_updated_time = updated_time
        entity.last_synced_at = utcnow()
        if metrics is not None:
            entity.spend = metrics.spend
            entity.impressions = metrics.impressions
            entity.clicks = metrics.clicks
            entity.ctr = metrics.ctr
            entity.conversions = metrics.conversions
            entity.cost_per_conversion = metrics.cost_per_conversion

    async def _upsert_campaign(
        self, account: AdAccount, remote: RemoteCampaign, metrics: InsightMetrics | None,
    ) -> Campaign:
        prepared = self._prepare(remote)
        budget = budget_from_cents(remote.daily_budget or remote.lifetime_budget)
        existing = await self.db.execute(
            select(Campaign).where(
                Campaign.ad_account_id == account.id,
                Campaign.facebook_campaign_id == remote.id,
            )
        )
        campaign = existing.scalar_one_or_none()
        if campaign is None:
            campaign = Campaign(ad_account_id=account.id, facebook_campaign_id=remote.id, name=remote.name)
            self.db.add(campaign)
        self._apply_common(campaign, remote, prepared, metrics)
        campaign.objective = remote.objective
        campaign.budget = budget
        await self.db.flush()
        return campaign

    async def _upsert_ad_set(self, campaign: Campaign, remote: RemoteAdSet, metrics: InsightMetrics | None) -> AdSet:
        prepared = self._prepare(remote)
        budget = budget_from_cents(remote.daily_budget or remote.lifetime_budget)
        existing = await self.db.execute(
            select(AdSet).where(
                AdSet.campaign_id == campaign.id,
                AdSet.facebook_ad_set_id == remote.id,
            )
        )
        ad_set = existing.scalar_one_or_none()
        if ad_set is None:
            ad_set = AdSet(campaign_id=campaign.id, facebook_ad_set_id=remote.id, name=remote.name)
            self.db.add(ad_set)
        self._apply_common(ad_set, remote, prepared, metrics)
        ad_set.budget = budget
        ad_set.targeting = remote.targeting
        await self.db.flush()
        return ad_set

    async def _upsert_ad(self, ad_set: AdSet, remote: RemoteAd, metrics: InsightMetrics | None) -> Ad:
        prepared = self._prepare(remote)
        existing = await self.db.execute(
            select(Ad).where(
                Ad.ad_set_id == ad_set.id,
                Ad.facebook_ad_id == remote.id,
            )
        )
        ad = existing.scalar_one_or_none()
        if ad is None:
            ad = Ad(ad_set_id=ad_set.id, facebook_ad_id=remote.id, name=remote.name)
            self.db.add(ad)
        self._apply_common(ad, remote, prepared, metrics)
        ad.creative = remote.creative
        await self.db.flush()
        return ad


async def due_accounts(db: AsyncSession) -> list[tuple[uuid.UUID, uuid.UUID]]:
    """(account id, owner id) of every connected ACTIVE account past its sync interval."""
    cutoff = utcnow() - timedelta(minutes=get_settings().sync_interval_minutes)
    result = await db.execute(
        select(AdAccount.id, AdAccount.user_id).where(
            AdAccount.access_token.is_not(None),
            AdAccount.facebook_account_id.is_not(None),
            AdAccount.status == AccountStatus.ACTIVE.value,
            or_(AdAccount.last_synced_at.is_(None), AdAccount.last_synced_at < cutoff),
        )
    )
    return [(row[0], row[1]) for row in result.all()]


async def sync_all_ad_accounts(
    db: AsyncSession,
    *,
    client_factory: ClientFactory = GraphAPIClient,
    locks: SyncLockRegistry | None = None,
    cache: CacheStore | None = None,
) -> dict:
    """Sync every connected account that is due; used by cron."""
    due = await due_accounts(db)
    logger.info("[fb-sync] %d ad account(s) due for sync", len(due))

    reconciler = SyncReconciler(db, client_factory=client_factory, locks=locks, cache=cache)
    summary = {"synced": 0, "skipped": 0, "errors": []}
    for account_id, user_id in due:
        try:
            outcome = await reconciler.sync_all(account_id, user_id)
        except SyncError as e:
            summary["errors"].append({"adAccountId": str(account_id), "error": e.message})
            continue
        except Exception as e:
            # already logged and stored as ERROR by the reconciler
            summary["errors"].append({"adAccountId": str(account_id), "error": str(e) or type(e).__name__})
            continue
        if outcome.skipped:
            summary["skipped"] += 1
            continue
        summary["synced"] += 1
        for message in outcome.errors:
            summary["errors"].append({"adAccountId": str(account_id), "error": message})
    return summary
