"""Dashboard-side mutations on mirrored campaigns, ad sets and ads."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ad_account import AdAccount
from app.schemas.graph import InsightMetrics
from app.services.cache import CacheStore, account_prefix
from app.services.fb_errors import TokenRejectedError
from app.services.graph_api import GraphAPIClient
from app.services.retry import RetryExhaustedError, handle_with_retry
from app.services.token_service import EXPIRED_MESSAGE, ClientFactory, mark_token_revoked, require_valid_token
from app.utils.errors import APIError
from app.utils.status import EntityStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns never carried over to a duplicate
_NOT_COPIED = frozenset({
    "id", "created_at", "updated_at", "last_synced_at",
    "facebook_campaign_id", "facebook_ad_set_id", "facebook_ad_id",
    "facebook_created_time", "facebook_updated_time",
    "spend", "impressions", "clicks", "ctr", "conversions", "cost_per_conversion",
})


@asynccontextmanager
async def remote_errors_as_api_errors(db: AsyncSession, account: AdAccount) -> AsyncIterator[None]:
    try:
        yield
    except TokenRejectedError as e:
        await mark_token_revoked(db, account, e.message)
        raise APIError(401, EXPIRED_MESSAGE, requires_reconnect=True) from e
    except RetryExhaustedError as e:
        raise APIError(502, e.user_message, errorType=e.error_type.value) from e


async def call_remote(
    db: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    operation: Callable[[GraphAPIClient], Awaitable[T]],
    *,
    client_factory: ClientFactory = GraphAPIClient,
    context: str = "",
) -> T:
    """Run one Graph write for an account the user owns, mapping failures to API errors."""
    token = await require_valid_token(db, account_id, user_id, client_factory=client_factory)
    client = client_factory(token.token)
    async with remote_errors_as_api_errors(db, token.account):
        return await handle_with_retry(lambda: operation(client), context=context)


async def apply_range_metrics(
    db: AsyncSession,
    items: list[dict],
    remote_key: str,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    date_range: tuple[date, date],
    *,
    client_factory: ClientFactory = GraphAPIClient,
) -> None:
    """Replace the stored metrics of serialized rows with live insights for ``date_range``.

    Rows that only exist locally keep their stored values. Nothing is written back.
    """
    linked = [item for item in items if item.get(remote_key)]
    if not linked:
        return
    since, until = (d.isoformat() for d in date_range)
    token = await require_valid_token(db, account_id, user_id, client_factory=client_factory)
    client = client_factory(token.token)
    async with remote_errors_as_api_errors(db, token.account):
        for item in linked:
            remote_id = item[remote_key]
            metrics = await handle_with_retry(
                lambda: client.get_insights(remote_id, since, until),
                context=f"insights {remote_id}",
            )
            item.update((metrics or InsightMetrics()).model_dump(mode="json"))


async def commit_and_invalidate(db: AsyncSession, cache: CacheStore, account_id: uuid.UUID) -> None:
    """Commit a dashboard mutation, then drop the account's cached lists."""
    await db.commit()
    await cache.invalidate_prefix(account_prefix(account_id))


async def set_status(
    db: AsyncSession,
    entity,
    remote_id: str | None,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    status: EntityStatus,
    *,
    client_factory: ClientFactory = GraphAPIClient,
) -> None:
    """Mirror the status to Facebook first (when the entity exists there), then store it."""
    if remote_id:
        await call_remote(
            db, account_id, user_id,
            lambda client: client.update_status(remote_id, status.value),
            client_factory=client_factory,
            context=f"status {remote_id}",
        )
    entity.status = status.value
    await db.flush()
    logger.info("%s %s status set to %s", type(entity).__name__, entity.id, status.value)


async def delete_entity(
    db: AsyncSession,
    entity,
    remote_id: str | None,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    client_factory: ClientFactory = GraphAPIClient,
) -> None:
    if remote_id:
        await call_remote(
            db, account_id, user_id,
            lambda client: client.delete_object(remote_id),
            client_factory=client_factory,
            context=f"delete {remote_id}",
        )
    await db.delete(entity)
    await db.flush()
    logger.info("%s %s deleted", type(entity).__name__, entity.id)


async def duplicate_entity(db: AsyncSession, entity):
    """Local copy named ``"<name> (Copy)"``, unlinked from Facebook and with zeroed metrics."""
    model = type(entity)
    values = {
        column.key: getattr(entity, column.key)
        for column in model.__table__.columns
        if column.key not in _NOT_COPIED
    }
    values["name"] = f"{entity.name} (Copy)"
    copy = model(**values)
    db.add(copy)
    await db.flush()
    await db.refresh(copy)
    return copy
