"""Facebook token lifecycle: validate, connect, refresh, revoke.

State rules for ``AdAccount.status``:

* ACTIVE  -> PAUSED when the stored expiry has passed, the remote side reports
  the token invalid, or any Graph call rejects the credential.
* PAUSED  -> ACTIVE only through :func:`connect_account` (user reconnects).

Negative transitions are committed immediately so that they survive the
failing request and later callers short-circuit without a remote round-trip.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.ad_account import AdAccount
from app.services.fb_errors import TokenRejectedError
from app.services.graph_api import GraphAPIClient
from app.services.ownership import get_owned_account
from app.services.retry import RetryExhaustedError, handle_with_retry
from app.utils.dates import as_utc, utcnow
from app.utils.errors import APIError
from app.utils.security import decrypt_token, encrypt_token
from app.utils.status import AccountStatus, SyncStatus

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], GraphAPIClient]

EXPIRED_MESSAGE = "Facebook token expired. Please reconnect your account."
PAUSED_MESSAGE = "Facebook connection is paused. Please reconnect your account."

# Reason codes surfaced to the dashboard
AD_ACCOUNT_NOT_FOUND = "AD_ACCOUNT_NOT_FOUND"
TOKEN_MISSING = "TOKEN_MISSING"
TOKEN_EXPIRED = "TOKEN_EXPIRED"
TOKEN_INVALID = "TOKEN_INVALID"
CONNECTION_ERROR = "CONNECTION_ERROR"


@dataclass
class TokenResult:
    token: str
    account: AdAccount
    validated: bool = True  # False when the recent-update shortcut was taken


@dataclass
class TokenError:
    error: str
    status_code: int
    requires_reconnect: bool = False
    reason: str | None = None
    account: AdAccount | None = field(default=None, repr=False)


@dataclass
class RefreshResult:
    account_id: str
    success: bool
    error: str | None = None
    new_expires_at: datetime | None = None
    skipped: bool = False


@dataclass
class RefreshStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[RefreshResult] = field(default_factory=list)


def is_recently_updated(account: AdAccount, now: datetime | None = None) -> bool:
    window = get_settings().recent_update_skip_seconds
    updated_at = as_utc(account.updated_at)
    if window <= 0 or updated_at is None:
        return False
    return ((now or utcnow()) - updated_at).total_seconds() < window


async def mark_token_revoked(db: AsyncSession, account: AdAccount, reason: str | None = None) -> None:
    """Persist PAUSED with expiry=now. Single write path for credential failures."""
    logger.warning("Pausing ad account %s: %s", account.id, reason or "token rejected")
    account.status = AccountStatus.PAUSED.value
    account.token_expiry = utcnow()
    account.token_scopes = []
    await db.commit()


async def _mark_expired(db: AsyncSession, account: AdAccount) -> None:
    if account.status != AccountStatus.PAUSED.value:
        logger.warning("Facebook token for ad account %s expired at %s", account.id, account.token_expiry)
        account.status = AccountStatus.PAUSED.value
        await db.commit()


async def get_valid_token(
    db: AsyncSession,
    account_id,
    user_id: uuid.UUID,
    *,
    client_factory: ClientFactory = GraphAPIClient,
    allow_recent_skip: bool = True,
) -> TokenResult | TokenError:
    """Return a usable token for an ad account the user owns, or why not."""
    try:
        account = await get_owned_account(db, account_id, user_id)
    except HTTPException:
        return TokenError("Ad account not found", 404, reason=AD_ACCOUNT_NOT_FOUND)

    if not account.access_token:
        return TokenError("Facebook not connected", 400, requires_reconnect=True, reason=TOKEN_MISSING, account=account)

    now = utcnow()
    expiry = as_utc(account.token_expiry)
    if expiry is not None and expiry < now:
        await _mark_expired(db, account)
        return TokenError(EXPIRED_MESSAGE, 401, requires_reconnect=True, reason=TOKEN_EXPIRED, account=account)

    if account.status == AccountStatus.PAUSED.value:
        return TokenError(PAUSED_MESSAGE, 401, requires_reconnect=True, reason=TOKEN_INVALID, account=account)

    token = decrypt_token(account.access_token)

    if allow_recent_skip and is_recently_updated(account, now):
        logger.debug("Skipping remote token validation for recently updated account %s", account.id)
        return TokenResult(token=token, account=account, validated=False)

    client = client_factory(token)
    try:
        validation = await handle_with_retry(client.validate_token, context="debug_token")
    except TokenRejectedError as e:
        await mark_token_revoked(db, account, e.message)
        return TokenError(e.message, 401, requires_reconnect=True, reason=TOKEN_INVALID, account=account)
    except RetryExhaustedError as e:
        logger.error("Could not validate token for ad account %s: %s", account.id, e.message)
        return TokenError("Unable to verify Facebook connection", 503, reason=CONNECTION_ERROR, account=account)

    if not validation.is_valid:
        message = validation.error_message or "Invalid access token"
        await mark_token_revoked(db, account, message)
        return TokenError(message, 401, requires_reconnect=True, reason=TOKEN_INVALID, account=account)

    if validation.expires_at and validation.expires_at != expiry:
        account.token_expiry = validation.expires_at
    if validation.scopes and validation.scopes != (account.token_scopes or []):
        account.token_scopes = validation.scopes
    await db.flush()
    return TokenResult(token=token, account=account)


async def require_valid_token(
    db: AsyncSession,
    account_id,
    user_id: uuid.UUID,
    *,
    client_factory: ClientFactory = GraphAPIClient,
    allow_recent_skip: bool = True,
) -> TokenResult:
    """Same as :func:`get_valid_token` but raises :class:`APIError` on failure."""
    outcome = await get_valid_token(
        db, account_id, user_id, client_factory=client_factory, allow_recent_skip=allow_recent_skip
    )
    if isinstance(outcome, TokenError):
        raise APIError(outcome.status_code, outcome.error, requires_reconnect=outcome.requires_reconnect)
    return outcome


async def check_connection(
    db: AsyncSession,
    account_id,
    user_id: uuid.UUID,
    *,
    client_factory: ClientFactory = GraphAPIClient,
) -> dict:
    outcome = await get_valid_token(db, account_id, user_id, client_factory=client_factory)
    if isinstance(outcome, TokenError):
        if outcome.reason == AD_ACCOUNT_NOT_FOUND:
            raise APIError(404, outcome.error, connected=False, reason=outcome.reason)
        return {
            "connected": False,
            "requiresReconnect": outcome.requires_reconnect,
            "reason": outcome.reason,
            "message": outcome.error,
        }

    account = outcome.account
    settings = get_settings()
    expiry = as_utc(account.token_expiry)
    days_left = None
    warning = False
    if expiry is not None:
        days_left = max(0, (expiry - utcnow()).days)
        warning = expiry - utcnow() < timedelta(days=settings.token_expiry_warning_days)
    return {
        "connected": True,
        "requiresReconnect": False,
        "reason": None,
        "adAccountId": str(account.id),
        "facebookAdAccountId": account.facebook_account_id,
        "name": account.name,
        "tokenExpiry": expiry.isoformat() if expiry else None,
        "daysUntilExpiry": days_left,
        "tokenExpiryWarning": warning,
    }


async def connect_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    access_token: str,
    *,
    client_factory: ClientFactory = GraphAPIClient,
) -> dict:
    """Store a freshly obtained token on every ad account it can reach.

    Linked accounts the token no longer grants access to are removed for this
    user. Accounts that were never linked to Facebook are kept.
    """
    settings = get_settings()
    client = client_factory(access_token)

    try:
        validation = await handle_with_retry(client.validate_token, context="debug_token")
    except TokenRejectedError as e:
        raise APIError(400, e.message, requires_reconnect=True) from e
    except RetryExhaustedError as e:
        raise APIError(502, e.user_message) from e
    if not validation.is_valid:
        raise APIError(400, validation.error_message or "Invalid access token", requires_reconnect=True)

    try:
        remote_accounts = await handle_with_retry(client.list_ad_accounts, context="me/adaccounts")
    except TokenRejectedError as e:
        raise APIError(400, e.message, requires_reconnect=True) from e
    except RetryExhaustedError as e:
        raise APIError(502, e.user_message) from e
    if not remote_accounts:
        raise APIError(404, "No ad accounts found for this Facebook user")

    expiry = validation.expires_at or utcnow() + timedelta(days=settings.default_token_lifetime_days)
    stored_token = encrypt_token(access_token)

    result = await db.execute(select(AdAccount).where(AdAccount.user_id == user_id))
    # Rows never linked to Facebook are left alone
    existing = {a.facebook_account_id: a for a in result.scalars().all() if a.facebook_account_id is not None}

    connected: list[AdAccount] = []
    for remote in remote_accounts:
        account = existing.get(remote.facebook_account_id)
        if account is None:
            account = AdAccount(user_id=user_id, facebook_account_id=remote.facebook_account_id)
            db.add(account)
        account.name = remote.name
        account.currency = remote.currency
        account.timezone_name = remote.timezone_name
        account.access_token = stored_token
        account.token_expiry = expiry
        account.token_scopes = validation.scopes
        account.status = AccountStatus.ACTIVE.value
        account.sync_status = SyncStatus.IDLE.value
        account.sync_error = None
        account.updated_at = utcnow()
        connected.append(account)

    authorized = {r.facebook_account_id for r in remote_accounts}
    stale = [a for fb_id, a in existing.items() if fb_id not in authorized]
    for account in stale:
        await db.delete(account)
    if stale:
        logger.info("Removed %d ad account(s) no longer authorized for user %s", len(stale), user_id)

    await db.flush()
    logger.info("Connected %d ad account(s) for user %s", len(connected), user_id)

    return {
        "success": True,
        "adAccountId": str(connected[0].id),
        "tokenExpiry": expiry.isoformat(),
        "accounts": [
            {
                "id": str(a.id),
                "facebookAdAccountId": a.facebook_account_id,
                "name": a.name,
                "currency": a.currency,
            }
            for a in connected
        ],
        "removedAccounts": len(stale),
    }


async def disconnect_account(db: AsyncSession, account_id, user_id: uuid.UUID) -> None:
    """Explicit user disconnect: the account and its mirrored data are deleted."""
    account = await get_owned_account(db, account_id, user_id)
    await db.delete(account)
    await db.flush()
    logger.info("Ad account %s disconnected by user %s", account_id, user_id)


async def exchange_for_long_lived_token(client: GraphAPIClient) -> tuple[str, datetime]:
    settings = get_settings()
    data = await handle_with_retry(client.exchange_token, context="oauth/access_token")
    lifetime = timedelta(seconds=data.expires_in) if data.expires_in else timedelta(days=settings.default_token_lifetime_days)
    return data.access_token, utcnow() + lifetime


async def refresh_token_for_account(
    db: AsyncSession, account: AdAccount, *, client_factory: ClientFactory = GraphAPIClient,
) -> RefreshResult:
    account_id = str(account.id)
    if not account.access_token:
        return RefreshResult(account_id, success=False, error="No token found")

    expiry = as_utc(account.token_expiry)
    if expiry is not None and expiry - utcnow() > timedelta(days=30):
        return RefreshResult(account_id, success=True, skipped=True, error="Token already long-lived")

    client = client_factory(decrypt_token(account.access_token))
    try:
        validation = await handle_with_retry(client.validate_token, context="debug_token")
        if not validation.is_valid:
            await mark_token_revoked(db, account, validation.error_message)
            return RefreshResult(account_id, success=False, error="Current token is invalid, cannot refresh")
        new_token, new_expiry = await exchange_for_long_lived_token(client)
    except TokenRejectedError as e:
        await mark_token_revoked(db, account, e.message)
        return RefreshResult(account_id, success=False, error=e.message)
    except RetryExhaustedError as e:
        return RefreshResult(account_id, success=False, error=e.message)

    account.access_token = encrypt_token(new_token)
    account.token_expiry = new_expiry
    await db.commit()
    logger.info("Token refreshed for ad account %s, expires at %s", account_id, new_expiry.isoformat())
    return RefreshResult(account_id, success=True, new_expires_at=new_expiry)


async def refresh_expiring_tokens(
    db: AsyncSession,
    days: int | None = None,
    *,
    client_factory: ClientFactory = GraphAPIClient,
    pause_between: float = 0.1,
) -> RefreshStats:
    """Proactively refresh ACTIVE tokens that expire within ``days``."""
    window = days if days is not None else get_settings().token_refresh_window_days
    now = utcnow()
    result = await db.execute(
        select(AdAccount).where(
            AdAccount.access_token.is_not(None),
            AdAccount.status == AccountStatus.ACTIVE.value,
            AdAccount.token_expiry.is_not(None),
            AdAccount.token_expiry > now,
            AdAccount.token_expiry <= now + timedelta(days=window),
        )
    )
    accounts = result.scalars().all()
    stats = RefreshStats(total=len(accounts))
    if not accounts:
        logger.info("No tokens need refreshing")
        return stats

    logger.info("Found %d account(s) with tokens expiring within %d days", len(accounts), window)
    for account in accounts:
        outcome = await refresh_token_for_account(db, account, client_factory=client_factory)
        stats.results.append(outcome)
        if outcome.skipped:
            stats.skipped += 1
        elif outcome.success:
            stats.successful += 1
        else:
            stats.failed += 1
        if pause_between:
            await asyncio.sleep(pause_between)
    return stats
