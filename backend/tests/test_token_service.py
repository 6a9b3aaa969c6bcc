"""
Tests for the Facebook token lifecycle: validation, state transitions,
connect/upsert and proactive refresh.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.ad_account import AdAccount
from app.schemas.graph import TokenValidation
from app.services.fb_errors import GraphAPIError, TokenRejectedError
from app.services.token_service import (
    AD_ACCOUNT_NOT_FOUND,
    CONNECTION_ERROR,
    TOKEN_EXPIRED,
    TOKEN_INVALID,
    TOKEN_MISSING,
    TokenError,
    TokenResult,
    check_connection,
    connect_account,
    get_valid_token,
    refresh_expiring_tokens,
)
from app.utils.dates import as_utc, utcnow
from app.utils.errors import APIError
from app.utils.status import AccountStatus

from conftest import remote_account


# ---------------------------------------------------------------------------
# get_valid_token
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_valid_token_is_returned_and_expiry_refreshed(db_session, fake_graph, ad_account, test_user):
    result = await get_valid_token(db_session, ad_account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenResult)
    assert result.token == "EAAB-stored-token"
    assert result.validated is True
    assert fake_graph.validate_token.await_count == 1
    assert fake_graph.tokens == ["EAAB-stored-token"]
    assert ad_account.token_scopes == ["ads_read", "ads_management"]
    assert as_utc(ad_account.token_expiry) > utcnow() + timedelta(days=49)


@pytest.mark.asyncio
async def test_expired_token_pauses_account_without_remote_call(
    db_session, fake_graph, make_ad_account, test_user,
):
    """Stored expiry in the past flips the account to PAUSED; Facebook is never called."""
    account = await make_ad_account(test_user, token_expiry=utcnow() - timedelta(minutes=5))

    result = await get_valid_token(db_session, account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.status_code == 401
    assert result.requires_reconnect is True
    assert result.reason == TOKEN_EXPIRED
    assert fake_graph.tokens == []
    assert fake_graph.validate_token.await_count == 0

    await db_session.refresh(account)
    assert account.status == AccountStatus.PAUSED.value


@pytest.mark.asyncio
async def test_invalid_token_pauses_account_and_sets_expiry_now(db_session, fake_graph, ad_account, test_user):
    fake_graph.validate_token.return_value = TokenValidation(is_valid=False, error_message="Session has expired")
    before = utcnow()

    result = await get_valid_token(db_session, ad_account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.status_code == 401
    assert result.requires_reconnect is True
    assert result.reason == TOKEN_INVALID

    await db_session.refresh(ad_account)
    assert ad_account.status == AccountStatus.PAUSED.value
    assert before - timedelta(seconds=1) <= as_utc(ad_account.token_expiry) <= utcnow()


@pytest.mark.asyncio
async def test_rejected_token_during_validation_pauses_account(db_session, fake_graph, ad_account, test_user):
    fake_graph.validate_token.side_effect = TokenRejectedError("Error validating access token", code=190)

    result = await get_valid_token(db_session, ad_account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.requires_reconnect is True
    await db_session.refresh(ad_account)
    assert ad_account.status == AccountStatus.PAUSED.value


@pytest.mark.asyncio
async def test_paused_account_short_circuits(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, status=AccountStatus.PAUSED.value)

    result = await get_valid_token(db_session, account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.status_code == 401
    assert result.requires_reconnect is True
    assert fake_graph.validate_token.await_count == 0


@pytest.mark.asyncio
async def test_recently_updated_account_skips_validation(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, updated_at=utcnow() - timedelta(seconds=10))

    first = await get_valid_token(db_session, account.id, test_user.id, client_factory=fake_graph.factory)
    second = await get_valid_token(db_session, account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(first, TokenResult) and isinstance(second, TokenResult)
    assert first.validated is False
    assert fake_graph.validate_token.await_count == 0


@pytest.mark.asyncio
async def test_validation_then_skip_within_window(db_session, fake_graph, ad_account, test_user):
    """A successful validation bumps updated_at, so the next call inside the window is free."""
    await get_valid_token(db_session, ad_account.id, test_user.id, client_factory=fake_graph.factory)
    await db_session.commit()
    result = await get_valid_token(db_session, ad_account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenResult)
    assert result.validated is False
    assert fake_graph.validate_token.await_count == 1


@pytest.mark.asyncio
async def test_recent_skip_can_be_disabled(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, updated_at=utcnow())

    result = await get_valid_token(
        db_session, account.id, test_user.id, client_factory=fake_graph.factory, allow_recent_skip=False,
    )

    assert isinstance(result, TokenResult)
    assert result.validated is True
    assert fake_graph.validate_token.await_count == 1


@pytest.mark.asyncio
async def test_account_of_another_user_is_not_found(db_session, fake_graph, ad_account, other_user):
    result = await get_valid_token(db_session, ad_account.id, other_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.status_code == 404
    assert result.reason == AD_ACCOUNT_NOT_FOUND
    assert fake_graph.tokens == []


@pytest.mark.asyncio
async def test_missing_token(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, access_token=None)

    result = await get_valid_token(db_session, account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.status_code == 400
    assert result.reason == TOKEN_MISSING


@pytest.mark.asyncio
async def test_unreachable_facebook_does_not_pause(db_session, fake_graph, ad_account, test_user):
    fake_graph.validate_token.side_effect = GraphAPIError("Invalid parameter", code=100)

    result = await get_valid_token(db_session, ad_account.id, test_user.id, client_factory=fake_graph.factory)

    assert isinstance(result, TokenError)
    assert result.status_code == 503
    assert result.reason == CONNECTION_ERROR
    assert result.requires_reconnect is False
    assert ad_account.status == AccountStatus.ACTIVE.value


# ---------------------------------------------------------------------------
# check_connection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_check_connection_warns_before_expiry(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, token_expiry=utcnow() + timedelta(days=3), updated_at=utcnow())

    status = await check_connection(db_session, account.id, test_user.id, client_factory=fake_graph.factory)

    assert status["connected"] is True
    assert status["tokenExpiryWarning"] is True
    assert status["daysUntilExpiry"] in (2, 3)
    assert status["facebookAdAccountId"] == "1234567890"


@pytest.mark.asyncio
async def test_check_connection_reports_disconnected(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, token_expiry=utcnow() - timedelta(days=1))

    status = await check_connection(db_session, account.id, test_user.id, client_factory=fake_graph.factory)

    assert status["connected"] is False
    assert status["requiresReconnect"] is True
    assert status["reason"] == TOKEN_EXPIRED


@pytest.mark.asyncio
async def test_check_connection_unknown_account(db_session, fake_graph, test_user):
    with pytest.raises(APIError) as exc_info:
        await check_connection(db_session, "not-a-uuid", test_user.id, client_factory=fake_graph.factory)
    assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# connect_account
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_connect_upserts_and_removes_stale_accounts(db_session, fake_graph, make_ad_account, test_user):
    kept = await make_ad_account(
        test_user, facebook_account_id="111", name="Old name", status=AccountStatus.PAUSED.value,
    )
    await make_ad_account(test_user, facebook_account_id="999", name="Revoked")
    fake_graph.list_ad_accounts.return_value = [remote_account("111", "Renamed"), remote_account("222", "New")]

    result = await connect_account(db_session, test_user.id, "EAAB-new-token", client_factory=fake_graph.factory)
    await db_session.commit()

    assert result["success"] is True
    assert result["removedAccounts"] == 1
    assert {a["facebookAdAccountId"] for a in result["accounts"]} == {"111", "222"}

    rows = (await db_session.execute(
        select(AdAccount).where(AdAccount.user_id == test_user.id).order_by(AdAccount.facebook_account_id)
    )).scalars().all()
    assert [a.facebook_account_id for a in rows] == ["111", "222"]
    assert rows[0].id == kept.id
    assert rows[0].name == "Renamed"
    assert all(a.status == AccountStatus.ACTIVE.value for a in rows)
    assert all(a.access_token == "EAAB-new-token" for a in rows)


@pytest.mark.asyncio
async def test_connect_keeps_accounts_never_linked_to_facebook(db_session, fake_graph, make_ad_account, test_user):
    unlinked = await make_ad_account(
        test_user, facebook_account_id=None, name="Draft workspace", access_token=None, token_expiry=None,
    )
    unlinked_id = unlinked.id
    fake_graph.list_ad_accounts.return_value = [remote_account("999")]

    result = await connect_account(db_session, test_user.id, "EAAB-new-token", client_factory=fake_graph.factory)
    await db_session.commit()

    assert result["removedAccounts"] == 0
    rows = (await db_session.execute(
        select(AdAccount).where(AdAccount.user_id == test_user.id)
    )).scalars().all()
    assert len(rows) == 2
    assert unlinked_id in {a.id for a in rows}


@pytest.mark.asyncio
async def test_connect_does_not_touch_other_users(db_session, fake_graph, make_ad_account, test_user, other_user):
    theirs = await make_ad_account(other_user, facebook_account_id="111")
    fake_graph.list_ad_accounts.return_value = [remote_account("111")]

    await connect_account(db_session, test_user.id, "EAAB-new-token", client_factory=fake_graph.factory)
    await db_session.commit()

    await db_session.refresh(theirs)
    assert theirs.user_id == other_user.id
    assert theirs.access_token == "EAAB-stored-token"


@pytest.mark.asyncio
async def test_connect_rejects_invalid_token(db_session, fake_graph, test_user):
    fake_graph.validate_token.return_value = TokenValidation(is_valid=False, error_message="Malformed access token")

    with pytest.raises(APIError) as exc_info:
        await connect_account(db_session, test_user.id, "garbage", client_factory=fake_graph.factory)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Malformed access token"
    assert fake_graph.list_ad_accounts.await_count == 0


@pytest.mark.asyncio
async def test_connect_without_ad_accounts(db_session, fake_graph, test_user):
    fake_graph.list_ad_accounts.return_value = []

    with pytest.raises(APIError) as exc_info:
        await connect_account(db_session, test_user.id, "EAAB-new-token", client_factory=fake_graph.factory)
    assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# refresh_expiring_tokens
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_refresh_exchanges_tokens_expiring_soon(db_session, fake_graph, make_ad_account, test_user):
    soon = await make_ad_account(test_user, facebook_account_id="111", token_expiry=utcnow() + timedelta(days=3))
    await make_ad_account(test_user, facebook_account_id="222", token_expiry=utcnow() + timedelta(days=20))

    stats = await refresh_expiring_tokens(db_session, client_factory=fake_graph.factory, pause_between=0)

    assert stats.total == 1
    assert stats.successful == 1
    assert stats.failed == 0
    await db_session.refresh(soon)
    assert soon.access_token == "EAAB-long-lived"
    assert as_utc(soon.token_expiry) > utcnow() + timedelta(days=59)


@pytest.mark.asyncio
async def test_refresh_pauses_rejected_tokens(db_session, fake_graph, make_ad_account, test_user):
    account = await make_ad_account(test_user, token_expiry=utcnow() + timedelta(days=2))
    fake_graph.validate_token.side_effect = TokenRejectedError("Error validating access token", code=190)

    stats = await refresh_expiring_tokens(db_session, client_factory=fake_graph.factory, pause_between=0)

    assert stats.failed == 1
    assert fake_graph.exchange_token.await_count == 0
    await db_session.refresh(account)
    assert account.status == AccountStatus.PAUSED.value
