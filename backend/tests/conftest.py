"""
Shared test fixtures for the AdPulse backend test suite.

NOTE: This test suite uses aiosqlite as the async SQLite driver so that tests
run against an in-memory database instead of a real PostgreSQL instance.
Make sure ``aiosqlite`` is installed:

    pip install -e ".[test]"

Each test gets its own in-memory database, so sessions may commit freely.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.dialects.postgresql import UUID as PG_UUID, JSONB
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.dependencies import get_graph_client_factory, get_sync_locks
from app.models.ad_account import AdAccount
from app.models.ads import Ad, AdSet, Campaign
from app.models.user import User
from app.schemas.graph import (
    InsightMetrics,
    LongLivedToken,
    RemoteAd,
    RemoteAdAccount,
    RemoteAdSet,
    RemoteCampaign,
    TokenValidation,
)
from app.services.cache import MemoryCacheStore, get_cache_store
from app.services.sync_service import SyncLockRegistry
from app.utils.dates import utcnow
from app.utils.security import create_access_token
from app.utils.status import AccountStatus, SyncStatus

# Import all models so Base.metadata has every table registered.
import app.models  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Type-adaptation: teach SQLAlchemy to compile PG types for the SQLite dialect.
# ---------------------------------------------------------------------------

from sqlalchemy.ext.compiler import compiles  # noqa: E402


@compiles(PG_UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign keys so ON DELETE CASCADE behaves like PostgreSQL."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Fake Graph API
# ---------------------------------------------------------------------------

class FakeGraphAPI:
    """Stands in for ``GraphAPIClient``; every method is an ``AsyncMock``.

    ``factory`` is what the app receives as its client factory, so tests can
    assert on both the tokens used and the calls made.
    """

    def __init__(self):
        self.tokens: list[str] = []
        self.validate_token = AsyncMock(
            return_value=TokenValidation(
                is_valid=True,
                app_id="app-1",
                user_id="fb-user-1",
                expires_at=utcnow() + timedelta(days=50),
                scopes=["ads_read", "ads_management"],
            )
        )
        self.exchange_token = AsyncMock(
            return_value=LongLivedToken(access_token="EAAB-long-lived", token_type="bearer", expires_in=5184000)
        )
        self.list_ad_accounts = AsyncMock(return_value=[])
        self.list_campaigns = AsyncMock(return_value=[])
        self.list_ad_sets = AsyncMock(return_value=[])
        self.list_ads = AsyncMock(return_value=[])
        self.get_insights = AsyncMock(return_value=None)
        self.update_status = AsyncMock(return_value=True)
        self.delete_object = AsyncMock(return_value=True)

    def factory(self, access_token: str) -> "FakeGraphAPI":
        self.tokens.append(access_token)
        return self

    def set_tree(self, tree: dict[str, dict[str, list[str]]]) -> None:
        """Serve ``{campaign_id: {ad_set_id: [ad_id, ...]}}`` from the list methods."""
        self.list_campaigns.return_value = [
            RemoteCampaign(id=cid, name=f"Campaign {cid}", status="ACTIVE", daily_budget="5000")
            for cid in tree
        ]
        ad_sets = {
            cid: [RemoteAdSet(id=sid, name=f"Ad set {sid}", status="ACTIVE") for sid in children]
            for cid, children in tree.items()
        }
        ads = {
            sid: [RemoteAd(id=aid, name=f"Ad {aid}", effective_status="ELIGIBLE") for aid in ad_ids]
            for children in tree.values()
            for sid, ad_ids in children.items()
        }
        self.list_ad_sets.side_effect = lambda campaign_id: ad_sets.get(campaign_id, [])
        self.list_ads.side_effect = lambda ad_set_id: ads.get(ad_set_id, [])


def remote_account(account_id: str, name: str = "Ad Account") -> RemoteAdAccount:
    return RemoteAdAccount(id=f"act_{account_id}", name=name, account_status=1, currency="USD", timezone_name="UTC")


def metrics(spend: str = "12.50", impressions: int = 1000, clicks: int = 25) -> InsightMetrics:
    from decimal import Decimal

    return InsightMetrics(
        spend=Decimal(spend), impressions=impressions, clicks=clicks, ctr=2.5,
        conversions=5, cost_per_conversion=Decimal("2.50"),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def engine_test():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(engine_test) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine_test, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fake_graph() -> FakeGraphAPI:
    return FakeGraphAPI()


@pytest.fixture()
def cache_store() -> MemoryCacheStore:
    return MemoryCacheStore(default_ttl=60)


@pytest.fixture()
def sync_lock_registry() -> SyncLockRegistry:
    return SyncLockRegistry()


@pytest_asyncio.fixture()
async def client(
    db_session: AsyncSession,
    fake_graph: FakeGraphAPI,
    cache_store: MemoryCacheStore,
    sync_lock_registry: SyncLockRegistry,
) -> AsyncGenerator[AsyncClient, None]:
    """
    FastAPI test client that uses ``httpx.AsyncClient`` with ``ASGITransport``.
    The database, Graph API client, cache and sync locks are all injected.
    """
    from app.main import app

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session
        await db_session.commit()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_graph_client_factory] = lambda: fake_graph.factory
    app.dependency_overrides[get_cache_store] = lambda: cache_store
    app.dependency_overrides[get_sync_locks] = lambda: sync_lock_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture()
def cron_secret(monkeypatch) -> str:
    from app.config import get_settings

    secret = "test-cron-secret-value"
    monkeypatch.setattr(get_settings(), "cron_secret", secret)
    return secret


async def _create_user(db: AsyncSession, external_id: str, email: str) -> User:
    user = User(id=uuid.uuid4(), external_id=external_id, email=email, name=email.split("@")[0])
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture()
async def test_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "user_test_1", "test@example.com")


@pytest_asyncio.fixture()
async def other_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "user_other_2", "other@example.com")


def headers_for(user: User) -> dict[str, str]:
    token = create_access_token(data={"sub": user.external_id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(test_user: User) -> dict[str, str]:
    """Return an ``Authorization: Bearer <token>`` header dict for the test user."""
    return headers_for(test_user)


@pytest.fixture()
def other_headers(other_user: User) -> dict[str, str]:
    return headers_for(other_user)


@pytest.fixture()
def make_ad_account(db_session: AsyncSession):
    """Factory for connected ad accounts.

    ``updated_at`` defaults to an hour ago so the recent-update shortcut does
    not kick in unless a test asks for it.
    """
    async def _make(user: User, **overrides) -> AdAccount:
        values = dict(
            user_id=user.id,
            facebook_account_id="1234567890",
            name="Main Account",
            currency="USD",
            timezone_name="UTC",
            access_token="EAAB-stored-token",
            token_expiry=utcnow() + timedelta(days=45),
            token_scopes=["ads_read"],
            status=AccountStatus.ACTIVE.value,
            sync_status=SyncStatus.IDLE.value,
            updated_at=utcnow() - timedelta(hours=1),
        )
        values.update(overrides)
        account = AdAccount(**values)
        db_session.add(account)
        await db_session.commit()
        return account

    return _make


@pytest_asyncio.fixture()
async def ad_account(make_ad_account, test_user: User) -> AdAccount:
    return await make_ad_account(test_user)


@pytest_asyncio.fixture()
async def campaign_tree(db_session: AsyncSession, ad_account: AdAccount) -> tuple[Campaign, AdSet, Ad]:
    """One synced campaign -> ad set -> ad under ``ad_account``."""
    campaign = Campaign(
        ad_account_id=ad_account.id, facebook_campaign_id="c-100", name="Spring Sale",
        status="ACTIVE", objective="OUTCOME_SALES",
    )
    db_session.add(campaign)
    await db_session.flush()
    ad_set = AdSet(campaign_id=campaign.id, facebook_ad_set_id="s-100", name="Lookalikes", status="ACTIVE")
    db_session.add(ad_set)
    await db_session.flush()
    ad = Ad(ad_set_id=ad_set.id, facebook_ad_id="a-100", name="Carousel", status="ACTIVE")
    db_session.add(ad)
    await db_session.commit()
    return campaign, ad_set, ad
