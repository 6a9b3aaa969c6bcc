from datetime import date

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.database import get_db
from app.utils.security import decode_token
from app.models.user import User
from app.services.graph_api import GraphAPIClient
from app.services.sync_service import SyncLockRegistry, sync_locks
from app.services.token_service import ClientFactory
from app.utils.dates import resolve_date_range
from app.utils.errors import APIError

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the identity provider's session token to a local user row.

    Users are created on first sight; the provider owns sign-up.
    """
    token = credentials.credentials
    payload = decode_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    external_id = payload.get("sub")
    if not external_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    result = await db.execute(select(User).where(User.external_id == str(external_id)))
    user = result.scalar_one_or_none()

    if not user:
        user = User(external_id=str(external_id), email=payload.get("email"), name=payload.get("name"))
        db.add(user)
        await db.flush()

    return user


def get_graph_client_factory() -> ClientFactory:
    """Factory building a Graph API client for a token; overridden in tests."""
    return GraphAPIClient


def get_sync_locks() -> SyncLockRegistry:
    return sync_locks


def get_date_range(
    date_from: date | None = Query(None, alias="dateFrom"),
    date_to: date | None = Query(None, alias="dateTo"),
) -> tuple[date, date] | None:
    """Optional ``dateFrom``/``dateTo`` reporting range (ISO dates)."""
    date_range = resolve_date_range(date_from, date_to)
    if date_range is not None and date_range[0] > date_range[1]:
        raise APIError(422, "dateFrom must not be after dateTo")
    return date_range
