from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.ad_account import AdAccount
from app.models.user import User
from app.schemas.facebook import AdAccountResponse
from app.services.account_stats import account_stats, top_campaigns
from app.services.ownership import get_owned_account

router = APIRouter()


@router.get("")
async def list_ad_accounts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AdAccount).where(AdAccount.user_id == user.id).order_by(AdAccount.created_at)
    )
    return {
        "success": True,
        "adAccounts": [
            AdAccountResponse.model_validate(a).model_dump(mode="json") for a in result.scalars().all()
        ],
    }


@router.get("/{ad_account_id}/stats")
async def get_ad_account_stats(
    ad_account_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Spend, delivery and campaign counts for one account from the mirrored rows."""
    account = await get_owned_account(db, ad_account_id, user.id)
    return {"success": True, **await account_stats(db, account)}


@router.get("/{ad_account_id}/top-campaigns")
async def get_top_campaigns(
    ad_account_id: str,
    limit: int = Query(5, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await get_owned_account(db, ad_account_id, user.id)
    return {"success": True, "campaigns": await top_campaigns(db, account, limit)}
