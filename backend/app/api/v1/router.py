from fastapi import APIRouter
from app.api.v1 import facebook, cron, ad_accounts, campaigns, ad_sets, ads

api_router = APIRouter()

api_router.include_router(facebook.router, prefix="/facebook", tags=["Facebook"])
api_router.include_router(ad_accounts.router, prefix="/ad-accounts", tags=["Ad Accounts"])
api_router.include_router(campaigns.router, prefix="/campaigns", tags=["Campaigns"])
api_router.include_router(ad_sets.router, prefix="/ad-sets", tags=["Ad Sets"])
api_router.include_router(ads.router, prefix="/ads", tags=["Ads"])
api_router.include_router(cron.router, prefix="/cron", tags=["Cron"])
