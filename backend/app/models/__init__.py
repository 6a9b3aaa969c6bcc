from app.models.user import User
from app.models.ad_account import AdAccount
from app.models.ads import Campaign, AdSet, Ad

__all__ = [
    "User",
    "AdAccount",
    "Campaign",
    "AdSet",
    "Ad",
]
