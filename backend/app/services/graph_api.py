"""Facebook Marketing (Graph) API client.

One instance wraps one access token.  Every call is a plain request/response:
there are no retries here, callers wrap operations in
:func:`app.services.retry.handle_with_retry` when they want resilience.
"""

import logging
import re
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from app.config import get_settings
from app.schemas.graph import (
    CreatedObject,
    DebugTokenResponse,
    GraphErrorBody,
    InsightMetrics,
    LongLivedToken,
    Paging,
    RemoteAd,
    RemoteAdAccount,
    RemoteAdSet,
    RemoteCampaign,
    RemoteInsightRow,
    SuccessResponse,
    TokenValidation,
)
from app.services.fb_errors import (
    FacebookErrorType,
    GraphAPIError,
    TokenRejectedError,
    is_token_rejected,
)

logger = logging.getLogger(__name__)

GRAPH_HOST = "https://graph.facebook.com"

AD_ACCOUNT_FIELDS = "id,name,account_status,currency,timezone_name"
CAMPAIGN_FIELDS = "id,name,status,effective_status,objective,daily_budget,lifetime_budget,created_time,updated_time"
AD_SET_FIELDS = "id,name,status,effective_status,daily_budget,lifetime_budget,targeting,created_time,updated_time"
AD_FIELDS = "id,name,status,effective_status,creative{id,name,title,body,image_url,thumbnail_url},created_time,updated_time"
INSIGHT_FIELDS = "impressions,clicks,spend,reach,frequency,ctr,cpc,cpm,actions"

PAGE_LIMIT = 200

# Facebook pagination URLs may come back on a newer API version than the
# one the app is approved for, which fails with 403.
_VERSION_RE = re.compile(r"graph\.facebook\.com/v[\d.]+/")

M = TypeVar("M", bound=BaseModel)


def pin_api_version(url: str | None, version: str) -> str | None:
    """Rewrite a Facebook pagination URL to use our pinned API version."""
    if not url:
        return None
    return _VERSION_RE.sub(f"graph.facebook.com/{version}/", url)


def act_id(account_id: str) -> str:
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


class GraphAPIClient:
    """Stateless wrapper around the Graph API for a single access token."""

    def __init__(
        self,
        access_token: str,
        *,
        api_version: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.access_token = access_token
        self.api_version = api_version or settings.graph_api_version
        self.base_url = f"{GRAPH_HOST}/{self.api_version}"
        self.app_id = settings.facebook_app_id
        self.app_secret = settings.facebook_app_secret
        self._http = http_client
        self._timeout = timeout or settings.graph_api_timeout

    # -- transport -----------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _auth_params(self) -> dict:
        return {"access_token": self.access_token}

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        data: dict | None = None,
    ) -> dict:
        try:
            resp = await client.request(method, url, params=params, data=data)
        except httpx.TransportError as e:
            raise GraphAPIError(
                f"Network error calling Facebook: {e}", error_type=FacebookErrorType.NETWORK
            ) from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.is_error or (isinstance(payload, dict) and payload.get("error")):
            raise self._error_from_response(resp.status_code, payload)
        if not isinstance(payload, dict):
            raise GraphAPIError(
                "Malformed response from Facebook",
                http_status=resp.status_code,
                error_type=FacebookErrorType.VALIDATION,
            )
        return payload

    async def _request(self, method: str, path: str, *, params: dict | None = None, data: dict | None = None) -> dict:
        async with self._client() as client:
            return await self._send(
                client, method, self._url(path), params={**self._auth_params(), **(params or {})}, data=data
            )

    @staticmethod
    def _error_from_response(status_code: int, payload) -> GraphAPIError:
        raw = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(raw, dict):
            body = GraphErrorBody.model_validate(raw)
        else:
            body = GraphErrorBody(message=f"Facebook API returned HTTP {status_code}")

        if is_token_rejected(body.code, body.error_subcode, body.message):
            return TokenRejectedError(
                body.message, code=body.code, subcode=body.error_subcode, http_status=status_code
            )
        return GraphAPIError(body.message, code=body.code, subcode=body.error_subcode, http_status=status_code)

    @staticmethod
    def _parse(model: type[M], payload: dict) -> M:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise GraphAPIError(
                f"Unexpected {model.__name__} payload from Facebook: {e.error_count()} validation error(s)",
                error_type=FacebookErrorType.VALIDATION,
            ) from e

    async def _paginate(self, path: str, fields: str, model: type[M], extra: dict | None = None) -> list[M]:
        items: list[M] = []
        url: str | None = self._url(path)
        params: dict | None = {**self._auth_params(), "fields": fields, "limit": PAGE_LIMIT, **(extra or {})}
        async with self._client() as client:
            while url:
                data = await self._send(client, "GET", url, params=params)
                for row in data.get("data") or []:
                    items.append(self._parse(model, row))
                paging = self._parse(Paging, data.get("paging") or {})
                url = pin_api_version(paging.next, self.api_version)
                params = None  # next URL already carries the query string
        return items

    # -- Token -----------------------------------------------------------------

    async def validate_token(self) -> TokenValidation:
        """Inspect the token with ``/debug_token``.

        Uses the app access token when app credentials are configured,
        otherwise the token inspects itself.
        """
        inspector = f"{self.app_id}|{self.app_secret}" if self.app_id and self.app_secret else self.access_token
        data = await self._request(
            "GET", "debug_token", params={"input_token": self.access_token, "access_token": inspector}
        )
        debug = self._parse(DebugTokenResponse, data)
        return TokenValidation.from_debug_token(debug.data)

    async def exchange_token(self) -> LongLivedToken:
        """Exchange this token for a long-lived one (~60 days)."""
        if not self.app_id or not self.app_secret:
            raise GraphAPIError(
                "FACEBOOK_APP_ID / FACEBOOK_APP_SECRET not configured",
                error_type=FacebookErrorType.VALIDATION,
            )
        async with self._client() as client:
            data = await self._send(
                client,
                "GET",
                self._url("oauth/access_token"),
                params={
                    "grant_type": "fb_exchange_token",
                    "client_id": self.app_id,
                    "client_secret": self.app_secret,
                    "fb_exchange_token": self.access_token,
                },
            )
        return self._parse(LongLivedToken, data)

    # -- Reads -----------------------------------------------------------------

    async def list_ad_accounts(self) -> list[RemoteAdAccount]:
        return await self._paginate("me/adaccounts", AD_ACCOUNT_FIELDS, RemoteAdAccount)

    async def list_campaigns(self, account_id: str) -> list[RemoteCampaign]:
        return await self._paginate(f"{act_id(account_id)}/campaigns", CAMPAIGN_FIELDS, RemoteCampaign)

    async def list_ad_sets(self, campaign_id: str) -> list[RemoteAdSet]:
        return await self._paginate(f"{campaign_id}/adsets", AD_SET_FIELDS, RemoteAdSet)

    async def list_ads(self, ad_set_id: str) -> list[RemoteAd]:
        return await self._paginate(f"{ad_set_id}/ads", AD_FIELDS, RemoteAd)

    async def get_insights(
        self, entity_id: str, date_from: str | None = None, date_to: str | None = None,
    ) -> InsightMetrics | None:
        """Aggregated metrics for one campaign / ad set / ad.

        Returns ``None`` when Facebook has no delivery data for the period.
        """
        params = {"fields": INSIGHT_FIELDS}
        if date_from and date_to:
            params["time_range"] = f'{{"since":"{date_from}","until":"{date_to}"}}'
        else:
            params["date_preset"] = "last_30d"
        data = await self._request("GET", f"{entity_id}/insights", params=params)
        rows = data.get("data") or []
        if not rows:
            return None
        row = self._parse(RemoteInsightRow, rows[0])
        try:
            return InsightMetrics.from_row(row)
        except (ValueError, ArithmeticError) as e:
            raise GraphAPIError(str(e), error_type=FacebookErrorType.VALIDATION) from e

    # -- Writes ----------------------------------------------------------------

    async def create_campaign(
        self,
        account_id: str,
        name: str,
        objective: str,
        status: str = "PAUSED",
        daily_budget: Decimal | None = None,
    ) -> str:
        form = {
            "name": name,
            "objective": objective,
            "status": status,
            "special_ad_categories": "[]",
        }
        if daily_budget is not None:
            form["daily_budget"] = str(int(daily_budget * 100))  # minor units
        data = await self._request("POST", f"{act_id(account_id)}/campaigns", data=form)
        return self._parse(CreatedObject, data).id

    async def update_campaign(self, campaign_id: str, **fields) -> bool:
        form = {k: str(v) for k, v in fields.items() if v is not None}
        data = await self._request("POST", campaign_id, data=form)
        return self._parse(SuccessResponse, data).success

    async def update_status(self, entity_id: str, status: str) -> bool:
        """Set ACTIVE / PAUSED / ARCHIVED on a campaign, ad set or ad."""
        data = await self._request("POST", entity_id, data={"status": status})
        return self._parse(SuccessResponse, data).success

    async def delete_object(self, entity_id: str) -> bool:
        data = await self._request("DELETE", entity_id)
        return self._parse(SuccessResponse, data).success

    async def delete_campaign(self, campaign_id: str) -> bool:
        return await self.delete_object(campaign_id)
