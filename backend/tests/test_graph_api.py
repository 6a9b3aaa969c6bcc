"""
Tests for the Graph API client: request shape, pagination and error mapping.
"""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from app.schemas.graph import budget_from_cents
from app.services.fb_errors import FacebookErrorType, GraphAPIError, TokenRejectedError
from app.services.graph_api import GraphAPIClient, act_id, pin_api_version


def _client(handler) -> GraphAPIClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GraphAPIClient("EAAB-token", api_version="v23.0", http_client=http)


def _json(payload: dict, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(payload), headers={"content-type": "application/json"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_act_id_adds_prefix_once():
    assert act_id("123") == "act_123"
    assert act_id("act_123") == "act_123"


def test_pin_api_version_rewrites_next_url():
    url = "https://graph.facebook.com/v19.0/act_1/campaigns?after=abc"
    assert pin_api_version(url, "v23.0") == "https://graph.facebook.com/v23.0/act_1/campaigns?after=abc"
    assert pin_api_version(None, "v23.0") is None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_campaigns_follows_paging():
    """All pages are collected and the next URL is pinned to our version."""
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if "after" not in request.url.params:
            return _json({
                "data": [{"id": "c1", "name": "One", "status": "ACTIVE"}],
                "paging": {"next": "https://graph.facebook.com/v19.0/act_42/campaigns?after=cursor1&access_token=EAAB-token"},
            })
        return _json({"data": [{"id": "c2", "name": "Two", "status": "PAUSED"}], "paging": {}})

    campaigns = await _client(handler).list_campaigns("42")

    assert [c.id for c in campaigns] == ["c1", "c2"]
    assert seen[0].path == "/v23.0/act_42/campaigns"
    assert seen[0].params["access_token"] == "EAAB-token"
    assert "fields" in seen[0].params
    assert seen[1].path == "/v23.0/act_42/campaigns"


@pytest.mark.asyncio
async def test_get_insights_defaults_to_last_30_days():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.url.params)
        return _json({"data": [{
            "spend": "10.50",
            "impressions": "1000",
            "clicks": "20",
            "ctr": "2.0",
            "actions": [
                {"action_type": "purchase", "value": "3"},
                {"action_type": "link_click", "value": "20"},
            ],
        }]})

    result = await _client(handler).get_insights("c1")

    assert captured["date_preset"] == "last_30d"
    assert result.spend == Decimal("10.50")
    assert result.impressions == 1000
    assert result.clicks == 20
    assert result.conversions == 3
    assert result.cost_per_conversion == Decimal("3.50")


@pytest.mark.asyncio
async def test_get_insights_uses_time_range_when_given():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.url.params)
        return _json({"data": []})

    result = await _client(handler).get_insights("c1", "2026-01-01", "2026-01-31")

    assert result is None
    assert "date_preset" not in captured
    assert json.loads(captured["time_range"]) == {"since": "2026-01-01", "until": "2026-01-31"}


@pytest.mark.asyncio
async def test_get_insights_rejects_malformed_numbers():
    def handler(request: httpx.Request) -> httpx.Response:
        return _json({"data": [{"spend": "not-a-number"}]})

    with pytest.raises(GraphAPIError) as exc_info:
        await _client(handler).get_insights("c1")
    assert exc_info.value.error_type == FacebookErrorType.VALIDATION


@pytest.mark.asyncio
@pytest.mark.parametrize("spend", ["NaN", "Infinity", "-Infinity"])
async def test_get_insights_rejects_non_finite_numbers(spend):
    def handler(request: httpx.Request) -> httpx.Response:
        return _json({"data": [{"spend": spend, "impressions": "10"}]})

    with pytest.raises(GraphAPIError) as exc_info:
        await _client(handler).get_insights("c1")
    assert exc_info.value.error_type == FacebookErrorType.VALIDATION


@pytest.mark.parametrize("value", ["NaN", "Infinity", "1e40"])
def test_budget_from_cents_rejects_unrepresentable_values(value):
    with pytest.raises(ValueError):
        budget_from_cents(value)


@pytest.mark.asyncio
async def test_validate_token_parses_debug_token():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v23.0/debug_token"
        assert request.url.params["input_token"] == "EAAB-token"
        return _json({"data": {
            "is_valid": True,
            "app_id": "app-1",
            "user_id": "u-1",
            "expires_at": 1893456000,
            "scopes": ["ads_read"],
        }})

    validation = await _client(handler).validate_token()

    assert validation.is_valid is True
    assert validation.expires_at is not None
    assert validation.expires_at.year == 2030
    assert validation.scopes == ["ads_read"]
    assert validation.error_message is None


@pytest.mark.asyncio
async def test_validate_token_never_expiring():
    def handler(request: httpx.Request) -> httpx.Response:
        return _json({"data": {"is_valid": True, "expires_at": 0}})

    validation = await _client(handler).validate_token()
    assert validation.expires_at is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_expired_token_raises_token_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return _json(
            {"error": {"message": "Error validating access token: Session has expired", "type": "OAuthException",
                       "code": 190, "error_subcode": 463}},
            status=400,
        )

    with pytest.raises(TokenRejectedError) as exc_info:
        await _client(handler).list_campaigns("42")
    assert exc_info.value.code == 190
    assert exc_info.value.error_type == FacebookErrorType.AUTHENTICATION


@pytest.mark.asyncio
async def test_rate_limit_error_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        return _json({"error": {"message": "User request limit reached", "code": 17}}, status=400)

    with pytest.raises(GraphAPIError) as exc_info:
        await _client(handler).list_ad_sets("c1")
    assert not isinstance(exc_info.value, TokenRejectedError)
    assert exc_info.value.error_type == FacebookErrorType.RATE_LIMIT
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_server_error_without_body_is_temporary():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, content=b"upstream down")

    with pytest.raises(GraphAPIError) as exc_info:
        await _client(handler).list_ads("s1")
    assert exc_info.value.error_type == FacebookErrorType.TEMPORARY


@pytest.mark.asyncio
async def test_transport_error_is_network():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GraphAPIError) as exc_info:
        await _client(handler).list_ad_accounts()
    assert exc_info.value.error_type == FacebookErrorType.NETWORK


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_status_posts_form():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = request.content.decode()
        return _json({"success": True})

    assert await _client(handler).update_status("c1", "PAUSED") is True
    assert captured["method"] == "POST"
    assert captured["path"] == "/v23.0/c1"
    assert "status=PAUSED" in captured["body"]


@pytest.mark.asyncio
async def test_delete_object():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return _json({"success": True})

    assert await _client(handler).delete_object("a1") is True


@pytest.mark.asyncio
async def test_create_campaign_sends_budget_in_minor_units():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = request.content.decode()
        return _json({"id": "c-new"})

    created = await _client(handler).create_campaign(
        "42", "Launch", "OUTCOME_TRAFFIC", daily_budget=Decimal("25.50"),
    )

    assert created == "c-new"
    assert captured["path"] == "/v23.0/act_42/campaigns"
    assert "daily_budget=2550" in captured["body"]
    assert "status=PAUSED" in captured["body"]


@pytest.mark.asyncio
async def test_update_campaign_skips_empty_fields():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content.decode()
        return _json({"success": True})

    assert await _client(handler).update_campaign("c1", name="Renamed", daily_budget=None) is True
    assert captured["body"] == "name=Renamed"


@pytest.mark.asyncio
async def test_delete_campaign_uses_delete():
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return _json({"success": True})

    assert await _client(handler).delete_campaign("c1") is True
    assert methods == ["DELETE"]
