"""
Tests for the social and search platform clients.

Uses httpx.MockTransport; no network access.
"""

import json
from datetime import date

import httpx
import pytest

from admetrics.metrics.errors import (
    CredentialError,
    EmptyResultError,
    PlatformError,
    TransientFetchError,
)
from admetrics.metrics.models import AccountRef, DateRange, Platform
from admetrics.platforms.base import raise_for_status
from admetrics.platforms.config import PlatformSettings
from admetrics.platforms.search import SearchAdsClient
from admetrics.platforms.search import row_to_campaign as search_row
from admetrics.platforms.social import ACTION_PRIORITY, SocialAdsClient, parse_actions
from admetrics.platforms.social import row_to_campaign as social_row


JUNE = DateRange(date(2024, 6, 1), date(2024, 6, 30))


@pytest.fixture
def settings():
    return PlatformSettings(google_ads_developer_token="dev-token")


def social_account():
    return AccountRef(platform=Platform.SOCIAL, account_id="123", access_token="meta-token")


def search_account(login=None):
    extra = {"login_customer_id": login} if login else {}
    return AccountRef(platform=Platform.SEARCH, account_id="111-222-3333", access_token="g-token", extra=extra)


def social_client(settings, handler):
    return SocialAdsClient(settings, transport=httpx.MockTransport(handler))


def search_client(settings, handler):
    return SearchAdsClient(settings, transport=httpx.MockTransport(handler))


# =============================================================================
# SOCIAL PARSING TESTS
# =============================================================================

class TestSocialParsing:

    def test_action_priority_takes_first_present(self):
        actions = [
            {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "4"},
            {"action_type": "omni_purchase", "value": "3"},
            {"action_type": "lead", "value": "2"},
        ]
        resolved = parse_actions(actions, ACTION_PRIORITY)

        assert resolved["reservations"] == 3
        assert resolved["email_contacts"] == 2
        assert "click_to_call" not in resolved

    def test_negative_values_ignored(self):
        resolved = parse_actions([{"action_type": "lead", "value": "-1"}], ACTION_PRIORITY)
        assert resolved == {}

    def test_row_to_campaign(self):
        campaign = social_row({
            "campaign_id": 42,
            "campaign_name": "Summer",
            "spend": "120.50",
            "impressions": "10000",
            "clicks": "250",
            "actions": [
                {"action_type": "click_to_call_call_confirm", "value": "2"},
                {"action_type": "lead", "value": "3"},
                {"action_type": "omni_purchase", "value": "5"},
            ],
            "action_values": [{"action_type": "omni_purchase", "value": "900"}],
        })

        assert campaign.campaign_id == "42"
        assert campaign.platform == "social"
        assert campaign.spend == 120.5
        assert campaign.impressions == 10000
        assert campaign.conversions == 10
        assert campaign.reservation_value == 900

    def test_missing_fields_default(self):
        campaign = social_row({})
        assert campaign.campaign_name == "Unknown Campaign"
        assert campaign.spend == 0.0
        assert campaign.conversions == 0


# =============================================================================
# SOCIAL CLIENT TESTS
# =============================================================================

@pytest.mark.asyncio
class TestSocialAdsClient:

    async def test_fetch_follows_paging(self, settings):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            if "after" not in str(request.url):
                return httpx.Response(200, json={
                    "data": [{"campaign_id": "1", "campaign_name": "A", "spend": "10"}],
                    "paging": {"next": "https://graph.facebook.com/v19.0/act_123/insights?after=abc"},
                })
            return httpx.Response(200, json={
                "data": [{"campaign_id": "2", "campaign_name": "B", "spend": "20"}],
            })

        client = social_client(settings, handler)
        try:
            campaigns = await client.fetch_campaigns(social_account(), JUNE)
        finally:
            await client.close()

        assert [c.campaign_id for c in campaigns] == ["1", "2"]
        first = requests[0]
        assert first.url.path == "/v19.0/act_123/insights"
        assert first.url.params["level"] == "campaign"
        assert json.loads(first.url.params["time_range"]) == {"since": "2024-06-01", "until": "2024-06-30"}
        assert first.url.params["access_token"] == "meta-token"

    async def test_oauth_error_is_credential_error(self, settings):
        def handler(request):
            return httpx.Response(400, json={"error": {"code": 190, "type": "OAuthException", "message": "expired"}})

        client = social_client(settings, handler)
        with pytest.raises(CredentialError) as exc_info:
            await client.fetch_campaigns(social_account(), JUNE)
        assert exc_info.value.platform == "social"
        await client.close()

    async def test_rate_limit_is_transient(self, settings):
        def handler(request):
            return httpx.Response(400, json={"error": {"code": 17, "message": "User request limit reached"}})

        client = social_client(settings, handler)
        with pytest.raises(TransientFetchError):
            await client.fetch_campaigns(social_account(), JUNE)
        await client.close()

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_retryable_status_is_transient(self, settings, status):
        client = social_client(settings, lambda request: httpx.Response(status))
        with pytest.raises(TransientFetchError):
            await client.fetch_campaigns(social_account(), JUNE)
        await client.close()

    async def test_network_error_is_transient(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = social_client(settings, handler)
        with pytest.raises(TransientFetchError):
            await client.fetch_campaigns(social_account(), JUNE)
        await client.close()

    async def test_no_rows_is_empty_result(self, settings):
        client = social_client(settings, lambda request: httpx.Response(200, json={"data": []}))
        with pytest.raises(EmptyResultError):
            await client.fetch_campaigns(social_account(), JUNE)
        await client.close()


# =============================================================================
# SEARCH CLIENT TESTS
# =============================================================================

class TestSearchParsing:

    def test_cost_micros_converted(self):
        campaign = search_row({
            "campaign": {"id": "9", "name": "Brand", "status": "ENABLED"},
            "metrics": {
                "costMicros": "45500000",
                "impressions": "800",
                "clicks": "40",
                "conversions": 4.0,
                "conversionsValue": 320.0,
                "phoneCalls": "2",
            },
        })

        assert campaign.spend == 45.5
        assert campaign.platform == "search"
        assert campaign.status == "ENABLED"
        assert campaign.conversions == 4.0
        assert campaign.reservation_value == 320.0
        assert campaign.phone_calls == 2


@pytest.mark.asyncio
class TestSearchAdsClient:

    async def test_fetch_search_stream(self, settings):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[
                {"results": [{"campaign": {"id": "1", "name": "A"}, "metrics": {"costMicros": "1000000"}}]},
                {"results": [{"campaign": {"id": "2", "name": "B"}, "metrics": {"costMicros": "2500000"}}]},
            ])

        client = search_client(settings, handler)
        try:
            campaigns = await client.fetch_campaigns(search_account(login="999-000-1111"), JUNE)
        finally:
            await client.close()

        assert [c.spend for c in campaigns] == [1.0, 2.5]
        assert seen["path"] == "/v16/customers/1112223333/googleAds:searchStream"
        assert seen["headers"]["authorization"] == "Bearer g-token"
        assert seen["headers"]["developer-token"] == "dev-token"
        assert seen["headers"]["login-customer-id"] == "9990001111"
        assert "BETWEEN '2024-06-01' AND '2024-06-30'" in seen["body"]["query"]

    async def test_unauthenticated_is_credential_error(self, settings):
        def handler(request):
            return httpx.Response(401, json=[{"error": {"code": 401, "status": "UNAUTHENTICATED"}}])

        client = search_client(settings, handler)
        with pytest.raises(CredentialError):
            await client.fetch_campaigns(search_account(), JUNE)
        await client.close()

    async def test_timeout_is_transient(self, settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = search_client(settings, handler)
        with pytest.raises(TransientFetchError) as exc_info:
            await client.fetch_campaigns(search_account(), JUNE)
        assert "timed out" in str(exc_info.value)
        await client.close()

    async def test_empty_stream_is_empty_result(self, settings):
        client = search_client(settings, lambda request: httpx.Response(200, json=[]))
        with pytest.raises(EmptyResultError):
            await client.fetch_campaigns(search_account(), JUNE)
        await client.close()


# =============================================================================
# STATUS MAPPING TESTS
# =============================================================================

class TestRaiseForStatus:

    def test_ok_passes(self):
        raise_for_status(httpx.Response(200), Platform.SEARCH)

    def test_auth_status(self):
        with pytest.raises(CredentialError):
            raise_for_status(httpx.Response(403), Platform.SEARCH)

    def test_other_client_error_is_not_retryable_family(self):
        with pytest.raises(PlatformError) as exc_info:
            raise_for_status(httpx.Response(400), Platform.SOCIAL, "bad field")
        assert not isinstance(exc_info.value, (CredentialError, TransientFetchError))
        assert "bad field" in str(exc_info.value)
