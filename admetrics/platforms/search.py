"""
Search Ads Client (Google Ads API)

Campaign rows for a customer over a date range via googleAds:searchStream.
Costs arrive in micros and are converted to currency units.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from admetrics.metrics.errors import CredentialError, EmptyResultError
from admetrics.metrics.models import AccountRef, Campaign, DateRange, Platform
from admetrics.platforms.base import raise_for_status, to_float, to_int, transport_error
from admetrics.platforms.config import PlatformSettings, get_platform_settings


logger = logging.getLogger(__name__)


CAMPAIGN_QUERY = """
SELECT
  campaign.id,
  campaign.name,
  campaign.status,
  metrics.cost_micros,
  metrics.impressions,
  metrics.clicks,
  metrics.conversions,
  metrics.conversions_value,
  metrics.phone_calls
FROM campaign
WHERE segments.date BETWEEN '{start}' AND '{end}'
""".strip()

MICROS = 1_000_000


def row_to_campaign(row: Dict[str, Any]) -> Campaign:
    """Convert one searchStream result row into a Campaign."""
    campaign = row.get("campaign") or {}
    metrics = row.get("metrics") or {}

    conversions = to_float(metrics.get("conversions"))
    return Campaign(
        campaign_id=str(campaign.get("id", "")),
        campaign_name=campaign.get("name") or "Unknown Campaign",
        platform=Platform.SEARCH.value,
        status=campaign.get("status") or "UNKNOWN",
        spend=to_float(metrics.get("costMicros")) / MICROS,
        impressions=to_int(metrics.get("impressions")),
        clicks=to_int(metrics.get("clicks")),
        conversions=conversions,
        phone_calls=to_float(metrics.get("phoneCalls")),
        reservations=conversions,
        reservation_value=to_float(metrics.get("conversionsValue")),
    )


class SearchAdsClient:
    """
    Async client for Google Ads campaign metrics.

    The account's access token must already be valid; token refresh
    belongs to the credential store, not to this client.
    """

    platform = Platform.SEARCH

    def __init__(
        self,
        settings: Optional[PlatformSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_platform_settings()
        self._client = httpx.AsyncClient(
            base_url=f"{self.settings.google_ads_base_url}/{self.settings.google_ads_api_version}",
            limits=httpx.Limits(max_connections=self.settings.platform_max_connections),
            timeout=httpx.Timeout(self.settings.platform_request_timeout),
            transport=transport,
        )

    async def fetch_campaigns(self, account: AccountRef, date_range: DateRange) -> List[Campaign]:
        customer_id = account.account_id.replace("-", "")
        headers = {
            "Authorization": f"Bearer {account.access_token}",
            "developer-token": self.settings.google_ads_developer_token,
        }
        login_customer_id = account.extra.get("login_customer_id")
        if login_customer_id:
            headers["login-customer-id"] = login_customer_id.replace("-", "")

        query = CAMPAIGN_QUERY.format(
            start=date_range.start.isoformat(),
            end=date_range.end.isoformat(),
        )

        try:
            response = await self._client.post(
                f"/customers/{customer_id}/googleAds:searchStream",
                json={"query": query},
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise transport_error(e, self.platform) from e

        payload = _json_or_none(response)
        status = _error_status(payload)
        if status in ("UNAUTHENTICATED", "PERMISSION_DENIED"):
            raise CredentialError(
                f"search API rejected credentials: {status}",
                platform=self.platform.value,
                status_code=response.status_code,
            )
        raise_for_status(response, self.platform)

        # searchStream answers with a list of batches
        batches = payload if isinstance(payload, list) else [payload or {}]
        rows = [row for batch in batches for row in (batch.get("results") or [])]

        if not rows:
            raise EmptyResultError(
                f"No search campaigns for {customer_id} in {date_range.start}..{date_range.end}",
                platform=self.platform.value,
            )

        logger.debug(f"Fetched {len(rows)} search campaign rows for {customer_id}")
        return [row_to_campaign(row) for row in rows]

    async def close(self):
        await self._client.aclose()


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_status(payload: Any) -> Optional[str]:
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("status")
    return None
