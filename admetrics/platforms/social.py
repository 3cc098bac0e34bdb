"""
Social Ads Client (Meta Graph API)

Campaign-level insights for an ad account over a date range:
- One GET to /act_{id}/insights with level=campaign, following paging
- actions / action_values converted into conversion sub-metrics
- No retries: a failed call is reported and retried on a later request
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from admetrics.metrics.errors import (
    CredentialError,
    EmptyResultError,
    PlatformError,
    TransientFetchError,
)
from admetrics.metrics.models import AccountRef, Campaign, DateRange, Platform
from admetrics.platforms.base import raise_for_status, to_float, to_int, transport_error
from admetrics.platforms.config import PlatformSettings, get_platform_settings


logger = logging.getLogger(__name__)


# Metric -> action types in priority order. Meta reports the same event
# under several names; only the first one present is counted.
ACTION_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "click_to_call": ("click_to_call_call_confirm", "click_to_call_native_call_placed"),
    "email_contacts": ("onsite_conversion.lead_grouped", "lead"),
    "form_submissions": ("offsite_conversion.fb_pixel_lead", "offsite_conversion.fb_pixel_complete_registration"),
    "booking_step_1": ("omni_search", "offsite_conversion.fb_pixel_search"),
    "booking_step_2": ("omni_view_content", "offsite_conversion.fb_pixel_view_content"),
    "booking_step_3": ("omni_initiated_checkout", "offsite_conversion.fb_pixel_initiate_checkout"),
    "reservations": ("omni_purchase", "offsite_conversion.fb_pixel_purchase"),
}

ACTION_VALUE_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "reservation_value": ("omni_purchase", "offsite_conversion.fb_pixel_purchase"),
}

# Graph API error codes
OAUTH_ERROR_CODES = {102, 190}
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613, 80004}

INSIGHT_FIELDS = "campaign_id,campaign_name,spend,impressions,clicks,actions,action_values"


def parse_actions(
    actions: Optional[Iterable[Dict[str, Any]]],
    priority: Dict[str, Tuple[str, ...]],
) -> Dict[str, float]:
    """Resolve Meta action lists into metric values using the priority table."""
    by_type: Dict[str, float] = {}
    for action in actions or []:
        action_type = str(action.get("action_type", "")).lower()
        value = to_float(action.get("value"))
        if value < 0:
            continue
        by_type[action_type] = by_type.get(action_type, 0.0) + value

    resolved = {}
    for metric, candidates in priority.items():
        for action_type in candidates:
            if action_type in by_type:
                resolved[metric] = by_type[action_type]
                break
    return resolved


def row_to_campaign(row: Dict[str, Any]) -> Campaign:
    """Convert one insights row into a Campaign."""
    metrics = parse_actions(row.get("actions"), ACTION_PRIORITY)
    metrics.update(parse_actions(row.get("action_values"), ACTION_VALUE_PRIORITY))

    campaign = Campaign(
        campaign_id=str(row.get("campaign_id", "")),
        campaign_name=row.get("campaign_name") or "Unknown Campaign",
        platform=Platform.SOCIAL.value,
        spend=to_float(row.get("spend")),
        impressions=to_int(row.get("impressions")),
        clicks=to_int(row.get("clicks")),
        **metrics,
    )
    # Contacts and purchases count as conversions
    campaign.conversions = campaign.click_to_call + campaign.email_contacts + campaign.reservations

    if campaign.booking_step_2 > campaign.booking_step_1 > 0:
        logger.debug(f"Funnel inversion in campaign {campaign.campaign_name!r}: step 2 > step 1")
    return campaign


class SocialAdsClient:
    """
    Async client for Meta campaign insights.

    Usage:
        client = SocialAdsClient()
        campaigns = await client.fetch_campaigns(account, date_range)
        await client.close()
    """

    platform = Platform.SOCIAL

    def __init__(
        self,
        settings: Optional[PlatformSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_platform_settings()
        self._client = httpx.AsyncClient(
            base_url=f"{self.settings.meta_graph_base_url}/{self.settings.meta_graph_version}",
            limits=httpx.Limits(max_connections=self.settings.platform_max_connections),
            timeout=httpx.Timeout(self.settings.platform_request_timeout),
            transport=transport,
        )

    async def fetch_campaigns(self, account: AccountRef, date_range: DateRange) -> List[Campaign]:
        account_id = account.account_id
        if not account_id.startswith("act_"):
            account_id = f"act_{account_id}"

        params = {
            "level": "campaign",
            "fields": INSIGHT_FIELDS,
            "time_range": json.dumps({
                "since": date_range.start.isoformat(),
                "until": date_range.end.isoformat(),
            }),
            "limit": self.settings.meta_page_size,
            "access_token": account.access_token,
        }

        rows: List[Dict[str, Any]] = []
        url: Optional[str] = f"/{account_id}/insights"
        while url:
            payload = await self._get(url, params)
            rows.extend(payload.get("data") or [])
            url = (payload.get("paging") or {}).get("next")
            # The next-page URL already carries every parameter
            params = None

        if not rows:
            raise EmptyResultError(
                f"No social campaigns for {account_id} in {date_range.start}..{date_range.end}",
                platform=self.platform.value,
            )

        logger.debug(f"Fetched {len(rows)} social campaign rows for {account_id}")
        return [row_to_campaign(row) for row in rows]

    async def _get(self, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise transport_error(e, self.platform) from e

        payload = _json_or_empty(response)
        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            code = error.get("code")
            message = f"social API error {code}: {error.get('message', 'unknown')}"
            if code in OAUTH_ERROR_CODES or error.get("type") == "OAuthException":
                raise CredentialError(message, platform=self.platform.value, status_code=response.status_code)
            if code in RATE_LIMIT_ERROR_CODES:
                raise TransientFetchError(message, platform=self.platform.value, status_code=response.status_code)
            if response.status_code < 400:
                raise PlatformError(message, platform=self.platform.value, status_code=response.status_code)

        raise_for_status(response, self.platform)
        return payload

    async def close(self):
        await self._client.aclose()


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
