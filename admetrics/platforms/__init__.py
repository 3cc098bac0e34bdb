"""
Ad Platform Clients

- SocialAdsClient: Meta Graph API campaign insights
- SearchAdsClient: Google Ads searchStream campaign rows
"""

from admetrics.platforms.config import PlatformSettings, get_platform_settings
from admetrics.platforms.social import SocialAdsClient
from admetrics.platforms.search import SearchAdsClient

__all__ = [
    "PlatformSettings",
    "get_platform_settings",
    "SocialAdsClient",
    "SearchAdsClient",
]
