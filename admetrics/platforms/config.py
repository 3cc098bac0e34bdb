"""
Ad Platform Configuration

Settings for the social-ads (Meta Graph) and search-ads (Google Ads)
API clients, loaded from environment.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformSettings(BaseSettings):
    """Vendor API configuration loaded from environment."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    # Social ads (Meta Graph API)
    meta_graph_base_url: str = "https://graph.facebook.com"
    meta_graph_version: str = "v19.0"
    meta_page_size: int = 500

    # Search ads (Google Ads API)
    google_ads_base_url: str = "https://googleads.googleapis.com"
    google_ads_api_version: str = "v16"
    google_ads_developer_token: str = ""

    # Timeouts (seconds)
    platform_request_timeout: float = 25.0
    per_platform_timeout: float = 30.0

    # HTTP connection pool
    platform_max_connections: int = 20

    @property
    def is_search_configured(self) -> bool:
        return bool(self.google_ads_developer_token)


@lru_cache()
def get_platform_settings() -> PlatformSettings:
    """Get cached platform settings."""
    return PlatformSettings()
