"""
Platform Client Contracts

Each ad platform is reached through a PlatformClient that returns
normalized Campaign rows. Clients apply their own request timeout and
raise typed errors:

- CredentialError: auth invalid or expired (not retried this session)
- TransientFetchError: network, timeout, rate limit (retry on a later call)
- EmptyResultError: no rows for the range (retry on a later call)
"""

import logging
from typing import List, Optional, Protocol

import httpx

from admetrics.metrics.errors import CredentialError, PlatformError, TransientFetchError
from admetrics.metrics.models import AccountRef, Campaign, DateRange, Platform


logger = logging.getLogger(__name__)


class PlatformClient(Protocol):
    """Fetches campaign metrics from one ad platform."""

    platform: Platform

    async def fetch_campaigns(self, account: AccountRef, date_range: DateRange) -> List[Campaign]:
        ...


class CredentialsProvider(Protocol):
    """Looks up a client's account on a platform. None means not configured."""

    async def get_account(self, client_id: str, platform: Platform) -> Optional[AccountRef]:
        ...


RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)
AUTH_STATUS_CODES = (401, 403)


def raise_for_status(response: httpx.Response, platform: Platform, detail: str = "") -> None:
    """Map an HTTP error response onto the platform error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    message = f"{platform.value} API returned {status}"
    if detail:
        message = f"{message}: {detail}"

    if status in AUTH_STATUS_CODES:
        raise CredentialError(message, platform=platform.value, status_code=status)
    if status in RETRYABLE_STATUS_CODES:
        raise TransientFetchError(message, platform=platform.value, status_code=status)
    raise PlatformError(message, platform=platform.value, status_code=status)


def transport_error(error: Exception, platform: Platform) -> TransientFetchError:
    """Wrap an httpx transport failure."""
    if isinstance(error, httpx.TimeoutException):
        return TransientFetchError(f"{platform.value} API timed out", platform=platform.value)
    return TransientFetchError(f"{platform.value} API unreachable: {error}", platform=platform.value)


def to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def to_int(value) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0
