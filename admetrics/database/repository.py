"""
Client Registry

Looks up per-client platform accounts in the ad_clients table. Serves as
the CredentialsProvider for the aggregator and the client list for
scheduled warming.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from admetrics.metrics.models import AccountRef, Platform
from .models import AdClient

logger = logging.getLogger(__name__)


class ClientRepository:
    """Read access to client platform accounts."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def get_account(self, client_id: str, platform: Platform) -> Optional[AccountRef]:
        return await asyncio.to_thread(self._get_account, client_id, platform)

    def _get_account(self, client_id: str, platform: Platform) -> Optional[AccountRef]:
        db = self.session_factory()
        try:
            client = db.query(AdClient).filter(AdClient.client_id == client_id).first()
        finally:
            db.close()

        if client is None:
            logger.debug(f"Unknown client {client_id}")
            return None
        return account_for(client, platform)

    async def list_active_client_ids(self) -> List[str]:
        return await asyncio.to_thread(self._list_active_client_ids)

    def _list_active_client_ids(self) -> List[str]:
        db = self.session_factory()
        try:
            rows = (
                db.query(AdClient.client_id)
                .filter(AdClient.is_active.is_(True))
                .order_by(AdClient.client_id)
                .all()
            )
        finally:
            db.close()
        return [row[0] for row in rows]


def account_for(client: AdClient, platform: Platform) -> Optional[AccountRef]:
    """Account reference for one platform, or None when not configured."""
    if platform == Platform.SOCIAL:
        if not client.meta_ad_account_id or not client.meta_access_token:
            return None
        return AccountRef(
            platform=Platform.SOCIAL,
            account_id=client.meta_ad_account_id,
            access_token=client.meta_access_token,
        )

    if platform == Platform.SEARCH:
        if not client.google_customer_id or not client.google_access_token:
            return None
        extra = {}
        if client.google_login_customer_id:
            extra["login_customer_id"] = client.google_login_customer_id
        return AccountRef(
            platform=Platform.SEARCH,
            account_id=client.google_customer_id,
            access_token=client.google_access_token,
            extra=extra,
        )

    return None
