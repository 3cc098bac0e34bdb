"""
SQLAlchemy Models for the Metrics Layer

Two tables:
1. ad_clients: per-client platform account references and tokens
2. metrics_cache: warm-tier records, one row per (client, platform, period)
"""

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, Text, JSON,
    Index, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in development)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# CLIENTS
# =============================================================================

class AdClient(Base):
    """
    A client whose ad accounts we report on.

    A platform with no account id or token is not configured for the
    client and is skipped when fetching.
    """
    __tablename__ = "ad_clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)

    # Social ads (Meta)
    meta_ad_account_id = Column(String(64))
    meta_access_token = Column(Text)

    # Search ads (Google Ads)
    google_customer_id = Column(String(64))
    google_login_customer_id = Column(String(64))
    google_access_token = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<AdClient {self.client_id}>"


# =============================================================================
# WARM CACHE
# =============================================================================

class MetricsCacheEntry(Base):
    """
    Warm-tier metrics record.

    `data` holds the serialized MetricsRecord; fetched_at is duplicated as
    a column for inspection and is stored verbatim as text so that a
    corrupt value survives the round trip and reads as stale.
    """
    __tablename__ = "metrics_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(String(255), nullable=False)
    platform = Column(String(20), nullable=False)
    period_id = Column(String(64), nullable=False)

    data = Column(JSONType, nullable=False)
    fetched_at = Column(String(64))
    campaign_count = Column(Integer, default=0)

    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("client_id", "platform", "period_id", name="uq_metrics_cache_key"),
        Index("idx_metrics_cache_client", "client_id"),
    )

    def __repr__(self):
        return f"<MetricsCacheEntry {self.client_id}:{self.platform}:{self.period_id}>"
