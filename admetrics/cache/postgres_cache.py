"""
Warm Tier on PostgreSQL

Durable metrics records in the metrics_cache table, one row per
(client_id, platform, period_id).

- Reads: single indexed query; errors degrade to a miss
- Writes: atomic INSERT ... ON CONFLICT DO UPDATE (PostgreSQL, SQLite),
  committed before upsert() returns; failures raise CacheWriteError
- Blocking session work runs in a worker thread via asyncio.to_thread
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from admetrics.database.models import MetricsCacheEntry
from admetrics.metrics.errors import CacheWriteError
from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.records import MetricsRecord


logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SQLAlchemyWarmStore:
    """
    Warm tier backed by a SQLAlchemy session factory.

    Each operation opens and closes its own session.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "errors": 0,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, key: MetricsKey) -> Optional[MetricsRecord]:
        return await asyncio.to_thread(self._get, key)

    def _get(self, key: MetricsKey) -> Optional[MetricsRecord]:
        db = self.session_factory()
        try:
            row = db.query(MetricsCacheEntry).filter(
                MetricsCacheEntry.client_id == key.client_id,
                MetricsCacheEntry.platform == key.platform.value,
                MetricsCacheEntry.period_id == key.period_id,
            ).first()
            data = row.data if row is not None else None
        except SQLAlchemyError as e:
            self._stats["errors"] += 1
            logger.error(f"Warm tier read failed for {key}: {e}")
            return None
        finally:
            db.close()

        if data is None:
            self._stats["misses"] += 1
            return None

        try:
            record = MetricsRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            self._stats["errors"] += 1
            logger.warning(f"Discarding unreadable warm record for {key}: {e}")
            return None

        self._stats["hits"] += 1
        return record

    # =========================================================================
    # Writes
    # =========================================================================

    async def upsert(self, key: MetricsKey, record: MetricsRecord) -> None:
        await asyncio.to_thread(self._upsert, key, record)

    def _upsert(self, key: MetricsKey, record: MetricsRecord) -> None:
        if record.key != key:
            raise CacheWriteError(f"Record key {record.key} does not match {key}")

        values = _row_values(key, record)
        db = self.session_factory()
        try:
            insert = _DIALECT_INSERTS.get(db.get_bind().dialect.name)
            if insert is not None:
                stmt = insert(MetricsCacheEntry).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["client_id", "platform", "period_id"],
                    set_={
                        "data": stmt.excluded.data,
                        "fetched_at": stmt.excluded.fetched_at,
                        "campaign_count": stmt.excluded.campaign_count,
                    },
                )
                db.execute(stmt)
            else:
                self._query_then_upsert(db, values)

            db.commit()
            self._stats["writes"] += 1
            logger.debug(f"Warm tier stored {key} ({values['campaign_count']} campaigns)")

        except SQLAlchemyError as e:
            db.rollback()
            self._stats["errors"] += 1
            logger.error(f"Warm tier write failed for {key}: {e}")
            raise CacheWriteError(f"warm tier write failed for {key}: {e}") from e
        finally:
            db.close()

    @staticmethod
    def _query_then_upsert(db: Session, values: Dict[str, Any]) -> None:
        existing = db.query(MetricsCacheEntry).filter(
            MetricsCacheEntry.client_id == values["client_id"],
            MetricsCacheEntry.platform == values["platform"],
            MetricsCacheEntry.period_id == values["period_id"],
        ).with_for_update().first()

        if existing:
            existing.data = values["data"]
            existing.fetched_at = values["fetched_at"]
            existing.campaign_count = values["campaign_count"]
        else:
            db.add(MetricsCacheEntry(**values))

    # =========================================================================
    # Invalidation
    # =========================================================================

    async def delete_client(self, client_id: str) -> int:
        return await asyncio.to_thread(self._delete_client, client_id)

    def _delete_client(self, client_id: str) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(MetricsCacheEntry).filter(
                MetricsCacheEntry.client_id == client_id
            ).delete(synchronize_session=False)
            db.commit()
            logger.info(f"Invalidated {deleted} warm records for client {client_id}")
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            self._stats["errors"] += 1
            logger.error(f"Warm tier invalidation failed for {client_id}: {e}")
            raise CacheWriteError(f"warm tier invalidation failed for {client_id}: {e}") from e
        finally:
            db.close()

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    async def count(self) -> int:
        return await asyncio.to_thread(self._count)

    def _count(self, raise_errors: bool = False) -> int:
        db = self.session_factory()
        try:
            return db.query(MetricsCacheEntry).count()
        except SQLAlchemyError as e:
            if raise_errors:
                raise
            logger.warning(f"Warm tier count failed: {e}")
            return 0
        finally:
            db.close()

    def get_stats(self) -> Dict:
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0

        return {
            "backend": "sqlalchemy",
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "writes": self._stats["writes"],
            "errors": self._stats["errors"],
            "hit_rate_percent": round(hit_rate, 2),
        }

    async def health_check(self) -> Dict:
        try:
            count = await asyncio.to_thread(self._count, True)
            return {
                "healthy": True,
                "status": "connected",
                "cached_entries": count,
                "backend": "sqlalchemy",
            }
        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "error": str(e),
                "backend": "sqlalchemy",
            }


def _row_values(key: MetricsKey, record: MetricsRecord) -> Dict[str, Any]:
    data = record.to_dict(include_response_fields=False)
    return {
        "client_id": key.client_id,
        "platform": key.platform.value,
        "period_id": key.period_id,
        "data": data,
        "fetched_at": data["fetched_at"],
        "campaign_count": len(record.campaigns),
    }
