"""
Cache Warming Service

Keeps current-period records warm so dashboards and scheduled reports
rarely wait on a live fetch.

Every `warming_interval` the warmer walks all active clients in small
batches and refreshes the current month and current ISO week for each
platform, skipping records younger than `warming_fresh_margin`.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from admetrics.cache.config import CacheConfig, get_cache_config
from admetrics.metrics.freshness import utc_now
from admetrics.metrics.keys import current_month_range, current_week_range
from admetrics.metrics.models import Platform


logger = logging.getLogger(__name__)


class ClientSource(Protocol):

    async def list_active_client_ids(self) -> List[str]:
        ...


@dataclass
class WarmingReport:
    """Outcome of one warming pass."""
    clients: int = 0
    refreshed: int = 0
    skipped: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "clients": self.clients,
            "refreshed": self.refreshed,
            "skipped": self.skipped,
            "errors": dict(self.errors),
        }


class CacheWarmer:
    """
    Periodic refresh of current-period records for active clients.

    `orchestrator` only needs refresh_if_stale(); MetricsOrchestrator
    provides it.
    """

    def __init__(
        self,
        orchestrator,
        clients: ClientSource,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        batch_delay: timedelta = timedelta(seconds=2),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.clients = clients
        self._config = config or get_cache_config()
        self.clock = clock
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def warm_client(self, client_id: str, report: WarmingReport) -> None:
        now = self.clock()
        for date_range in (current_month_range(now), current_week_range(now)):
            fetched = await self.orchestrator.refresh_if_stale(
                client_id,
                Platform.BOTH,
                date_range,
                fresh_margin=self._config.warming_fresh_margin,
            )
            report.refreshed += fetched
            report.skipped += len(Platform.concrete()) - fetched

    async def refresh_current_periods(self) -> WarmingReport:
        """One warming pass over every active client."""
        report = WarmingReport()
        client_ids = await self.clients.list_active_client_ids()
        report.clients = len(client_ids)

        batch_size = max(1, self._config.warming_batch_size)
        batches = [client_ids[i:i + batch_size] for i in range(0, len(client_ids), batch_size)]

        for index, batch in enumerate(batches, start=1):
            logger.info(f"Warming batch {index}/{len(batches)}: {batch}")
            outcomes = await asyncio.gather(
                *(self.warm_client(client_id, report) for client_id in batch),
                return_exceptions=True,
            )
            for client_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Failed to warm client {client_id}: {outcome}")
                    report.errors[client_id] = str(outcome)

            # Spread vendor API load between batches
            if index < len(batches) and self.batch_delay > timedelta(0):
                await self._sleep(self.batch_delay.total_seconds())

        logger.info(
            f"Warming pass complete: {report.clients} clients, "
            f"{report.refreshed} refreshed, {report.skipped} already fresh, "
            f"{len(report.errors)} errors"
        )
        return report

    @property
    def running(self) -> bool:
        return self._running

    async def start_background_warmer(
        self,
        interval_seconds: Optional[int] = None,
    ):
        """Start the periodic warming task."""
        if self._running:
            logger.warning("Background warmer already running")
            return

        interval = interval_seconds or int(self._config.warming_interval.total_seconds())
        self._running = True

        async def warming_loop():
            while self._running:
                try:
                    logger.info("Running background cache warming...")
                    await self.refresh_current_periods()
                    logger.info(f"Background warming complete, sleeping for {interval}s")
                except Exception as e:
                    logger.error(f"Background warming error: {e}")

                await self._sleep(interval)

        self._task = asyncio.create_task(warming_loop())
        logger.info(f"Background cache warmer started (interval: {interval}s)")

    async def stop_background_warmer(self):
        """Stop the periodic warming task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Background cache warmer stopped")
