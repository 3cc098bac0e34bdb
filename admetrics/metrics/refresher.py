"""
Background Refresh

Stale-but-usable records are served at once and refreshed behind the
caller's back. Per key:

    IDLE -> SCHEDULED -> RUNNING -> IDLE

- Only one refresh per key is scheduled or running at a time
- A key that started refreshing within `cooldown` is not rescheduled;
  a failed refresh clears the cooldown so the next request retries
- The upstream call goes through the shared RequestCoalescer, so a
  refresh and a live request for the same key share one fetch
- Tasks are owned by the refresher; failures are logged, counted and
  kept in `recent_errors`, never raised to the request that scheduled them
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, Optional, Set, Tuple

from admetrics.metrics.coalescer import RequestCoalescer
from admetrics.metrics.freshness import utc_now
from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.recorder import InMemoryMetricsRecorder, MetricsRecorder
from admetrics.metrics.records import MetricsRecord


logger = logging.getLogger(__name__)


class RefreshState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class RefreshFailed(Exception):
    """The platform answered a background refresh with an error."""


class BackgroundRefresher:
    """
    Supervised fire-and-forget refreshes.

    Args:
        fetch: Fetches one key and writes it through both tiers. The same
            callable serves live requests, so both paths coalesce.
        needs_refresh: Re-checks the warm tier just before fetching.
            Returning False skips the upstream call.
    """

    def __init__(
        self,
        fetch: Callable[[MetricsKey], Awaitable[MetricsRecord]],
        coalescer: RequestCoalescer,
        needs_refresh: Optional[Callable[[MetricsKey], Awaitable[bool]]] = None,
        cooldown: timedelta = timedelta(minutes=5),
        max_concurrent: int = 4,
        recorder: Optional[MetricsRecorder] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.fetch = fetch
        self.coalescer = coalescer
        self.needs_refresh = needs_refresh
        self.cooldown = cooldown
        self.recorder = recorder or InMemoryMetricsRecorder()
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._states: Dict[str, RefreshState] = {}
        self._last_started: Dict[str, datetime] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.recent_errors: Deque[Tuple[MetricsKey, BaseException]] = deque(maxlen=100)

    def state(self, key: MetricsKey) -> RefreshState:
        return self._states.get(key.cache_key, RefreshState.IDLE)

    def schedule_refresh(self, key: MetricsKey) -> bool:
        """
        Schedule a refresh without waiting for it.

        Must be called from a running event loop. Returns True if a new
        refresh was scheduled.
        """
        name = key.cache_key
        if self.state(key) is not RefreshState.IDLE:
            logger.debug(f"Refresh already {self.state(key).value} for {name}")
            return False

        now = self.clock()
        self._prune_cooldowns(now)
        last = self._last_started.get(name)
        if last is not None and now - last < self.cooldown:
            logger.debug(f"Refresh for {name} in cooldown")
            self.recorder.increment("refresh.cooldown")
            return False

        loop = asyncio.get_running_loop()
        self._states[name] = RefreshState.SCHEDULED
        self._last_started[name] = now
        task = loop.create_task(self._run(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.recorder.increment("refresh.scheduled")
        logger.info(f"Scheduled background refresh for {name}")
        return True

    def _prune_cooldowns(self, now: datetime) -> None:
        expired = [
            name for name, started in self._last_started.items()
            if now - started >= self.cooldown and name not in self._states
        ]
        for name in expired:
            del self._last_started[name]

    async def _run(self, key: MetricsKey) -> None:
        name = key.cache_key
        start_time = time.perf_counter()
        try:
            async with self._semaphore:
                self._states[name] = RefreshState.RUNNING

                if self.needs_refresh is not None and not await self.needs_refresh(key):
                    logger.info(f"Skipping refresh for {name}: refreshed elsewhere")
                    self.recorder.increment("refresh.skipped")
                    return

                record = await self.coalescer.run_once(name, lambda: self.fetch(key))
                error = record.platform_errors.get(key.platform.value)
                if error is not None:
                    raise RefreshFailed(error.get("message", "platform fetch failed"))

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            self.recorder.increment("refresh.success")
            self.recorder.observe("refresh.latency_ms", elapsed_ms)
            logger.info(f"Background refresh for {name} completed in {elapsed_ms:.0f}ms")

        except asyncio.CancelledError:
            self._last_started.pop(name, None)
            raise
        except Exception as e:
            self._last_started.pop(name, None)
            self.recent_errors.append((key, e))
            self.recorder.increment("refresh.failure")
            logger.error(f"Background refresh for {name} failed: {e}")
        finally:
            self._states.pop(name, None)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every scheduled refresh has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding refreshes."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Background refresher stopped ({len(tasks)} cancelled)")
