"""
Request Coalescing

Concurrent callers asking for the same key share one upstream call.
A dashboard load, a scheduled email and a manual refresh can race for
the same key within seconds; each upstream fetch is slow and rate-limited.

Scope is one process. Across processes the warm tier's upsert keeps
duplicate fetches harmless.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict


logger = logging.getLogger(__name__)


@dataclass
class _InFlight:
    task: asyncio.Task
    waiters: int = 0


class RequestCoalescer:
    """
    At most one running call per key.

    Usage:
        coalescer = RequestCoalescer()
        record = await coalescer.run_once(key, lambda: fetch(key))

    Every waiter receives the same result or the same exception. A waiter
    that gets cancelled stops waiting, but the shared call keeps running
    for the others (and for its own side effects, like cache writes).
    """

    def __init__(self):
        self._in_flight: Dict[str, _InFlight] = {}
        self._lock = threading.Lock()
        self._started = 0
        self._joined = 0

    async def run_once(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        with self._lock:
            entry = self._in_flight.get(key)
            if entry is None:
                task = asyncio.ensure_future(fn())
                entry = _InFlight(task=task)
                self._in_flight[key] = entry
                self._started += 1
                task.add_done_callback(lambda t, k=key: self._on_done(k, t))
            else:
                self._joined += 1
                logger.debug(f"Joining in-flight request for {key}")
            entry.waiters += 1

        try:
            return await asyncio.shield(entry.task)
        finally:
            with self._lock:
                entry.waiters -= 1

    def _on_done(self, key: str, task: asyncio.Task):
        # Runs after the result is set, so every registered waiter can read it.
        with self._lock:
            entry = self._in_flight.get(key)
            if entry is not None and entry.task is task:
                del self._in_flight[key]

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Coalesced request for {key} failed: {error!r}")

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def waiters(self, key: str) -> int:
        with self._lock:
            entry = self._in_flight.get(key)
            return entry.waiters if entry else 0

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "in_flight": len(self._in_flight),
                "started": self._started,
                "joined": self._joined,
            }
