"""
Metrics Recorder

Counters and latency histograms owned by one orchestrator instance.
Swap in an adapter for a real metrics backend by implementing
increment() and observe().
"""

import threading
from collections import defaultdict, deque
from typing import Deque, Dict, Protocol


class MetricsRecorder(Protocol):
    """Minimal counter/histogram interface."""

    def increment(self, name: str, value: int = 1) -> None:
        ...

    def observe(self, name: str, value: float) -> None:
        ...


class InMemoryMetricsRecorder:
    """
    Process-local recorder.

    Keeps the last `max_samples` observations per histogram, like the
    latency sampling in the Redis cache stats.
    """

    def __init__(self, max_samples: int = 1000):
        self._counters: Dict[str, int] = defaultdict(int)
        self._samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max_samples))
        self._lock = threading.Lock()

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._samples[name].append(value)

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def average(self, name: str, last: int = 100) -> float:
        with self._lock:
            samples = list(self._samples.get(name, ()))[-last:]
        if not samples:
            return 0.0
        return sum(samples) / len(samples)

