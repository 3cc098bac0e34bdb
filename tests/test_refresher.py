"""
Tests for the background refresher.
"""

import asyncio
from datetime import timedelta

import pytest

from admetrics.metrics.coalescer import RequestCoalescer
from admetrics.metrics.errors import TransientFetchError
from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.models import Platform
from admetrics.metrics.records import MetricsRecord
from admetrics.metrics.recorder import InMemoryMetricsRecorder
from admetrics.metrics.refresher import BackgroundRefresher, RefreshState

from conftest import NOW, FakeClock, make_campaign


KEY = MetricsKey("C", Platform.SOCIAL, "2024-06")
OTHER = MetricsKey("C", Platform.SEARCH, "2024-06")


class ScriptedFetch:
    """Fetch function returning a record or a failed record."""

    def __init__(self, clock):
        self.clock = clock
        self.fail = False
        self.gate = None
        self.calls = []

    async def __call__(self, key):
        self.calls.append(key)
        if self.gate is not None:
            await self.gate.wait()
        error = TransientFetchError("503", platform=key.platform.value) if self.fail else None
        return MetricsRecord.from_campaigns(
            key,
            [] if self.fail else [make_campaign(key.platform, 10)],
            self.clock(),
            platform_errors={key.platform.value: error.to_dict() if error else None},
        )


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def fetch(clock):
    return ScriptedFetch(clock)


@pytest.fixture
def recorder():
    return InMemoryMetricsRecorder()


@pytest.fixture
def refresher(fetch, recorder, clock):
    return BackgroundRefresher(
        fetch=fetch,
        coalescer=RequestCoalescer(),
        cooldown=timedelta(minutes=5),
        recorder=recorder,
        clock=clock,
    )


# =============================================================================
# SCHEDULING TESTS
# =============================================================================

@pytest.mark.asyncio
class TestScheduling:

    async def test_schedule_runs_fetch(self, refresher, fetch, recorder):
        assert refresher.schedule_refresh(KEY)
        await refresher.wait_idle()

        assert fetch.calls == [KEY]
        assert recorder.count("refresh.success") == 1
        assert refresher.state(KEY) is RefreshState.IDLE
        assert refresher.pending == 0

    async def test_one_refresh_in_flight_per_key(self, refresher, fetch):
        fetch.gate = asyncio.Event()

        assert refresher.schedule_refresh(KEY)
        assert not refresher.schedule_refresh(KEY)
        assert refresher.schedule_refresh(OTHER)
        assert refresher.pending == 2

        fetch.gate.set()
        await refresher.wait_idle()
        assert len(fetch.calls) == 2

    async def test_state_moves_to_running(self, refresher, fetch):
        fetch.gate = asyncio.Event()

        refresher.schedule_refresh(KEY)
        assert refresher.state(KEY) is RefreshState.SCHEDULED
        await asyncio.sleep(0)
        assert refresher.state(KEY) is RefreshState.RUNNING

        fetch.gate.set()
        await refresher.wait_idle()
        assert refresher.state(KEY) is RefreshState.IDLE

    async def test_cooldown_after_success(self, refresher, fetch, clock, recorder):
        refresher.schedule_refresh(KEY)
        await refresher.wait_idle()

        clock.advance(minutes=2)
        assert not refresher.schedule_refresh(KEY)
        assert recorder.count("refresh.cooldown") == 1

        clock.advance(minutes=4)
        assert refresher.schedule_refresh(KEY)
        await refresher.wait_idle()
        assert len(fetch.calls) == 2

    async def test_expired_cooldowns_are_dropped(self, refresher, fetch, clock):
        for period in ("2024-01", "2024-02", "2024-03"):
            refresher.schedule_refresh(MetricsKey("C", Platform.SOCIAL, period))
        await refresher.wait_idle()
        assert len(refresher._last_started) == 3

        clock.advance(minutes=6)
        assert refresher.schedule_refresh(KEY)
        await refresher.wait_idle()

        assert set(refresher._last_started) == {KEY.cache_key}

    async def test_failure_clears_cooldown(self, refresher, fetch, recorder):
        fetch.fail = True
        refresher.schedule_refresh(KEY)
        await refresher.wait_idle()

        assert recorder.count("refresh.failure") == 1
        failed_key, error = refresher.recent_errors[-1]
        assert failed_key == KEY
        assert "503" in str(error)

        fetch.fail = False
        assert refresher.schedule_refresh(KEY)
        await refresher.wait_idle()
        assert recorder.count("refresh.success") == 1

    async def test_recheck_skips_fetch(self, fetch, recorder, clock):
        async def already_fresh(key):
            return False

        refresher = BackgroundRefresher(
            fetch=fetch,
            coalescer=RequestCoalescer(),
            needs_refresh=already_fresh,
            recorder=recorder,
            clock=clock,
        )
        refresher.schedule_refresh(KEY)
        await refresher.wait_idle()

        assert fetch.calls == []
        assert recorder.count("refresh.skipped") == 1

    async def test_concurrency_bounded(self, fetch, recorder, clock):
        refresher = BackgroundRefresher(
            fetch=fetch,
            coalescer=RequestCoalescer(),
            max_concurrent=1,
            recorder=recorder,
            clock=clock,
        )
        fetch.gate = asyncio.Event()

        refresher.schedule_refresh(KEY)
        refresher.schedule_refresh(OTHER)
        await asyncio.sleep(0.01)

        assert len(fetch.calls) == 1
        assert refresher.state(OTHER) is RefreshState.SCHEDULED

        fetch.gate.set()
        await refresher.wait_idle()
        assert len(fetch.calls) == 2

    async def test_aclose_cancels_outstanding(self, refresher, fetch):
        fetch.gate = asyncio.Event()
        refresher.schedule_refresh(KEY)
        await asyncio.sleep(0)

        await refresher.aclose()

        assert refresher.pending == 0
        assert refresher.state(KEY) is RefreshState.IDLE
        # Cancellation clears the cooldown
        assert refresher.schedule_refresh(KEY)
        fetch.gate.set()
        await refresher.wait_idle()


def test_schedule_requires_running_loop(refresher):
    with pytest.raises(RuntimeError):
        refresher.schedule_refresh(KEY)
