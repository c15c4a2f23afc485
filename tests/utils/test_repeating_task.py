"""
Tests for RepeatingTask and hour-boundary scheduling.
"""

import asyncio
from datetime import datetime

import pytest

from greekfeed.utils.repeating_task import RepeatingTask, seconds_until_next_hour


class TestSecondsUntilNextHour:
    """Test suite for seconds_until_next_hour."""

    def test_mid_hour(self):
        assert seconds_until_next_hour(datetime(2024, 5, 20, 10, 30)) == 1800.0

    def test_exact_hour_waits_full_hour(self):
        assert seconds_until_next_hour(datetime(2024, 5, 20, 10, 0)) == 3600.0

    def test_crosses_midnight(self):
        assert seconds_until_next_hour(datetime(2024, 5, 20, 23, 59, 30)) == 30.0


class TestRepeatingTask:
    """Test suite for RepeatingTask."""

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        task = RepeatingTask(tick, next_delay=lambda: 0.01, name="test-ticker")
        await task.start()
        await asyncio.sleep(0.1)
        await task.stop()

        assert len(calls) >= 2
        assert task.runs == len(calls)
        assert not task.is_running

        settled = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == settled

    @pytest.mark.asyncio
    async def test_run_immediately(self):
        calls = []

        async def tick():
            calls.append(1)

        task = RepeatingTask(tick, next_delay=lambda: 60.0, run_immediately=True)
        await task.start()
        await asyncio.sleep(0.02)

        assert calls == [1]
        await task.stop()

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_loop(self):
        async def boom():
            raise RuntimeError("flush failed")

        task = RepeatingTask(boom, next_delay=lambda: 0.01)
        await task.start()
        await asyncio.sleep(0.08)
        await task.stop()

        assert task.failures >= 2
        assert task.failures == task.runs

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_wait(self):
        async def tick():
            pass

        task = RepeatingTask(tick, next_delay=lambda: 3600.0)
        await task.start()
        await asyncio.wait_for(task.stop(), timeout=1)
        assert task.runs == 0

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self):
        async def tick():
            pass

        task = RepeatingTask(tick, next_delay=lambda: 3600.0)
        await task.start()
        first = task._task
        await task.start()
        assert task._task is first
        await task.stop()
