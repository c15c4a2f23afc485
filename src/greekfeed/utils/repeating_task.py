"""
Repeating task with explicit start/stop.

Runs an async callback, then sleeps for the delay computed by next_delay,
and repeats until stopped. stop() sets the cancellation event so a pending
sleep ends immediately and the loop exits.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from loguru import logger


def seconds_until_next_hour(now: datetime) -> float:
    """Seconds from now to the next hour boundary (never zero)."""
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return max((next_hour - now).total_seconds(), 0.001)


class RepeatingTask:
    """
    Ticker plus cancellation token.

    Args:
        callback: Coroutine function run on every tick
        next_delay: Returns the seconds to wait before the next tick
        name: Name used in logs
        run_immediately: Run the callback once on start before waiting
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        next_delay: Callable[[], float],
        name: str = "repeating-task",
        run_immediately: bool = False,
    ):
        self.callback = callback
        self.next_delay = next_delay
        self.name = name
        self.run_immediately = run_immediately

        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            logger.warning(f"{self.name} already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.debug(f"{self.name} started")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.debug(f"{self.name} stopped")

    async def _loop(self) -> None:
        if self.run_immediately:
            await self._run_once()

        while not self._stop_event.is_set():
            delay = self.next_delay()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            await self._run_once()

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"{self.name} run failed: {e}")
