"""
Snapshot Aggregator

Keeps the latest snapshot per instrument and, once per hour during the
trading window, persists one record per instrument for that hour bucket.

Key patterns:
- record_latest() is called per normalized tick and overwrites in memory
- The hourly flush copies the latest map under the lock, then writes
  without holding it (ingestion is never paused by persistence I/O)
- (hour, day) guard: a repeated flush within one bucket is a no-op
- A write attempt marks the bucket; failures are logged and the bucket is
  missed, not retried
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from greekfeed.config.engine_config import MarketHoursConfig
from greekfeed.core.expiry import to_exchange_time
from greekfeed.core.models import InstrumentSnapshot
from greekfeed.data.hourly_snapshots import HourlySnapshotRecord, InsertResult, SnapshotSink
from greekfeed.utils.repeating_task import RepeatingTask, seconds_until_next_hour


@dataclass(slots=True)
class AggregatorStats:
    """Statistics for the snapshot aggregator."""
    flushes: int = 0
    records_written: int = 0
    duplicates_skipped: int = 0
    missed_buckets: int = 0
    last_bucket: Optional[datetime] = None


class SnapshotAggregator:
    """
    Hour-bucketed persistence of the latest instrument state.

    Args:
        sink: Persistence sink (e.g., HourlySnapshotsTable)
        config: Trading and snapshot window
        clock: Returns the current time
    """

    def __init__(
        self,
        sink: SnapshotSink,
        config: Optional[MarketHoursConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sink = sink
        self.config = config or MarketHoursConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))

        self._lock = threading.Lock()
        self._latest: Dict[str, InstrumentSnapshot] = {}
        self._last_attempt: Optional[Tuple[int, object]] = None
        self._task: Optional[RepeatingTask] = None
        self._log = logger.bind(component="aggregator")

        self.stats = AggregatorStats()

    def record_latest(self, snapshot: InstrumentSnapshot) -> None:
        """Overwrite the in-memory latest entry for the snapshot's identifier."""
        with self._lock:
            self._latest[snapshot.identifier] = snapshot

    def latest(self) -> Dict[str, InstrumentSnapshot]:
        with self._lock:
            return dict(self._latest)

    def is_within_window(self, now: datetime) -> bool:
        """
        Whether an hourly flush may run at this moment.

        The snapshot hours bound the flush, with the end hour only allowed
        up to the grace minutes; the market session (close plus one minute)
        bounds it as well.
        """
        local = to_exchange_time(now, self.tz)
        cfg = self.config

        if not cfg.snapshot_start_hour <= local.hour <= cfg.snapshot_end_hour:
            return False
        if local.hour == cfg.snapshot_end_hour and local.minute > cfg.snapshot_grace_minutes:
            return False

        market_open = datetime.combine(
            local.date(), time(cfg.market_open_hour, cfg.market_open_minute), tzinfo=self.tz
        )
        market_close = datetime.combine(
            local.date(), time(cfg.market_close_hour, cfg.market_close_minute), tzinfo=self.tz
        ) + timedelta(minutes=1)

        return market_open <= local < market_close

    def bucket_start(self, now: datetime) -> datetime:
        """Exchange-local hour start (naive) for a moment."""
        local = to_exchange_time(now, self.tz)
        return local.replace(minute=0, second=0, microsecond=0, tzinfo=None)

    async def flush(self, now: Optional[datetime] = None, respect_window: bool = True) -> Optional[InsertResult]:
        """
        Persist the latest snapshots for the current hour bucket.

        Args:
            now: Moment of the flush (defaults to the clock)
            respect_window: Skip outside the snapshot window

        Returns:
            InsertResult, or None when skipped or the write failed
        """
        now = now or self.clock()

        if respect_window and not self.is_within_window(now):
            self._log.debug(f"Outside snapshot window at {now:%H:%M}, skipping flush")
            return None

        bucket = self.bucket_start(now)
        key = (bucket.hour, bucket.date())
        if key == self._last_attempt:
            self._log.debug(f"Bucket {bucket:%Y-%m-%d %H:00} already attempted, skipping")
            return None

        latest = self.latest()
        if not latest:
            self._log.warning(f"No instruments to snapshot for bucket {bucket:%Y-%m-%d %H:00}")
            return InsertResult(inserted=0, duplicates=0)
        self._last_attempt = key

        records = [HourlySnapshotRecord.from_snapshot(s, bucket) for s in latest.values()]

        try:
            result = await asyncio.to_thread(self.sink.insert_unordered, records)
        except Exception as e:
            self.stats.missed_buckets += 1
            self._log.error(f"Hourly snapshot write failed for bucket {bucket:%Y-%m-%d %H:00}: {e}")
            return None

        self.stats.flushes += 1
        self.stats.records_written += result.inserted
        self.stats.duplicates_skipped += result.duplicates
        self.stats.last_bucket = bucket

        if result.duplicates:
            self._log.warning(
                f"Partial hourly write for {bucket:%Y-%m-%d %H:00}: "
                f"{result.inserted} inserted, {result.duplicates} duplicates skipped"
            )
        else:
            self._log.info(f"✓ Stored {result.inserted} hourly snapshots for {bucket:%Y-%m-%d %H:00}")

        return result

    async def force_flush(self, now: Optional[datetime] = None, respect_window: bool = True) -> Optional[InsertResult]:
        """Manual trigger; same window and bucket guard as the schedule."""
        self._log.info("Manual hourly snapshot flush requested")
        return await self.flush(now=now, respect_window=respect_window)

    async def start(self, run_immediately: bool = True) -> None:
        """Schedule flushes on every hour boundary."""
        if self._task is not None and self._task.is_running:
            self._log.warning("SnapshotAggregator already running")
            return

        self._task = RepeatingTask(
            callback=self.flush,
            next_delay=lambda: seconds_until_next_hour(to_exchange_time(self.clock(), self.tz)),
            name="hourly-snapshot-aggregator",
            run_immediately=run_immediately,
        )
        await self._task.start()
        self._log.info("✓ SnapshotAggregator started")

    async def stop(self) -> None:
        """Cancel the schedule."""
        if self._task is not None:
            await self._task.stop()
            self._task = None
        self._log.info("✓ SnapshotAggregator stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running
