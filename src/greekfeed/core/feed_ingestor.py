"""
Feed Ingestor

Background daemon that drains a FeedSource, normalizes each tick batch,
updates the live tables, hands snapshots to the aggregator and pushes each
normalized batch to subscribers.

**Pattern:**
- start()/stop() own a single asyncio task
- Feed failures back off exponentially (base delay, doubling, capped) and
  reconnect; the live table is never cleared, stale data beats no data
- Normalization is synchronous per batch; per-tick failures are dropped
  inside the normalizer
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set, Union

from loguru import logger

from greekfeed.config.engine_config import FeedConfig
from greekfeed.core.models import InstrumentClass, InstrumentSnapshot
from greekfeed.core.tick_normalizer import TickNormalizer
from greekfeed.data.feed_sources import FeedSource
from greekfeed.data.instrument_registry import InstrumentRegistry
from greekfeed.data.live_table import LiveInstrumentTable, SpotPriceTable

SPOT_CLASSES = (InstrumentClass.SPOT_INDEX, InstrumentClass.STOCK)


@dataclass(slots=True)
class IngestStats:
    """Statistics for the ingestion path."""
    batches: int = 0
    ticks_received: int = 0
    snapshots_published: int = 0
    ticks_dropped: int = 0
    reconnects: int = 0
    connected: bool = False
    last_batch_time: Optional[datetime] = None
    last_error: Optional[str] = None


class FeedIngestor:
    """
    Feed -> normalizer -> live table pipeline.

    Args:
        source: Feed transport
        registry: Instrument registry
        normalizer: Tick normalizer
        live_table: Shared live instrument table
        spot_prices: Shared spot price table
        aggregator: Optional object with record_latest(snapshot)
        config: Reconnect settings
        clock: Returns the current time (exchange-aware by default)
        stop_on_eof: Stop instead of reconnecting when the stream ends
    """

    def __init__(
        self,
        source: FeedSource,
        registry: InstrumentRegistry,
        normalizer: TickNormalizer,
        live_table: LiveInstrumentTable,
        spot_prices: SpotPriceTable,
        aggregator=None,
        config: Optional[FeedConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        stop_on_eof: bool = False,
    ):
        self.source = source
        self.registry = registry
        self.normalizer = normalizer
        self.live_table = live_table
        self.spot_prices = spot_prices
        self.aggregator = aggregator
        self.config = config or FeedConfig()
        self.clock = clock or (lambda: datetime.now(self.normalizer.tz))
        self.stop_on_eof = stop_on_eof

        self._subscribers: Set[asyncio.Queue] = set()
        self._task: Optional[asyncio.Task] = None
        self._is_running = False

        self.stats = IngestStats()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        """Register a consumer; each normalized batch is put on the queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def process_batch(
        self, raw_ticks: Union[dict, List[dict]], now: Optional[datetime] = None
    ) -> List[InstrumentSnapshot]:
        """
        Normalize one tick batch and publish the results.

        Args:
            raw_ticks: A single tick or a batch
            now: Valuation time (defaults to the clock)

        Returns:
            Snapshots written to the live table
        """
        batch = raw_ticks if isinstance(raw_ticks, list) else [raw_ticks]
        now = now or self.clock()

        snapshots = self.normalizer.normalize_batch(batch, self.registry, self.spot_prices, now)

        for snapshot in snapshots:
            if snapshot.instrument_class in SPOT_CLASSES:
                self.spot_prices.update(snapshot.underlying, snapshot.last_price, now)

        self.live_table.upsert_many(snapshots)

        if self.aggregator is not None:
            for snapshot in snapshots:
                self.aggregator.record_latest(snapshot)

        if snapshots:
            self._publish(snapshots)

        self.stats.batches += 1
        self.stats.ticks_received += len(batch)
        self.stats.snapshots_published += len(snapshots)
        self.stats.ticks_dropped += len(batch) - len(snapshots)
        self.stats.last_batch_time = now

        return snapshots

    def _publish(self, snapshots: List[InstrumentSnapshot]) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(list(snapshots))
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full, dropping batch for slow consumer")

    async def start(self) -> None:
        """Start the ingestion daemon."""
        if self._is_running:
            logger.warning("FeedIngestor already running")
            return

        self._is_running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"✓ FeedIngestor started ({len(self.registry)} instruments)")

    async def stop(self) -> None:
        """Stop the ingestion daemon. The live table keeps its contents."""
        self._is_running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        await self._close_source()
        self.stats.connected = False
        logger.info("✓ FeedIngestor stopped")

    async def wait_closed(self) -> None:
        """Wait until the ingestion loop exits."""
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run_loop(self) -> None:
        """Connect, drain, and reconnect with exponential backoff."""
        delay = self.config.reconnect_base_delay
        tokens = self.registry.subscription_tokens()

        while self._is_running:
            try:
                await self.source.connect(tokens)
                self.stats.connected = True
                delay = self.config.reconnect_base_delay
                logger.info(f"✓ Feed connected ({len(tokens)} tokens)")

                async for batch in self.source.stream():
                    self.process_batch(batch)

                if self.stop_on_eof:
                    logger.info("Feed stream ended, stopping ingestion")
                    self._is_running = False
                    break

                logger.warning("Feed stream ended unexpectedly")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.last_error = str(e)
                logger.error(f"Feed error: {e}")
            finally:
                self.stats.connected = False
                await self._close_source()

            if not self._is_running:
                break

            self.stats.reconnects += 1
            logger.warning(
                f"Reconnecting in {delay:.1f}s (attempt {self.stats.reconnects}, "
                f"{len(self.live_table)} instruments retained)"
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.config.reconnect_max_delay)

    async def _close_source(self) -> None:
        try:
            await self.source.close()
        except Exception as e:
            logger.debug(f"Error closing feed source: {e}")
