#!/usr/bin/env python
"""
Feed Ingestion Entry Point

Loads the instrument master, replays (or streams) ticks through the
normalizer into the live table, and persists hourly snapshots to Delta Lake.

Usage:
    python scripts/run_feed.py --replay data/ticks.jsonl
    python scripts/run_feed.py --replay data/ticks.jsonl --interval 0.5 --flush-on-exit
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from greekfeed.config.engine_config import load_engine_config
from greekfeed.core.feed_ingestor import FeedIngestor
from greekfeed.core.tick_normalizer import TickNormalizer
from greekfeed.data.feed_sources import ReplayFeedSource
from greekfeed.data.hourly_snapshots import HourlySnapshotsTable
from greekfeed.data.instrument_registry import InstrumentRegistry
from greekfeed.data.live_table import LiveInstrumentTable, SpotPriceTable
from greekfeed.data.snapshot_aggregator import SnapshotAggregator
from greekfeed.utils.logging_setup import setup_logging


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Ingest market-data ticks and persist hourly snapshots"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to engine YAML config (default: config/engine.yaml)"
    )
    parser.add_argument(
        "--replay",
        type=str,
        required=True,
        help="JSON-lines file of recorded tick batches"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=0.0,
        help="Seconds between replayed batches (default: 0)"
    )
    parser.add_argument(
        "--flush-on-exit",
        action="store_true",
        help="Force an hourly flush (ignoring the window) before exiting"
    )
    return parser.parse_args()


async def main() -> int:
    """
    Run ingestion until the replay ends or a signal arrives.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args()

    try:
        config = load_engine_config(args.config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(config.logging)

    registry = InstrumentRegistry.from_file(
        config.registry.scrip_master_path,
        config=config.registry,
        normalizer_config=config.normalizer,
    )
    live_table = LiveInstrumentTable()
    spot_prices = SpotPriceTable()

    aggregator = SnapshotAggregator(
        sink=HourlySnapshotsTable(config.storage.hourly_snapshots_path),
        config=config.market_hours,
    )
    ingestor = FeedIngestor(
        source=ReplayFeedSource(args.replay, interval=args.interval, credentials=config.feed.credentials),
        registry=registry,
        normalizer=TickNormalizer(config),
        live_table=live_table,
        spot_prices=spot_prices,
        aggregator=aggregator,
        config=config.feed,
        clock=aggregator.clock,
        stop_on_eof=True,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(ingestor.stop()))

    try:
        await aggregator.start()
        await ingestor.start()
        await ingestor.wait_closed()

        if args.flush_on_exit:
            await aggregator.force_flush(respect_window=False)

        stats = ingestor.stats
        logger.info(
            f"✓ Ingestion finished: {stats.batches} batches, {stats.ticks_received} ticks, "
            f"{stats.snapshots_published} snapshots, {stats.ticks_dropped} dropped"
        )
        return 0

    except Exception as e:
        logger.exception(f"Feed ingestion failed: {e}")
        return 1

    finally:
        await ingestor.stop()
        await aggregator.stop()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
