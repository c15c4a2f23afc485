"""
Tests for Snapshot Aggregator

Covers the snapshot window, hour bucketing, the once-per-bucket guard,
failure handling and the hourly schedule.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from greekfeed.config.engine_config import MarketHoursConfig
from greekfeed.data.hourly_snapshots import HourlySnapshotReader, HourlySnapshotsTable, InsertResult
from greekfeed.data.snapshot_aggregator import SnapshotAggregator
from tests.fixtures.market_fixtures import (
    IST,
    NIFTY_22000_CE,
    NIFTY_FUT,
    make_snapshot,
)


def at(hour, minute=0, day=20):
    return datetime(2024, 5, day, hour, minute, tzinfo=IST)


@pytest.fixture
def sink():
    mock_sink = MagicMock()
    mock_sink.insert_unordered.side_effect = lambda records: InsertResult(
        inserted=len(records), duplicates=0
    )
    return mock_sink


@pytest.fixture
def aggregator(sink, registry):
    agg = SnapshotAggregator(sink, MarketHoursConfig(), clock=lambda: at(10, 30))
    agg.record_latest(make_snapshot(registry.get(NIFTY_22000_CE), 150.0, iv=0.14))
    agg.record_latest(make_snapshot(registry.get(NIFTY_FUT), 22100.0))
    return agg


class TestSnapshotWindow:
    """Test suite for the window and bucket rules."""

    @pytest.mark.parametrize("hour,minute,expected", [
        (8, 59, False),
        (9, 10, False),   # before the 09:15 open
        (9, 15, True),
        (10, 30, True),
        (14, 59, True),
        (15, 0, True),
        (15, 5, True),    # end hour within grace
        (15, 6, False),
        (15, 45, False),
        (16, 0, False),
    ])
    def test_window(self, aggregator, hour, minute, expected):
        assert aggregator.is_within_window(at(hour, minute)) is expected

    def test_naive_time_is_exchange_local(self, aggregator):
        assert aggregator.is_within_window(datetime(2024, 5, 20, 10, 30))
        assert not aggregator.is_within_window(datetime(2024, 5, 20, 8, 0))

    def test_utc_time_converted(self, aggregator):
        # 05:00 UTC is 10:30 IST
        assert aggregator.is_within_window(datetime(2024, 5, 20, 5, 0, tzinfo=timezone.utc))
        assert aggregator.bucket_start(datetime(2024, 5, 20, 5, 0, tzinfo=timezone.utc)) == datetime(2024, 5, 20, 10, 0)

    def test_bucket_start_is_hour_floor(self, aggregator):
        assert aggregator.bucket_start(at(10, 59)) == datetime(2024, 5, 20, 10, 0)

    def test_custom_window(self, sink):
        config = MarketHoursConfig(snapshot_start_hour=10, snapshot_end_hour=14)
        agg = SnapshotAggregator(sink, config)
        assert not agg.is_within_window(at(9, 30))
        assert agg.is_within_window(at(14, 5))
        assert not agg.is_within_window(at(14, 30))


class TestFlush:
    """Test suite for hourly flushes."""

    @pytest.mark.asyncio
    async def test_flush_writes_latest_per_instrument(self, aggregator, sink):
        result = await aggregator.flush(at(10, 5))

        assert result == InsertResult(inserted=2, duplicates=0)
        records = sink.insert_unordered.call_args[0][0]
        assert {r.identifier for r in records} == {NIFTY_22000_CE, NIFTY_FUT}
        assert all(r.bucket_start == datetime(2024, 5, 20, 10, 0) for r in records)
        assert aggregator.stats.records_written == 2
        assert aggregator.stats.last_bucket == datetime(2024, 5, 20, 10, 0)

    @pytest.mark.asyncio
    async def test_latest_overwrites_before_flush(self, aggregator, sink, registry):
        aggregator.record_latest(make_snapshot(registry.get(NIFTY_FUT), 22222.0))
        await aggregator.flush(at(10, 5))

        records = {r.identifier: r for r in sink.insert_unordered.call_args[0][0]}
        assert records[NIFTY_FUT].snapshot.last_price == 22222.0

    @pytest.mark.asyncio
    async def test_once_per_bucket(self, aggregator, sink):
        await aggregator.flush(at(10, 5))
        assert await aggregator.flush(at(10, 45)) is None
        assert sink.insert_unordered.call_count == 1

        await aggregator.flush(at(11, 0))
        assert sink.insert_unordered.call_count == 2

    @pytest.mark.asyncio
    async def test_same_hour_next_day_is_new_bucket(self, aggregator, sink):
        await aggregator.flush(at(10, 5))
        await aggregator.flush(at(10, 5, day=21))
        assert sink.insert_unordered.call_count == 2

    @pytest.mark.asyncio
    async def test_outside_window_skipped(self, aggregator, sink):
        assert await aggregator.flush(at(16, 0)) is None
        sink.insert_unordered.assert_not_called()

    @pytest.mark.asyncio
    async def test_force_flush_can_ignore_window(self, aggregator, sink):
        assert await aggregator.force_flush(at(16, 0)) is None
        result = await aggregator.force_flush(at(16, 0), respect_window=False)
        assert result.inserted == 2
        sink.insert_unordered.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_write_is_missed_not_retried(self, aggregator, sink):
        sink.insert_unordered.side_effect = OSError("disk full")

        assert await aggregator.flush(at(10, 5)) is None
        assert aggregator.stats.missed_buckets == 1

        assert await aggregator.flush(at(10, 30)) is None
        assert sink.insert_unordered.call_count == 1

    @pytest.mark.asyncio
    async def test_partial_write_counts_duplicates(self, aggregator, sink):
        sink.insert_unordered.side_effect = lambda records: InsertResult(inserted=1, duplicates=1)
        result = await aggregator.flush(at(10, 5))
        assert result.duplicates == 1
        assert aggregator.stats.duplicates_skipped == 1
        assert aggregator.stats.flushes == 1

    @pytest.mark.asyncio
    async def test_empty_latest_writes_nothing(self, sink):
        agg = SnapshotAggregator(sink)
        result = await agg.flush(at(10, 5))
        assert result == InsertResult(inserted=0, duplicates=0)
        sink.insert_unordered.assert_not_called()

    @pytest.mark.asyncio
    async def test_flush_into_delta_lake(self, lake_path, registry):
        path = str(lake_path / "hourly_snapshots")
        agg = SnapshotAggregator(HourlySnapshotsTable(path))
        agg.record_latest(make_snapshot(registry.get(NIFTY_22000_CE), 150.0, iv=0.14))

        await agg.flush(at(11, 2))

        reader = HourlySnapshotReader(path)
        assert reader.latest_bucket() == datetime(2024, 5, 20, 11, 0)
        assert reader.latest_snapshots()[0].iv == pytest.approx(0.14)


class TestSchedule:
    """Test suite for the hourly schedule."""

    @pytest.mark.asyncio
    async def test_start_runs_immediately_then_stops(self, aggregator, sink):
        await aggregator.start(run_immediately=True)
        await aggregator.start()  # already running
        await asyncio.sleep(0.05)

        assert aggregator.is_running
        assert sink.insert_unordered.call_count == 1

        await aggregator.stop()
        assert not aggregator.is_running

    @pytest.mark.asyncio
    async def test_empty_startup_flush_leaves_bucket_open(self, sink, registry):
        agg = SnapshotAggregator(sink, MarketHoursConfig(), clock=lambda: at(10, 30))
        await agg.start(run_immediately=True)
        await asyncio.sleep(0.05)
        sink.insert_unordered.assert_not_called()

        agg.record_latest(make_snapshot(registry.get(NIFTY_FUT), 22100.0))
        result = await agg.force_flush(respect_window=False)
        await agg.stop()

        assert result.inserted == 1
        sink.insert_unordered.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, aggregator):
        await aggregator.stop()
        assert not aggregator.is_running
