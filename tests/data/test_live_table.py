"""
Tests for the live instrument and spot price tables.
"""

import threading
from datetime import datetime

import pytest

from greekfeed.core.models import InstrumentClass
from greekfeed.data.live_table import LiveInstrumentTable, LiveInstrumentView, SpotPriceTable
from tests.fixtures.market_fixtures import (
    IST,
    NIFTY_22000_CE,
    NIFTY_FUT,
    make_snapshot,
)


class TestSpotPriceTable:
    """Test suite for SpotPriceTable."""

    def test_update_and_get(self, market_now):
        table = SpotPriceTable()
        table.update("nifty", 22050.0, market_now)
        assert table.get("NIFTY") == 22050.0
        assert table.quote("Nifty").updated_at == market_now
        assert table.snapshot() == {"NIFTY": 22050.0}

    def test_non_positive_price_ignored(self, market_now):
        table = SpotPriceTable()
        table.update("NIFTY", 22050.0, market_now)
        table.update("NIFTY", 0.0, market_now)
        table.update("NIFTY", -1.0, market_now)
        assert table.get("NIFTY") == 22050.0
        assert table.get("BANKNIFTY") is None


class TestLiveInstrumentTable:
    """Test suite for LiveInstrumentTable."""

    def test_last_write_wins(self, registry):
        table = LiveInstrumentTable()
        contract = registry.get(NIFTY_22000_CE)
        table.upsert(make_snapshot(contract, 150.0, iv=0.14))
        table.upsert(make_snapshot(contract, 155.0, iv=0.15))

        assert len(table) == 1
        assert table.get(NIFTY_22000_CE).last_price == 155.0
        assert table.get(NIFTY_22000_CE).iv == 0.15

    def test_snapshot_is_a_copy(self, registry):
        table = LiveInstrumentTable()
        contract = registry.get(NIFTY_22000_CE)
        table.upsert(make_snapshot(contract, 150.0))
        view = table.snapshot()

        table.upsert(make_snapshot(contract, 160.0))
        assert view[NIFTY_22000_CE].last_price == 150.0

    def test_options_filter(self, registry):
        table = LiveInstrumentTable()
        count = table.upsert_many([
            make_snapshot(registry.get(NIFTY_22000_CE), 150.0),
            make_snapshot(registry.get(NIFTY_FUT), 22100.0),
        ])
        assert count == 2
        options = table.options("nifty")
        assert [s.identifier for s in options] == [NIFTY_22000_CE]
        assert table.options("BANKNIFTY") == []

    def test_concurrent_writers(self, registry):
        """Whole-record replacement: every read sees a complete snapshot."""
        table = LiveInstrumentTable()
        contract = registry.get(NIFTY_22000_CE)

        def writer(offset):
            for i in range(200):
                table.upsert(make_snapshot(contract, 100.0 + offset + i, iv=0.1 + i / 1000))

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = table.get(NIFTY_22000_CE)
        assert snapshot.iv is not None
        assert snapshot.greeks is not None


class TestLiveInstrumentView:
    """Test suite for LiveInstrumentView."""

    def test_contract_from_registry(self, registry):
        contract = registry.get(NIFTY_22000_CE)
        view = LiveInstrumentView.from_snapshots([make_snapshot(contract, 150.0)], registry=registry)
        assert view.contract(NIFTY_22000_CE) is contract
        assert view.snapshot(NIFTY_22000_CE).last_price == 150.0

    def test_contract_derived_from_snapshot(self, nifty_call_contract):
        view = LiveInstrumentView.from_snapshots([make_snapshot(nifty_call_contract, 2100.0)])
        contract = view.contract("C20000")
        assert contract.strike == 20000.0
        assert contract.lot_size == 50
        assert contract.instrument_class == InstrumentClass.OPTION
        assert view.contract("missing") is None

    def test_capture_is_point_in_time(self, registry):
        table = LiveInstrumentTable()
        contract = registry.get(NIFTY_22000_CE)
        table.upsert(make_snapshot(contract, 150.0))
        view = LiveInstrumentView.capture(registry, table)

        table.upsert(make_snapshot(contract, 170.0, updated_at=datetime(2024, 5, 20, 11, 0, tzinfo=IST)))
        assert view.snapshot(NIFTY_22000_CE).last_price == 150.0

    def test_options_sorted_by_expiry_and_strike(self, registry):
        snapshots = [
            make_snapshot(registry.get(token), 100.0)
            for token in ("43653", "43650", "43700", "43652")
        ]
        view = LiveInstrumentView.from_snapshots(snapshots, registry=registry)
        strikes = [(s.expiry.day, s.strike) for s in view.options("NIFTY")]
        assert strikes == [(16, 22000.0), (30, 22000.0), (30, 22500.0), (30, 22500.0)]

    @pytest.mark.parametrize("underlying", ["BANKNIFTY", "SENSEX"])
    def test_options_empty_for_other_underlyings(self, registry, underlying):
        view = LiveInstrumentView.from_snapshots([make_snapshot(registry.get(NIFTY_22000_CE), 1.0)])
        assert view.options(underlying) == []
