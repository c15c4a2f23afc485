"""
Market data fixtures for testing normalization and projection.

Provides a small NIFTY/BANKNIFTY instrument master, the registry built from
it, a fixed exchange-local clock and helpers to build raw feed ticks.

Usage:
    def test_registry(registry):
        assert registry.get("43650").strike == 22000.0
"""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from greekfeed.config.engine_config import EngineConfig
from greekfeed.core.models import (
    ContractMeta,
    GreeksSet,
    InstrumentClass,
    InstrumentSnapshot,
    OptionRight,
)
from greekfeed.data.instrument_registry import InstrumentRegistry

IST = ZoneInfo("Asia/Kolkata")

NIFTY_EXPIRY = date(2024, 5, 30)
NIFTY_WEEKLY_EXPIRY = date(2024, 5, 16)
NIFTY_22000_CE = "43650"
NIFTY_22000_PE = "43651"
NIFTY_22500_CE = "43652"
NIFTY_22500_PE = "43653"
NIFTY_WEEKLY_22000_CE = "43700"
NIFTY_FUT = "35001"
BANKNIFTY_48000_CE = "46000"
NIFTY_SPOT = "26000"
BANKNIFTY_SPOT = "26009"


def raw_tick(token: str, ltp: float, bid: float = None, ask: float = None, **extra) -> dict:
    """Build a feed tick with prices scaled by 100, as the feed sends them."""
    tick = {"tk": token, "ltp": round(ltp * 100)}
    if bid is not None:
        tick["bp"] = round(bid * 100)
    if ask is not None:
        tick["sp"] = round(ask * 100)
    tick.update(extra)
    return tick


@pytest.fixture
def engine_config():
    """Default engine configuration."""
    return EngineConfig()


@pytest.fixture
def scrip_records():
    """
    Instrument master rows in exchange format (strike and tick size in paise).

    Includes one malformed row and one row for an untracked underlying.
    """
    def option(token, symbol, name, expiry, strike, lotsize="25"):
        return {
            "token": token,
            "symbol": symbol,
            "name": name,
            "expiry": expiry,
            "strike": f"{strike * 100:.6f}",
            "lotsize": lotsize,
            "instrumenttype": "OPTIDX",
            "exch_seg": "NFO",
            "tick_size": "5.000000",
        }

    return [
        option(NIFTY_22000_CE, "NIFTY30MAY2422000CE", "NIFTY", "30MAY2024", 22000),
        option(NIFTY_22000_PE, "NIFTY30MAY2422000PE", "NIFTY", "30MAY2024", 22000),
        option(NIFTY_22500_CE, "NIFTY30MAY2422500CE", "NIFTY", "30MAY2024", 22500),
        option(NIFTY_22500_PE, "NIFTY30MAY2422500PE", "NIFTY", "30MAY2024", 22500),
        option(NIFTY_WEEKLY_22000_CE, "NIFTY16MAY2422000CE", "NIFTY", "16MAY2024", 22000),
        option(BANKNIFTY_48000_CE, "BANKNIFTY30MAY2448000CE", "BANKNIFTY", "30MAY2024", 48000, lotsize="15"),
        {
            "token": NIFTY_FUT,
            "symbol": "NIFTY30MAY24FUT",
            "name": "NIFTY",
            "expiry": "30MAY2024",
            "strike": "-1.000000",
            "lotsize": "25",
            "instrumenttype": "FUTIDX",
            "exch_seg": "NFO",
            "tick_size": "5.000000",
        },
        option("55000", "FINNIFTY28MAY2421000CE", "FINNIFTY", "28MAY2024", 21000, lotsize="40"),
        {"token": "99999", "symbol": "", "instrumenttype": "OPTIDX"},
    ]


@pytest.fixture
def registry(scrip_records):
    """Registry built from the sample instrument master."""
    return InstrumentRegistry.from_records(scrip_records)


@pytest.fixture
def market_now():
    """A fixed moment during the session: 2024-05-20 10:30 IST."""
    return datetime(2024, 5, 20, 10, 30, tzinfo=IST)


@pytest.fixture
def nifty_call_contract():
    return ContractMeta(
        identifier="C20000",
        symbol="NIFTY30MAY2420000CE",
        underlying="NIFTY",
        instrument_class=InstrumentClass.OPTION,
        instrument_type="OPTIDX",
        exchange_segment="NFO",
        strike=20000.0,
        right=OptionRight.CALL,
        expiry=NIFTY_EXPIRY,
        lot_size=50,
    )


def make_snapshot(contract: ContractMeta, last_price: float, iv=None, open_interest: int = 0,
                  updated_at: datetime = None) -> InstrumentSnapshot:
    """Snapshot for a contract; options with iv get placeholder Greeks."""
    greeks = None
    if iv is not None:
        greeks = GreeksSet(delta=0.5, gamma=0.0001, theta=-5.0, vega=20.0)
    return InstrumentSnapshot(
        identifier=contract.identifier,
        symbol=contract.symbol,
        underlying=contract.underlying,
        instrument_class=contract.instrument_class,
        last_price=last_price,
        updated_at=updated_at or datetime(2024, 5, 20, 10, 30, tzinfo=IST),
        strike=contract.strike,
        right=contract.right,
        expiry=contract.expiry,
        expiry_type=contract.expiry_type,
        open_interest=open_interest,
        iv=iv,
        greeks=greeks,
        lot_size=contract.lot_size,
        tick_size=contract.tick_size,
    )
