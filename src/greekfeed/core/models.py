"""
Core Data Models

Immutable contract metadata, per-instrument live snapshots and Greeks.

Key patterns:
- ContractMeta is built once from reference data and never mutated
- InstrumentSnapshot is replaced wholesale on every tick (last-write-wins)
- GreeksSet is always computed from a single (F, K, T, r, vol, right) tuple
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple


class InstrumentClass(str, Enum):
    """Instrument class derived from the exchange type code."""
    OPTION = "Option"
    FUTURE = "Future"
    SPOT_INDEX = "SpotIndex"
    STOCK = "Stock"


class OptionRight(str, Enum):
    """Option right."""
    CALL = "CE"
    PUT = "PE"


class ExpiryType(str, Enum):
    """Expiry classification."""
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


@dataclass(slots=True, frozen=True)
class GreeksSet:
    """
    Option Greeks.

    Attributes:
        delta: Sensitivity to the underlying
        gamma: Sensitivity of delta to the underlying
        theta: Time decay per calendar day
        vega: Sensitivity per unit (1.00 = 100 vol points) change in IV
    """
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0

    @classmethod
    def zero(cls) -> "GreeksSet":
        return cls()

    @classmethod
    def unit_delta(cls) -> "GreeksSet":
        """Greeks of a delta-one instrument (futures)."""
        return cls(delta=1.0)

    def for_display(self) -> "GreeksSet":
        """Return a copy with vega scaled to a 1% IV change."""
        return GreeksSet(
            delta=self.delta,
            gamma=self.gamma,
            theta=self.theta,
            vega=self.vega / 100.0,
        )


@dataclass(slots=True, frozen=True)
class DepthLevel:
    """One level of market depth."""
    price: float
    quantity: int = 0
    orders: int = 0


@dataclass(slots=True, frozen=True)
class ContractMeta:
    """
    Static contract metadata from the instrument master.

    Attributes:
        identifier: Feed token
        symbol: Trading symbol (e.g., NIFTY30MAY2420000CE)
        underlying: Underlying symbol (e.g., NIFTY)
        instrument_class: Option, Future, SpotIndex or Stock
        instrument_type: Raw exchange type code (OPTIDX, FUTSTK, ...)
        exchange_segment: Exchange segment (NFO, NSE, ...)
        strike: Strike price (options only)
        right: CE or PE (options only)
        expiry: Expiry date (derivatives only)
        lot_size: Contract multiplier
        tick_size: Minimum price increment
    """
    identifier: str
    symbol: str
    underlying: str
    instrument_class: InstrumentClass
    instrument_type: str = ""
    exchange_segment: str = ""
    strike: Optional[float] = None
    right: Optional[OptionRight] = None
    expiry: Optional[date] = None
    lot_size: int = 1
    tick_size: float = 0.05

    def __post_init__(self):
        if self.instrument_class == InstrumentClass.OPTION:
            if self.strike is None or self.strike <= 0:
                raise ValueError(f"Option {self.symbol} requires a positive strike")
            if self.right is None:
                raise ValueError(f"Option {self.symbol} requires a right")
            if self.expiry is None:
                raise ValueError(f"Option {self.symbol} requires an expiry")
        if self.instrument_class == InstrumentClass.FUTURE and self.expiry is None:
            raise ValueError(f"Future {self.symbol} requires an expiry")
        if self.lot_size <= 0:
            raise ValueError(f"lot_size must be positive, got {self.lot_size}")

    @property
    def is_option(self) -> bool:
        return self.instrument_class == InstrumentClass.OPTION

    @property
    def is_future(self) -> bool:
        return self.instrument_class == InstrumentClass.FUTURE

    @property
    def expiry_type(self) -> Optional[ExpiryType]:
        if self.expiry is None:
            return None
        return ExpiryType.MONTHLY if self.expiry.day > 25 else ExpiryType.WEEKLY


@dataclass(slots=True, frozen=True)
class InstrumentSnapshot:
    """
    Latest normalized state of one tracked instrument.

    For options, iv and greeks are either both set (greeks computed from iv)
    or both None. Futures carry unit-delta Greeks and no IV.
    """
    identifier: str
    symbol: str
    underlying: str
    instrument_class: InstrumentClass
    last_price: float
    updated_at: datetime
    strike: Optional[float] = None
    right: Optional[OptionRight] = None
    expiry: Optional[date] = None
    expiry_type: Optional[ExpiryType] = None
    open_interest: int = 0
    volume: int = 0
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    bid_depth: Tuple[DepthLevel, ...] = field(default_factory=tuple)
    ask_depth: Tuple[DepthLevel, ...] = field(default_factory=tuple)
    spot_price: Optional[float] = None
    forward_price: Optional[float] = None
    iv: Optional[float] = None
    greeks: Optional[GreeksSet] = None
    lot_size: int = 1
    tick_size: float = 0.05

    def __post_init__(self):
        if self.instrument_class == InstrumentClass.OPTION:
            if (self.iv is None) != (self.greeks is None):
                raise ValueError(
                    f"{self.symbol}: iv and greeks must be both present or both absent"
                )

    @property
    def iv_percent(self) -> Optional[float]:
        """IV in percentage points for display."""
        return None if self.iv is None else self.iv * 100.0

    @property
    def mid_price(self) -> Optional[float]:
        if self.best_bid and self.best_ask and self.best_bid > 0 and self.best_ask > 0:
            return (self.best_bid + self.best_ask) / 2.0
        return None
