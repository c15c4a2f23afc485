"""
Strategy Projection Models

Legs, scenarios and the structures returned by the scenario projection
engine. Uses dataclasses with slots=True (internal data, validated on entry).

Key patterns:
- dataclass(slots=True, frozen=True): legs and scenarios are immutable for
  the duration of a projection call
- __post_init__ validation for data integrity
- Vol adjustments are in decimal vol (0.01 = one vol point)
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from greekfeed.core.models import GreeksSet, InstrumentClass, OptionRight


class LegDirection(str, Enum):
    """Leg direction enum (Buy or Sell)."""

    BUY = "Buy"
    SELL = "Sell"

    @property
    def sign(self) -> int:
        return 1 if self == LegDirection.BUY else -1


@dataclass(slots=True, frozen=True)
class StrategyLeg:
    """
    One leg of a strategy.

    Attributes:
        identifier: Instrument identifier (feed token)
        direction: Buy or Sell
        entry_price: Entry premium (options) or price (futures) per unit
        lots: Number of lots
        lot_size: Contract multiplier; falls back to the contract's lot size
        iv_adjustment: Manual vol adjustment for this leg (decimal)
        selected: Unselected legs are ignored by the projection
    """

    identifier: str
    direction: LegDirection
    entry_price: float
    lots: int = 1
    lot_size: Optional[int] = None
    iv_adjustment: float = 0.0
    selected: bool = True

    def __post_init__(self):
        if self.lots <= 0:
            raise ValueError(f"lots must be positive, got {self.lots}")
        if self.entry_price < 0:
            raise ValueError(f"entry_price must be non-negative, got {self.entry_price}")
        if self.lot_size is not None and self.lot_size <= 0:
            raise ValueError(f"lot_size must be positive, got {self.lot_size}")

    @classmethod
    def from_dict(cls, data: dict) -> "StrategyLeg":
        return cls(
            identifier=str(data["identifier"]),
            direction=LegDirection(data.get("direction", "Buy")),
            entry_price=float(data["entry_price"]),
            lots=int(data.get("lots", 1)),
            lot_size=int(data["lot_size"]) if data.get("lot_size") else None,
            iv_adjustment=float(data.get("iv_adjustment", 0.0)),
            selected=bool(data.get("selected", True)),
        )


@dataclass(slots=True, frozen=True)
class Scenario:
    """
    Hypothetical market state for a projection.

    Attributes:
        target_price: Underlying price to value at (also the curve center)
        target_date: Date (read at the expiry cutoff) or moment to value at
        valuation_time: "Now" for the SD band horizon
        global_vol_offset: Vol shift applied to every option leg (decimal)
        per_leg_vol_offsets: identifier -> extra vol shift (decimal)
    """

    target_price: float
    target_date: Union[date, datetime]
    valuation_time: datetime
    global_vol_offset: float = 0.0
    per_leg_vol_offsets: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if self.target_price <= 0:
            raise ValueError(f"target_price must be positive, got {self.target_price}")

    def with_price(self, target_price: float) -> "Scenario":
        return Scenario(
            target_price=target_price,
            target_date=self.target_date,
            valuation_time=self.valuation_time,
            global_vol_offset=self.global_vol_offset,
            per_leg_vol_offsets=self.per_leg_vol_offsets,
        )


@dataclass(slots=True, frozen=True)
class LegProjection:
    """
    Valuation of one leg under a scenario.

    When available is False the contract could not be resolved; the valuation
    fields are None and the leg is excluded from totals.
    """

    leg: StrategyLeg
    available: bool
    symbol: Optional[str] = None
    instrument_class: Optional[InstrumentClass] = None
    strike: Optional[float] = None
    right: Optional[OptionRight] = None
    expiry: Optional[date] = None
    quantity: Optional[int] = None
    time_to_expiry: Optional[float] = None
    effective_vol: Optional[float] = None
    theoretical_value: Optional[float] = None
    pnl: Optional[float] = None
    greeks: Optional[GreeksSet] = None
    position_greeks: Optional[GreeksSet] = None

    @property
    def identifier(self) -> str:
        return self.leg.identifier


@dataclass(slots=True, frozen=True)
class ProjectionTotals:
    """Aggregate P&L and position Greeks across resolved legs."""

    pnl: float = 0.0
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    net_premium: float = 0.0
    legs_included: int = 0
    legs_unavailable: int = 0


@dataclass(slots=True, frozen=True)
class PayoffPoint:
    """One point of the payoff curve."""

    price: float
    expiry_pnl: float
    target_pnl: float
    open_interest: int = 0


@dataclass(slots=True, frozen=True)
class SDBands:
    """Standard-deviation price bands around the center price."""

    center: float
    vol: float
    horizon_days: float
    one_sd: float
    plus_one: float
    minus_one: float
    plus_two: float
    minus_two: float


@dataclass(slots=True, frozen=True)
class PayoffSummary:
    """Expiry payoff extremes and breakevens over the curve's price range."""

    max_profit: float
    max_loss: float
    breakevens: List[float]
    profit_unbounded: bool = False
    loss_unbounded: bool = False


@dataclass(slots=True, frozen=True)
class PayoffTableRow:
    """One row of the payoff table."""

    target_price: float
    target_pnl: float
    expiry_pnl: float
    target_pnl_pct: Optional[float] = None
    expiry_pnl_pct: Optional[float] = None


@dataclass(slots=True, frozen=True)
class ProjectionResult:
    """Everything a projection call returns."""

    legs: List[LegProjection]
    totals: ProjectionTotals
    payoff_curve: List[PayoffPoint]
    sd_bands: Optional[SDBands]
    summary: Optional[PayoffSummary] = None
