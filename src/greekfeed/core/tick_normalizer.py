"""
Tick Normalizer

Turns raw feed ticks into InstrumentSnapshot records with forward price,
time to expiry, implied volatility and Greeks.

Processing per tick:
1. Validate the raw payload (RawTick) and un-scale prices
2. Look up ContractMeta and resolve a tagged tick (OptionTick, FutureTick,
   SpotTick) carrying the fields that class requires
3. Value it: options get forward, IV and Greeks; futures get unit delta;
   spot instruments pass through

normalize() never raises for a bad tick: unknown identifiers, missing spot,
expired options and malformed payloads all return None.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, List, Optional, Protocol, Tuple, Union
from zoneinfo import ZoneInfo

from loguru import logger
from pydantic import ValidationError

from greekfeed.config.engine_config import EngineConfig
from greekfeed.core.expiry import time_to_expiry_years
from greekfeed.core.models import (
    ContractMeta,
    DepthLevel,
    GreeksSet,
    InstrumentClass,
    InstrumentSnapshot,
    OptionRight,
)
from greekfeed.data.instrument_registry import InstrumentRegistry
from greekfeed.models.feed_models import RawDepthLevel, RawTick
from greekfeed.pricing import black76
from greekfeed.pricing.implied_vol import SolverSettings, solve

# Instrument types whose feed forward field is usable as the option forward
FORWARD_FIELD_TYPES = ("OPTIDX", "OPTSTK")


class SpotLookup(Protocol):
    def get(self, underlying: str) -> Optional[float]: ...


@dataclass(slots=True, frozen=True)
class Quote:
    """Un-scaled market fields common to every instrument class."""
    last_price: float
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    open_interest: int = 0
    volume: int = 0
    forward_price: Optional[float] = None
    bid_depth: Tuple[DepthLevel, ...] = ()
    ask_depth: Tuple[DepthLevel, ...] = ()
    lot_size: Optional[int] = None
    tick_size: Optional[float] = None


@dataclass(slots=True, frozen=True)
class OptionTick:
    contract: ContractMeta
    quote: Quote
    strike: float
    right: OptionRight
    expiry: date


@dataclass(slots=True, frozen=True)
class FutureTick:
    contract: ContractMeta
    quote: Quote
    expiry: date


@dataclass(slots=True, frozen=True)
class SpotTick:
    contract: ContractMeta
    quote: Quote


ResolvedTick = Union[OptionTick, FutureTick, SpotTick]


def unscale_quote(raw: RawTick, price_scale: float) -> Quote:
    """Convert feed fixed-point prices into price units."""

    def unscale(value: Optional[float]) -> Optional[float]:
        return None if value is None else value / price_scale

    def depth(levels: List[RawDepthLevel]) -> Tuple[DepthLevel, ...]:
        return tuple(
            DepthLevel(price=level.price / price_scale, quantity=level.quantity, orders=level.orders)
            for level in levels
        )

    return Quote(
        last_price=raw.last_price / price_scale,
        best_bid=unscale(raw.scaled_bid),
        best_ask=unscale(raw.scaled_ask),
        open_interest=raw.open_interest,
        volume=raw.volume,
        forward_price=unscale(raw.forward_price),
        bid_depth=depth(raw.bid_depth),
        ask_depth=depth(raw.ask_depth),
        lot_size=raw.lot_size,
        tick_size=unscale(raw.tick_size),
    )


def resolve_tick(contract: ContractMeta, quote: Quote) -> ResolvedTick:
    """Resolve the tagged tick variant for a contract's instrument class."""
    if contract.instrument_class == InstrumentClass.OPTION:
        return OptionTick(contract, quote, contract.strike, contract.right, contract.expiry)
    if contract.instrument_class == InstrumentClass.FUTURE:
        return FutureTick(contract, quote, contract.expiry)
    return SpotTick(contract, quote)


def choose_iv_price(quote: Quote, max_relative_spread: float = 0.10) -> float:
    """
    Price used for IV inversion.

    The bid/ask midpoint is preferred over the last trade when both sides are
    positive and the spread relative to the last trade (or the mid when there
    is no trade) is below max_relative_spread.
    """
    bid, ask, last = quote.best_bid, quote.best_ask, quote.last_price
    if bid and ask and bid > 0 and ask > 0:
        mid = (bid + ask) / 2.0
        reference = last if last > 0 else mid
        if (ask - bid) / reference < max_relative_spread:
            return mid
    return last


class TickNormalizer:
    """
    Stateless tick -> InstrumentSnapshot transform.

    Holds only configuration; the registry, spot prices and clock are passed
    on every call.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        config = config or EngineConfig()
        self.rate = config.pricing.risk_free_rate
        self.price_scale = config.normalizer.price_scale
        self.max_relative_spread = config.normalizer.max_relative_spread
        self.iv_floor = config.pricing.iv_floor
        self.cutoff = time(config.normalizer.expiry_cutoff_hour, config.normalizer.expiry_cutoff_minute)
        self.tz = ZoneInfo(config.market_hours.timezone)
        self.solver = SolverSettings(
            tolerance=config.pricing.iv_tolerance,
            max_iterations=config.pricing.iv_max_iterations,
            vol_min=config.pricing.iv_floor,
            vol_max=config.pricing.iv_ceiling,
        )

    def parse(self, raw: Union[dict, RawTick]) -> RawTick:
        return raw if isinstance(raw, RawTick) else RawTick.model_validate(raw)

    def normalize(
        self,
        raw: Union[dict, RawTick],
        registry: InstrumentRegistry,
        spot_prices: SpotLookup,
        now: datetime,
    ) -> Optional[InstrumentSnapshot]:
        """
        Normalize one raw tick.

        Args:
            raw: Feed tick (dict or RawTick)
            registry: Instrument registry
            spot_prices: Underlying -> spot price lookup
            now: Valuation timestamp

        Returns:
            InstrumentSnapshot, or None when the tick must be dropped
        """
        try:
            tick = self.parse(raw)
        except ValidationError as e:
            logger.debug(f"Dropping malformed tick: {e.error_count()} validation errors")
            return None

        contract = registry.get(tick.token)
        if contract is None:
            return None

        resolved = resolve_tick(contract, unscale_quote(tick, self.price_scale))

        if isinstance(resolved, OptionTick):
            return self._value_option(resolved, spot_prices, now)
        if isinstance(resolved, FutureTick):
            return self._value_future(resolved, spot_prices, now)
        return self._value_spot(resolved, now)

    def normalize_batch(
        self,
        raw_ticks: List[Union[dict, RawTick]],
        registry: InstrumentRegistry,
        spot_prices: SpotLookup,
        now: datetime,
    ) -> List[InstrumentSnapshot]:
        """
        Normalize a batch of ticks.

        Spot ticks are valued first and their prices overlay spot_prices for
        the rest of the batch, so options see the spot that arrived with them.
        A failing tick is logged and dropped; the batch continues.

        Returns:
            Snapshots in input order (spot instruments first)
        """
        spot_overlay = _SpotOverlay(spot_prices)
        derivatives = []
        snapshots: List[InstrumentSnapshot] = []

        for raw in raw_ticks:
            contract = self._peek_contract(raw, registry)
            if contract is not None and not (contract.is_option or contract.is_future):
                snapshot = self._safe_normalize(raw, registry, spot_overlay, now)
                if snapshot is not None:
                    spot_overlay.set(snapshot.underlying, snapshot.last_price)
                    snapshots.append(snapshot)
            else:
                derivatives.append(raw)

        for raw in derivatives:
            snapshot = self._safe_normalize(raw, registry, spot_overlay, now)
            if snapshot is not None:
                snapshots.append(snapshot)

        return snapshots

    def _peek_contract(self, raw, registry: InstrumentRegistry) -> Optional[ContractMeta]:
        if isinstance(raw, RawTick):
            return registry.get(raw.token)
        if isinstance(raw, dict):
            token = raw.get("tk", raw.get("token"))
            if token is not None:
                return registry.get(str(token).strip().strip('"').strip())
        return None

    def _safe_normalize(self, raw, registry, spot_prices, now) -> Optional[InstrumentSnapshot]:
        try:
            return self.normalize(raw, registry, spot_prices, now)
        except Exception as e:
            logger.warning(f"Dropping tick after normalization error: {e}")
            return None

    def _value_option(
        self, tick: OptionTick, spot_prices: SpotLookup, now: datetime
    ) -> Optional[InstrumentSnapshot]:
        contract, quote = tick.contract, tick.quote

        spot = spot_prices.get(contract.underlying)
        if spot is None or spot <= 0:
            logger.debug(f"No spot for {contract.underlying}, dropping {contract.symbol}")
            return None

        t = time_to_expiry_years(tick.expiry, now, self.cutoff, self.tz)
        if t <= 0:
            logger.debug(f"{contract.symbol} expired, dropping tick")
            return None

        if (
            contract.instrument_type in FORWARD_FIELD_TYPES
            and quote.forward_price is not None
            and quote.forward_price > 0
        ):
            forward = quote.forward_price
        else:
            forward = spot * math.exp(self.rate * t)

        iv: Optional[float] = None
        greeks: Optional[GreeksSet] = None

        iv_price = choose_iv_price(quote, self.max_relative_spread)
        if iv_price > 0:
            candidate = solve(iv_price, forward, tick.strike, t, self.rate, tick.right, self.solver)
            if math.isfinite(candidate) and candidate > self.iv_floor:
                iv = candidate
                greeks = black76.greeks(forward, tick.strike, t, self.rate, iv, tick.right)

        return self._snapshot(tick, now, spot=spot, forward=forward, iv=iv, greeks=greeks)

    def _value_future(
        self, tick: FutureTick, spot_prices: SpotLookup, now: datetime
    ) -> InstrumentSnapshot:
        quote = tick.quote
        if quote.forward_price is not None and quote.forward_price > 0:
            forward = quote.forward_price
        else:
            forward = quote.last_price
        spot = spot_prices.get(tick.contract.underlying)
        return self._snapshot(tick, now, spot=spot, forward=forward, greeks=GreeksSet.unit_delta())

    def _value_spot(self, tick: SpotTick, now: datetime) -> InstrumentSnapshot:
        return self._snapshot(tick, now, spot=tick.quote.last_price)

    def _snapshot(
        self,
        tick: ResolvedTick,
        now: datetime,
        spot: Optional[float] = None,
        forward: Optional[float] = None,
        iv: Optional[float] = None,
        greeks: Optional[GreeksSet] = None,
    ) -> InstrumentSnapshot:
        contract, quote = tick.contract, tick.quote
        return InstrumentSnapshot(
            identifier=contract.identifier,
            symbol=contract.symbol,
            underlying=contract.underlying,
            instrument_class=contract.instrument_class,
            last_price=quote.last_price,
            updated_at=now,
            strike=contract.strike,
            right=contract.right,
            expiry=contract.expiry,
            expiry_type=contract.expiry_type,
            open_interest=quote.open_interest,
            volume=quote.volume,
            best_bid=quote.best_bid,
            best_ask=quote.best_ask,
            bid_depth=quote.bid_depth,
            ask_depth=quote.ask_depth,
            spot_price=spot,
            forward_price=forward,
            iv=iv,
            greeks=greeks,
            lot_size=quote.lot_size or contract.lot_size,
            tick_size=quote.tick_size or contract.tick_size,
        )


class _SpotOverlay:
    """Batch-local spot prices layered over the shared lookup."""

    def __init__(self, base: SpotLookup):
        self._base = base
        self._local: Dict[str, float] = {}

    def set(self, underlying: str, price: float) -> None:
        if price > 0:
            self._local[underlying.upper()] = price

    def get(self, underlying: str) -> Optional[float]:
        price = self._local.get(underlying.upper())
        return price if price is not None else self._base.get(underlying)
