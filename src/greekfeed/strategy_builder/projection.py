"""
Scenario Projection Engine

Values a strategy's legs at a hypothetical underlying price and date, and
builds the payoff curve, SD bands, payoff table and payoff summary used for
visualization.

Key patterns:
- Pure computation over an InstrumentLookup (a point-in-time view of the
  live table): identical inputs give identical outputs
- Options use Black-76 with forward = target * exp(r * T), T measured from
  the target date to the option's expiry
- Futures are delta-one: valued at the target price
- Unresolvable legs come back with available=False and are left out of
  totals
"""

import bisect
import math
from datetime import time
from typing import Dict, List, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo

import numpy as np
from loguru import logger

from greekfeed.config.engine_config import EngineConfig
from greekfeed.core.expiry import days_between, time_to_expiry_years
from greekfeed.core.models import ContractMeta, GreeksSet, InstrumentSnapshot
from greekfeed.pricing import black76
from greekfeed.strategy_builder.models import (
    LegProjection,
    PayoffPoint,
    PayoffSummary,
    PayoffTableRow,
    ProjectionResult,
    ProjectionTotals,
    Scenario,
    SDBands,
    StrategyLeg,
)

SD_YEAR_DAYS = 365.25


class InstrumentLookup(Protocol):
    """Read-only view of contracts and their latest snapshots."""

    def contract(self, identifier: str) -> Optional[ContractMeta]: ...

    def snapshot(self, identifier: str) -> Optional[InstrumentSnapshot]: ...

    def options(self, underlying: Optional[str] = None) -> List[InstrumentSnapshot]: ...


ResolvedLeg = Tuple[StrategyLeg, ContractMeta, int, float]


def summarize_payoff(curve: List[PayoffPoint]) -> Optional[PayoffSummary]:
    """
    Max profit, max loss and breakevens of the expiry payoff.

    Breakevens are found by linear interpolation between adjacent grid points
    whose expiry P&L changes sign. A payoff still rising (falling) at the top
    of the grid is flagged as unbounded profit (loss).
    """
    if len(curve) < 2:
        return None

    pnls = [p.expiry_pnl for p in curve]
    breakevens: List[float] = []

    for left, right in zip(curve, curve[1:]):
        if left.expiry_pnl == 0:
            if not breakevens or abs(breakevens[-1] - left.price) > 1e-9:
                breakevens.append(round(left.price, 2))
            continue
        if left.expiry_pnl * right.expiry_pnl < 0:
            fraction = left.expiry_pnl / (left.expiry_pnl - right.expiry_pnl)
            breakevens.append(round(left.price + fraction * (right.price - left.price), 2))
    if curve[-1].expiry_pnl == 0 and (not breakevens or abs(breakevens[-1] - curve[-1].price) > 1e-9):
        breakevens.append(round(curve[-1].price, 2))

    tail_slope = pnls[-1] - pnls[-2]
    return PayoffSummary(
        max_profit=max(pnls),
        max_loss=min(pnls),
        breakevens=breakevens,
        profit_unbounded=tail_slope > 1e-9,
        loss_unbounded=tail_slope < -1e-9,
    )


class ScenarioProjectionEngine:
    """
    Strategy valuation under a scenario.

    Args:
        config: Engine configuration (risk-free rate, projection settings,
            expiry cutoff and exchange timezone)
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        config = config or EngineConfig()
        self.rate = config.pricing.risk_free_rate
        self.settings = config.projection
        self.cutoff = time(config.normalizer.expiry_cutoff_hour, config.normalizer.expiry_cutoff_minute)
        self.tz = ZoneInfo(config.market_hours.timezone)

    # ------------------------------------------------------------------
    # Leg resolution and valuation
    # ------------------------------------------------------------------

    def _resolve(self, legs: List[StrategyLeg], lookup: InstrumentLookup):
        """Split selected legs into resolved (leg, contract, qty, vol) and missing."""
        resolved: List[Tuple[StrategyLeg, ContractMeta, int, float]] = []
        missing: List[StrategyLeg] = []
        for leg in legs:
            if not leg.selected:
                continue
            contract = lookup.contract(leg.identifier)
            if contract is None:
                missing.append(leg)
                continue
            quantity = leg.lots * (leg.lot_size or contract.lot_size)
            resolved.append((leg, contract, quantity, self._base_vol(lookup.snapshot(leg.identifier))))
        return resolved, missing

    def _base_vol(self, snapshot: Optional[InstrumentSnapshot]) -> float:
        if snapshot is not None and snapshot.iv is not None and snapshot.iv > 0:
            return snapshot.iv
        return self.settings.default_volatility

    def effective_vol(self, leg: StrategyLeg, base_vol: float, scenario: Scenario) -> float:
        """Live IV plus the leg's adjustments and the global offset, floored."""
        vol = (
            base_vol
            + leg.iv_adjustment
            + scenario.per_leg_vol_offsets.get(leg.identifier, 0.0)
            + scenario.global_vol_offset
        )
        return max(vol, self.settings.min_volatility)

    def _time_to_expiry(self, contract: ContractMeta, scenario: Scenario) -> Optional[float]:
        if contract.expiry is None:
            return None
        return time_to_expiry_years(contract.expiry, scenario.target_date, self.cutoff, self.tz)

    def value_leg(
        self,
        contract: ContractMeta,
        underlying_price: float,
        t: Optional[float],
        vol: float,
    ) -> Tuple[float, GreeksSet]:
        """
        Theoretical per-unit value and Greeks of a contract.

        Args:
            contract: Contract metadata
            underlying_price: Scenario underlying price
            t: Years from the target date to expiry (None for non-expiring)
            vol: Effective vol

        Returns:
            (value, greeks)
        """
        if not contract.is_option:
            return underlying_price, GreeksSet.unit_delta()

        t = t if t is not None else 0.0
        forward = underlying_price * math.exp(self.rate * t) if t > 0 else underlying_price
        value = black76.price(forward, contract.strike, t, self.rate, vol, contract.right)
        greeks = black76.greeks(forward, contract.strike, t, self.rate, vol, contract.right)
        return value, greeks

    def expiry_value(self, contract: ContractMeta, underlying_price: float) -> float:
        """Settlement value per unit at expiry."""
        if contract.is_option:
            return black76.intrinsic_value(underlying_price, contract.strike, contract.right)
        return underlying_price

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def project(
        self,
        legs: List[StrategyLeg],
        scenario: Scenario,
        lookup: InstrumentLookup,
        include_curve: bool = True,
    ) -> ProjectionResult:
        """
        Project a strategy under a scenario.

        Args:
            legs: Strategy legs (unselected legs are ignored)
            scenario: Target price/date and vol offsets
            lookup: Point-in-time instrument view
            include_curve: Also build the payoff curve, SD bands and summary

        Returns:
            ProjectionResult with per-leg results, totals, payoff curve and
            SD bands
        """
        resolved, missing = self._resolve(legs, lookup)
        missing_ids = {leg.identifier for leg in missing}

        projections: Dict[int, LegProjection] = {}
        pnl = delta = gamma = theta = vega = net_premium = 0.0

        for leg, contract, quantity, base_vol in resolved:
            t = self._time_to_expiry(contract, scenario)
            vol = self.effective_vol(leg, base_vol, scenario) if contract.is_option else None
            value, unit_greeks = self.value_leg(contract, scenario.target_price, t, vol or 0.0)

            sign = leg.direction.sign
            leg_pnl = (value - leg.entry_price) * sign * quantity
            position = GreeksSet(
                delta=unit_greeks.delta * sign * quantity,
                gamma=unit_greeks.gamma * quantity,
                theta=unit_greeks.theta * sign * quantity,
                vega=unit_greeks.vega * sign * quantity,
            )

            pnl += leg_pnl
            delta += position.delta
            gamma += position.gamma
            theta += position.theta
            vega += position.vega
            net_premium += -sign * leg.entry_price * quantity

            projections[id(leg)] = LegProjection(
                leg=leg,
                available=True,
                symbol=contract.symbol,
                instrument_class=contract.instrument_class,
                strike=contract.strike,
                right=contract.right,
                expiry=contract.expiry,
                quantity=quantity,
                time_to_expiry=t,
                effective_vol=vol,
                theoretical_value=value,
                pnl=leg_pnl,
                greeks=unit_greeks,
                position_greeks=position,
            )

        for leg in missing:
            projections[id(leg)] = LegProjection(leg=leg, available=False)

        if missing_ids:
            logger.warning(f"Projection excluded {len(missing_ids)} unresolved legs: {sorted(missing_ids)}")

        leg_results = [projections[id(leg)] for leg in legs if id(leg) in projections]

        totals = ProjectionTotals(
            pnl=pnl,
            delta=delta,
            gamma=gamma,
            theta=theta,
            vega=vega,
            net_premium=net_premium,
            legs_included=len(resolved),
            legs_unavailable=len(missing),
        )

        curve: List[PayoffPoint] = []
        bands: Optional[SDBands] = None
        summary: Optional[PayoffSummary] = None
        if include_curve:
            curve = self._curve(resolved, scenario, lookup)
            bands = self._sd_bands(resolved, scenario, lookup)
            summary = summarize_payoff(curve)

        return ProjectionResult(
            legs=leg_results,
            totals=totals,
            payoff_curve=curve,
            sd_bands=bands,
            summary=summary,
        )

    def _pnl_at(self, resolved: List[ResolvedLeg], scenario: Scenario, price: float) -> Tuple[float, float]:
        """(expiry P&L, target-date P&L) of all resolved legs at one price."""
        expiry_pnl = 0.0
        target_pnl = 0.0
        for leg, contract, quantity, base_vol in resolved:
            sign = leg.direction.sign
            t = self._time_to_expiry(contract, scenario)
            vol = self.effective_vol(leg, base_vol, scenario) if contract.is_option else 0.0
            value, _ = self.value_leg(contract, price, t, vol)
            expiry_pnl += (self.expiry_value(contract, price) - leg.entry_price) * sign * quantity
            target_pnl += (value - leg.entry_price) * sign * quantity
        return expiry_pnl, target_pnl

    # ------------------------------------------------------------------
    # Payoff curve
    # ------------------------------------------------------------------

    def price_grid(self, strikes: List[float], center: float) -> Tuple[List[float], float]:
        """
        Ordered, deduplicated price grid and its nominal spacing.

        With two or more distinct strikes the range spans the strikes and the
        center, padded by padding_factor of that range; otherwise it is padded
        by fallback_band_pct of the center. Bounds snap outward to grid_step
        and the lower bound stays positive. Strikes and the center are added
        as exact points.
        """
        cfg = self.settings
        distinct = sorted(set(strikes))
        relevant = distinct + [center]
        low, high = min(relevant), max(relevant)

        if len(distinct) >= 2:
            padding = (high - low) * cfg.padding_factor
        else:
            padding = center * cfg.fallback_band_pct

        step = cfg.grid_step
        low_bound = max(step, math.floor((low - padding) / step) * step)
        high_bound = math.ceil((high + padding) / step) * step
        if low_bound >= high_bound:
            low_bound = max(step, math.floor((center - step * 10) / step) * step)
            high_bound = math.ceil((center + step * 10) / step) * step

        points = np.linspace(low_bound, high_bound, cfg.grid_points + 1)
        grid = {round(float(p), 2) for p in points}
        grid.update(round(s, 2) for s in distinct if low_bound <= s <= high_bound)
        if low_bound <= center <= high_bound:
            grid.add(round(center, 2))

        spacing = (high_bound - low_bound) / cfg.grid_points
        return sorted(grid), spacing

    def _open_interest_by_point(
        self,
        grid: List[float],
        spacing: float,
        resolved: List[ResolvedLeg],
        lookup: InstrumentLookup,
    ) -> Dict[float, int]:
        """Live option OI assigned to the nearest grid point within half a spacing."""
        oi_by_point: Dict[float, int] = {}
        underlyings = sorted({contract.underlying for _, contract, _, _ in resolved})
        expiries = {contract.expiry for _, contract, _, _ in resolved if contract.is_option}

        for underlying in underlyings:
            for snapshot in lookup.options(underlying):
                if expiries and snapshot.expiry not in expiries:
                    continue
                if snapshot.strike is None or snapshot.open_interest <= 0:
                    continue
                idx = bisect.bisect_left(grid, snapshot.strike)
                candidates = [i for i in (idx - 1, idx) if 0 <= i < len(grid)]
                if not candidates:
                    continue
                nearest = min(candidates, key=lambda i: abs(grid[i] - snapshot.strike))
                if abs(grid[nearest] - snapshot.strike) <= spacing / 2:
                    point = grid[nearest]
                    oi_by_point[point] = oi_by_point.get(point, 0) + snapshot.open_interest

        return oi_by_point

    def _curve(self, resolved: List[ResolvedLeg], scenario: Scenario, lookup: InstrumentLookup) -> List[PayoffPoint]:
        if not resolved:
            return []

        strikes = [c.strike for _, c, _, _ in resolved if c.is_option]
        grid, spacing = self.price_grid(strikes, scenario.target_price)
        oi_by_point = self._open_interest_by_point(grid, spacing, resolved, lookup)

        curve = []
        for price in grid:
            expiry_pnl, target_pnl = self._pnl_at(resolved, scenario, price)
            curve.append(
                PayoffPoint(
                    price=price,
                    expiry_pnl=expiry_pnl,
                    target_pnl=target_pnl,
                    open_interest=oi_by_point.get(price, 0),
                )
            )
        return curve

    def payoff_curve(self, legs: List[StrategyLeg], scenario: Scenario, lookup: InstrumentLookup) -> List[PayoffPoint]:
        """Payoff curve alone (expiry and target-date P&L with OI overlay)."""
        resolved, _ = self._resolve(legs, lookup)
        return self._curve(resolved, scenario, lookup)

    # ------------------------------------------------------------------
    # SD bands
    # ------------------------------------------------------------------

    def representative_vol(
        self,
        resolved: List[ResolvedLeg],
        scenario: Scenario,
        lookup: InstrumentLookup,
    ) -> float:
        """
        Vol for SD bands: the first selected option leg's effective vol, else
        the IV of the live option whose strike is nearest the center, else
        the configured default.
        """
        for leg, contract, _, base_vol in resolved:
            if contract.is_option:
                return self.effective_vol(leg, base_vol, scenario)

        underlyings = sorted({c.underlying for _, c, _, _ in resolved})
        candidates: List[InstrumentSnapshot] = []
        for underlying in underlyings or [None]:
            candidates.extend(s for s in lookup.options(underlying) if s.iv is not None and s.iv > 0)

        if candidates:
            center = scenario.target_price
            atm = min(candidates, key=lambda s: (abs(s.strike - center), s.expiry, s.identifier))
            return atm.iv

        return self.settings.default_volatility

    def _sd_bands(self, resolved: List[ResolvedLeg], scenario: Scenario, lookup: InstrumentLookup) -> Optional[SDBands]:
        horizon_days = days_between(scenario.valuation_time, scenario.target_date, self.cutoff, self.tz)
        if horizon_days <= 0:
            return None

        vol = self.representative_vol(resolved, scenario, lookup)
        if vol <= 0:
            return None

        center = scenario.target_price
        one_sd = center * vol * math.sqrt(horizon_days / SD_YEAR_DAYS)
        return SDBands(
            center=center,
            vol=vol,
            horizon_days=horizon_days,
            one_sd=one_sd,
            plus_one=center + one_sd,
            minus_one=max(center - one_sd, 0.0),
            plus_two=center + 2 * one_sd,
            minus_two=max(center - 2 * one_sd, 0.0),
        )

    def sd_bands(self, legs: List[StrategyLeg], scenario: Scenario, lookup: InstrumentLookup) -> Optional[SDBands]:
        resolved, _ = self._resolve(legs, lookup)
        return self._sd_bands(resolved, scenario, lookup)

    # ------------------------------------------------------------------
    # Payoff table
    # ------------------------------------------------------------------

    def payoff_table(
        self,
        legs: List[StrategyLeg],
        scenario: Scenario,
        lookup: InstrumentLookup,
        interval: Optional[float] = None,
        half_rows: Optional[int] = None,
        percentage_base: Optional[float] = None,
    ) -> List[PayoffTableRow]:
        """
        P&L table around the target price.

        Rows sit on a grid snapped to interval around the target price; the
        center row uses the exact target price. When percentage_base is
        given, P&L is also expressed as a percentage of it.

        Args:
            legs: Strategy legs
            scenario: Scenario (target price is the center)
            lookup: Point-in-time instrument view
            interval: Row spacing (default from config)
            half_rows: Rows above and below the center (default from config)
            percentage_base: Base for percentage P&L

        Returns:
            Rows ordered by target price
        """
        resolved, _ = self._resolve(legs, lookup)
        if not resolved:
            return []

        interval = interval or self.settings.table_interval
        half_rows = half_rows if half_rows is not None else self.settings.table_half_rows
        center = scenario.target_price
        snapped = round(center / interval) * interval

        prices = []
        for i in range(-half_rows, half_rows + 1):
            price = center if i == 0 else snapped + i * interval
            if price <= 0:
                continue
            if i != 0 and abs(price - center) < 1e-6:
                continue
            prices.append(price)

        rows = []
        for price in sorted(set(prices)):
            expiry_pnl, target_pnl = self._pnl_at(resolved, scenario, price)
            target_pct = expiry_pct = None
            if percentage_base:
                target_pct = round(target_pnl / percentage_base * 100, 2)
                expiry_pct = round(expiry_pnl / percentage_base * 100, 2)
            rows.append(
                PayoffTableRow(
                    target_price=round(price, 2),
                    target_pnl=round(target_pnl, 2),
                    expiry_pnl=round(expiry_pnl, 2),
                    target_pnl_pct=target_pct,
                    expiry_pnl_pct=expiry_pct,
                )
            )
        return rows
