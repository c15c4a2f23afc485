"""
Implied Volatility Solver

Bisection inversion of the Black-76 price. The solver never raises: quotes
below the discounted intrinsic floor map to the minimum vol, and
non-convergence returns the best midpoint clamped to the search bounds.
"""

import math
from dataclasses import dataclass

from greekfeed.core.models import OptionRight
from greekfeed.pricing.black76 import intrinsic_value, price

VOL_MIN = 0.0001
VOL_MAX = 5.0


@dataclass(slots=True, frozen=True)
class SolverSettings:
    """Search bounds and stopping criteria."""
    tolerance: float = 1e-4
    max_iterations: int = 100
    vol_min: float = VOL_MIN
    vol_max: float = VOL_MAX


def implied_vol(
    market_price: float,
    forward: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    right: OptionRight,
    tolerance: float = 1e-4,
    max_iterations: int = 100,
    vol_min: float = VOL_MIN,
    vol_max: float = VOL_MAX,
) -> float:
    """
    Recover the volatility that reprices market_price.

    Args:
        market_price: Observed premium
        forward: Forward price of the underlying
        strike: Strike price
        time_to_expiry: Years to expiry
        rate: Risk-free rate
        right: CE or PE
        tolerance: Price tolerance; bracket stops at tolerance / 10
        max_iterations: Bisection iteration cap
        vol_min: Lower search bound, also the value for sub-intrinsic quotes
        vol_max: Upper search bound

    Returns:
        Implied vol in [vol_min, vol_max]
    """
    discount = math.exp(-rate * max(time_to_expiry, 0.0))
    floor = discount * intrinsic_value(forward, strike, right)
    if market_price < floor - tolerance:
        return vol_min

    low, high = vol_min, vol_max
    mid = (low + high) / 2.0

    for _ in range(max_iterations):
        mid = (low + high) / 2.0
        model_price = price(forward, strike, time_to_expiry, rate, mid, right)
        diff = model_price - market_price

        if abs(diff) < tolerance:
            break

        if diff > 0:
            high = mid
        else:
            low = mid

        if high - low < tolerance / 10.0:
            mid = (low + high) / 2.0
            break

    return min(max(mid, vol_min), vol_max)


def solve(
    market_price: float,
    forward: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    right: OptionRight,
    settings: SolverSettings,
) -> float:
    """implied_vol with bounds taken from SolverSettings."""
    return implied_vol(
        market_price,
        forward,
        strike,
        time_to_expiry,
        rate,
        right,
        tolerance=settings.tolerance,
        max_iterations=settings.max_iterations,
        vol_min=settings.vol_min,
        vol_max=settings.vol_max,
    )
