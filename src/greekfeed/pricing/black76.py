"""
Black-76 Pricing Model

Closed-form valuation and Greeks of European options on a forward price.
All functions are pure and shared by the ingestion path (live IV/Greeks) and
the scenario projection path.

Edge-case policy:
- T <= 0: price is undiscounted intrinsic value, all Greeks zero
- vol <= 0 with time remaining: price is discounted intrinsic value, delta is
  the discounted in-the-money indicator, other Greeks zero
"""

import math

from scipy.special import ndtr

from greekfeed.core.models import GreeksSet, OptionRight

DAYS_PER_YEAR = 365.0

_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


def norm_cdf(x: float) -> float:
    """Standard normal cumulative distribution function."""
    return float(ndtr(x))


def norm_pdf(x: float) -> float:
    """Standard normal probability density function."""
    return _INV_SQRT_2PI * math.exp(-0.5 * x * x)


def intrinsic_value(forward: float, strike: float, right: OptionRight) -> float:
    """Undiscounted intrinsic value."""
    if right == OptionRight.CALL:
        return max(forward - strike, 0.0)
    return max(strike - forward, 0.0)


def _d1_d2(forward: float, strike: float, t: float, vol: float) -> tuple[float, float]:
    vol_sqrt_t = vol * math.sqrt(t)
    d1 = (math.log(forward / strike) + 0.5 * vol * vol * t) / vol_sqrt_t
    return d1, d1 - vol_sqrt_t


def price(
    forward: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    vol: float,
    right: OptionRight,
) -> float:
    """
    Option premium under Black-76.

    Args:
        forward: Forward price of the underlying
        strike: Strike price
        time_to_expiry: Years to expiry
        rate: Continuously compounded risk-free rate
        vol: Annualized volatility (0.20 = 20%)
        right: CE or PE

    Returns:
        Premium per unit of underlying
    """
    if time_to_expiry <= 0:
        return intrinsic_value(forward, strike, right)

    discount = math.exp(-rate * time_to_expiry)
    if vol <= 0:
        return discount * intrinsic_value(forward, strike, right)

    d1, d2 = _d1_d2(forward, strike, time_to_expiry, vol)
    if right == OptionRight.CALL:
        return discount * (forward * norm_cdf(d1) - strike * norm_cdf(d2))
    return discount * (strike * norm_cdf(-d2) - forward * norm_cdf(-d1))


def greeks(
    forward: float,
    strike: float,
    time_to_expiry: float,
    rate: float,
    vol: float,
    right: OptionRight,
) -> GreeksSet:
    """
    Closed-form Greeks under Black-76.

    Theta is per calendar day. Vega is per unit change in vol; divide by 100
    for a per-1% figure.

    With zero vol the delta is the discounted in-the-money indicator, and an
    at-the-money contract (forward == strike) counts as in the money for both
    rights: call delta +e^-rT, put delta -e^-rT.
    """
    if time_to_expiry <= 0:
        return GreeksSet.zero()

    discount = math.exp(-rate * time_to_expiry)
    if vol <= 0:
        if right == OptionRight.CALL:
            delta = discount if forward >= strike else 0.0
        else:
            delta = -discount if forward <= strike else 0.0
        return GreeksSet(delta=delta)

    sqrt_t = math.sqrt(time_to_expiry)
    d1, _ = _d1_d2(forward, strike, time_to_expiry, vol)
    pdf_d1 = norm_pdf(d1)

    if right == OptionRight.CALL:
        delta = discount * norm_cdf(d1)
    else:
        delta = discount * (norm_cdf(d1) - 1.0)

    gamma = discount * pdf_d1 / (forward * vol * sqrt_t)
    vega = forward * discount * pdf_d1 * sqrt_t

    # dV/dt = -dV/dT; the discount factor contributes +r*V
    premium = price(forward, strike, time_to_expiry, rate, vol, right)
    annual_theta = -forward * discount * pdf_d1 * vol / (2.0 * sqrt_t) + rate * premium

    return GreeksSet(
        delta=delta,
        gamma=gamma,
        theta=annual_theta / DAYS_PER_YEAR,
        vega=vega,
    )
