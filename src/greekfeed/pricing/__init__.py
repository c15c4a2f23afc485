"""
Pricing Module

Black-76 valuation, Greeks and implied volatility.
"""

from greekfeed.pricing.black76 import greeks, intrinsic_value, norm_cdf, price
from greekfeed.pricing.implied_vol import VOL_MAX, VOL_MIN, SolverSettings, implied_vol

__all__ = [
    "greeks",
    "intrinsic_value",
    "norm_cdf",
    "price",
    "implied_vol",
    "SolverSettings",
    "VOL_MIN",
    "VOL_MAX",
]
