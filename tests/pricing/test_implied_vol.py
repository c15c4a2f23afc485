"""
Tests for Implied Volatility Solver

Bisection inversion: recovery of known vols, the intrinsic floor and
clamping on non-convergence.
"""

import math

import pytest

from greekfeed.core.models import OptionRight
from greekfeed.pricing.black76 import price
from greekfeed.pricing.implied_vol import VOL_MAX, VOL_MIN, SolverSettings, implied_vol, solve

CALL = OptionRight.CALL
PUT = OptionRight.PUT


class TestImpliedVol:
    """Test suite for implied_vol."""

    @pytest.mark.parametrize("sigma", [0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 3.0])
    @pytest.mark.parametrize("right", [CALL, PUT])
    def test_recovers_vol_at_the_money(self, sigma, right):
        f, k, t, r = 100.0, 100.0, 0.5, 0.07
        market = price(f, k, t, r, sigma, right)
        assert implied_vol(market, f, k, t, r, right) == pytest.approx(sigma, abs=1e-3)

    @pytest.mark.parametrize("sigma", [0.2, 0.5, 1.0, 3.0])
    @pytest.mark.parametrize("strike,right", [(90.0, CALL), (110.0, CALL), (90.0, PUT), (110.0, PUT)])
    def test_recovers_vol_away_from_the_money(self, sigma, strike, right):
        f, t, r = 100.0, 0.5, 0.07
        market = price(f, strike, t, r, sigma, right)
        assert implied_vol(market, f, strike, t, r, right) == pytest.approx(sigma, abs=1e-3)

    def test_index_option_recovery(self):
        f, k, t, r, sigma = 22080.0, 22500.0, 10 / 365, 0.07, 0.13
        market = price(f, k, t, r, sigma, CALL)
        assert implied_vol(market, f, k, t, r, CALL) == pytest.approx(sigma, abs=1e-3)

    def test_below_intrinsic_returns_floor(self):
        """A quote under discounted intrinsic short-circuits to the minimum vol."""
        f, k, t, r = 110.0, 100.0, 0.25, 0.07
        floor = 10 * math.exp(-r * t)
        assert implied_vol(floor - 1.0, f, k, t, r, CALL) == VOL_MIN

    def test_unreachable_price_clamped_to_ceiling(self):
        """A price above the vol_max model price ends at the upper bound."""
        result = implied_vol(99.0, 100.0, 100.0, 0.5, 0.0, CALL)
        assert result <= VOL_MAX
        assert result > VOL_MAX - 0.01

    def test_never_raises_on_zero_time(self):
        result = implied_vol(5.0, 105.0, 100.0, 0.0, 0.07, CALL)
        assert VOL_MIN <= result <= VOL_MAX

    def test_iteration_cap_still_returns_bound_value(self):
        f, k, t, r = 100.0, 100.0, 0.5, 0.07
        market = price(f, k, t, r, 0.37, CALL)
        result = implied_vol(market, f, k, t, r, CALL, max_iterations=3)
        assert VOL_MIN <= result <= VOL_MAX

    def test_solve_uses_settings(self):
        settings = SolverSettings(tolerance=1e-6, max_iterations=200)
        f, k, t, r = 100.0, 95.0, 0.2, 0.05
        market = price(f, k, t, r, 0.42, PUT)
        assert solve(market, f, k, t, r, PUT, settings) == pytest.approx(0.42, abs=1e-4)
